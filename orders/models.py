import uuid
from django.conf import settings
from django.db import models
from django.utils import timezone


class StaffProfile(models.Model):
    """服务端保存的角色 / 员工编号。Actor 只从这里构造。"""

    ROLE_CHOICES = [
        ('admin', 'Admin'),
        ('staff', 'Staff'),
        ('other', 'Other'),
    ]

    user = models.OneToOneField(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name='staff_profile')
    role = models.CharField(max_length=20, choices=ROLE_CHOICES, default='other')
    staff_id = models.CharField(max_length=64, unique=True, blank=True, null=True)

    class Meta:
        db_table = 'staff_profiles'


class ClinicalOrder(models.Model):
    """Lab order 或 prescription。status 只能经由 OrderStateMachine 修改。"""

    KIND_CHOICES = [
        ('lab_order', 'Lab order'),
        ('prescription', 'Prescription'),
    ]
    STATUS_CHOICES = [
        ('pending', 'Pending'),
        ('in_progress', 'In progress'),
        ('completed', 'Completed'),
        ('cancelled', 'Cancelled'),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    kind = models.CharField(max_length=20, choices=KIND_CHOICES)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='pending')
    patient_id = models.CharField(max_length=64)
    assigned_staff_id = models.CharField(max_length=64, blank=True, null=True)
    items = models.JSONField(default=list, blank=True)
    billing_item_type = models.CharField(max_length=20, blank=True, null=True)
    billing_reference_id = models.CharField(max_length=64, blank=True, null=True)
    version = models.PositiveIntegerField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    completed_at = models.DateTimeField(blank=True, null=True)
    cancelled_at = models.DateTimeField(blank=True, null=True)

    class Meta:
        db_table = 'clinical_orders'
        indexes = [
            models.Index(fields=['kind', 'status'], name='clinical_order_kind_status'),
        ]


class OrderStatusTransition(models.Model):
    """每次成功的状态转换写一行，和 CAS 更新在同一个事务里。"""

    order = models.ForeignKey(ClinicalOrder, on_delete=models.CASCADE, related_name='transitions')
    from_status = models.CharField(max_length=20)
    to_status = models.CharField(max_length=20)
    actor_role = models.CharField(max_length=20)
    actor_staff_id = models.CharField(max_length=64, blank=True, null=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'order_status_transitions'
        ordering = ['id']

    def __str__(self):
        return f"{self.order_id}: {self.from_status} → {self.to_status}"


class Bill(models.Model):
    STATUS_CHOICES = [
        ('unpaid', 'Unpaid'),
        ('partial', 'Partial'),
        ('paid', 'Paid'),
        ('cancelled', 'Cancelled'),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    patient_id = models.CharField(max_length=64, blank=True, null=True)
    total_amount = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    paid_amount = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='unpaid')
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'bills'


class BillItem(models.Model):
    """账单行；{item_type, reference_id} 指向被收费的订单。"""

    bill = models.ForeignKey(Bill, on_delete=models.CASCADE, related_name='items')
    item_type = models.CharField(max_length=20)
    reference_id = models.CharField(max_length=64)
    amount = models.DecimalField(max_digits=12, decimal_places=2)

    class Meta:
        db_table = 'bill_items'
        indexes = [
            models.Index(fields=['item_type', 'reference_id'], name='bill_item_reference'),
        ]


class Payment(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    bill = models.ForeignKey(Bill, on_delete=models.CASCADE, related_name='payments')
    amount_paid = models.DecimalField(max_digits=12, decimal_places=2)
    payment_method = models.CharField(max_length=20, default='cash')
    payment_date = models.DateTimeField(default=timezone.now)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'payments'
