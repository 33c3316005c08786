import logging
import uuid
from datetime import datetime, time
from decimal import Decimal, InvalidOperation

from django.conf import settings
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import transaction
from django.db.models import Q, Sum
from django.utils import timezone
from django.utils.dateparse import parse_date, parse_datetime

from .exceptions import BlockError, NotFoundError, PermissionDeniedError, ValidationError
from .lifecycle.factory import get_state_machine
from .lifecycle.permissions import PermissionGate
from .lifecycle.transitions import parse_kind, parse_status
from .lifecycle.types import Actor, BillingReference, Role
from .models import Bill, BillItem, ClinicalOrder, Payment, StaffProfile
from .repositories import (
    DjangoBillingLedger,
    DjangoOrderRepository,
    bill_from_model,
    snapshot_from_model,
)

logger = logging.getLogger(__name__)

CENT = Decimal('0.01')
MAX_AMOUNT = Decimal('9999999999.99')  # DecimalField(max_digits=12, decimal_places=2)


def _require_object(data):
    if not isinstance(data, dict):
        raise ValidationError(
            message='Request body must be a JSON object.',
            code='VALIDATION_ERROR',
        )
    return data


def resolve_actor(user):
    """
    已认证的 Django user → Actor。

    - superuser → admin
    - 有 StaffProfile → 按 profile.role
    - 其他 → other（只读）
    """
    if user is None or not user.is_authenticated:
        return Actor(role=Role.OTHER)

    try:
        profile = user.staff_profile
    except StaffProfile.DoesNotExist:
        profile = None

    staff_id = (profile.staff_id or None) if profile else None
    if user.is_superuser:
        return Actor(role=Role.ADMIN, staff_id=staff_id)
    if profile is None:
        return Actor(role=Role.OTHER)
    return Actor(role=Role(profile.role), staff_id=staff_id)


# ── Orders ─────────────────────────────────────────────────────────────────

def create_order(data, actor):
    """
    新建 pending 订单。items 非空在这里检查，状态机不管。
    Raises PermissionDeniedError / ValidationError。
    """
    if actor.role is Role.OTHER:
        raise PermissionDeniedError(message='Only staff or admins can create orders.')

    data = _require_object(data)
    kind = parse_kind(data.get('kind'))

    patient_id = str(data.get('patient_id') or '').strip()
    if not patient_id:
        raise ValidationError(
            message='patient_id is required.',
            code='PATIENT_REQUIRED',
        )

    items = data.get('items')
    if not isinstance(items, list) or not items:
        raise ValidationError(
            message='An order needs at least one item.',
            code='EMPTY_ITEMS',
        )

    billing_reference = data.get('billing_reference') or {}
    if not isinstance(billing_reference, dict):
        raise ValidationError(
            message='billing_reference must be an object with item_type and reference_id.',
            code='INVALID_BILLING_REFERENCE',
        )

    order = ClinicalOrder.objects.create(
        kind=kind.value,
        status='pending',
        patient_id=patient_id,
        assigned_staff_id=(str(data.get('assigned_staff_id') or '').strip() or None),
        items=items,
        billing_item_type=billing_reference.get('item_type') or None,
        billing_reference_id=(str(billing_reference.get('reference_id') or '') or None),
    )
    logger.info("Created %s %s for patient %s by %s", kind.value, order.id, patient_id, actor.role.value)
    return order


def get_order(order_id):
    """Get order by ID. Raises NotFoundError."""
    return DjangoOrderRepository().get_model(order_id)


def get_order_detail(order_id, actor):
    """返回 (order, 调用者可去的目标状态)。"""
    order = get_order(order_id)
    allowed = PermissionGate().allowed_targets(actor, snapshot_from_model(order))
    return order, allowed


def _parse_positive_int(value, name, default):
    if value in (None, ''):
        return default
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        parsed = 0
    if parsed < 1:
        raise ValidationError(
            message=f"{name} must be a positive integer.",
            code='INVALID_PAGINATION',
            detail={name: value},
        )
    return parsed


def list_orders(params):
    """
    按 status / kind / patient_id / assigned_staff_id 过滤，分页。
    Returns (orders, total, page, limit)。
    """
    queryset = ClinicalOrder.objects.all().order_by('-created_at')

    if params.get('status'):
        queryset = queryset.filter(status=parse_status(params['status']).value)
    if params.get('kind'):
        queryset = queryset.filter(kind=parse_kind(params['kind']).value)
    if params.get('patient_id'):
        queryset = queryset.filter(patient_id=params['patient_id'])
    if params.get('assigned_staff_id'):
        queryset = queryset.filter(assigned_staff_id=params['assigned_staff_id'])

    max_limit = getattr(settings, 'ORDER_LIST_MAX_LIMIT', 100)
    page = _parse_positive_int(params.get('page'), 'page', 1)
    limit = min(_parse_positive_int(params.get('limit'), 'limit', 20), max_limit)

    total = queryset.count()
    offset = (page - 1) * limit
    return list(queryset[offset:offset + limit]), total, page, limit


def change_order_status(order_id, data, actor):
    """
    PATCH /orders/{id}/status 的业务入口。全部规则在 OrderStateMachine 里，
    这里只做入参检查和结果回读。
    """
    target = _require_object(data).get('status')
    if not target:
        raise ValidationError(
            message='status is required.',
            code='STATUS_REQUIRED',
        )

    snapshot = get_state_machine().request_transition(order_id, target, actor)
    return get_order(snapshot.id)


def delete_order(order_id, actor):
    """管理员删除，不经过状态机。"""
    if not actor.is_admin:
        raise PermissionDeniedError(
            message='Only admins can delete orders.',
            detail={'order_id': str(order_id)},
        )
    order = get_order(order_id)
    order.delete()
    logger.info("Order %s deleted by admin %s", order_id, actor.staff_id)


def list_order_transitions(order_id):
    order = get_order(order_id)
    return list(order.transitions.all())


# ── Billing ────────────────────────────────────────────────────────────────

def _order_exists_for_reference(item_type, reference_id):
    query = Q(billing_item_type=item_type, billing_reference_id=reference_id)
    try:
        query |= Q(kind=item_type, id=uuid.UUID(str(reference_id)))
    except ValueError:
        pass
    return ClinicalOrder.objects.filter(query).exists()


def get_billing_by_reference(item_type, reference_id):
    """
    查某个订单的账单。Returns Bill 或 None（订单存在但还没开账单）。
    Raises NotFoundError 当既没有账单、也没有对应订单。
    """
    if not item_type or not reference_id:
        raise ValidationError(
            message='item_type and reference_id are required.',
            code='MISSING_REFERENCE',
        )

    bill = DjangoBillingLedger().lookup(BillingReference(item_type=item_type, reference_id=reference_id))
    if bill is None and not _order_exists_for_reference(item_type, reference_id):
        raise NotFoundError(
            message='Nothing billable found for this reference.',
            code='BILL_NOT_FOUND',
            detail={'item_type': item_type, 'reference_id': reference_id},
        )
    return bill


def _parse_amount(value, field='amount_paid', allow_zero=False):
    try:
        amount = Decimal(str(value)).quantize(CENT)
    except (InvalidOperation, ValueError):
        amount = None
    if (
        amount is None
        or not amount.is_finite()
        or amount < 0
        or (amount == 0 and not allow_zero)
        or amount > MAX_AMOUNT
    ):
        raise ValidationError(
            message=f"{field} must be a {'non-negative' if allow_zero else 'positive'} number no larger than {MAX_AMOUNT}.",
            code='INVALID_AMOUNT',
            detail={field: value},
        )
    return amount


def _parse_payment_date(value):
    """ISO 日期或日期时间；缺省为当前时间。"""
    if not value:
        return timezone.now()
    try:
        parsed = parse_datetime(str(value))
        if parsed is None:
            day = parse_date(str(value))
            if day is not None:
                parsed = datetime.combine(day, time.min)
    except ValueError:
        parsed = None
    if parsed is None:
        raise ValidationError(
            message='payment_date must be an ISO date or datetime.',
            code='INVALID_PAYMENT_DATE',
            detail={'payment_date': value},
        )
    if timezone.is_naive(parsed):
        parsed = timezone.make_aware(parsed)
    return parsed


def _bill_status(bill):
    if bill.paid_amount >= bill.total_amount:
        return 'paid'
    if bill.paid_amount > 0:
        return 'partial'
    return 'unpaid'


def _get_bill_for_update(bill_id):
    try:
        return Bill.objects.select_for_update().get(id=bill_id)
    except (Bill.DoesNotExist, DjangoValidationError, ValueError, TypeError):
        raise NotFoundError(
            message='Bill not found',
            code='BILL_NOT_FOUND',
            detail={'bill_id': str(bill_id)},
        )


def record_payment(data, actor):
    """
    记录一笔付款并更新账单 paid_amount / status。
    Returns 更新后的 Bill dataclass。
    """
    if actor.role is Role.OTHER:
        raise PermissionDeniedError(message='Only staff or admins can record payments.')

    data = _require_object(data)
    amount = _parse_amount(data.get('amount_paid'))
    payment_method = data.get('payment_method') or 'cash'
    payment_date = _parse_payment_date(data.get('payment_date'))
    bill_id = data.get('bill_id')

    with transaction.atomic():
        bill = _get_bill_for_update(bill_id)

        if bill.status == 'cancelled':
            raise BlockError(
                message='This bill has been cancelled and cannot take payments.',
                code='BILL_CANCELLED',
                detail={'bill_id': str(bill.id)},
            )

        if bill.paid_amount + amount > MAX_AMOUNT:
            raise ValidationError(
                message=f"Payments on one bill cannot exceed {MAX_AMOUNT}.",
                code='INVALID_AMOUNT',
                detail={'bill_id': str(bill.id), 'amount_paid': str(amount)},
            )

        Payment.objects.create(
            bill=bill,
            amount_paid=amount,
            payment_method=payment_method,
            payment_date=payment_date,
        )
        bill.paid_amount += amount
        bill.status = _bill_status(bill)
        bill.save(update_fields=['paid_amount', 'status', 'updated_at'])

    logger.info("Payment of %s recorded on bill %s (%s)", amount, bill.id, bill.status)
    return bill_from_model(bill)


def get_bill(bill_id):
    """账单详情（含账单行）。Raises NotFoundError。"""
    try:
        return Bill.objects.prefetch_related('items').get(id=bill_id)
    except (Bill.DoesNotExist, DjangoValidationError, ValueError):
        raise NotFoundError(
            message='Bill not found',
            code='BILL_NOT_FOUND',
            detail={'bill_id': str(bill_id)},
        )


def generate_bill(data, actor):
    """
    给病人开一张空账单（total 0, unpaid）。账单行之后用 add_bill_items 挂上。
    Returns Bill model。
    """
    if actor.role is Role.OTHER:
        raise PermissionDeniedError(message='Only staff or admins can generate bills.')

    data = _require_object(data)
    patient_id = str(data.get('patient_id') or '').strip()
    if not patient_id:
        raise ValidationError(
            message='patient_id is required.',
            code='PATIENT_REQUIRED',
        )

    bill = Bill.objects.create(patient_id=patient_id, status='unpaid')
    logger.info("Bill %s generated for patient %s by %s", bill.id, patient_id, actor.role.value)
    return bill


def _parse_bill_items(raw_items):
    if not isinstance(raw_items, list) or not raw_items:
        raise ValidationError(
            message='items must be a non-empty list.',
            code='EMPTY_ITEMS',
        )

    parsed = []
    for index, raw in enumerate(raw_items):
        if not isinstance(raw, dict):
            raise ValidationError(
                message=f"items[{index}] must be an object.",
                code='INVALID_BILL_ITEM',
                detail={'index': index},
            )
        item_type = parse_kind(raw.get('item_type')).value
        reference_id = str(raw.get('reference_id') or '').strip()
        if not reference_id:
            raise ValidationError(
                message=f"items[{index}].reference_id is required.",
                code='INVALID_BILL_ITEM',
                detail={'index': index},
            )
        if not _order_exists_for_reference(item_type, reference_id):
            raise NotFoundError(
                message=f"No {item_type} matches reference {reference_id}.",
                code='ORDER_NOT_FOUND',
                detail={'index': index, 'item_type': item_type, 'reference_id': reference_id},
            )
        amount = _parse_amount(raw.get('amount'), field='amount', allow_zero=True)
        parsed.append((item_type, reference_id, amount))
    return parsed


def add_bill_items(bill_id, data, actor):
    """
    往账单上挂账单行，total_amount 重新按所有行求和，status 随之重算。
    Returns 更新后的 Bill model。
    """
    if actor.role is Role.OTHER:
        raise PermissionDeniedError(message='Only staff or admins can edit bills.')

    items = _parse_bill_items(_require_object(data).get('items'))

    with transaction.atomic():
        bill = _get_bill_for_update(bill_id)

        if bill.status == 'cancelled':
            raise BlockError(
                message='This bill has been cancelled and cannot take new items.',
                code='BILL_CANCELLED',
                detail={'bill_id': str(bill.id)},
            )

        current_total = bill.items.aggregate(total=Sum('amount'))['total'] or Decimal('0')
        new_total = current_total + sum((amount for _, _, amount in items), Decimal('0'))
        if new_total > MAX_AMOUNT:
            raise ValidationError(
                message=f"Bill total cannot exceed {MAX_AMOUNT}.",
                code='INVALID_AMOUNT',
                detail={'bill_id': str(bill.id)},
            )

        BillItem.objects.bulk_create([
            BillItem(bill=bill, item_type=item_type, reference_id=reference_id, amount=amount)
            for item_type, reference_id, amount in items
        ])
        bill.total_amount = new_total
        bill.status = _bill_status(bill)
        bill.save(update_fields=['total_amount', 'status', 'updated_at'])

    logger.info("Bill %s: %d item(s) added, total now %s", bill.id, len(items), bill.total_amount)
    return get_bill(bill.id)
