"""
Django ORM 版本的 OrderRepository / BillingLedger。

compare_and_set_status 用一条带 status 条件的 UPDATE 做乐观并发控制：
    UPDATE clinical_orders SET status = target ... WHERE id = ? AND status = expected
受影响行数为 0 说明被别人抢先改了，返回 None，由状态机决定重试。
审计行和 UPDATE 在同一个事务里。
"""

import logging

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import transaction
from django.db.models import F
from django.utils import timezone

from .exceptions import NotFoundError
from .lifecycle.base import BaseBillingLedger, BaseOrderRepository
from .lifecycle.types import (
    Bill,
    BillingReference,
    OrderKind,
    OrderSnapshot,
    OrderStatus,
)
from .models import BillItem, ClinicalOrder, OrderStatusTransition

logger = logging.getLogger(__name__)


def snapshot_from_model(order) -> OrderSnapshot:
    billing_reference = None
    if order.billing_item_type and order.billing_reference_id:
        billing_reference = BillingReference(
            item_type=order.billing_item_type,
            reference_id=order.billing_reference_id,
        )
    return OrderSnapshot(
        id=str(order.id),
        kind=OrderKind(order.kind),
        status=OrderStatus(order.status),
        patient_id=order.patient_id,
        assigned_staff_id=order.assigned_staff_id,
        items=tuple(order.items or ()),
        billing_reference=billing_reference,
        version=order.version,
    )


def bill_from_model(bill) -> Bill:
    return Bill(
        exists=True,
        total_amount=bill.total_amount,
        paid_amount=bill.paid_amount,
        status=bill.status,
        bill_id=str(bill.id),
    )


class DjangoOrderRepository(BaseOrderRepository):

    def get_model(self, order_id) -> ClinicalOrder:
        try:
            return ClinicalOrder.objects.get(id=order_id)
        except (ClinicalOrder.DoesNotExist, DjangoValidationError, ValueError):
            raise NotFoundError(
                message='Order not found',
                code='ORDER_NOT_FOUND',
                detail={'order_id': str(order_id)},
            )

    def get(self, order_id) -> OrderSnapshot:
        return snapshot_from_model(self.get_model(order_id))

    @transaction.atomic
    def compare_and_set_status(self, order_id, expected, target, actor):
        now = timezone.now()
        changes = {
            'status': target.value,
            'version': F('version') + 1,
            'updated_at': now,
        }
        if target is OrderStatus.COMPLETED:
            changes['completed_at'] = now
        elif target is OrderStatus.CANCELLED:
            changes['cancelled_at'] = now

        updated = ClinicalOrder.objects.filter(id=order_id, status=expected.value).update(**changes)
        if not updated:
            logger.debug("CAS miss on order %s (expected %s)", order_id, expected.value)
            return None

        OrderStatusTransition.objects.create(
            order_id=order_id,
            from_status=expected.value,
            to_status=target.value,
            actor_role=actor.role.value,
            actor_staff_id=actor.staff_id,
        )
        return self.get(order_id)


class DjangoBillingLedger(BaseBillingLedger):

    def lookup(self, reference):
        item = (
            BillItem.objects
            .filter(item_type=reference.item_type, reference_id=str(reference.reference_id))
            .select_related('bill')
            .order_by('-bill__created_at', '-id')
            .first()
        )
        if item is None:
            return None
        return bill_from_model(item.bill)
