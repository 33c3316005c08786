"""
OrderStateMachine: 订单状态转换的唯一入口。

request_transition 的检查顺序：
  1. 读订单（不存在 → NotFoundError）
  2. target == current → 幂等成功，不写库
  3. 当前是终态 / 边不存在 → InvalidTransitionError
  4. PermissionGate 拒绝 → PermissionDeniedError
  5. target == completed 且未付清 → PaymentRequiredError
  6. compare-and-swap 写入；冲突则重新读取、完整校验一次，仍冲突 → ConflictError

任何一步失败都不会产生部分写入。
"""

import logging

from ..exceptions import (
    ConflictError,
    InvalidTransitionError,
    PaymentRequiredError,
    PermissionDeniedError,
)
from .base import BaseOrderRepository
from .billing import BillingGate
from .permissions import PermissionGate
from .transitions import edge_exists, parse_status
from .types import Actor, OrderSnapshot, OrderStatus

logger = logging.getLogger(__name__)


class OrderStateMachine:

    def __init__(
        self,
        repository: BaseOrderRepository,
        billing: BillingGate,
        permissions: PermissionGate | None = None,
        max_retries: int = 1,
    ):
        self._repository = repository
        self._billing = billing
        self._permissions = permissions or PermissionGate()
        self._max_retries = max_retries

    def allowed_transitions(self, order: OrderSnapshot, actor: Actor) -> frozenset[OrderStatus]:
        """调用者从当前状态可以去的目标（不含付款检查，供 UI 渲染按钮）。"""
        return self._permissions.allowed_targets(actor, order)

    def request_transition(self, order_id, target, actor: Actor) -> OrderSnapshot:
        target = parse_status(target)
        retries = 0

        while True:
            order = self._repository.get(order_id)

            if order.status is target:
                logger.debug("Order %s already %s, no-op", order.id, target.value)
                return order

            self._validate(order, target, actor)

            updated = self._repository.compare_and_set_status(order.id, order.status, target, actor)
            if updated is not None:
                logger.info(
                    "Order %s (%s): %s -> %s by %s/%s",
                    order.id, order.kind.value, order.status.value, target.value,
                    actor.role.value, actor.staff_id,
                )
                return updated

            if retries >= self._max_retries:
                logger.warning(
                    "Order %s: status changed concurrently, giving up after %d retries",
                    order.id, retries,
                )
                raise ConflictError(
                    message='Order status was changed by another request. Reload and try again.',
                    detail=self._detail(order, target),
                )

            retries += 1
            logger.warning("Order %s: concurrent status change detected, re-validating", order.id)

    # ── 校验 ───────────────────────────────────────────────────────────────

    def _validate(self, order: OrderSnapshot, target: OrderStatus, actor: Actor) -> None:
        if order.status.is_terminal:
            raise InvalidTransitionError(
                message=f"Order is already {order.status.value}; no further transitions are allowed.",
                detail=self._detail(order, target),
            )

        if not edge_exists(order.status, target):
            raise InvalidTransitionError(
                message=f"Cannot move order from {order.status.value} to {target.value}.",
                detail=self._detail(order, target),
            )

        if not self._permissions.allowed(actor, order, target):
            logger.warning(
                "Order %s: %s/%s denied %s -> %s",
                order.id, actor.role.value, actor.staff_id, order.status.value, target.value,
            )
            raise PermissionDeniedError(
                message=f"You are not allowed to move this order to {target.value}.",
                detail=self._detail(order, target),
            )

        if target is OrderStatus.COMPLETED:
            paid, bill = self._billing.require_paid_for(order)
            if not paid:
                reference = order.lookup_reference()
                detail = self._detail(order, target)
                detail['billing_reference'] = {
                    'item_type': reference.item_type,
                    'reference_id': reference.reference_id,
                }
                raise PaymentRequiredError(
                    message='Payment must be recorded before the order can be completed.',
                    bill=bill,
                    detail=detail,
                )

    @staticmethod
    def _detail(order: OrderSnapshot, target: OrderStatus) -> dict:
        return {
            'order_id': str(order.id),
            'kind': order.kind.value,
            'current_status': order.status.value,
            'target_status': target.value,
        }
