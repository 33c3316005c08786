"""
PermissionGate: 谁可以把订单推到哪个状态。

  admin               : 当前状态出发的所有边（含 pending → completed 捷径、强制取消）
  staff（被指派者）    : 只有一条前进边 pending → in_progress / in_progress → completed
  staff（非指派）/ other : 只读，任何目标都拒绝

检验单和处方共用这一套规则。
"""

from .transitions import forward_edge, reachable_targets
from .types import Actor, OrderSnapshot, OrderStatus, Role


class PermissionGate:

    @staticmethod
    def is_assigned(actor: Actor, order: OrderSnapshot) -> bool:
        return bool(actor.staff_id) and actor.staff_id == order.assigned_staff_id

    def allowed_targets(self, actor: Actor, order: OrderSnapshot) -> frozenset[OrderStatus]:
        current = order.status
        if current.is_terminal:
            return frozenset()

        if actor.role is Role.ADMIN:
            return reachable_targets(current)

        if actor.role is Role.STAFF and self.is_assigned(actor, order):
            nxt = forward_edge(current)
            return frozenset({nxt}) if nxt is not None else frozenset()

        return frozenset()

    def allowed(self, actor: Actor, order: OrderSnapshot, target: OrderStatus) -> bool:
        return target in self.allowed_targets(actor, order)
