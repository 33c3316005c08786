"""
转换表：状态机的唯一事实来源。

  pending      → in_progress, cancelled
  in_progress  → completed, cancelled
  completed    → （终态）
  cancelled    → （终态）

admin 额外有一条捷径 pending → completed（检验科页面原有的操作）。
没有任何边回到 pending。
"""

from ..exceptions import ValidationError
from .types import OrderKind, OrderStatus

TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.IN_PROGRESS, OrderStatus.CANCELLED}),
    OrderStatus.IN_PROGRESS: frozenset({OrderStatus.COMPLETED, OrderStatus.CANCELLED}),
    OrderStatus.COMPLETED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

ADMIN_SHORTCUTS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.COMPLETED}),
    OrderStatus.IN_PROGRESS: frozenset(),
    OrderStatus.COMPLETED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

# 指派人员唯一可走的前进边
FORWARD_EDGES: dict[OrderStatus, OrderStatus | None] = {
    OrderStatus.PENDING: OrderStatus.IN_PROGRESS,
    OrderStatus.IN_PROGRESS: OrderStatus.COMPLETED,
    OrderStatus.COMPLETED: None,
    OrderStatus.CANCELLED: None,
}


def _check_exhaustive(name: str, table: dict) -> None:
    missing = set(OrderStatus) - set(table)
    if missing:
        raise RuntimeError(f"{name} is missing statuses: {sorted(s.value for s in missing)}")


for _name, _table in (("TRANSITIONS", TRANSITIONS),
                      ("ADMIN_SHORTCUTS", ADMIN_SHORTCUTS),
                      ("FORWARD_EDGES", FORWARD_EDGES)):
    _check_exhaustive(_name, _table)


def canonical_targets(current: OrderStatus) -> frozenset[OrderStatus]:
    return TRANSITIONS[current]


def reachable_targets(current: OrderStatus) -> frozenset[OrderStatus]:
    """任何角色可能走的所有边（canonical + admin 捷径）。"""
    return TRANSITIONS[current] | ADMIN_SHORTCUTS[current]


def edge_exists(current: OrderStatus, target: OrderStatus) -> bool:
    return target in reachable_targets(current)


def forward_edge(current: OrderStatus) -> OrderStatus | None:
    return FORWARD_EDGES[current]


def parse_status(value) -> OrderStatus:
    """字符串 → OrderStatus。未知值抛 ValidationError(INVALID_STATUS)。"""
    if isinstance(value, OrderStatus):
        return value
    try:
        return OrderStatus(value)
    except ValueError:
        raise ValidationError(
            message=f"Unknown order status: {value!r}.",
            code='INVALID_STATUS',
            detail={'allowed': [s.value for s in OrderStatus]},
        )


def parse_kind(value) -> OrderKind:
    if isinstance(value, OrderKind):
        return value
    try:
        return OrderKind(value)
    except ValueError:
        raise ValidationError(
            message=f"Unknown order kind: {value!r}.",
            code='INVALID_KIND',
            detail={'allowed': [k.value for k in OrderKind]},
        )
