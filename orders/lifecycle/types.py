"""
Lifecycle 层的标准数据结构。

状态机只认识这里的类型：OrderSnapshot / Actor / Bill / BillingReference。
ORM 对象在 repository 里转换成 OrderSnapshot，业务规则永远不碰 QuerySet。
"""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum


class OrderStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (OrderStatus.COMPLETED, OrderStatus.CANCELLED)


class OrderKind(str, Enum):
    LAB_ORDER = "lab_order"
    PRESCRIPTION = "prescription"


class Role(str, Enum):
    ADMIN = "admin"
    STAFF = "staff"
    OTHER = "other"


@dataclass(frozen=True)
class Actor:
    """
    已认证的调用者。

    由 view 层从服务端 session / StaffProfile 构造，不接受请求体里的角色字段。
    """

    role: Role
    staff_id: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN


@dataclass(frozen=True)
class BillingReference:
    item_type: str
    reference_id: str


@dataclass(frozen=True)
class Bill:
    """
    BillingLedger 返回的只读账单视图。

    paid 仅在账单存在、未作废且 paid_amount >= total_amount 时为真；
    作废（cancelled）的账单不算付款。其余 status 只用于展示。
    """

    exists: bool
    total_amount: Decimal = Decimal("0")
    paid_amount: Decimal = Decimal("0")
    status: str = "unpaid"
    bill_id: str | None = None

    @property
    def paid(self) -> bool:
        return self.exists and self.status != "cancelled" and self.paid_amount >= self.total_amount

    @property
    def balance(self) -> Decimal:
        return max(Decimal("0"), self.total_amount - self.paid_amount)


@dataclass(frozen=True)
class OrderSnapshot:
    """
    ClinicalOrder 的不可变快照（lab order 和 prescription 共用同一生命周期）。

    billing_reference 为空时，按 {kind, id} 查账单，与前端 by-reference 查询一致。
    """

    id: str
    kind: OrderKind
    status: OrderStatus
    patient_id: str
    assigned_staff_id: str | None = None
    items: tuple = field(default_factory=tuple)
    billing_reference: BillingReference | None = None
    version: int = 0

    def lookup_reference(self) -> BillingReference:
        if self.billing_reference is not None:
            return self.billing_reference
        return BillingReference(item_type=self.kind.value, reference_id=str(self.id))
