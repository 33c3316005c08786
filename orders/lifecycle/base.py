"""
状态机依赖的两个外部协作者的抽象基类。

  BaseOrderRepository: 读订单 + compare-and-swap 写状态
  BaseBillingLedger: 按 billing reference 查账单（只读）

生产实现在 orders/repositories.py（Django ORM），
测试替身在 lifecycle/memory.py。状态机只依赖这里的接口。
"""

from abc import ABC, abstractmethod

from .types import Actor, Bill, BillingReference, OrderSnapshot, OrderStatus


class BaseOrderRepository(ABC):

    @abstractmethod
    def get(self, order_id) -> OrderSnapshot:
        """
        读取订单当前快照。

        Raises:
            NotFoundError: order_id 不存在
        """

    @abstractmethod
    def compare_and_set_status(
        self,
        order_id,
        expected: OrderStatus,
        target: OrderStatus,
        actor: Actor,
    ) -> OrderSnapshot | None:
        """
        仅当订单当前状态仍为 expected 时写入 target。

        Returns:
            写入成功 → 更新后的快照
            状态已被别人改掉 → None（由状态机决定是否重试）
        """


class BaseBillingLedger(ABC):

    @abstractmethod
    def lookup(self, reference: BillingReference) -> Bill | None:
        """按 {item_type, reference_id} 查账单；没有任何账单行引用时返回 None。"""
