"""
内存版 repository / ledger，供单元测试和本地试跑使用。

语义与 Django 实现一致：compare_and_set_status 在锁内比较再写入，
同一个状态值上最多只有一次转换成功。
"""

import threading
from dataclasses import replace
from decimal import Decimal

from ..exceptions import NotFoundError
from .base import BaseBillingLedger, BaseOrderRepository
from .types import Actor, Bill, BillingReference, OrderSnapshot, OrderStatus


class InMemoryOrderRepository(BaseOrderRepository):

    def __init__(self, orders=()):
        self._orders: dict[str, OrderSnapshot] = {}
        self._lock = threading.Lock()
        # (order_id, from, to, actor): 与 OrderStatusTransition 表对应
        self.transitions: list[tuple[str, OrderStatus, OrderStatus, Actor]] = []
        for order in orders:
            self.add(order)

    def add(self, order: OrderSnapshot) -> OrderSnapshot:
        with self._lock:
            self._orders[str(order.id)] = order
        return order

    def get(self, order_id) -> OrderSnapshot:
        with self._lock:
            order = self._orders.get(str(order_id))
        if order is None:
            raise NotFoundError(
                message='Order not found',
                code='ORDER_NOT_FOUND',
                detail={'order_id': str(order_id)},
            )
        return order

    def compare_and_set_status(self, order_id, expected, target, actor):
        with self._lock:
            current = self._orders.get(str(order_id))
            if current is None:
                raise NotFoundError(
                    message='Order not found',
                    code='ORDER_NOT_FOUND',
                    detail={'order_id': str(order_id)},
                )
            if current.status is not expected:
                return None
            updated = replace(current, status=target, version=current.version + 1)
            self._orders[str(order_id)] = updated
            self.transitions.append((str(order_id), expected, target, actor))
            return updated


class InMemoryBillingLedger(BaseBillingLedger):

    def __init__(self):
        self._bills: dict[BillingReference, Bill] = {}
        self._lock = threading.Lock()
        self.lookups = 0

    def issue(self, reference: BillingReference, total_amount, paid_amount=0) -> Bill:
        bill = Bill(
            exists=True,
            total_amount=Decimal(str(total_amount)),
            paid_amount=Decimal(str(paid_amount)),
            bill_id=f"bill-{reference.reference_id}",
        )
        with self._lock:
            self._bills[reference] = bill
        return bill

    def pay(self, reference: BillingReference, amount) -> Bill:
        with self._lock:
            bill = self._bills[reference]
            paid_amount = bill.paid_amount + Decimal(str(amount))
            status = 'paid' if paid_amount >= bill.total_amount else 'partial'
            bill = replace(bill, paid_amount=paid_amount, status=status)
            self._bills[reference] = bill
        return bill

    def cancel(self, reference: BillingReference) -> Bill:
        with self._lock:
            bill = replace(self._bills[reference], status='cancelled')
            self._bills[reference] = bill
        return bill

    def lookup(self, reference: BillingReference) -> Bill | None:
        with self._lock:
            self.lookups += 1
            return self._bills.get(reference)
