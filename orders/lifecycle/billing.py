"""
BillingGate: completed 这条边的付款前置条件。

每次调用都重新查 ledger，不缓存 paid：查完之后才付的款，下次请求必须能看到。
"""

import logging

from .base import BaseBillingLedger
from .types import Bill, OrderSnapshot

logger = logging.getLogger(__name__)


class BillingGate:

    def __init__(self, ledger: BaseBillingLedger):
        self._ledger = ledger

    def require_paid_for(self, order: OrderSnapshot) -> tuple[bool, Bill | None]:
        reference = order.lookup_reference()
        bill = self._ledger.lookup(reference)
        if bill is None:
            logger.debug("No bill for %s/%s", reference.item_type, reference.reference_id)
            return False, None
        return bill.paid, bill
