"""
工厂函数：把 Django 实现装配成 OrderStateMachine。

service 层只调用 get_state_machine()，不关心背后是哪个 repository / ledger。
测试直接构造 OrderStateMachine + memory.py 里的替身，不经过这里。
"""

from django.conf import settings

from .billing import BillingGate
from .machine import OrderStateMachine
from .permissions import PermissionGate


def get_state_machine() -> OrderStateMachine:
    """
    每次请求构造一个新实例：没有跨请求的可变状态，也没有 paid 缓存。

    settings.ORDER_TRANSITION_RETRIES 控制 CAS 冲突后的重试次数（默认 1）。
    """
    # 延迟导入，避免在 app registry 就绪前加载 models
    from ..repositories import DjangoBillingLedger, DjangoOrderRepository

    return OrderStateMachine(
        repository=DjangoOrderRepository(),
        billing=BillingGate(DjangoBillingLedger()),
        permissions=PermissionGate(),
        max_retries=getattr(settings, 'ORDER_TRANSITION_RETRIES', 1),
    )
