"""
统一异常体系。

所有业务异常继承 BaseAppException，包含：
- type:        错误类型标识（validation_error / block / permission / payment / not_found）
- code:        业务错误码（INVALID_TRANSITION / PAYMENT_REQUIRED / ...）
- message:     人类可读的描述
- detail:      可选的附加信息（dict / list / None）
- http_status: HTTP 状态码

状态机和 service 层只需 raise，exception_handler 统一捕获并格式化响应。
前端只看 code 做分支（例如 PAYMENT_REQUIRED → 跳转收费页），不解析 message。
"""


class BaseAppException(Exception):
    """所有业务异常的基类。"""

    type = 'error'
    code = 'UNKNOWN_ERROR'
    http_status = 500

    def __init__(self, message, code=None, detail=None, http_status=None):
        self.message = message
        if code is not None:
            self.code = code
        if http_status is not None:
            self.http_status = http_status
        self.detail = detail
        super().__init__(message)


class ValidationError(BaseAppException):
    """输入验证失败，400。"""

    type = 'validation_error'
    code = 'VALIDATION_ERROR'
    http_status = 400


class BlockError(BaseAppException):
    """业务规则阻止操作，409。"""

    type = 'block'
    code = 'BUSINESS_BLOCK'
    http_status = 409


class InvalidTransitionError(BlockError):
    """
    请求的状态边不存在。

    包括：目标状态不在转换表里、当前状态已是终态、试图回到 pending。
    """

    code = 'INVALID_TRANSITION'


class ConflictError(BlockError):
    """
    乐观并发检查失败（重试一次后仍然冲突）。

    客户端应重新加载订单后再决定下一步。
    """

    code = 'CONFLICT'


class PermissionDeniedError(BaseAppException):
    """调用者的角色 / 分配关系不允许这条边，403。"""

    type = 'permission'
    code = 'PERMISSION_DENIED'
    http_status = 403


class PaymentRequiredError(BaseAppException):
    """
    边合法且有权限，但账单未付清。

    detail['bill'] 带上 total_amount / paid_amount / balance，
    调用方据此提供"去付款"入口。付款后重试即可，永远可恢复。

    bill 是 lifecycle 层的 Bill（或 None），由 exception_handler 序列化进 detail。
    """

    type = 'payment'
    code = 'PAYMENT_REQUIRED'
    http_status = 402

    def __init__(self, message, bill=None, **kwargs):
        self.bill = bill
        super().__init__(message, **kwargs)


class NotFoundError(BaseAppException):
    """订单 / 账单不存在，404。"""

    type = 'not_found'
    code = 'NOT_FOUND'
    http_status = 404
