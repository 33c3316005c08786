"""
统一异常处理器，挂在 DRF 的 EXCEPTION_HANDLER 上。

错误响应：
{
    "type":    "validation_error" | "block" | "permission" | "payment" | "not_found",
    "code":    "PAYMENT_REQUIRED",
    "message": "Payment must be recorded before the order can be completed.",
    "detail":  { "current_status": "in_progress", "bill": { ... } }  // 可选
}

成功响应没有 type 字段，数据在 data 里。
"""

import logging

from django.http import JsonResponse
from rest_framework.exceptions import ValidationError as DRFValidationError
from rest_framework.views import exception_handler as drf_default_handler

from .exceptions import BaseAppException, PaymentRequiredError
from .serializers import serialize_bill

logger = logging.getLogger(__name__)

# 拒绝 / 冲突 / 欠费记 WARNING，其余业务错误记 INFO
WARNING_TYPES = {'permission', 'payment'}
WARNING_CODES = {'CONFLICT'}


def _describe_request(context):
    request = (context or {}).get('request')
    if request is None:
        return 'unknown-request'
    return f"{request.method} {request.path}"


def _error_body(exc):
    body = {
        'type': exc.type,
        'code': exc.code,
        'message': exc.message,
    }
    detail = exc.detail
    if isinstance(exc, PaymentRequiredError):
        detail = dict(detail or {})
        detail['bill'] = serialize_bill(exc.bill)
    if detail is not None:
        body['detail'] = detail
    return body


def unified_exception_handler(exc, context):
    """
    1. BaseAppException 及其子类 → 统一格式（PaymentRequired 附带账单）
    2. DRF ValidationError（请求体解析失败等）→ 统一格式
    3. 其他 → DRF 默认处理（401 / 403 / 405 ...）；返回 None 的继续向上抛
    """
    if isinstance(exc, BaseAppException):
        level = logging.WARNING if (exc.type in WARNING_TYPES or exc.code in WARNING_CODES) else logging.INFO
        logger.log(level, "%s -> %s %s: %s", _describe_request(context), exc.http_status, exc.code, exc.message)
        return JsonResponse(_error_body(exc), status=exc.http_status)

    if isinstance(exc, DRFValidationError):
        logger.info("%s -> 400 VALIDATION_ERROR", _describe_request(context))
        return JsonResponse({
            'type': 'validation_error',
            'code': 'VALIDATION_ERROR',
            'message': 'Request validation failed',
            'detail': exc.detail,
        }, status=400)

    return drf_default_handler(exc, context)
