"""
HTTP 层：只做 request → service → response。

所有业务异常由 unified_exception_handler 统一转成 {type, code, message, detail}，
这里不写 try/except。成功响应统一包在 {"data": ...} 里。
Actor 永远从 request.user（服务端认证结果）构造。
"""

from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import APIView

from . import services
from .serializers import (
    serialize_bill,
    serialize_bill_record,
    serialize_order,
    serialize_order_list,
    serialize_transition,
)


class OrderListCreateView(APIView):
    """GET /api/orders/ - 分页列表；POST /api/orders/ - 新建 pending 订单"""

    def get(self, request):
        orders, total, page, limit = services.list_orders(request.query_params)
        return Response(serialize_order_list(orders, total, page, limit))

    def post(self, request):
        actor = services.resolve_actor(request.user)
        order = services.create_order(request.data, actor)
        return Response({'data': serialize_order(order)}, status=status.HTTP_201_CREATED)


class OrderDetailView(APIView):
    """GET /api/orders/<order_id>/ - 订单 + 可用转换；DELETE - 仅 admin"""

    def get(self, request, order_id):
        actor = services.resolve_actor(request.user)
        order, allowed = services.get_order_detail(order_id, actor)
        return Response({'data': serialize_order(order, allowed_transitions=allowed)})

    def delete(self, request, order_id):
        actor = services.resolve_actor(request.user)
        services.delete_order(order_id, actor)
        return Response(status=status.HTTP_204_NO_CONTENT)


class OrderStatusView(APIView):
    """PATCH /api/orders/<order_id>/status - 请求状态转换"""

    def patch(self, request, order_id):
        actor = services.resolve_actor(request.user)
        order = services.change_order_status(order_id, request.data, actor)
        return Response({'data': serialize_order(order)})


class OrderTransitionsView(APIView):
    """GET /api/orders/<order_id>/transitions/ - 状态变更历史"""

    def get(self, request, order_id):
        transitions = services.list_order_transitions(order_id)
        return Response({'data': [serialize_transition(t) for t in transitions]})


class BillingByReferenceView(APIView):
    """GET /api/billing/by-reference?item_type=&reference_id="""

    def get(self, request):
        bill = services.get_billing_by_reference(
            request.query_params.get('item_type'),
            request.query_params.get('reference_id'),
        )
        return Response({'data': serialize_bill(bill)})


class PaymentProcessView(APIView):
    """POST /api/payments/process - 记录付款"""

    def post(self, request):
        actor = services.resolve_actor(request.user)
        bill = services.record_payment(request.data, actor)
        return Response({'data': serialize_bill(bill)}, status=status.HTTP_201_CREATED)


class BillGenerateView(APIView):
    """POST /api/billing/generate - 给病人开一张空账单"""

    def post(self, request):
        actor = services.resolve_actor(request.user)
        bill = services.generate_bill(request.data, actor)
        return Response({'data': serialize_bill_record(bill)}, status=status.HTTP_201_CREATED)


class BillDetailView(APIView):
    """GET /api/billing/<bill_id> - 账单详情（含账单行）"""

    def get(self, request, bill_id):
        return Response({'data': serialize_bill_record(services.get_bill(bill_id))})


class BillItemsView(APIView):
    """POST /api/billing/<bill_id>/items - 挂账单行，total 重算"""

    def post(self, request, bill_id):
        actor = services.resolve_actor(request.user)
        bill = services.add_bill_items(bill_id, request.data, actor)
        return Response({'data': serialize_bill_record(bill)}, status=status.HTTP_201_CREATED)
