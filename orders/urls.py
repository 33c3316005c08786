from django.urls import path
from .views import (
    BillDetailView,
    BillGenerateView,
    BillItemsView,
    BillingByReferenceView,
    OrderDetailView,
    OrderListCreateView,
    OrderStatusView,
    OrderTransitionsView,
    PaymentProcessView,
)

urlpatterns = [
    path('orders/', OrderListCreateView.as_view(), name='order-list'),
    path('orders/<uuid:order_id>/', OrderDetailView.as_view(), name='order-detail'),
    path('orders/<uuid:order_id>/status', OrderStatusView.as_view(), name='order-status'),
    path('orders/<uuid:order_id>/transitions/', OrderTransitionsView.as_view(), name='order-transitions'),
    path('billing/by-reference', BillingByReferenceView.as_view(), name='billing-by-reference'),
    path('billing/generate', BillGenerateView.as_view(), name='billing-generate'),
    path('billing/<uuid:bill_id>', BillDetailView.as_view(), name='billing-detail'),
    path('billing/<uuid:bill_id>/items', BillItemsView.as_view(), name='billing-items'),
    path('payments/process', PaymentProcessView.as_view(), name='payment-process'),
]
