from django.urls import path

from .views import (
    AdminOrderNoteView,
    AdminOrderRefundView,
    AdminOrderStatusView,
    GatewayWebhookView,
    OrdersCollectionView,
    RetrieveOrderView,
    TrackOrderView,
    VerifyPaymentView,
)

app_name = "orders"

urlpatterns = [
    path("orders/", OrdersCollectionView.as_view(), name="orders-collection"),  # GET list / POST checkout
    path("orders/track/<str:order_number>/", TrackOrderView.as_view(), name="orders-track"),
    path("orders/<uuid:oid>/", RetrieveOrderView.as_view(), name="orders-detail"),
    path("orders/<uuid:oid>/verify/", VerifyPaymentView.as_view(), name="orders-verify"),
    path("admin/orders/<uuid:oid>/status/", AdminOrderStatusView.as_view(), name="admin-order-status"),
    path("admin/orders/<uuid:oid>/notes/", AdminOrderNoteView.as_view(), name="admin-order-note"),
    path("admin/orders/<uuid:oid>/refund/", AdminOrderRefundView.as_view(), name="admin-order-refund"),
    path("webhooks/gateway/", GatewayWebhookView.as_view(), name="gateway-webhook"),
]
