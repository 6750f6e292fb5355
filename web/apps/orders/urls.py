from django.urls import path

from .views import (
    OrderCancelView,
    OrderConfirmReceivedView,
    OrderDetailView,
    OrderNextStatusesView,
    OrdersCollectionView,
    OrdersPingView,
    OrderStatusView,
)

app_name = "orders"

urlpatterns = [
    path("ping/", OrdersPingView.as_view(), name="ping"),
    path("", OrdersCollectionView.as_view(), name="orders-collection"),  # GET list / POST checkout
    path("<uuid:oid>/", OrderDetailView.as_view(), name="orders-detail"),
    path("<uuid:oid>/next-statuses/", OrderNextStatusesView.as_view(), name="orders-next-statuses"),
    path("<uuid:oid>/status/", OrderStatusView.as_view(), name="orders-status"),
    path("<uuid:oid>/cancel/", OrderCancelView.as_view(), name="orders-cancel"),
    path("<uuid:oid>/confirm-received/", OrderConfirmReceivedView.as_view(), name="orders-confirm-received"),
]
