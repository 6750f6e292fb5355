from django.urls import include, path

from apps.orders.payment_urls import coupon_urlpatterns, payment_urlpatterns
from apps.orders.views import health_view

urlpatterns = [
    path("api/orders/", include("apps.orders.urls")),
    path("api/coupons/", include(coupon_urlpatterns)),
    path("api/payments/", include(payment_urlpatterns)),
    path("api/health/", health_view, name="health"),
]
