from django.urls import path

from .views import CouponValidateView, MomoCreatePaymentView, MomoIpnView

coupon_urlpatterns = [
    path("validate/", CouponValidateView.as_view(), name="coupons-validate"),
]

payment_urlpatterns = [
    path("momo/", MomoCreatePaymentView.as_view(), name="momo-create"),
    path("momo/ipn/", MomoIpnView.as_view(), name="momo-ipn"),
]
