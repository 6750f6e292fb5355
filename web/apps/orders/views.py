"""HTTP views for the orders app.

Views are kept small: they validate requests (via Pydantic), resolve the
caller, delegate to a domain service obtained from ``providers`` and map the
outcome to a response. Services are always fetched through the
``providers`` module so tests can monkeypatch a single factory.

Caller identity is set by the upstream auth gateway in the ``X-User-Id`` and
``X-User-Role`` headers. Errors use one body shape,
``{"detail": CODE, "message": text}``; domain errors keep their code, any
other failure becomes 503 ``UPSTREAM_UNAVAILABLE`` without internals.

Idempotency: ``POST /api/orders/`` honours an ``Idempotency-Key`` header,
scoped to the caller. The first request is processed and its response
stored; a retry with an identical payload replays it (same status, header
``Idempotent-Replay: true``), a different payload with the same key gets 409.
"""

import logging
from typing import Optional

from django.core.paginator import Paginator
from django.db import connection
from django.http import JsonResponse
from pydantic import ValidationError
from rest_framework import status
from rest_framework.response import Response
from rest_framework.throttling import ScopedRateThrottle
from rest_framework.views import APIView

from . import providers
from .domain import (
    Actor,
    EmptyCart,
    IllegalTransition,
    InsufficientStock,
    InvalidShippingInfo,
    InvalidStatus,
    NotOrderOwner,
    OrderCodeGenerationFailed,
    OrderError,
    OrderNotFound,
    PaymentGatewayError,
    PaymentStatus,
    ProductInactive,
    ProductMissing,
    StaleOrder,
    TerminalStatus,
    UnknownVariant,
)
from .idempotency import finalize, get_or_create_idempotent, scoped_key
from .payments import IpnOutcome
from .schemas import (
    CheckoutDTO,
    CouponValidateDTO,
    MomoCreateDTO,
    MomoIpnDTO,
    OrderOut,
    OrderSummaryOut,
    StatusUpdateDTO,
)
from .status import parse_status

logger = logging.getLogger(__name__)

ERROR_STATUS = (
    (InvalidShippingInfo, status.HTTP_400_BAD_REQUEST),
    (EmptyCart, status.HTTP_400_BAD_REQUEST),
    (InvalidStatus, status.HTTP_400_BAD_REQUEST),
    (OrderNotFound, status.HTTP_404_NOT_FOUND),
    (NotOrderOwner, status.HTTP_403_FORBIDDEN),
    (InsufficientStock, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (UnknownVariant, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (ProductInactive, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (ProductMissing, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (IllegalTransition, status.HTTP_409_CONFLICT),
    (TerminalStatus, status.HTTP_409_CONFLICT),
    (StaleOrder, status.HTTP_409_CONFLICT),
    (OrderCodeGenerationFailed, status.HTTP_503_SERVICE_UNAVAILABLE),
    (PaymentGatewayError, status.HTTP_503_SERVICE_UNAVAILABLE),
)

RETRY_LATER = "Service temporarily unavailable, please try again later."


# ---- helpers ----
def error_body(exc: OrderError) -> tuple[dict, int]:
    for cls, code in ERROR_STATUS:
        if isinstance(exc, cls):
            return {"detail": exc.code, "message": str(exc)}, code
    return {"detail": exc.code, "message": str(exc)}, status.HTTP_400_BAD_REQUEST


def error_response(exc: OrderError) -> Response:
    body, code = error_body(exc)
    return Response(body, status=code)


def upstream_unavailable() -> Response:
    return Response(
        {"detail": "UPSTREAM_UNAVAILABLE", "message": RETRY_LATER},
        status=status.HTTP_503_SERVICE_UNAVAILABLE,
    )


def invalid_payload(exc: ValidationError) -> Response:
    message = "; ".join(f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors())
    return Response({"detail": "VALIDATION_ERROR", "message": message}, status=status.HTTP_400_BAD_REQUEST)


def caller(request) -> Optional[Actor]:
    user_id = (request.headers.get("X-User-Id") or "").strip()
    if not user_id:
        return None
    role = (request.headers.get("X-User-Role") or "user").strip().lower()
    return Actor(id=user_id, role=role)


def unauthenticated() -> Response:
    return Response(
        {"detail": "UNAUTHENTICATED", "message": "Sign in to continue."},
        status=status.HTTP_401_UNAUTHORIZED,
    )


def forbidden(message: str = "You are not allowed to access this order.") -> Response:
    return Response({"detail": "FORBIDDEN", "message": message}, status=status.HTTP_403_FORBIDDEN)


def _int_param(request, name: str, default: int) -> int:
    try:
        return max(1, int(request.GET.get(name, default)))
    except (TypeError, ValueError):
        return default


def health_view(_request):
    db_ok = False
    try:
        with connection.cursor() as cur:
            cur.execute("SELECT 1;")
        db_ok = True
    except Exception:
        logger.exception("database health check failed")

    return JsonResponse(
        {"ok": db_ok, "components": {"db": {"ok": db_ok}}},
        status=200 if db_ok else 503,
    )


class ScopedView(APIView):
    """APIView with a per-method throttle scope.

    DRF evaluates throttles in ``initial()``, before the handler runs, so the
    scope is chosen from the request method here.
    """

    throttle_classes = [ScopedRateThrottle]
    throttle_scopes: dict = {}

    def get_throttles(self):
        self.throttle_scope = self.throttle_scopes.get(self.request.method, "orders_detail")
        return [throttle() for throttle in self.throttle_classes]


class OrdersPingView(APIView):
    """Liveness endpoint for the orders module."""

    def get(self, request):
        return Response({"ok": True})


class OrdersCollectionView(ScopedView):
    """List the caller's orders or place a new order from the cart."""

    throttle_scopes = {"GET": "orders_list", "POST": "orders_create"}

    def get(self, request):
        """List orders, newest first.

        Customers see their own orders; admins see every order and may
        filter with ``?status=``. Results are paginated with ``page`` and
        ``page_size``.
        """
        actor = caller(request)
        if actor is None:
            return unauthenticated()

        status_filter = None
        if request.GET.get("status"):
            try:
                status_filter = parse_status(request.GET["status"])
            except InvalidStatus as e:
                return error_response(e)

        orders = providers.get_order_store().list_orders(
            user_id=None if actor.is_admin else actor.id,
            status=status_filter,
        )
        page_size = min(_int_param(request, "page_size", 20), 100)
        p = Paginator(orders, page_size)
        page_obj = p.get_page(_int_param(request, "page", 1))

        return Response(
            {
                "count": p.count,
                "page": page_obj.number,
                "page_size": page_size,
                "results": [OrderSummaryOut.from_domain(o).model_dump(mode="json") for o in page_obj.object_list],
            },
            status=200,
        )

    def post(self, request):
        """Place an order from the caller's cart.

        Returns:
            Response: One of the following responses.
            - 201 with the created order.
            - The stored status and body when the same idempotency key and
              payload are retried.
            - 409 ``IDEMPOTENCY_CONFLICT`` when the key is reused with a
              different payload.
            - 400 for payload, shipping or empty-cart errors.
            - 422 when a line cannot be fulfilled (stock, variant, inactive).
            - 503 when no unique order code could be generated or an
              upstream service is unavailable.
        """
        actor = caller(request)
        if actor is None:
            return unauthenticated()

        try:
            dto = CheckoutDTO.model_validate(request.data)
        except ValidationError as e:
            return invalid_payload(e)

        idem_key = request.headers.get("Idempotency-Key")
        rec = None
        if idem_key:
            try:
                existing, rec = get_or_create_idempotent(scoped_key(actor.id, idem_key), request.data)
            except ValueError:
                return Response(
                    {"detail": "IDEMPOTENCY_CONFLICT", "message": "Idempotency-Key reused with a different payload."},
                    status=status.HTTP_409_CONFLICT,
                )
            if existing:
                resp = Response(rec.response_body, status=rec.response_status or status.HTTP_200_OK)
                resp["Idempotent-Replay"] = "true"
                return resp

        try:
            order = providers.get_checkout_service().place_order(
                actor.id,
                dto.shipping_info.to_domain(),
                payment_method=dto.payment_method,
                coupon_code=dto.coupon_code,
                shipping_fee=dto.shipping_fee,
            )
        except OrderError as e:
            body, code = error_body(e)
            if rec:
                finalize(rec, code, body)
            return Response(body, status=code)
        except Exception:
            logger.exception("checkout failed", extra={"user_id": actor.id})
            body = {"detail": "UPSTREAM_UNAVAILABLE", "message": RETRY_LATER}
            if rec:
                finalize(rec, status.HTTP_503_SERVICE_UNAVAILABLE, body)
            return Response(body, status=status.HTTP_503_SERVICE_UNAVAILABLE)

        body = OrderOut.from_domain(order).model_dump(mode="json")
        if rec:
            finalize(rec, status.HTTP_201_CREATED, body, order_id=order.id)
        return Response(body, status=status.HTTP_201_CREATED)


class OrderDetailView(ScopedView):
    throttle_scopes = {"GET": "orders_detail"}

    def get(self, request, oid):
        actor = caller(request)
        if actor is None:
            return unauthenticated()
        order = providers.get_order_store().get(oid)
        if order is None:
            return error_response(OrderNotFound("Order not found."))
        if not actor.is_admin and order.user_id != actor.id:
            return forbidden()
        return Response(OrderOut.from_domain(order).model_dump(mode="json"), status=200)


class OrderNextStatusesView(ScopedView):
    """Statuses the order may legally move to next (for admin dropdowns)."""

    throttle_scopes = {"GET": "orders_detail"}

    def get(self, request, oid):
        actor = caller(request)
        if actor is None:
            return unauthenticated()
        order = providers.get_order_store().get(oid)
        if order is None:
            return error_response(OrderNotFound("Order not found."))
        if not actor.is_admin and order.user_id != actor.id:
            return forbidden()
        machine = providers.get_status_machine()
        return Response(
            {"status": order.status.value, "next": [s.value for s in machine.list_legal_next_statuses(order)]},
            status=200,
        )


class OrderStatusView(ScopedView):
    """Admin status transition."""

    throttle_scopes = {"POST": "orders_status"}

    def post(self, request, oid):
        actor = caller(request)
        if actor is None:
            return unauthenticated()
        if not actor.is_admin:
            return forbidden("Only administrators can change the order status.")
        try:
            dto = StatusUpdateDTO.model_validate(request.data)
        except ValidationError as e:
            return invalid_payload(e)
        return self._run(lambda: providers.get_status_machine().transition(str(oid), dto.status, actor, dto.note))

    @staticmethod
    def _run(action) -> Response:
        try:
            order = action()
        except OrderError as e:
            return error_response(e)
        except Exception:
            logger.exception("order status change failed")
            return upstream_unavailable()
        return Response(OrderOut.from_domain(order).model_dump(mode="json"), status=200)


class OrderCancelView(OrderStatusView):
    """Customer cancels their own pending order."""

    def post(self, request, oid):
        actor = caller(request)
        if actor is None:
            return unauthenticated()
        return self._run(lambda: providers.get_status_machine().cancel_by_owner(str(oid), actor))


class OrderConfirmReceivedView(OrderStatusView):
    """Customer confirms the parcel arrived."""

    def post(self, request, oid):
        actor = caller(request)
        if actor is None:
            return unauthenticated()
        return self._run(lambda: providers.get_status_machine().confirm_received(str(oid), actor))


class CouponValidateView(ScopedView):
    """Preview a coupon discount for the cart page."""

    throttle_scopes = {"POST": "coupons"}

    def post(self, request):
        try:
            dto = CouponValidateDTO.model_validate(request.data)
        except ValidationError as e:
            return invalid_payload(e)
        check = providers.get_coupon_validator().validate(dto.code, dto.order_total)
        return Response(
            {
                "valid": check.ok,
                "outcome": check.outcome.value,
                "discount": str(check.discount),
                "code": check.coupon.code if check.coupon else None,
            },
            status=200,
        )


class MomoCreatePaymentView(ScopedView):
    """Return a MoMo pay URL for the caller's cart or for one of their orders."""

    throttle_scopes = {"POST": "payments"}

    def post(self, request):
        actor = caller(request)
        if actor is None:
            return unauthenticated()
        try:
            dto = MomoCreateDTO.model_validate(request.data)
        except ValidationError as e:
            return invalid_payload(e)

        try:
            gateway = providers.get_momo_gateway()
            if dto.order_code:
                order = providers.get_order_store().find_by_code(dto.order_code)
                if order is None:
                    raise OrderNotFound("Order not found.")
                if order.user_id != actor.id:
                    raise NotOrderOwner("You are not allowed to pay for this order.")
                if order.payment_status is PaymentStatus.PAID:
                    return Response(
                        {"detail": "ALREADY_PAID", "message": "This order is already paid."},
                        status=status.HTTP_409_CONFLICT,
                    )
                pay_url = gateway.create_payment_for_order(order.code, order.totals.grand_total)
            else:
                if dto.shipping_info is None:
                    raise InvalidShippingInfo("Shipping information is required.")
                shipping = dto.shipping_info.to_domain()
                quote = providers.get_checkout_service().quote(
                    actor.id,
                    shipping,
                    payment_method="momo",
                    coupon_code=dto.coupon_code,
                    shipping_fee=dto.shipping_fee,
                )
                checkout_request = {
                    "user_id": actor.id,
                    "shipping_info": dto.shipping_info.model_dump(),
                    "coupon_code": dto.coupon_code,
                    "shipping_fee": str(dto.shipping_fee),
                }
                pay_url = gateway.create_payment(checkout_request, quote.totals.grand_total)
        except OrderError as e:
            return error_response(e)
        except Exception:
            logger.exception("momo create payment failed", extra={"user_id": actor.id})
            return upstream_unavailable()

        return Response({"pay_url": pay_url}, status=200)


class MomoIpnView(APIView):
    """MoMo instant payment notification.

    Acknowledged with the fixed ``{"resultCode": 0}`` answer whatever the
    internal outcome, including a failure while applying it; only a bad
    signature or a malformed body gets 400. Failures are logged with the
    ``transId`` for a manual replay, which is idempotent on that id.
    """

    def post(self, request):
        try:
            dto = MomoIpnDTO.model_validate(request.data)
        except ValidationError:
            return Response({"resultCode": -1, "message": "Invalid notification"}, status=400)

        try:
            outcome = providers.get_ipn_handler().handle(dto.model_dump(by_alias=True))
        except Exception:
            logger.exception(
                "momo ipn handling failed",
                extra={"order_ref": dto.order_id, "payment_ref": str(dto.trans_id), "amount": dto.amount},
            )
            outcome = None

        if outcome is IpnOutcome.INVALID_SIGNATURE:
            return Response({"resultCode": -1, "message": "Invalid signature"}, status=400)
        return Response({"resultCode": 0, "message": "Success"}, status=200)
