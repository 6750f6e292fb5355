"""MoMo payment adapter: signed create-payment requests and IPN handling.

Two flows are supported:

- Pay-then-create: the checkout request travels to MoMo as a base64 JSON
  ``extraData`` payload. The order is only placed when the IPN reports a
  successful payment and the cart, re-quoted at that moment, still costs
  the amount MoMo collected. It is tagged ``paid`` with the MoMo
  ``transId`` as ``payment_ref``.
- Pay-after-create: the payment settles an existing order whose ``code`` is
  sent as the MoMo ``orderId``; the IPN marks that order as paid.

Every IPN is verified with HMAC-SHA256 before anything else. Handling is
idempotent on ``transId``: a notification redelivered by MoMo never creates a
second order.
"""

import base64
import hashlib
import hmac
import json
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Callable, Optional

from .checkout import CheckoutService
from .domain import (
    OrderError,
    OrderStore,
    PaymentGatewayError,
    PaymentStatus,
    ShippingInfo,
    StatusEntry,
    round_whole,
)

logger = logging.getLogger(__name__)

CREATE_SIGNED_FIELDS = (
    "accessKey",
    "amount",
    "extraData",
    "ipnUrl",
    "orderId",
    "orderInfo",
    "partnerCode",
    "redirectUrl",
    "requestId",
    "requestType",
)

IPN_SIGNED_FIELDS = (
    "accessKey",
    "amount",
    "extraData",
    "message",
    "orderId",
    "orderInfo",
    "orderType",
    "partnerCode",
    "payType",
    "requestId",
    "responseTime",
    "resultCode",
    "transId",
)


@dataclass(frozen=True)
class MomoConfig:
    endpoint: str
    partner_code: str
    access_key: str
    secret_key: str
    redirect_url: str
    ipn_url: str
    request_type: str = "captureWallet"
    lang: str = "vi"


class IpnOutcome(str, Enum):
    INVALID_SIGNATURE = "invalid_signature"
    PAYMENT_FAILED = "payment_failed"
    DUPLICATE = "duplicate"
    MARKED_PAID = "marked_paid"
    CREATED = "created"
    AMOUNT_MISMATCH = "amount_mismatch"
    REJECTED = "rejected"


# ---- signing ----
def raw_signature(fields: dict, names) -> str:
    """Build MoMo's ``key=value&key=value`` string in the given field order."""
    return "&".join(f"{name}={_text(fields.get(name))}" for name in names)


def _text(value) -> str:
    return "" if value is None else str(value)


def _amount_matches(amount, grand_total) -> bool:
    """MoMo amounts are whole currency units."""
    try:
        return Decimal(_text(amount) or "0") == round_whole(grand_total)
    except ArithmeticError:
        return False


def sign(raw: str, secret_key: str) -> str:
    return hmac.new(secret_key.encode("utf-8"), raw.encode("utf-8"), hashlib.sha256).hexdigest()


def verify(raw: str, signature: str, secret_key: str) -> bool:
    return hmac.compare_digest(sign(raw, secret_key), signature or "")


# ---- opaque checkout payload ----
def encode_payload(payload: dict) -> str:
    body = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return base64.b64encode(body.encode("utf-8")).decode("ascii")


def decode_payload(extra_data: str) -> dict:
    """Decode ``extraData`` back into the checkout request.

    Raises:
        ValueError: The payload is not base64 encoded JSON.
    """
    try:
        data = json.loads(base64.b64decode(extra_data, validate=True).decode("utf-8"))
    except (ValueError, UnicodeDecodeError) as exc:
        raise ValueError("INVALID_PAYLOAD") from exc
    if not isinstance(data, dict):
        raise ValueError("INVALID_PAYLOAD")
    return data


class MomoGateway:
    """Builds signed create-payment requests and obtains the pay URL.

    Args:
        config: Merchant credentials and callback URLs.
        client: Transport with a ``create(payload) -> dict`` method
            (``HttpMomoClient`` in production).
        clock: Millisecond clock used for ``orderId``/``requestId``.
    """

    def __init__(self, config: MomoConfig, client, clock: Callable[[], float] = time.time):
        self.config = config
        self.client = client
        self.clock = clock

    def build_create_request(self, order_id: str, amount: Decimal, order_info: str, extra_data: str = "") -> dict:
        cfg = self.config
        request_id = f"{cfg.partner_code}{int(self.clock() * 1000)}"
        fields = {
            "accessKey": cfg.access_key,
            "amount": int(round_whole(amount)),
            "extraData": extra_data,
            "ipnUrl": cfg.ipn_url,
            "orderId": order_id,
            "orderInfo": order_info,
            "partnerCode": cfg.partner_code,
            "redirectUrl": cfg.redirect_url,
            "requestId": request_id,
            "requestType": cfg.request_type,
        }
        signature = sign(raw_signature(fields, CREATE_SIGNED_FIELDS), cfg.secret_key)
        body = {k: v for k, v in fields.items() if k != "accessKey"}
        body.update({"lang": cfg.lang, "signature": signature})
        return body

    def create_payment(self, checkout_request: dict, amount: Decimal) -> str:
        """Request a pay URL for a cart that is not an order yet.

        Args:
            checkout_request: Caller id and checkout fields, carried to the
                IPN as ``extraData``.
            amount: Payable amount in whole currency units.

        Returns:
            The MoMo ``payUrl`` to redirect the customer to.

        Raises:
            PaymentGatewayError: MoMo refused the request.
        """
        order_id = f"{self.config.partner_code}{int(self.clock() * 1000)}"
        return self._create(order_id, amount, "Storefront order payment", encode_payload(checkout_request))

    def create_payment_for_order(self, order_code: str, amount: Decimal) -> str:
        """Request a pay URL settling the existing order ``order_code``."""
        return self._create(order_code, amount, f"Payment for order {order_code}")

    def _create(self, order_id: str, amount: Decimal, order_info: str, extra_data: str = "") -> str:
        if amount <= 0:
            raise PaymentGatewayError("Nothing to pay for this order.")
        answer = self.client.create(self.build_create_request(order_id, amount, order_info, extra_data))
        if answer.get("resultCode") != 0 or not answer.get("payUrl"):
            logger.warning(
                "momo create payment refused",
                extra={"order_ref": order_id, "result_code": answer.get("resultCode")},
            )
            raise PaymentGatewayError(answer.get("message") or "MoMo refused the payment request.")
        return answer["payUrl"]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MomoIpnHandler:
    """Applies MoMo instant payment notifications to orders."""

    def __init__(
        self,
        checkout: CheckoutService,
        orders: OrderStore,
        config: MomoConfig,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.checkout = checkout
        self.orders = orders
        self.config = config
        self.clock = clock

    def verify(self, notification: dict) -> bool:
        fields = dict(notification, accessKey=self.config.access_key)
        return verify(raw_signature(fields, IPN_SIGNED_FIELDS), notification.get("signature"), self.config.secret_key)

    def handle(self, notification: dict) -> IpnOutcome:
        """Verify and apply one notification.

        Args:
            notification: IPN body with MoMo's camelCase keys.

        Returns:
            What happened; only ``INVALID_SIGNATURE`` is reported back to
            MoMo as an error.
        """
        if not self.verify(notification):
            logger.warning("momo ipn rejected, bad signature", extra={"order_ref": notification.get("orderId")})
            return IpnOutcome.INVALID_SIGNATURE

        trans_id = _text(notification.get("transId"))
        order_ref = _text(notification.get("orderId"))
        if notification.get("resultCode") != 0:
            logger.info(
                "momo payment not successful",
                extra={"order_ref": order_ref, "result_code": notification.get("resultCode")},
            )
            return IpnOutcome.PAYMENT_FAILED

        if self.orders.find_by_payment_ref(trans_id) is not None:
            return IpnOutcome.DUPLICATE

        existing = self.orders.find_by_code(order_ref)
        if existing is not None:
            return self._settle(existing, trans_id, notification.get("amount"))
        return self._create_order(
            trans_id, order_ref, notification.get("extraData") or "", notification.get("amount")
        )

    def _settle(self, order, trans_id: str, amount) -> IpnOutcome:
        if order.payment_status is PaymentStatus.PAID:
            return IpnOutcome.DUPLICATE
        if not _amount_matches(amount, order.totals.grand_total):
            logger.warning(
                "momo amount mismatch",
                extra={"order_id": order.id, "amount": _text(amount), "expected": str(order.totals.grand_total)},
            )
            return IpnOutcome.AMOUNT_MISMATCH
        entry = StatusEntry(
            status=order.status,
            note=f"MoMo payment received ({trans_id})",
            updated_by="momo",
            updated_at=self.clock(),
        )
        if not self.orders.mark_paid(order.id, trans_id, entry):
            return IpnOutcome.DUPLICATE
        logger.info("order paid via momo", extra={"order_id": order.id, "payment_ref": trans_id})
        return IpnOutcome.MARKED_PAID

    def _create_order(self, trans_id: str, order_ref: str, extra_data: str, amount) -> IpnOutcome:
        try:
            request = decode_payload(extra_data)
            user_id = _text(request["user_id"])
        except (ValueError, KeyError):
            logger.error("momo ipn payload unusable", extra={"order_ref": order_ref, "payment_ref": trans_id})
            return IpnOutcome.REJECTED

        info = request.get("shipping_info") or {}
        try:
            quoted = self.checkout.quote(
                user_id,
                ShippingInfo(**{k: _text(info.get(k)) for k in ShippingInfo.__dataclass_fields__}),
                payment_method="momo",
                coupon_code=request.get("coupon_code"),
                shipping_fee=request.get("shipping_fee") or 0,
            )
            if not _amount_matches(amount, quoted.totals.grand_total):
                # cart, prices or coupon changed after the pay URL was issued
                logger.error(
                    "momo amount mismatch, order not created",
                    extra={
                        "payment_ref": trans_id,
                        "user_id": user_id,
                        "amount": _text(amount),
                        "expected": str(quoted.totals.grand_total),
                    },
                )
                return IpnOutcome.AMOUNT_MISMATCH
            order = self.checkout.place_quoted(quoted, payment_status=PaymentStatus.PAID, payment_ref=trans_id)
        except OrderError as exc:
            # money was taken but no order exists; needs a manual refund
            logger.error(
                "order creation after momo payment failed",
                extra={"payment_ref": trans_id, "user_id": user_id, "detail": exc.code},
            )
            return IpnOutcome.REJECTED
        except Exception:
            if self.orders.find_by_payment_ref(trans_id) is not None:
                return IpnOutcome.DUPLICATE
            raise

        logger.info("order created from momo payment", extra={"order_id": order.id, "payment_ref": trans_id})
        return IpnOutcome.CREATED
