"""Service provider helpers wiring the order services to their ports.

Views never build services themselves; they call the ``get_*`` factories
here so tests can monkeypatch a single symbol. The catalog store is the only
port with two adapters: the HTTP client for the catalog service (when
``settings.USE_HTTP_ADAPTERS`` is truthy) or a process-wide in-memory
catalog for tests and local development. Carts, coupons and orders always
live in the Django database.
"""

from django.conf import settings

from .adapters import InMemoryCatalog
from .assembler import OrderAssembler
from .checkout import CheckoutService
from .coupons import CouponValidator
from .domain import CatalogStore
from .http_adapters import HttpCatalogClient, HttpMomoClient
from .payments import MomoConfig, MomoGateway, MomoIpnHandler
from .repository import CartRepository, CouponRepository, OrderRepository, next_order_code
from .status import OrderStatusMachine
from .stock import StockLedger
from .writer import LEGACY, OrderWriter

_local_catalog = InMemoryCatalog()


def get_catalog_store() -> CatalogStore:
    if getattr(settings, "USE_HTTP_ADAPTERS", True):
        return HttpCatalogClient()
    return _local_catalog


def get_order_store() -> OrderRepository:
    return OrderRepository()


def get_coupon_validator() -> CouponValidator:
    return CouponValidator(CouponRepository())


def get_checkout_service() -> CheckoutService:
    """Return a CheckoutService wired to the configured stores.

    Code-collision retries and the stock reservation mode come from
    ``ORDER_CODE_MAX_ATTEMPTS``, ``ORDER_CODE_RETRY_BACKOFF`` and
    ``STOCK_RESERVATION_MODE``.
    """
    catalog = get_catalog_store()
    ledger = StockLedger(catalog)
    coupons = get_coupon_validator()
    carts = CartRepository()
    writer = OrderWriter(
        orders=get_order_store(),
        carts=carts,
        ledger=ledger,
        coupons=coupons,
        next_code=next_order_code,
        max_attempts=getattr(settings, "ORDER_CODE_MAX_ATTEMPTS", 3),
        backoff=getattr(settings, "ORDER_CODE_RETRY_BACKOFF", 0.2),
        reservation_mode=getattr(settings, "STOCK_RESERVATION_MODE", LEGACY),
    )
    return CheckoutService(OrderAssembler(catalog, carts, ledger, coupons), writer)


def get_status_machine() -> OrderStatusMachine:
    return OrderStatusMachine(get_order_store(), StockLedger(get_catalog_store()))


def get_momo_config() -> MomoConfig:
    return MomoConfig(
        endpoint=settings.MOMO_ENDPOINT,
        partner_code=settings.MOMO_PARTNER_CODE,
        access_key=settings.MOMO_ACCESS_KEY,
        secret_key=settings.MOMO_SECRET_KEY,
        redirect_url=settings.MOMO_REDIRECT_URL,
        ipn_url=settings.MOMO_IPN_URL,
        request_type=getattr(settings, "MOMO_REQUEST_TYPE", "captureWallet"),
    )


def get_momo_gateway() -> MomoGateway:
    config = get_momo_config()
    return MomoGateway(config, HttpMomoClient(endpoint=config.endpoint))


def get_ipn_handler() -> MomoIpnHandler:
    return MomoIpnHandler(get_checkout_service(), get_order_store(), get_momo_config())
