"""Catalog service API built with FastAPI.

This module exposes the product endpoints the storefront order core calls:
reading a product, patching its scalar fields, adding a delta to one stock
counter and atomically reserving stock for an order line. Validation is
performed with Pydantic models; persistence and locking are delegated to the
SQLAlchemy-backed ``repo.CatalogRepo``.
"""

import logging
import time
import uuid
from contextlib import asynccontextmanager
from decimal import Decimal
from typing import List, Optional

from fastapi import FastAPI, HTTPException, Request
from pydantic import BaseModel, ConfigDict, Field, constr
from pythonjsonlogger import jsonlogger
from sqlalchemy import text

from repo import CatalogRepo, FieldPathError, engine, init_db

ProductId = constr(pattern=r"^[A-Za-z0-9_-]{1,64}$")

# logger JSON
logger = logging.getLogger("catalog")
if not logger.handlers:
    h = logging.StreamHandler()
    h.setFormatter(jsonlogger.JsonFormatter("%(asctime)s %(levelname)s %(name)s %(message)s %(request_id)s"))
    logger.addHandler(h)
    logger.setLevel(logging.INFO)


def _wait_for_db(timeout: float = 30.0) -> None:
    # brief active wait until the database accepts connections
    deadline = time.time() + timeout
    while True:
        try:
            with engine.connect() as conn:
                conn.execute(text("select 1"))
            return
        except Exception:
            if time.time() > deadline:
                raise
            logger.warning("database not ready, retrying", extra={"request_id": None})
            time.sleep(1)


@asynccontextmanager
async def lifespan(_app: FastAPI):
    _wait_for_db()
    init_db()
    yield


app = FastAPI(title="Catalog Service", lifespan=lifespan)


class ColorStockIn(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    stock: int = Field(ge=0)


class ProductIn(BaseModel):
    """Full product document used to create or replace a product.

    Attributes:
        name: Display name.
        price: Current selling price.
        old_price: Pre-sale price, omitted when the product is not on sale.
        image: Main image URL.
        in_stock: Availability flag.
        stock: Aggregate stock.
        is_active: False for soft-deleted products.
        color_stocks: Ordered per-color counters.
    """

    name: str = Field(min_length=1, max_length=255)
    price: Decimal = Field(ge=0, max_digits=14, decimal_places=2)
    old_price: Optional[Decimal] = Field(default=None, ge=0, max_digits=14, decimal_places=2)
    image: str = ""
    in_stock: bool = True
    stock: int = Field(default=0, ge=0)
    is_active: bool = True
    color_stocks: List[ColorStockIn] = []


class ProductPatch(BaseModel):
    """Scalar fields that may be changed in place; unknown keys are rejected."""

    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = None
    price: Optional[Decimal] = None
    old_price: Optional[Decimal] = None
    image: Optional[str] = None
    in_stock: Optional[bool] = None
    is_active: Optional[bool] = None


class IncrementRequest(BaseModel):
    """Request body for the increment endpoint.

    Attributes:
        field: ``stock`` or ``color_stocks.<index>.stock``.
        delta: Signed amount to add to the counter.
    """

    field: str = Field(min_length=1, max_length=64)
    delta: int


class ReserveRequest(BaseModel):
    """Request body for the reserve endpoint.

    Attributes:
        variant: Color to take stock from; empty for products without colors.
        quantity: Positive number of units.
    """

    variant: str = ""
    quantity: int = Field(gt=0)


class ReserveResponse(BaseModel):
    reserved: bool
    detail: str | None = None


def _not_found() -> HTTPException:
    return HTTPException(status_code=404, detail="NOT_FOUND")


@app.get("/health")
def health():
    """Liveness/health probe endpoint.

    Returns:
        dict: A small JSON payload indicating service and database health.
    """
    try:
        with engine.connect() as conn:
            conn.execute(text("select 1"))
        return {"ok": True, "components": {"db": {"ok": True}}}
    except Exception:
        logger.exception("database health check failed", extra={"request_id": None})
        return {"ok": False, "components": {"db": {"ok": False}}}


@app.get("/products/{product_id}")
def get_product(product_id: ProductId):
    product = CatalogRepo().get(product_id)
    if product is None:
        raise _not_found()
    return product


@app.put("/products/{product_id}")
def put_product(product_id: ProductId, body: ProductIn):
    return CatalogRepo().upsert(product_id, body.model_dump())


@app.patch("/products/{product_id}")
def patch_product(product_id: ProductId, body: ProductPatch):
    """Update scalar fields of a product.

    Raises:
        HTTPException: 404 for an unknown product; unknown fields are
            rejected by validation with 422.
    """
    product = CatalogRepo().update_fields(product_id, body.model_dump(exclude_unset=True))
    if product is None:
        raise _not_found()
    return product


@app.post("/products/{product_id}/increment")
def increment(product_id: ProductId, req: IncrementRequest):
    """Add ``delta`` to one stock counter and return its new value.

    Raises:
        HTTPException: 404 ``FIELD_NOT_FOUND`` when the product or the
            counter path does not exist.
    """
    try:
        value = CatalogRepo().increment(product_id, req.field, req.delta)
    except FieldPathError:
        raise HTTPException(status_code=404, detail="FIELD_NOT_FOUND") from None
    return {"value": value}


@app.post("/products/{product_id}/reserve", response_model=ReserveResponse)
def reserve(product_id: ProductId, req: ReserveRequest):
    """Take stock for one order line with a locked check.

    Returns:
        ReserveResponse: ``reserved=True`` when the stock was taken.

    Raises:
        HTTPException: 404 for an unknown product, 422 with
            ``INSUFFICIENT_STOCK`` when the stock cannot cover the quantity.
    """
    ok = CatalogRepo().reserve(product_id, req.variant, req.quantity)
    if ok is None:
        raise _not_found()
    if not ok:
        # Insufficient stock -> 422 with reserved=false
        raise HTTPException(status_code=422, detail={"reserved": False, "detail": "INSUFFICIENT_STOCK"})
    return ReserveResponse(reserved=True)


@app.middleware("http")
async def add_request_id(request: Request, call_next):
    rid = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = rid
    started = time.perf_counter()
    try:
        response = await call_next(request)
    finally:
        logger.info(
            "request handled",
            extra={
                "request_id": rid,
                "path": request.url.path,
                "method": request.method,
                "duration_ms": round((time.perf_counter() - started) * 1000, 1),
            },
        )
    response.headers["X-Request-ID"] = rid
    return response
