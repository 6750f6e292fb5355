"""SQLAlchemy repository for catalog products and their stock counters.

This module persists products and their per-color stock with SQLAlchemy on
PostgreSQL. It serves the operations the order core needs from the catalog:
reading a product, updating a few scalar fields, adding a delta to a single
counter and atomically taking stock for one order line.

The schema has two tables: ``products`` (one row per product with the
aggregate ``stock``) and ``color_stocks`` (ordered per-color counters).
Counter changes lock the rows they touch with ``SELECT ... FOR UPDATE`` so
concurrent checkouts cannot oversell.

The connection is configured with ``DATABASE_URL`` or, when it is unset,
the ``DB_*`` variables.
"""

import os
from contextlib import contextmanager
from decimal import Decimal
from typing import Optional

from sqlalchemy import Boolean, ForeignKey, Integer, Numeric, String, create_engine, select
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, relationship

DB_HOST = os.getenv("DB_HOST", "catalog-db")
DB_PORT = os.getenv("DB_PORT", "5432")
DB_NAME = os.getenv("DB_NAME", "catalog")
DB_USER = os.getenv("DB_USER", "catalog_user")
DB_PASSWORD = os.getenv("DB_PASSWORD", "catalog-pass")

DATABASE_URL = os.getenv(
    "DATABASE_URL",
    f"postgresql+psycopg://{DB_USER}:{DB_PASSWORD}@{DB_HOST}:{DB_PORT}/{DB_NAME}",
)

_connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}
engine = create_engine(DATABASE_URL, pool_pre_ping=True, connect_args=_connect_args)

# scalar fields PATCH may change; counters only move through increment/reserve
UPDATABLE_FIELDS = {"name", "image", "price", "old_price", "in_stock", "is_active"}


class Base(DeclarativeBase):
    pass


class Product(Base):
    """A sellable product.

    Attributes:
        id: Catalog identifier (primary key).
        name: Display name.
        price: Current selling price.
        old_price: Price before a sale, null when not on sale.
        image: Main image URL.
        in_stock: Availability flag maintained by the order core.
        stock: Aggregate stock across all colors.
        is_active: False once the product is soft-deleted.
        color_stocks: Per-color counters ordered by ``position``.
    """

    __tablename__ = "products"
    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    price: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=0)
    old_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(14, 2), nullable=True)
    image: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    in_stock: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    stock: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    color_stocks: Mapped[list["ColorStock"]] = relationship(
        back_populates="product",
        order_by="ColorStock.position",
        cascade="all, delete-orphan",
    )


class ColorStock(Base):
    __tablename__ = "color_stocks"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    product_id: Mapped[str] = mapped_column(ForeignKey("products.id", ondelete="CASCADE"), index=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    stock: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    product: Mapped[Product] = relationship(back_populates="color_stocks")


def init_db() -> None:
    Base.metadata.create_all(engine)


@contextmanager
def get_session():
    """Context manager that yields a SQLAlchemy session.

    The session is automatically closed when exiting the context.

    Yields:
        Session: Active SQLAlchemy session connected to the database.
    """
    with Session(engine) as s:
        yield s


def to_dict(p: Product) -> dict:
    return {
        "id": p.id,
        "name": p.name,
        "price": str(p.price),
        "old_price": str(p.old_price) if p.old_price is not None else None,
        "image": p.image,
        "in_stock": p.in_stock,
        "stock": p.stock,
        "is_active": p.is_active,
        "color_stocks": [{"name": c.name, "stock": c.stock} for c in p.color_stocks],
    }


class FieldPathError(LookupError):
    """The counter path names no field of the product."""


class CatalogRepo:
    """Repository class for catalog operations.

    Provides reads, seeding, scalar updates and locked counter updates.
    Methods return plain dicts so the API layer never handles ORM objects
    outside their session.
    """

    def get(self, product_id: str) -> Optional[dict]:
        with get_session() as s:
            p = s.get(Product, product_id)
            return to_dict(p) if p else None

    def upsert(self, product_id: str, data: dict) -> dict:
        """Create or fully replace a product and its color counters.

        Args:
            product_id: Identifier to create or overwrite.
            data: Scalar fields plus ``color_stocks`` as a list of
                ``{"name", "stock"}`` mappings.

        Returns:
            dict: The stored product.
        """
        colors = data.get("color_stocks") or []
        with get_session() as s:
            p = s.get(Product, product_id) or Product(id=product_id)
            for name in UPDATABLE_FIELDS | {"stock"}:
                if name in data:
                    setattr(p, name, data[name])
            p.color_stocks = [
                ColorStock(position=i, name=c["name"], stock=c["stock"]) for i, c in enumerate(colors)
            ]
            s.add(p)
            s.commit()
            s.refresh(p)
            return to_dict(p)

    def update_fields(self, product_id: str, fields: dict) -> Optional[dict]:
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise FieldPathError(", ".join(sorted(unknown)))
        with get_session() as s:
            p = s.get(Product, product_id)
            if p is None:
                return None
            for name, value in fields.items():
                setattr(p, name, value)
            s.commit()
            s.refresh(p)
            return to_dict(p)

    def increment(self, product_id: str, field_path: str, delta: int) -> int:
        """Add ``delta`` to one counter under a row lock.

        Args:
            product_id: Product owning the counter.
            field_path: ``"stock"`` or ``"color_stocks.<index>.stock"``.
            delta: Signed amount to add.

        Returns:
            int: The counter value after the update.

        Raises:
            FieldPathError: If the product or the path does not exist.
        """
        with get_session() as s:
            p = s.execute(select(Product).where(Product.id == product_id).with_for_update()).scalar_one_or_none()
            if p is None:
                raise FieldPathError(product_id)
            if field_path == "stock":
                p.stock += delta
                value = p.stock
            else:
                idx = _color_index(field_path)
                color = self._locked_color(s, product_id, idx) if idx is not None else None
                if color is None:
                    raise FieldPathError(field_path)
                color.stock += delta
                value = color.stock
            s.commit()
            return value

    def reserve(self, product_id: str, variant: str, quantity: int) -> Optional[bool]:
        """Take ``quantity`` units of one line in a single transaction.

        Both the aggregate and, when the product has colors, the chosen
        color counter must cover the quantity; either both are decremented
        or nothing changes.

        Returns:
            None if the product does not exist, True when the stock was
            taken, False when it was not enough or the product is inactive.
        """
        with get_session() as s:
            p = s.execute(select(Product).where(Product.id == product_id).with_for_update()).scalar_one_or_none()
            if p is None:
                return None
            colors = list(
                s.execute(
                    select(ColorStock)
                    .where(ColorStock.product_id == product_id)
                    .order_by(ColorStock.position)
                    .with_for_update()
                ).scalars()
            )
            color = next((c for c in colors if c.name == variant), None)
            if not p.is_active or p.stock < quantity:
                s.rollback()
                return False
            if colors and variant and color is None:
                s.rollback()
                return False
            if color is not None and color.stock < quantity:
                s.rollback()
                return False

            p.stock -= quantity
            if color is not None:
                color.stock -= quantity
            s.commit()
            return True

    @staticmethod
    def _locked_color(s: Session, product_id: str, idx: int) -> Optional[ColorStock]:
        return s.execute(
            select(ColorStock)
            .where(ColorStock.product_id == product_id, ColorStock.position == idx)
            .with_for_update()
        ).scalar_one_or_none()


def _color_index(field_path: str) -> Optional[int]:
    parts = field_path.split(".")
    if len(parts) != 3 or parts[0] != "color_stocks" or parts[2] != "stock":
        return None
    try:
        return int(parts[1])
    except ValueError:
        return None
