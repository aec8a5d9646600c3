"""SQLAlchemy repository for stock levels and idempotent adjustments.

The schema has a ``stock`` table mapping product ids to their available
quantity and an ``adjustments`` table recording every keyed adjustment,
so a client retrying an increment/decrement with the same
``Idempotency-Key`` gets the original result instead of moving stock
twice.

The connection URL comes from ``DATABASE_URL``; when unset it is built
from the ``DB_*`` variables (PostgreSQL via psycopg).
"""

import os
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import DateTime, Integer, String, create_engine, func, select, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import DeclarativeBase, Session, mapped_column

DB_HOST = os.getenv("DB_HOST", "inventory-db")
DB_PORT = os.getenv("DB_PORT", "5432")
DB_NAME = os.getenv("DB_NAME", "inventory")
DB_USER = os.getenv("DB_USER", "inventory_user")
DB_PASSWORD = os.getenv("DB_PASSWORD", "inventory-pass")

DATABASE_URL = os.getenv(
    "DATABASE_URL", f"postgresql+psycopg://{DB_USER}:{DB_PASSWORD}@{DB_HOST}:{DB_PORT}/{DB_NAME}"
)
_connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}
engine = create_engine(DATABASE_URL, pool_pre_ping=True, connect_args=_connect_args)


class Base(DeclarativeBase):
    pass


class Stock(Base):
    """Available stock for a product.

    Attributes:
        product_id: Catalog reference (string, max 64 chars), primary key.
        quantity: Units available, never negative.
    """

    __tablename__ = "stock"
    product_id = mapped_column(String(64), primary_key=True)
    quantity = mapped_column(Integer, nullable=False, default=0)


class Adjustment(Base):
    """A keyed stock movement, kept so retries can be replayed."""

    __tablename__ = "adjustments"
    key = mapped_column(String(200), primary_key=True)
    product_id = mapped_column(String(64), nullable=False)
    delta = mapped_column(Integer, nullable=False)
    resulting_quantity = mapped_column(Integer, nullable=False)
    created_at = mapped_column(DateTime(timezone=True), server_default=func.now())


class InsufficientStock(Exception):
    def __init__(self, product_id: str, available: int, requested: int):
        super().__init__(f"{product_id}: requested {requested}, available {available}")
        self.product_id = product_id
        self.available = available
        self.requested = requested


class IdempotencyConflict(Exception):
    """Key already used for a different adjustment."""


@dataclass
class AdjustResult:
    product_id: str
    quantity: int
    replayed: bool = False


@contextmanager
def get_session():
    """Yield a SQLAlchemy session bound to the configured engine."""
    with Session(engine) as s:
        yield s


def init_db() -> None:
    Base.metadata.create_all(engine)


def ping() -> bool:
    with engine.connect() as conn:
        conn.execute(text("select 1"))
    return True


def _replay(rec: Adjustment, product_id: str, delta: int) -> AdjustResult:
    if rec.product_id != product_id or rec.delta != delta:
        raise IdempotencyConflict(rec.key)
    return AdjustResult(rec.product_id, rec.resulting_quantity, replayed=True)


class InventoryRepo:
    """Repository class for inventory operations."""

    def get(self, product_id: str) -> int:
        """Current quantity for a product (0 if unknown)."""
        with get_session() as s:
            obj = s.get(Stock, product_id)
            return obj.quantity if obj else 0

    def upsert(self, product_id: str, quantity: int) -> None:
        """Set the stock quantity for a product, creating it if needed."""
        with get_session() as s:
            obj = s.get(Stock, product_id) or Stock(product_id=product_id, quantity=0)
            obj.quantity = quantity
            s.merge(obj)
            s.commit()

    def adjust(self, product_id: str, delta: int, key: Optional[str] = None) -> AdjustResult:
        """Atomically add ``delta`` (negative to take stock) to a product.

        The stock row is read with ``SELECT ... FOR UPDATE``; the keyed
        adjustment record is committed in the same transaction.

        Args:
            product_id: Product to adjust.
            delta: Signed quantity change.
            key: Optional idempotency key.

        Returns:
            AdjustResult: New quantity; ``replayed`` when the key was seen.

        Raises:
            InsufficientStock: The adjustment would make stock negative.
            IdempotencyConflict: The key belongs to another adjustment.
        """
        with get_session() as s:
            if key:
                rec = s.get(Adjustment, key)
                if rec is not None:
                    return _replay(rec, product_id, delta)

            row = s.execute(
                select(Stock).where(Stock.product_id == product_id).with_for_update()
            ).scalars().first()
            if row is None:
                row = Stock(product_id=product_id, quantity=0)
                s.add(row)

            new_quantity = row.quantity + delta
            if new_quantity < 0:
                available = row.quantity
                s.rollback()
                raise InsufficientStock(product_id, available, -delta)
            row.quantity = new_quantity
            if key:
                s.add(Adjustment(key=key, product_id=product_id, delta=delta, resulting_quantity=new_quantity))

            try:
                s.commit()
            except IntegrityError:
                # Concurrent request with the same key won
                s.rollback()
                rec = s.get(Adjustment, key) if key else None
                if rec is None:
                    raise
                return _replay(rec, product_id, delta)
            return AdjustResult(product_id, new_quantity)
