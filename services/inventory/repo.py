"""SQLAlchemy repository for the stock ledger.

This module owns the durable stock counters of the storefront. A stock key is
a product id optionally paired with a size (stored as an empty string for
non-sized products). Every mutation goes through a reservation identified by
the caller (the order id), which gives the ledger three properties:

- ``reserve`` validates and decrements every line inside one transaction
  using conditional updates (``available >= qty``), so concurrent callers can
  never take the same unit twice and a failed line leaves no partial
  decrement behind.
- ``commit`` and ``release`` move a reservation out of ``reserved`` with a
  conditional update, so retries of either are no-ops.
- Replaying ``reserve`` for a known reservation id does not decrement again.
  Releasing an unknown id records it as released, so a reserve that reaches
  the ledger after its caller gave up takes nothing.

Database connection parameters are read from ``DATABASE_URL`` or, when it is
not set, from the individual ``DB_*`` variables.
"""

import os
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import DateTime, Integer, String, create_engine, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import DeclarativeBase, Session, mapped_column

DB_HOST = os.getenv("DB_HOST", "inventory-db")
DB_PORT = os.getenv("DB_PORT", "5432")
DB_NAME = os.getenv("DB_NAME", "inventory")
DB_USER = os.getenv("DB_USER", "inventory_user")
DB_PASSWORD = os.getenv("DB_PASSWORD", "inventory-pass")

DATABASE_URL = os.getenv(
    "DATABASE_URL",
    f"postgresql+psycopg://{DB_USER}:{DB_PASSWORD}@{DB_HOST}:{DB_PORT}/{DB_NAME}",
)


def _make_engine(url: str):
    if url.startswith("sqlite"):
        # writers queue on the file lock instead of failing fast
        return create_engine(url, connect_args={"timeout": 30})
    return create_engine(url, pool_pre_ping=True)


engine = _make_engine(DATABASE_URL)

RESERVED = "reserved"
COMMITTED = "committed"
RELEASED = "released"


class Base(DeclarativeBase): pass


class Stock(Base):
    """Stock counter for one stock key.

    Attributes:
        product_id: Product identifier.
        size: Size variant, or "" for non-sized products.
        available: Units that can still be reserved. Never negative.
        sales: Units permanently consumed by committed reservations.
    """
    __tablename__ = "stock"
    product_id = mapped_column(String(64), primary_key=True)
    size = mapped_column(String(16), primary_key=True, default="")
    available = mapped_column(Integer, nullable=False, default=0)
    sales = mapped_column(Integer, nullable=False, default=0)


class Reservation(Base):
    """Lifecycle record of a reservation (reserved -> committed | released)."""
    __tablename__ = "reservations"
    id = mapped_column(String(64), primary_key=True)
    state = mapped_column(String(16), nullable=False, default=RESERVED)
    created_at = mapped_column(DateTime(timezone=True), nullable=False)


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


def _merge_lines(items: list[tuple[str, str, int]]) -> list[tuple[tuple[str, str], int, int]]:
    """Aggregate lines per stock key, keeping the first line index of each key.

    Returns the keys sorted so that concurrent multi-key reservations always
    lock rows in the same order.
    """
    merged: dict[tuple[str, str], list[int]] = {}
    for idx, (product_id, size, qty) in enumerate(items):
        key = (product_id, size or "")
        if key in merged:
            merged[key][0] += qty
        else:
            merged[key] = [qty, idx]
    return sorted(((k, v[0], v[1]) for k, v in merged.items()), key=lambda t: t[0])


class InventoryRepo:
    """Repository class for stock ledger operations."""

    def get(self, product_id: str, size: str | None = None) -> tuple[int, int]:
        """Return ``(available, sales)`` for a stock key ((0, 0) if unknown)."""
        with get_session() as s:
            obj = s.get(Stock, (product_id, size or ""))
            return (obj.available, obj.sales) if obj else (0, 0)

    def levels(self, keys: list[tuple[str, str | None]]) -> list[tuple[str, str, int, int]]:
        """Return ``(product_id, size, available, sales)`` for each key."""
        with get_session() as s:
            out = []
            for product_id, size in keys:
                obj = s.get(Stock, (product_id, size or ""))
                out.append((product_id, size or "", obj.available if obj else 0, obj.sales if obj else 0))
            return out

    def upsert(self, product_id: str, size: str | None, available: int) -> None:
        """Set the available count for a stock key, creating it if needed.

        Args:
            product_id: Product identifier.
            size: Size variant or None.
            available: New non-negative available count.

        Raises:
            ValueError: If ``available`` is negative.
        """
        if available < 0:
            raise ValueError("NEGATIVE_STOCK")
        with get_session() as s:
            obj = s.get(Stock, (product_id, size or "")) or Stock(product_id=product_id, size=size or "", sales=0)
            obj.available = available
            s.merge(obj)
            s.commit()

    def reserve(self, reservation_id: str, items: list[tuple[str, str, int]]) -> int | None:
        """Atomically reserve stock for every line of a reservation.

        The reservation row is inserted first; a duplicate id means the
        reservation was already applied and nothing is decremented again.
        Each key is then decremented with ``UPDATE ... WHERE available >= qty``.
        If any update touches no row the whole transaction is rolled back.

        Args:
            reservation_id: Caller-supplied id (the order id).
            items: List of (product_id, size, quantity) lines.

        Returns:
            int | None: None on success (or replay), otherwise the index of
                the first line whose stock key could not cover the request.
        """
        with get_session() as s:
            s.add(Reservation(id=reservation_id, state=RESERVED, created_at=datetime.now(timezone.utc)))
            try:
                s.flush()
            except IntegrityError:
                s.rollback()
                return None

            for (product_id, size), qty, line in _merge_lines(items):
                res = s.execute(
                    update(Stock)
                    .where(Stock.product_id == product_id, Stock.size == size, Stock.available >= qty)
                    .values(available=Stock.available - qty)
                    .execution_options(synchronize_session=False)
                )
                if res.rowcount != 1:
                    s.rollback()
                    return line
            s.commit()
            return None

    def commit(self, reservation_id: str, items: list[tuple[str, str, int]]) -> bool:
        """Mark a reservation as sold and add its quantities to ``sales``.

        Returns:
            bool: True if this call moved the reservation to committed, False
                if it was unknown or already settled.
        """
        return self._settle(reservation_id, items, COMMITTED)

    def release(self, reservation_id: str, items: list[tuple[str, str, int]]) -> bool:
        """Return a reservation's quantities to ``available``.

        Releasing an id the ledger has never seen stores it as ``released``,
        so a reserve for that id arriving afterwards decrements nothing. A
        reserve landing between the two steps is released on the second pass.

        Returns:
            bool: True if this call released the reservation, False if it was
                unknown or already settled.
        """
        for _ in range(2):
            if self._settle(reservation_id, items, RELEASED):
                return True
            if self._mark_released(reservation_id):
                return False
        return False

    def _mark_released(self, reservation_id: str) -> bool:
        """Insert a released marker; False if the id is already recorded."""
        with get_session() as s:
            s.add(Reservation(id=reservation_id, state=RELEASED, created_at=datetime.now(timezone.utc)))
            try:
                s.commit()
            except IntegrityError:
                s.rollback()
                return False
            return True

    def _settle(self, reservation_id: str, items: list[tuple[str, str, int]], target: str) -> bool:
        with get_session() as s:
            res = s.execute(
                update(Reservation)
                .where(Reservation.id == reservation_id, Reservation.state == RESERVED)
                .values(state=target)
                .execution_options(synchronize_session=False)
            )
            if res.rowcount != 1:
                s.rollback()
                return False
            for (product_id, size), qty, _ in _merge_lines(items):
                if target == COMMITTED:
                    values = {"sales": Stock.sales + qty}
                else:
                    values = {"available": Stock.available + qty}
                s.execute(
                    update(Stock)
                    .where(Stock.product_id == product_id, Stock.size == size)
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )
            s.commit()
            return True
