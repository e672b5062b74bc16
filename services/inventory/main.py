"""Stock ledger service API built with FastAPI.

This module exposes endpoints to reserve, commit and release stock for a
reservation (one per order) and to read or set the counters of a stock key.
Validation is performed with Pydantic models, while persistence and the
atomic reservation logic are delegated to the SQLAlchemy-backed repository in
``repo.InventoryRepo``.
"""

import uuid, logging
import time
from typing import List, Optional

from fastapi import FastAPI, HTTPException, Request
from pydantic import BaseModel, Field, constr
from pythonjsonlogger import jsonlogger
from sqlalchemy import text

from repo import InventoryRepo, init_db, engine  # Uses SQLAlchemy and the `inventory-db` database

app = FastAPI(title="Stock Ledger Service")

ProductId = constr(min_length=1, max_length=64)
Size = constr(max_length=16)
# logger JSON
logger = logging.getLogger("inventory")
if not logger.handlers:
    h = logging.StreamHandler()
    h.setFormatter(jsonlogger.JsonFormatter("%(asctime)s %(levelname)s %(name)s %(message)s %(request_id)s"))
    logger.addHandler(h)
    logger.setLevel(logging.INFO)


@app.on_event("startup")
def _startup_db():
    # brief wait until the DB accepts connections
    deadline = time.time() + 30  # 30s
    while True:
        try:
            with engine.connect() as conn:
                conn.execute(text("select 1"))
            break
        except Exception:
            if time.time() > deadline:
                raise
            time.sleep(1)
    init_db()


class Item(BaseModel):
    """One reservation line.

    Attributes:
        product_id: Product identifier.
        size: Size variant for sized products, omitted otherwise.
        quantity: Positive integer quantity.
    """
    product_id: ProductId
    size: Optional[Size] = None
    quantity: int = Field(gt=0)


class ReserveRequest(BaseModel):
    """Request body for the reserve endpoint.

    Attributes:
        reservation_id: Caller-supplied id, reused on retries.
        items: Lines to reserve as one atomic unit.
    """
    reservation_id: constr(min_length=1, max_length=64)
    items: List[Item] = Field(min_length=1)


class SettleRequest(BaseModel):
    items: List[Item] = Field(min_length=1)


class ReserveResponse(BaseModel):
    """Response body for the reserve endpoint.

    Attributes:
        reserved: Whether the reservation succeeded for all items.
        detail: Optional error code when reservation fails.
        line: Index of the failing line, if any.
    """
    reserved: bool
    detail: str | None = None
    line: int | None = None


class SettleResponse(BaseModel):
    applied: bool


class StockLevel(BaseModel):
    product_id: ProductId
    size: Optional[Size] = None
    available: int = Field(ge=0)
    sales: int = Field(ge=0, default=0)


class StockKeyIn(BaseModel):
    product_id: ProductId
    size: Optional[Size] = None


class LevelsRequest(BaseModel):
    keys: List[StockKeyIn] = Field(min_length=1, max_length=200)


class LevelsResponse(BaseModel):
    levels: List[StockLevel]


def _lines(items: List[Item]) -> list[tuple[str, str, int]]:
    return [(it.product_id, it.size or "", it.quantity) for it in items]


@app.get("/health")
def health():
    """Liveness/health probe endpoint.

    Returns:
        dict: A small JSON payload indicating service health.
    """
    return {"ok": True}


@app.post("/reservations", response_model=ReserveResponse)
def reserve(req: ReserveRequest):
    """Reserve stock for a batch of items.

    Either every line is decremented or none is. Replaying the same
    ``reservation_id`` returns success without decrementing again.

    Args:
        req: The reservation request containing items to reserve.

    Returns:
        ReserveResponse: Response with the `reserved` flag set to True on success.

    Raises:
        HTTPException: With status 422 when any item has insufficient stock;
            the body names the failing line.
    """
    failed = InventoryRepo().reserve(req.reservation_id, _lines(req.items))
    if failed is not None:
        logger.info(
            "reservation rejected",
            extra={"reservation_id": req.reservation_id, "line": failed},
        )
        raise HTTPException(
            status_code=422,
            detail={"reserved": False, "detail": "INSUFFICIENT_STOCK", "line": failed},
        )
    return ReserveResponse(reserved=True)


@app.post("/reservations/{reservation_id}/commit", response_model=SettleResponse)
def commit(reservation_id: str, req: SettleRequest):
    """Mark a reservation as sold. Idempotent: ``applied`` is False on replay."""
    applied = InventoryRepo().commit(reservation_id, _lines(req.items))
    return SettleResponse(applied=applied)


@app.post("/reservations/{reservation_id}/release", response_model=SettleResponse)
def release(reservation_id: str, req: SettleRequest):
    """Return a reservation's units to stock. Idempotent like ``commit``."""
    applied = InventoryRepo().release(reservation_id, _lines(req.items))
    if applied:
        logger.info("reservation released", extra={"reservation_id": reservation_id})
    return SettleResponse(applied=applied)


@app.get("/stock", response_model=StockLevel)
def get_stock(product_id: str, size: Optional[str] = None):
    available, sales = InventoryRepo().get(product_id, size)
    return StockLevel(product_id=product_id, size=size, available=available, sales=sales)


@app.post("/stock/levels", response_model=LevelsResponse)
def get_levels(req: LevelsRequest):
    """Read several stock keys at once (availability checks, staff views)."""
    rows = InventoryRepo().levels([(k.product_id, k.size) for k in req.keys])
    return LevelsResponse(
        levels=[
            StockLevel(product_id=pid, size=size or None, available=available, sales=sales)
            for pid, size, available, sales in rows
        ]
    )


@app.put("/stock", response_model=StockLevel)
def set_stock(level: StockLevel):
    """Set the available count of a stock key (restock / correction)."""
    repo = InventoryRepo()
    repo.upsert(level.product_id, level.size, level.available)
    available, sales = repo.get(level.product_id, level.size)
    return StockLevel(product_id=level.product_id, size=level.size, available=available, sales=sales)


@app.middleware("http")
async def add_request_id(request: Request, call_next):
    rid = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    # kept on state for local logs
    request.state.request_id = rid
    try:
        response = await call_next(request)
    finally:
        # minimal structured log
        logger.info("request handled", extra={"request_id": rid, "path": request.url.path, "method": request.method})
    # echo the header back
    response.headers["X-Request-ID"] = rid
    return response
