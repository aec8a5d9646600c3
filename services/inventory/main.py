"""Inventory service API built with FastAPI.

This module exposes endpoints to check service health, read and set
stock levels, and increment or decrement stock. Adjustments accept an
``Idempotency-Key`` header so the orders core can retry them safely.
Persistence is delegated to the SQLAlchemy-backed ``repo.InventoryRepo``.
"""

import logging
import time
import uuid
from typing import Annotated, Optional

from fastapi import FastAPI, Header, HTTPException, Path, Request
from pydantic import BaseModel, Field
from pythonjsonlogger import jsonlogger
from sqlalchemy.exc import OperationalError

from repo import AdjustResult, IdempotencyConflict, InsufficientStock, InventoryRepo, init_db, ping

app = FastAPI(title="Inventory Service")

ProductId = Annotated[str, Path(pattern=r"^[A-Za-z0-9_-]{1,64}$")]

# JSON logger
logger = logging.getLogger("inventory")
if not logger.handlers:
    h = logging.StreamHandler()
    h.setFormatter(jsonlogger.JsonFormatter("%(asctime)s %(levelname)s %(name)s %(message)s %(request_id)s"))
    logger.addHandler(h)
    logger.setLevel(logging.INFO)


@app.on_event("startup")
def _startup_db():
    # wait briefly until the database accepts connections
    deadline = time.time() + 30
    while True:
        try:
            ping()
            break
        except OperationalError:
            if time.time() > deadline:
                raise
            time.sleep(1)
    init_db()


class Adjustment(BaseModel):
    """Body of increment/decrement requests.

    Attributes:
        quantity: Positive number of units to add or remove.
    """

    quantity: int = Field(gt=0)


class StockLevel(BaseModel):
    quantity: int = Field(ge=0)


class StockResponse(BaseModel):
    product_id: str
    quantity: int
    replayed: bool = False


@app.get("/health")
def health():
    """Liveness/health check endpoint."""
    try:
        db_ok = ping()
    except OperationalError:
        logger.exception("database health check failed", extra={"request_id": "-"})
        db_ok = False
    return {"ok": db_ok}


@app.get("/stock/{product_id}", response_model=StockResponse)
def get_stock(product_id: ProductId):
    return StockResponse(product_id=product_id, quantity=InventoryRepo().get(product_id))


@app.put("/stock/{product_id}", response_model=StockResponse)
def set_stock(product_id: ProductId, body: StockLevel):
    InventoryRepo().upsert(product_id, body.quantity)
    return StockResponse(product_id=product_id, quantity=body.quantity)


def _adjust(product_id: str, delta: int, idempotency_key: Optional[str]) -> StockResponse:
    try:
        res: AdjustResult = InventoryRepo().adjust(product_id, delta, key=idempotency_key)
    except InsufficientStock as e:
        raise HTTPException(
            status_code=422,
            detail={"detail": "INSUFFICIENT_STOCK", "available": e.available, "requested": e.requested},
        )
    except IdempotencyConflict:
        raise HTTPException(status_code=409, detail="IDEMPOTENCY_CONFLICT")
    return StockResponse(product_id=res.product_id, quantity=res.quantity, replayed=res.replayed)


@app.post("/stock/{product_id}/increment", response_model=StockResponse)
def increment(
    product_id: ProductId,
    body: Adjustment,
    idempotency_key: Annotated[Optional[str], Header(alias="Idempotency-Key")] = None,
):
    """Add stock, e.g. when a cancelled or refunded order returns its items.

    Raises:
        HTTPException: 409 when the idempotency key was used for a
            different adjustment.
    """
    return _adjust(product_id, body.quantity, idempotency_key)


@app.post("/stock/{product_id}/decrement", response_model=StockResponse)
def decrement(
    product_id: ProductId,
    body: Adjustment,
    idempotency_key: Annotated[Optional[str], Header(alias="Idempotency-Key")] = None,
):
    """Take stock; never lets the quantity go below zero.

    Raises:
        HTTPException: 422 ``INSUFFICIENT_STOCK`` when not enough units
            are available; 409 on idempotency key reuse.
    """
    return _adjust(product_id, -body.quantity, idempotency_key)


@app.middleware("http")
async def add_request_id(request: Request, call_next):
    rid = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = rid
    try:
        response = await call_next(request)
    finally:
        logger.info("request handled", extra={"request_id": rid, "path": request.url.path, "method": request.method})
    response.headers["X-Request-ID"] = rid
    return response
