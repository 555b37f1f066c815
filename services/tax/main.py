"""Tax service API built with FastAPI.

This module exposes endpoints to check service health, to maintain region
tax rates and to compute tax lines for a set of items and shipping methods.
Validation is performed with Pydantic models, while persistence is delegated
to the SQLAlchemy-backed repository in ``repo``.

The commerce API calls ``POST /tax-lines`` through its HTTP tax provider,
forwarding ``X-Request-ID`` and, when the caller is an idempotent request,
its ``Idempotency-Key``.
"""

import uuid
import logging
import time
from decimal import Decimal
from typing import Annotated, List, Optional

from fastapi import FastAPI, HTTPException, Header, Request
from pydantic import BaseModel, Field
from pythonjsonlogger import jsonlogger
from sqlalchemy import select, text
from sqlalchemy.exc import IntegrityError, OperationalError

from repo import IdempotencyKey, TaxRatesRepo, canonical_hash, engine, get_session

app = FastAPI(title="Tax Service")


@app.on_event("startup")
def _startup_db():
    # wait briefly until the DB accepts connections
    deadline = time.time() + 30
    while True:
        try:
            with engine.connect() as conn:
                conn.execute(text("select 1"))
            break
        except OperationalError:
            if time.time() > deadline:
                raise
            time.sleep(1)


logger = logging.getLogger("tax")
if not logger.handlers:
    h = logging.StreamHandler()
    h.setFormatter(jsonlogger.JsonFormatter("%(asctime)s %(levelname)s %(name)s %(message)s %(request_id)s"))
    logger.addHandler(h)
    logger.setLevel(logging.INFO)


class ItemIn(BaseModel):
    """A line item to tax.

    Attributes:
        item_id: Line item id on the caller's side, echoed on the lines.
        unit_price: Unit price in minor units.
        quantity: Positive number of units.
        discount: Discount already allocated to the item, in minor units.
    """

    item_id: str
    unit_price: int = Field(ge=0)
    quantity: int = Field(gt=0)
    discount: int = Field(default=0, ge=0)


class ShippingMethodIn(BaseModel):
    shipping_method_id: str
    price: int = Field(ge=0)


class TaxLinesRequest(BaseModel):
    region_id: str = Field(min_length=1)
    items: List[ItemIn] = []
    shipping_methods: List[ShippingMethodIn] = []


class TaxLineOut(BaseModel):
    rate: Decimal
    name: str
    code: Optional[str] = None
    item_id: Optional[str] = None
    shipping_method_id: Optional[str] = None


class TaxLinesResponse(BaseModel):
    lines: List[TaxLineOut]


class TaxRateIn(BaseModel):
    region_id: str = Field(min_length=1)
    rate: Decimal = Field(ge=0, le=100)
    name: str = Field(min_length=1)
    code: Optional[str] = None


def _compute_lines(req: TaxLinesRequest) -> List[TaxLineOut]:
    rates = TaxRatesRepo().rates_for_region(req.region_id)
    if not rates:
        raise HTTPException(status_code=404, detail="REGION_NOT_FOUND")

    lines = []
    for r in rates:
        code = r.code or r.id
        lines.extend(TaxLineOut(rate=r.rate, name=r.name, code=code, item_id=it.item_id) for it in req.items)
        lines.extend(
            TaxLineOut(rate=r.rate, name=r.name, code=code, shipping_method_id=sm.shipping_method_id)
            for sm in req.shipping_methods
        )
    return lines


@app.get("/health")
def health():
    """Liveness/health endpoint.

    Returns:
        dict: A small JSON payload indicating service health.
    """
    return {"ok": True}


@app.put("/rates/{rate_id}", response_model=TaxLineOut)
def put_rate(rate_id: str, body: TaxRateIn):
    """Create or replace a region tax rate."""
    row = TaxRatesRepo().upsert_rate(rate_id, body.region_id, body.rate, body.name, body.code)
    logger.info("tax rate stored", extra={"rate_id": rate_id, "region_id": body.region_id})
    return TaxLineOut(rate=row.rate, name=row.name, code=row.code or row.id)


@app.post("/tax-lines", response_model=TaxLinesResponse)
def tax_lines(
    req: TaxLinesRequest,
    idempotency_key: Annotated[Optional[str], Header(alias="Idempotency-Key")] = None,
):
    """Compute tax lines with optional idempotency.

    Every rate of the region yields one line per item and one per shipping
    method. When an ``Idempotency-Key`` header is provided, the first
    computation is stored and replayed for retries carrying the same
    payload; reusing the key with a different payload responds with 409.

    Args:
        req: Validated body with ``region_id``, ``items`` and
            ``shipping_methods``.
        idempotency_key: Optional key provided via the ``Idempotency-Key``
            header.

    Returns:
        TaxLinesResponse: Object containing ``lines``.

    Raises:
        HTTPException: 404 when the region has no rates; 409 when the
            idempotency key is reused with a different payload.
    """
    if not idempotency_key:
        return TaxLinesResponse(lines=_compute_lines(req))

    payload_hash = canonical_hash(req.model_dump(mode="json"))

    with get_session() as s:
        try:
            s.add(IdempotencyKey(key=idempotency_key, request_hash=payload_hash))
            s.commit()
        except IntegrityError:
            s.rollback()
            rec = s.execute(
                select(IdempotencyKey).where(IdempotencyKey.key == idempotency_key).with_for_update()
            ).scalars().first()
            if not rec:
                raise HTTPException(status_code=500, detail="IDEMPOTENCY_LOOKUP_ERROR")

            if rec.request_hash != payload_hash:
                raise HTTPException(status_code=409, detail="IDEMPOTENCY_CONFLICT")

            if rec.response_body is not None:
                logger.info("tax lines replayed", extra={"idempotency_key": idempotency_key})
                return TaxLinesResponse.model_validate(rec.response_body)

        out = TaxLinesResponse(lines=_compute_lines(req))

        rec = s.get(IdempotencyKey, idempotency_key)
        rec.response_body = out.model_dump(mode="json")
        s.add(rec)
        s.commit()

        return out


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
