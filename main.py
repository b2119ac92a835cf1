import logging
from typing import Optional

from fastapi import (
    Depends,
    FastAPI,
    File,
    Form,
    HTTPException,
    Query,
    Request,
    UploadFile,
)
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from categories import CATEGORIES, CATEGORY_KEYWORDS
from config import get_settings
from database import SessionLocal
from extraction import ExtractionError, StatementExtractor
from models import Owner
from recurrence import reconcile_quietly
from schemas import (
    BulkDeleteIn,
    CategoryOut,
    HouseholdIn,
    HouseholdOut,
    HouseholdUpdate,
    StatementDetailOut,
    StatementOut,
    StatsOut,
    TransactionIn,
    TransactionOut,
    TransactionUpdate,
    TrendPoint,
)
from services import (
    HouseholdService,
    NotFoundError,
    StatementService,
    StatsService,
    TransactionFilters,
    TransactionService,
)

logging.basicConfig(level=get_settings().log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title="Household Expenses")


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_account_id(request: Request) -> str:
    account = (request.headers.get("X-Account-Id") or "").strip()
    return account or get_settings().default_account_id


def get_extractor() -> StatementExtractor:
    return StatementExtractor()


@app.exception_handler(RequestValidationError)
def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    loc = [str(part) for part in first.get("loc", ()) if part not in ("body", "query")]
    content: dict[str, object] = {"message": first.get("msg", "Invalid request")}
    if loc:
        content["field"] = ".".join(loc)
    return JSONResponse(status_code=400, content=content)


@app.exception_handler(StarletteHTTPException)
def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"message": exc.detail})


@app.exception_handler(Exception)
def unexpected_exception_handler(request: Request, exc: Exception):
    logger.exception(f"unhandled_error: path={request.url.path}")
    return JSONResponse(status_code=500, content={"message": "Internal Server Error"})


def _owner_param(owner: Optional[str]) -> Optional[Owner]:
    if not owner:
        return None
    try:
        return Owner(owner)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f"Invalid owner '{owner}'") from exc


# Statements


@app.post("/api/statements/upload", status_code=201, response_model=StatementOut)
async def upload_statement(
    file: Optional[UploadFile] = File(None),
    owner: str = Form(Owner.combined.value),
    db: Session = Depends(get_db),
    account_id: str = Depends(get_account_id),
):
    if file is None or not file.filename:
        raise HTTPException(status_code=400, detail="No file uploaded")
    content = await file.read()
    try:
        statement = StatementService(db, account_id).upload(
            file.filename, content, owner
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return statement


@app.get("/api/statements", response_model=list[StatementOut])
def list_statements(
    db: Session = Depends(get_db), account_id: str = Depends(get_account_id)
):
    return StatementService(db, account_id).list()


@app.get("/api/statements/{statement_id}", response_model=StatementDetailOut)
def get_statement(
    statement_id: int,
    db: Session = Depends(get_db),
    account_id: str = Depends(get_account_id),
):
    try:
        return StatementService(db, account_id).get(statement_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.post("/api/statements/{statement_id}/process")
def process_statement(
    statement_id: int,
    db: Session = Depends(get_db),
    account_id: str = Depends(get_account_id),
    extractor: StatementExtractor = Depends(get_extractor),
):
    try:
        processed = StatementService(db, account_id).process(statement_id, extractor)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ExtractionError as exc:
        raise HTTPException(status_code=502, detail="Processing failed") from exc
    if not processed:
        return {"message": "Already processed"}
    return {"message": "Processing complete"}


@app.delete("/api/statements/{statement_id}", status_code=204)
def delete_statement(
    statement_id: int,
    db: Session = Depends(get_db),
    account_id: str = Depends(get_account_id),
):
    try:
        StatementService(db, account_id).delete(statement_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return Response(status_code=204)


# Transactions


@app.get("/api/transactions", response_model=list[TransactionOut])
def list_transactions(
    month: Optional[str] = None,
    month_from: Optional[str] = Query(None, alias="monthFrom"),
    month_to: Optional[str] = Query(None, alias="monthTo"),
    category: Optional[str] = None,
    owner: Optional[str] = None,
    db: Session = Depends(get_db),
    account_id: str = Depends(get_account_id),
):
    owner_value = _owner_param(owner)
    reconcile_quietly(db, account_id)
    filters = TransactionFilters(
        month=month,
        month_from=month_from,
        month_to=month_to,
        category=category,
        owner=owner_value.value if owner_value else None,
    )
    try:
        return TransactionService(db, account_id).list(filters)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.post("/api/transactions", status_code=201, response_model=TransactionOut)
def create_transaction(
    payload: TransactionIn,
    db: Session = Depends(get_db),
    account_id: str = Depends(get_account_id),
):
    try:
        return TransactionService(db, account_id).create(payload)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.put("/api/transactions/{transaction_id}", response_model=TransactionOut)
def update_transaction(
    transaction_id: int,
    payload: TransactionUpdate,
    db: Session = Depends(get_db),
    account_id: str = Depends(get_account_id),
):
    try:
        return TransactionService(db, account_id).update(transaction_id, payload)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


# Registered before the single delete so "bulk" is never read as an id.
@app.delete("/api/transactions/bulk", status_code=204)
def delete_transactions(
    payload: BulkDeleteIn,
    db: Session = Depends(get_db),
    account_id: str = Depends(get_account_id),
):
    deleted = TransactionService(db, account_id).delete_many(payload.ids)
    logger.info(
        f"transactions_bulk_deleted: requested={len(payload.ids)} deleted={deleted}"
    )
    return Response(status_code=204)


@app.delete("/api/transactions/{transaction_id}", status_code=204)
def delete_transaction(
    transaction_id: int,
    db: Session = Depends(get_db),
    account_id: str = Depends(get_account_id),
):
    try:
        TransactionService(db, account_id).delete(transaction_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return Response(status_code=204)


# Stats


@app.get("/api/stats", response_model=StatsOut)
def get_stats(
    month_from: Optional[str] = Query(None, alias="monthFrom"),
    month_to: Optional[str] = Query(None, alias="monthTo"),
    owner: Optional[str] = None,
    db: Session = Depends(get_db),
    account_id: str = Depends(get_account_id),
):
    viewpoint = _owner_param(owner)
    reconcile_quietly(db, account_id)
    try:
        return StatsService(db, account_id).compute_stats(
            month_from, month_to, viewpoint
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.get("/api/stats/trend", response_model=list[TrendPoint])
def get_trend(
    month_from: Optional[str] = Query(None, alias="monthFrom"),
    month_to: Optional[str] = Query(None, alias="monthTo"),
    owner: Optional[str] = None,
    category: Optional[str] = None,
    db: Session = Depends(get_db),
    account_id: str = Depends(get_account_id),
):
    viewpoint = _owner_param(owner)
    reconcile_quietly(db, account_id)
    try:
        return StatsService(db, account_id).monthly_trend(
            month_from, month_to, viewpoint, category=category
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


# Household


@app.get("/api/household", response_model=Optional[HouseholdOut])
def get_household(
    db: Session = Depends(get_db), account_id: str = Depends(get_account_id)
):
    return HouseholdService(db, account_id).get()


@app.post("/api/household", response_model=HouseholdOut)
def save_household(
    payload: HouseholdIn,
    response: Response,
    db: Session = Depends(get_db),
    account_id: str = Depends(get_account_id),
):
    household, created = HouseholdService(db, account_id).save(payload)
    response.status_code = 201 if created else 200
    return household


@app.patch("/api/household", response_model=HouseholdOut)
def update_household(
    payload: HouseholdUpdate,
    db: Session = Depends(get_db),
    account_id: str = Depends(get_account_id),
):
    try:
        return HouseholdService(db, account_id).update(payload)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.get("/api/categories", response_model=list[CategoryOut])
def list_categories():
    return [
        CategoryOut(name=name, keywords=list(CATEGORY_KEYWORDS.get(name, ())))
        for name in CATEGORIES
    ]
