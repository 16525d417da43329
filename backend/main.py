import os
from datetime import date
from decimal import Decimal

from fastapi import Depends, FastAPI, File, Form, HTTPException, Query, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel
from sqlalchemy import create_engine

from backend.csv_parser import ColumnStrategy, parse_delimited_text
from backend.insights import (
    AIInsights,
    HttpInsightsProvider,
    InsightsProvider,
    InsightsUnavailable,
    build_insight_request,
)
from backend.logging_setup import configure_logging, get_logger
from backend.origins import Origin
from backend.remote_sources import (
    PeriodSyncResult,
    SpreadsheetFetcher,
    TextFetcher,
    sync_period,
    sync_periods,
)
from backend.source_normalizer import IMPORT_ID_SCOPE, normalize_rows
from backend.storage import SqlKeyValueStore
from backend.summary_engine import BreakdownEntry, summarize
from backend.transaction_repository import TransactionRepository
from backend.transactions import (
    Transaction,
    TransactionType,
    build_manual_transaction,
    normalize_period,
    period_for_date,
)

configure_logging()
logger = get_logger(__name__)

# File uploads carry their own headers, so labels decide the columns.
FILE_IMPORT_STRATEGY = ColumnStrategy.LABEL_SNIFFING
IMPORT_FORMAT_HINT = (
    "No transactions found. Check that the CSV has column A = date, "
    "column B = amount and column C = description, or a header row naming them."
)

app = FastAPI()

frontend_origin = os.getenv("FRONTEND_ORIGIN", "http://localhost:3000")
app.add_middleware(
    CORSMiddleware,
    allow_origins=[frontend_origin],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

database_url = os.getenv("DATABASE_URL", "sqlite:///./dashboard.db")
connect_args = {}
if database_url.startswith("sqlite"):
    connect_args = {"check_same_thread": False}

engine = create_engine(database_url, connect_args=connect_args)
store = SqlKeyValueStore(engine)

fetch_timeout = float(os.getenv("SOURCE_FETCH_TIMEOUT", "15"))
insights_provider = HttpInsightsProvider(
    url=os.getenv("INSIGHTS_URL") or None,
    api_key=os.getenv("INSIGHTS_API_KEY") or None,
)

_repository: TransactionRepository | None = None


@app.on_event("startup")
def init_db() -> None:
    store.init_schema()


def get_repository() -> TransactionRepository:
    global _repository
    if _repository is None:
        _repository = TransactionRepository(store)
    return _repository


def get_fetcher() -> TextFetcher:
    return SpreadsheetFetcher(timeout_seconds=fetch_timeout)


def get_insights_provider() -> InsightsProvider:
    return insights_provider


class PeriodsPayload(BaseModel):
    periods: list[str]


class PeriodsResponse(BaseModel):
    periods: list[str]


class SourceLinksPayload(BaseModel):
    links: dict[Origin, str]


class SourceLinksResponse(BaseModel):
    period: str
    links: dict[Origin, str]


class SyncPayload(BaseModel):
    periods: list[str] | None = None


class PeriodSyncResponse(BaseModel):
    period: str
    transaction_count: int
    failed_origins: list[Origin]
    applied: bool


class TransactionResponse(BaseModel):
    id: str
    occurred_on: str
    description: str
    amount: Decimal
    category: str
    type: TransactionType
    origin: Origin
    manual_origin_label: str | None = None
    ignored: bool = False


class ManualTransactionPayload(BaseModel):
    occurred_on: date
    description: str
    amount: Decimal
    type: TransactionType
    source_label: str | None = None
    category: str | None = None


class IgnorePayload(BaseModel):
    ignored: bool


class ImportResponse(BaseModel):
    imported_count: int
    skipped_count: int
    periods: list[str]


class BreakdownResponse(BaseModel):
    label: str
    total: Decimal
    percentage: Decimal


class ChannelResponse(BaseModel):
    income: Decimal
    expenses: Decimal
    balance: Decimal


class SummaryResponse(BaseModel):
    periods: list[str]
    income_total: Decimal
    expenses_total: Decimal
    balance: Decimal
    transfer: ChannelResponse
    credit: ChannelResponse
    by_source: list[BreakdownResponse]
    by_category: list[BreakdownResponse]


def to_transaction_response(txn: Transaction, ignored_ids: set[str]) -> TransactionResponse:
    return TransactionResponse(**txn.model_dump(), ignored=txn.id in ignored_ids)


def to_sync_response(result: PeriodSyncResult) -> PeriodSyncResponse:
    return PeriodSyncResponse(
        period=result.period,
        transaction_count=result.transaction_count,
        failed_origins=result.failed_origins,
        applied=result.applied,
    )


def to_breakdown_response(entries: list[BreakdownEntry]) -> list[BreakdownResponse]:
    return [
        BreakdownResponse(label=entry.label, total=entry.total, percentage=entry.percentage)
        for entry in entries
    ]


def resolve_periods(repository: TransactionRepository, periods: list[str] | None) -> list[str]:
    if not periods:
        return repository.selected_periods()
    try:
        return list(dict.fromkeys(normalize_period(period) for period in periods))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}


@app.get("/periods/selected", response_model=PeriodsResponse)
def get_selected_periods(
    repository: TransactionRepository = Depends(get_repository),
) -> PeriodsResponse:
    return PeriodsResponse(periods=repository.selected_periods())


@app.put("/periods/selected", response_model=PeriodsResponse)
def update_selected_periods(
    payload: PeriodsPayload,
    repository: TransactionRepository = Depends(get_repository),
) -> PeriodsResponse:
    try:
        periods = repository.set_selected_periods(payload.periods)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return PeriodsResponse(periods=periods)


@app.get("/periods/{period}/sources", response_model=SourceLinksResponse)
def get_source_links(
    period: str,
    repository: TransactionRepository = Depends(get_repository),
) -> SourceLinksResponse:
    try:
        period = normalize_period(period)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return SourceLinksResponse(period=period, links=repository.source_links(period))


@app.put("/periods/{period}/sources", response_model=PeriodSyncResponse)
def update_source_links(
    period: str,
    payload: SourceLinksPayload,
    repository: TransactionRepository = Depends(get_repository),
    fetcher: TextFetcher = Depends(get_fetcher),
) -> PeriodSyncResponse:
    try:
        period = normalize_period(period)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    repository.set_source_links(period, payload.links)
    return to_sync_response(sync_period(repository, period, fetcher))


@app.post("/sync", response_model=list[PeriodSyncResponse])
def sync_sources(
    payload: SyncPayload | None = None,
    repository: TransactionRepository = Depends(get_repository),
    fetcher: TextFetcher = Depends(get_fetcher),
) -> list[PeriodSyncResponse]:
    periods = resolve_periods(repository, payload.periods if payload else None)
    return [to_sync_response(result) for result in sync_periods(repository, periods, fetcher)]


@app.get("/transactions", response_model=list[TransactionResponse])
def list_transactions(
    include_ignored: bool = Query(True),
    repository: TransactionRepository = Depends(get_repository),
) -> list[TransactionResponse]:
    periods = repository.selected_periods()
    if include_ignored:
        rows = repository.get_combined(periods)
    else:
        rows = repository.get_active(periods)
    ignored_ids = repository.ignored_ids()
    return [to_transaction_response(txn, ignored_ids) for txn in rows]


@app.post("/transactions/manual", response_model=TransactionResponse)
def create_manual_transaction(
    payload: ManualTransactionPayload,
    repository: TransactionRepository = Depends(get_repository),
) -> TransactionResponse:
    try:
        txn = build_manual_transaction(
            occurred_on=payload.occurred_on,
            description=payload.description,
            amount=payload.amount,
            transaction_type=payload.type,
            source_label=payload.source_label,
            category=payload.category,
        )
        repository.upsert_manual(txn)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return to_transaction_response(txn, repository.ignored_ids())


@app.put("/transactions/manual/{transaction_id}", response_model=TransactionResponse)
def update_manual_transaction(
    transaction_id: str,
    payload: ManualTransactionPayload,
    repository: TransactionRepository = Depends(get_repository),
) -> TransactionResponse:
    existing = repository.find_manual(transaction_id)
    if existing is None:
        raise HTTPException(status_code=404, detail="Transaction not found.")
    try:
        txn = build_manual_transaction(
            occurred_on=payload.occurred_on,
            description=payload.description,
            amount=payload.amount,
            transaction_type=payload.type,
            source_label=payload.source_label,
            category=payload.category,
            existing=existing,
        )
        repository.upsert_manual(txn)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return to_transaction_response(txn, repository.ignored_ids())


@app.put("/transactions/{transaction_id}/ignored", response_model=TransactionResponse)
def set_transaction_ignored(
    transaction_id: str,
    payload: IgnorePayload,
    repository: TransactionRepository = Depends(get_repository),
) -> TransactionResponse:
    txn = repository.find(transaction_id)
    if txn is None:
        raise HTTPException(status_code=404, detail="Transaction not found.")
    repository.set_ignored(transaction_id, payload.ignored)
    return to_transaction_response(txn, repository.ignored_ids())


@app.post("/transactions/import", response_model=ImportResponse)
async def import_transactions(
    file: UploadFile = File(...),
    origin: Origin = Form(Origin.NUBANK_PF_PIX),
    repository: TransactionRepository = Depends(get_repository),
) -> ImportResponse:
    if not file.filename or not file.filename.lower().endswith(".csv"):
        raise HTTPException(status_code=400, detail="CSV file required.")
    if origin is Origin.MANUAL:
        raise HTTPException(status_code=400, detail="Choose the bank or wallet the file came from.")

    contents = await file.read()
    try:
        decoded = contents.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise HTTPException(status_code=400, detail="CSV must be UTF-8 encoded.") from exc

    parsed = normalize_rows(
        parse_delimited_text(decoded, FILE_IMPORT_STRATEGY), origin, scope=IMPORT_ID_SCOPE
    )
    if not parsed:
        raise HTTPException(status_code=400, detail=IMPORT_FORMAT_HINT)

    periods: list[str] = []
    skipped = 0
    for txn in parsed:
        if period_for_date(txn.occurred_on) is None:
            skipped += 1
            continue
        period = repository.upsert_manual(txn)
        if period not in periods:
            periods.append(period)

    if not periods:
        raise HTTPException(status_code=400, detail=IMPORT_FORMAT_HINT)

    logger.info("Imported %d rows from %s into %s", len(parsed) - skipped, file.filename, periods)
    return ImportResponse(
        imported_count=len(parsed) - skipped,
        skipped_count=skipped,
        periods=sorted(periods),
    )


@app.get("/summary", response_model=SummaryResponse)
def get_summary(
    repository: TransactionRepository = Depends(get_repository),
) -> SummaryResponse:
    periods = repository.selected_periods()
    summary = summarize(repository.get_active(periods))
    return SummaryResponse(
        periods=periods,
        income_total=summary.income_total,
        expenses_total=summary.expenses_total,
        balance=summary.balance,
        transfer=ChannelResponse(
            income=summary.transfer.income,
            expenses=summary.transfer.expenses,
            balance=summary.transfer.balance,
        ),
        credit=ChannelResponse(
            income=summary.credit.income,
            expenses=summary.credit.expenses,
            balance=summary.credit.balance,
        ),
        by_source=to_breakdown_response(summary.by_source),
        by_category=to_breakdown_response(summary.by_category),
    )


@app.post("/insights", response_model=AIInsights, response_model_by_alias=True)
def generate_insights(
    repository: TransactionRepository = Depends(get_repository),
    provider: InsightsProvider = Depends(get_insights_provider),
) -> AIInsights:
    transactions = repository.get_active(repository.selected_periods())
    if not transactions:
        raise HTTPException(status_code=400, detail="No transactions to analyze.")
    try:
        return provider.analyze(build_insight_request(transactions))
    except InsightsUnavailable as exc:
        logger.warning("Insight generation failed: %s", exc)
        raise HTTPException(status_code=503, detail=str(exc)) from exc
