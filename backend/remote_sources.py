from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Iterable, Protocol
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from backend.csv_parser import ColumnStrategy, parse_delimited_text
from backend.logging_setup import get_logger
from backend.origins import Origin
from backend.source_normalizer import normalize_rows
from backend.transaction_repository import TransactionRepository
from backend.transactions import Transaction

logger = get_logger(__name__)

# Remote exports follow the fixed A=date, B=amount, C=description layout.
REMOTE_SYNC_STRATEGY = ColumnStrategy.FIXED_POSITION

SPREADSHEET_HOST_MARKER = "docs.google.com/spreadsheets"
SPREADSHEET_EXPORT_URL = "https://docs.google.com/spreadsheets/d/{document_id}/export?format=csv"
_DOCUMENT_ID_PATTERN = re.compile(r"/d/([^/?#]+)")


class SourceUnavailable(RuntimeError):
    """Raised when a remote CSV source cannot be fetched."""


class TextFetcher(Protocol):
    def fetch_text(self, url: str) -> str:
        ...


def resolve_export_url(url: str) -> str:
    """Rewrite a spreadsheet page link to its CSV export endpoint."""
    if SPREADSHEET_HOST_MARKER not in url:
        return url
    match = _DOCUMENT_ID_PATTERN.search(url)
    if not match:
        return url
    return SPREADSHEET_EXPORT_URL.format(document_id=match.group(1))


def is_fetchable_url(url: str | None) -> bool:
    return bool(url) and url.startswith("http")


@dataclass
class SpreadsheetFetcher:
    timeout_seconds: float = 15

    def fetch_text(self, url: str) -> str:
        request = Request(resolve_export_url(url), headers={"Accept": "text/csv"})
        try:
            with urlopen(request, timeout=self.timeout_seconds) as response:
                body = response.read()
        except (HTTPError, URLError, TimeoutError, OSError) as exc:
            raise SourceUnavailable(f"Could not fetch {url}: {exc}") from exc

        try:
            return body.decode("utf-8-sig")
        except UnicodeDecodeError as exc:
            raise SourceUnavailable(f"Response from {url} is not UTF-8") from exc


@dataclass
class PeriodSyncResult:
    period: str
    transaction_count: int = 0
    failed_origins: list[Origin] = field(default_factory=list)
    applied: bool = True


def ingest_text(text: str, origin: Origin, strategy: ColumnStrategy = REMOTE_SYNC_STRATEGY) -> list[Transaction]:
    return normalize_rows(parse_delimited_text(text, strategy), origin)


def sync_period(
    repository: TransactionRepository,
    period: str,
    fetcher: TextFetcher,
) -> PeriodSyncResult:
    """Fetch every configured origin of ``period`` and replace its fetched set.

    Origins are fetched one after another. A failing origin contributes no
    rows and does not stop the others. The fetched set is written once, at
    the end, and only if no newer pass for the period has started.
    """
    token = repository.begin_sync(period)
    result = PeriodSyncResult(period=period)
    collected: list[Transaction] = []

    for origin, url in repository.source_links(period).items():
        if not is_fetchable_url(url):
            continue
        try:
            text = fetcher.fetch_text(url)
        except SourceUnavailable as exc:
            logger.warning("Source %s unavailable for %s: %s", origin.value, period, exc)
            result.failed_origins.append(origin)
            continue
        collected.extend(ingest_text(text, origin))

    result.applied = repository.replace_fetched_for_period(period, collected, sync_token=token)
    result.transaction_count = len(collected)
    logger.info(
        "Synced %s: %d transactions, %d failed sources",
        period,
        len(collected),
        len(result.failed_origins),
    )
    return result


def sync_periods(
    repository: TransactionRepository,
    periods: Iterable[str],
    fetcher: TextFetcher,
) -> list[PeriodSyncResult]:
    return [sync_period(repository, period, fetcher) for period in periods]
