from __future__ import annotations

import itertools
import threading
from datetime import date
from typing import Iterable, Mapping

from pydantic import TypeAdapter

from backend.logging_setup import get_logger
from backend.origins import Origin, rule_for
from backend.storage import KeyValueStore
from backend.transactions import (
    Transaction,
    current_period,
    normalize_period,
    parse_display_date,
    period_for_date,
)

logger = get_logger(__name__)

SELECTED_PERIODS_KEY = "selected_periods"
FETCHED_KEY = "fetched_transactions"
MANUAL_KEY = "manual_transactions"
IGNORED_KEY = "ignored_ids"
SOURCE_LINKS_KEY = "source_links"

_buckets_adapter = TypeAdapter(dict[str, list[Transaction]])
_links_adapter = TypeAdapter(dict[str, dict[Origin, str]])
_strings_adapter = TypeAdapter(list[str])


class TransactionRepository:
    """Sole owner of fetched and manually entered transactions.

    Both collections are partitioned by ``YYYY-MM`` period. Every mutation
    swaps in a new value for the touched collection and persists it through
    the injected key-value store; nothing is edited field by field.
    """

    def __init__(self, store: KeyValueStore) -> None:
        self._store = store
        self._lock = threading.RLock()
        self._sync_counter = itertools.count(1)
        self._sync_tokens: dict[str, int] = {}

        self._fetched: dict[str, list[Transaction]] = _buckets_adapter.validate_python(
            store.load(FETCHED_KEY) or {}
        )
        self._manual: dict[str, list[Transaction]] = _buckets_adapter.validate_python(
            store.load(MANUAL_KEY) or {}
        )
        self._ignored: list[str] = _strings_adapter.validate_python(store.load(IGNORED_KEY) or [])
        self._source_links: dict[str, dict[Origin, str]] = _links_adapter.validate_python(
            store.load(SOURCE_LINKS_KEY) or {}
        )
        self._selected: list[str] = _strings_adapter.validate_python(
            store.load(SELECTED_PERIODS_KEY) or []
        )

    # -- periods and source links -------------------------------------------

    def selected_periods(self, today: date | None = None) -> list[str]:
        if self._selected:
            return list(self._selected)
        return [current_period(today)]

    def set_selected_periods(self, periods: Iterable[str]) -> list[str]:
        normalized: list[str] = []
        for period in periods:
            value = normalize_period(period)
            if value not in normalized:
                normalized.append(value)
        with self._lock:
            self._selected = normalized
            self._store.save(SELECTED_PERIODS_KEY, normalized)
        return list(normalized)

    def source_links(self, period: str) -> dict[Origin, str]:
        return dict(self._source_links.get(normalize_period(period), {}))

    def set_source_links(self, period: str, links: Mapping[Origin | str, str]) -> dict[Origin, str]:
        period = normalize_period(period)
        cleaned: dict[Origin, str] = {}
        for key, url in links.items():
            rule = rule_for(key)
            if not rule.fetchable:
                continue
            cleaned[rule.origin] = (url or "").strip()
        with self._lock:
            updated = {**self._source_links, period: cleaned}
            self._source_links = updated
            self._store.save(SOURCE_LINKS_KEY, _links_adapter.dump_python(updated, mode="json"))
        return dict(cleaned)

    # -- fetched transactions -----------------------------------------------

    def begin_sync(self, period: str) -> int:
        """Register a sync pass for ``period`` and return its token.

        Only the most recent token may write the period's fetched set.
        """
        period = normalize_period(period)
        with self._lock:
            token = next(self._sync_counter)
            self._sync_tokens[period] = token
        return token

    def replace_fetched_for_period(
        self,
        period: str,
        transactions: Iterable[Transaction],
        sync_token: int | None = None,
    ) -> bool:
        period = normalize_period(period)
        replacement = list(transactions)
        with self._lock:
            if sync_token is not None and self._sync_tokens.get(period) != sync_token:
                logger.info("Discarding superseded sync pass for %s", period)
                return False
            updated = {**self._fetched, period: replacement}
            self._fetched = updated
            self._store.save(FETCHED_KEY, _buckets_adapter.dump_python(updated, mode="json"))
        return True

    # -- manual transactions ------------------------------------------------

    def upsert_manual(self, transaction: Transaction) -> str:
        """Insert or replace a manual transaction; returns its period.

        Raises ``ValueError`` without touching state when the date has no
        day/month/year components.
        """
        period = period_for_date(transaction.occurred_on)
        if period is None:
            raise ValueError(f"Cannot derive a period from date {transaction.occurred_on!r}.")

        with self._lock:
            updated: dict[str, list[Transaction]] = {}
            for key, bucket in self._manual.items():
                if key == period:
                    updated[key] = bucket
                    continue
                # the date moved to another period
                remaining = [txn for txn in bucket if txn.id != transaction.id]
                if remaining:
                    updated[key] = remaining

            bucket = list(updated.get(period, []))
            for index, existing in enumerate(bucket):
                if existing.id == transaction.id:
                    bucket[index] = transaction
                    break
            else:
                bucket.append(transaction)
            updated[period] = bucket

            self._manual = updated
            self._store.save(MANUAL_KEY, _buckets_adapter.dump_python(updated, mode="json"))
        return period

    # -- ignore set ---------------------------------------------------------

    def set_ignored(self, transaction_id: str, ignored: bool) -> None:
        with self._lock:
            present = transaction_id in self._ignored
            if ignored == present:
                return
            if ignored:
                updated = [*self._ignored, transaction_id]
            else:
                updated = [value for value in self._ignored if value != transaction_id]
            self._ignored = updated
            self._store.save(IGNORED_KEY, updated)

    def ignored_ids(self) -> set[str]:
        return set(self._ignored)

    # -- reads --------------------------------------------------------------

    def find(self, transaction_id: str) -> Transaction | None:
        for buckets in (self._manual, self._fetched):
            for bucket in buckets.values():
                for txn in bucket:
                    if txn.id == transaction_id:
                        return txn
        return None

    def find_manual(self, transaction_id: str) -> Transaction | None:
        for bucket in self._manual.values():
            for txn in bucket:
                if txn.id == transaction_id:
                    return txn
        return None

    def get_combined(self, periods: Iterable[str]) -> list[Transaction]:
        """Fetched plus manual transactions of ``periods``, newest first.

        Dates that do not parse sort as the earliest possible day, so such
        rows end up last instead of being dropped. A period listed twice is
        read once.
        """
        fetched, manual = self._fetched, self._manual
        combined: list[Transaction] = []
        for period in dict.fromkeys(periods):
            combined.extend(fetched.get(period, []))
            combined.extend(manual.get(period, []))
        return sorted(combined, key=_sort_key, reverse=True)

    def get_active(self, periods: Iterable[str]) -> list[Transaction]:
        ignored = self.ignored_ids()
        return [txn for txn in self.get_combined(periods) if txn.id not in ignored]


def _sort_key(transaction: Transaction) -> date:
    return parse_display_date(transaction.occurred_on) or date.min
