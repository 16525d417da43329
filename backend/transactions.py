from __future__ import annotations

import re
import time
from datetime import date
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, ConfigDict, model_validator

from backend.origins import Origin

DISPLAY_DATE_FORMAT = "%d/%m/%Y"
MANUAL_CATEGORY = "Manual"
DEFAULT_MANUAL_LABEL = "Dinheiro"

_PERIOD_PATTERN = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")


class TransactionType(str, Enum):
    INCOME = "income"
    EXPENSE = "expense"

    @classmethod
    def for_amount(cls, amount: Decimal) -> "TransactionType":
        return cls.INCOME if amount >= 0 else cls.EXPENSE


class Transaction(BaseModel):
    """A single income or expense line.

    ``occurred_on`` keeps the ``DD/MM/YYYY`` display form the sources use;
    the owning period is derived from it with :func:`period_for_date`.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    occurred_on: str
    description: str
    amount: Decimal
    category: str
    type: TransactionType
    origin: Origin
    manual_origin_label: str | None = None

    @model_validator(mode="after")
    def check_sign(self) -> "Transaction":
        if self.amount == 0:
            raise ValueError("Amount must be non-zero.")
        if TransactionType.for_amount(self.amount) is not self.type:
            raise ValueError("Amount sign does not match transaction type.")
        if self.origin is not Origin.MANUAL and self.manual_origin_label is not None:
            raise ValueError("Only manual transactions carry a source label.")
        return self


def split_display_date(value: str) -> tuple[int, int, int] | None:
    parts = value.strip().split("/")
    if len(parts) < 3:
        return None
    try:
        day, month, year = (int(part) for part in parts[:3])
    except ValueError:
        return None
    return day, month, year


def parse_display_date(value: str) -> date | None:
    parts = split_display_date(value)
    if parts is None:
        return None
    day, month, year = parts
    try:
        return date(year, month, day)
    except ValueError:
        return None


def period_for_date(value: str) -> str | None:
    """Return the ``YYYY-MM`` period owning a display date, if any."""
    parts = split_display_date(value)
    if parts is None:
        return None
    _, month, year = parts
    if not 1 <= month <= 12 or year < 1:
        return None
    return f"{year:04d}-{month:02d}"


def normalize_period(value: str) -> str:
    normalized = value.strip()
    if not _PERIOD_PATTERN.match(normalized):
        raise ValueError("Period must be in YYYY-MM format.")
    return normalized


def current_period(today: date | None = None) -> str:
    today = today or date.today()
    return f"{today.year:04d}-{today.month:02d}"


def format_display_date(value: date) -> str:
    return value.strftime(DISPLAY_DATE_FORMAT)


def new_manual_id() -> str:
    return f"manual-{time.time_ns()}"


def build_manual_transaction(
    occurred_on: date,
    description: str,
    amount: Decimal,
    transaction_type: TransactionType,
    source_label: str | None = None,
    category: str | None = None,
    existing: Transaction | None = None,
) -> Transaction:
    """Create a manual entry, or the edited replacement of ``existing``.

    ``amount`` is a magnitude; the sign follows ``transaction_type``.
    """
    description = description.strip()
    if not description:
        raise ValueError("Description required.")
    magnitude = abs(amount)
    if magnitude == 0:
        raise ValueError("Amount must be greater than zero.")

    signed = -magnitude if transaction_type is TransactionType.EXPENSE else magnitude
    if category is None or not category.strip():
        category = existing.category if existing else MANUAL_CATEGORY
    label = (source_label or "").strip() or DEFAULT_MANUAL_LABEL
    origin = existing.origin if existing else Origin.MANUAL

    return Transaction(
        id=existing.id if existing else new_manual_id(),
        occurred_on=format_display_date(occurred_on),
        description=description,
        amount=signed,
        category=category.strip(),
        type=transaction_type,
        origin=origin,
        manual_origin_label=label if origin is Origin.MANUAL else None,
    )
