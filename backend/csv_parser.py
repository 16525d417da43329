from __future__ import annotations

import csv
import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from enum import Enum

from pydantic import BaseModel

from backend.logging_setup import get_logger

logger = get_logger(__name__)

DEFAULT_CATEGORY = "Geral"
HEADER_SCAN_LIMIT = 10

DATE_TOKENS = ("data",)
AMOUNT_TOKENS = ("valor", "montante", "pago", "recebido", "quantia")
DESCRIPTION_TOKENS = ("desc", "historico", "histórico", "detalhe", "lançamento")
CATEGORY_TOKENS = ("cat",)

_STRIP_CHARS = re.compile(r"[R$\s\"]")


class ColumnStrategy(str, Enum):
    """How column roles are assigned.

    FIXED_POSITION is used by remote sync: columns are always
    (date, amount, description, category) and row 0 is a header only when
    its second cell is not a number.

    LABEL_SNIFFING is used by file import: the first rows are scanned for
    header labels and the discovered positions win over the fixed order.
    The two disagree on ambiguous input, e.g. a first row whose second
    cell is text but which has no recognizable labels.
    """

    FIXED_POSITION = "fixed_position"
    LABEL_SNIFFING = "label_sniffing"


class ParsedRow(BaseModel):
    date: str
    amount: Decimal
    description: str
    category: str = DEFAULT_CATEGORY


@dataclass(frozen=True)
class ColumnLayout:
    date: int = 0
    amount: int = 1
    description: int = 2
    category: int = 3

    @property
    def required_width(self) -> int:
        return max(self.date, self.amount, self.description) + 1


def parse_amount(value: str | None) -> Decimal | None:
    """Parse a locale-ambiguous currency cell.

    Returns None when the cell is empty or not a number. When both ``.``
    and ``,`` appear the Brazilian convention applies (``1.234,56``).
    """
    if not value:
        return None
    cleaned = _STRIP_CHARS.sub("", value)
    if not cleaned:
        return None

    if "," in cleaned and "." in cleaned:
        cleaned = cleaned.replace(".", "").replace(",", ".")
    elif "," in cleaned:
        cleaned = cleaned.replace(",", ".")

    try:
        amount = Decimal(cleaned)
    except InvalidOperation:
        return None
    if not amount.is_finite():
        return None
    return amount


def parse_delimited_text(
    text: str,
    strategy: ColumnStrategy = ColumnStrategy.FIXED_POSITION,
) -> list[ParsedRow]:
    lines = [line.strip() for line in text.splitlines() if line.strip()]
    if not lines:
        return []

    separator = detect_separator(lines[0])
    rows = [split_line(line, separator) for line in lines]

    if strategy is ColumnStrategy.LABEL_SNIFFING:
        layout, start = sniff_header(rows)
    else:
        layout, start = fixed_position_layout(rows)

    parsed: list[ParsedRow] = []
    skipped = 0
    for fields in rows[start:]:
        row = parse_row(fields, layout)
        if row is None:
            skipped += 1
            continue
        parsed.append(row)

    if skipped:
        logger.debug("Skipped %d malformed rows (%s)", skipped, strategy.value)
    return parsed


def detect_separator(first_line: str) -> str:
    return ";" if ";" in first_line else ","


def split_line(line: str, separator: str) -> list[str]:
    # one reader per line: an unbalanced quote cannot swallow later rows
    try:
        fields = next(csv.reader([line], delimiter=separator), [])
    except csv.Error:
        return []
    return clean_fields(fields)


def clean_fields(fields: list[str]) -> list[str]:
    return [field.strip().strip('"').strip() for field in fields]


def fixed_position_layout(rows: list[list[str]]) -> tuple[ColumnLayout, int]:
    first = rows[0]
    second_cell = first[1] if len(first) > 1 else None
    has_header = parse_amount(second_cell) is None
    return ColumnLayout(), 1 if has_header else 0


def sniff_header(rows: list[list[str]]) -> tuple[ColumnLayout, int]:
    default = ColumnLayout()
    for index, fields in enumerate(rows[:HEADER_SCAN_LIMIT]):
        labels = [field.lower() for field in fields]
        date_idx = find_label(labels, DATE_TOKENS)
        amount_idx = find_label(labels, AMOUNT_TOKENS)
        description_idx = find_label(labels, DESCRIPTION_TOKENS)
        category_idx = find_label(labels, CATEGORY_TOKENS)

        if date_idx is None or (amount_idx is None and description_idx is None):
            continue

        layout = ColumnLayout(
            date=date_idx,
            amount=default.amount if amount_idx is None else amount_idx,
            description=default.description if description_idx is None else description_idx,
            category=default.category if category_idx is None else category_idx,
        )
        return layout, index + 1
    return default, 0


def find_label(labels: list[str], tokens: tuple[str, ...]) -> int | None:
    for index, label in enumerate(labels):
        if any(token in label for token in tokens):
            return index
    return None


def parse_row(fields: list[str], layout: ColumnLayout) -> ParsedRow | None:
    if len(fields) < layout.required_width:
        return None

    date_value = fields[layout.date]
    description = fields[layout.description]
    amount = parse_amount(fields[layout.amount])
    if amount is None or not date_value or not description:
        return None
    # a header row that slipped through detection
    if "data" in date_value.lower():
        return None

    category = fields[layout.category] if layout.category < len(fields) else ""
    return ParsedRow(
        date=date_value,
        amount=amount,
        description=description,
        category=category or DEFAULT_CATEGORY,
    )
