from __future__ import annotations

import hashlib
from decimal import Decimal
from typing import Iterable

from backend.csv_parser import ParsedRow
from backend.origins import Origin, rule_for
from backend.transactions import Transaction, TransactionType

_ID_FIELD_SEPARATOR = "\x1f"

# Rows uploaded by the user live next to synced rows of the same origin,
# so they get their own id space.
IMPORT_ID_SCOPE = "import"


def build_transaction_id(
    origin: Origin,
    raw_date: str,
    description: str,
    amount: Decimal,
    position: int,
    scope: str | None = None,
) -> str:
    """Deterministic id for an ingested row.

    Inputs are the origin key, the raw date string, the description, the
    final signed amount and the row's position in the parsed sequence.
    Parsing the same text again yields the same ids, so a re-sync replaces
    rows instead of duplicating them. A ``scope`` (e.g. ``IMPORT_ID_SCOPE``)
    is folded into the digest and the prefix, keeping ids of the same text
    ingested through another path distinct.
    """
    fields = [origin.value, raw_date, description, str(amount), str(position)]
    prefix = origin.value
    if scope:
        fields.append(scope)
        prefix = f"{origin.value}-{scope}"
    payload = _ID_FIELD_SEPARATOR.join(fields)
    digest = hashlib.sha256(payload.encode("utf-8")).hexdigest()
    return f"{prefix}-{digest[:20]}"


def normalize_rows(
    rows: Iterable[ParsedRow],
    origin: Origin | str,
    scope: str | None = None,
) -> list[Transaction]:
    rule = rule_for(origin)
    transactions: list[Transaction] = []
    for position, row in enumerate(rows):
        if rule.drops(row.description):
            continue
        amount = -row.amount if rule.negate_amounts else row.amount
        if amount == 0:
            continue
        transactions.append(
            Transaction(
                id=build_transaction_id(
                    rule.origin, row.date, row.description, amount, position, scope
                ),
                occurred_on=row.date,
                description=row.description,
                amount=amount,
                category=row.category,
                type=TransactionType.for_amount(amount),
                origin=rule.origin,
            )
        )
    return transactions
