from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Optional

from backend.origins import TRANSFER_LABEL_KEYWORDS, Channel, Origin, rule_for
from backend.transactions import Transaction, TransactionType

ZERO = Decimal("0")
HUNDRED = Decimal("100")


@dataclass(frozen=True)
class BreakdownEntry:
    label: str
    total: Decimal
    percentage: Decimal


@dataclass(frozen=True)
class ChannelTotals:
    income: Decimal
    expenses: Decimal

    @property
    def balance(self) -> Decimal:
        return self.income - self.expenses


@dataclass(frozen=True)
class TransactionSummary:
    income_total: Decimal
    expenses_total: Decimal
    balance: Decimal
    transfer: ChannelTotals
    credit: ChannelTotals
    by_source: list[BreakdownEntry]
    by_category: list[BreakdownEntry]


def summarize(transactions: Iterable[Transaction]) -> TransactionSummary:
    """Totals and expense breakdowns over an already ignore-filtered set.

    Expenses are summed as magnitudes. Transactions that are neither on the
    transfer nor the credit channel only count towards the grand totals.
    """
    items = list(transactions)
    income = [txn for txn in items if txn.type is TransactionType.INCOME]
    expenses = [txn for txn in items if txn.type is TransactionType.EXPENSE]

    income_total = _sum_amounts(income)
    expenses_total = _sum_amounts(expenses)

    return TransactionSummary(
        income_total=income_total,
        expenses_total=expenses_total,
        balance=income_total - expenses_total,
        transfer=_channel_totals(income, expenses, Channel.TRANSFER),
        credit=_channel_totals(income, expenses, Channel.CREDIT),
        by_source=_breakdown(expenses, source_label, expenses_total),
        by_category=_breakdown(expenses, lambda txn: txn.category, expenses_total),
    )


def channel_of(transaction: Transaction) -> Optional[Channel]:
    rule = rule_for(transaction.origin)
    if rule.channel is not Channel.MANUAL:
        return rule.channel
    label = (transaction.manual_origin_label or "").lower()
    if any(keyword in label for keyword in TRANSFER_LABEL_KEYWORDS):
        return Channel.TRANSFER
    return None


def source_label(transaction: Transaction) -> str:
    if transaction.origin is Origin.MANUAL and transaction.manual_origin_label:
        return transaction.manual_origin_label
    return rule_for(transaction.origin).display_name


def percentage_of(value: Decimal, total: Decimal) -> Decimal:
    if total <= ZERO:
        return ZERO
    return value / total * HUNDRED


def _channel_totals(
    income: list[Transaction],
    expenses: list[Transaction],
    channel: Channel,
) -> ChannelTotals:
    return ChannelTotals(
        income=_sum_amounts(txn for txn in income if channel_of(txn) is channel),
        expenses=_sum_amounts(txn for txn in expenses if channel_of(txn) is channel),
    )


def _breakdown(expenses, key, expenses_total: Decimal) -> list[BreakdownEntry]:
    totals: dict[str, Decimal] = {}
    for txn in expenses:
        label = key(txn)
        totals[label] = totals.get(label, ZERO) + abs(txn.amount)
    ordered = sorted(totals.items(), key=lambda item: item[1], reverse=True)
    return [
        BreakdownEntry(label=label, total=total, percentage=percentage_of(total, expenses_total))
        for label, total in ordered
    ]


def _sum_amounts(transactions: Iterable[Transaction]) -> Decimal:
    total = ZERO
    for txn in transactions:
        total += abs(txn.amount)
    return total
