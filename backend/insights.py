from __future__ import annotations

import json
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Protocol
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from backend.transactions import Transaction


class InsightsUnavailable(RuntimeError):
    """Raised when the insight service is unconfigured or fails."""


class InsightTransaction(BaseModel):
    date: str
    description: str
    amount: Decimal
    category: str


class CategoryTotal(BaseModel):
    category: str
    total: Decimal


class AIInsights(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    summary: str
    top_categories: list[CategoryTotal] = Field(alias="topCategories")
    saving_tips: list[str] = Field(alias="savingTips")
    anomalies: list[str]


class InsightsProvider(Protocol):
    def analyze(self, transactions: list[InsightTransaction]) -> AIInsights:
        ...


def build_insight_request(transactions: Iterable[Transaction]) -> list[InsightTransaction]:
    return [
        InsightTransaction(
            date=txn.occurred_on,
            description=txn.description,
            amount=txn.amount,
            category=txn.category,
        )
        for txn in transactions
    ]


@dataclass(frozen=True)
class HttpInsightsProvider:
    """Posts the transaction list as JSON and validates the reply."""

    url: str | None
    api_key: str | None = None
    timeout_seconds: float = 30

    def analyze(self, transactions: list[InsightTransaction]) -> AIInsights:
        if not self.url:
            raise InsightsUnavailable("Insight service is not configured.")

        body = json.dumps(
            {"transactions": [txn.model_dump(mode="json") for txn in transactions]}
        ).encode("utf-8")
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        request = Request(self.url, data=body, headers=headers, method="POST")

        try:
            with urlopen(request, timeout=self.timeout_seconds) as response:
                payload = json.load(response)
        except (HTTPError, URLError, TimeoutError, json.JSONDecodeError) as exc:
            raise InsightsUnavailable("Insight service unavailable") from exc

        try:
            return AIInsights.model_validate(payload)
        except ValidationError as exc:
            raise InsightsUnavailable("Insight service returned an unexpected payload") from exc
