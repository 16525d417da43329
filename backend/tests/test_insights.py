import io
import json
import unittest
from decimal import Decimal
from unittest import mock
from urllib.error import URLError

from backend.insights import (
    AIInsights,
    HttpInsightsProvider,
    InsightsUnavailable,
    build_insight_request,
)
from backend.origins import Origin
from backend.transactions import Transaction, TransactionType


def sample_transaction() -> Transaction:
    return Transaction(
        id="nubank_cc-1",
        occurred_on="04/03/2024",
        description="Streaming",
        amount=Decimal("-39.90"),
        category="Assinaturas",
        type=TransactionType.EXPENSE,
        origin=Origin.NUBANK_CC,
    )


class InsightsTests(unittest.TestCase):
    def test_request_carries_date_description_amount_category(self) -> None:
        request = build_insight_request([sample_transaction()])

        self.assertEqual(
            request[0].model_dump(mode="json"),
            {
                "date": "04/03/2024",
                "description": "Streaming",
                "amount": "-39.90",
                "category": "Assinaturas",
            },
        )

    def test_unconfigured_provider_is_unavailable(self) -> None:
        with self.assertRaises(InsightsUnavailable):
            HttpInsightsProvider(url=None).analyze([])

    def test_parses_structured_reply(self) -> None:
        reply = {
            "summary": "Mês equilibrado.",
            "topCategories": [{"category": "Assinaturas", "total": 39.9}],
            "savingTips": ["Revise assinaturas"],
            "anomalies": [],
        }
        response = mock.MagicMock()
        response.__enter__.return_value = io.BytesIO(json.dumps(reply).encode("utf-8"))
        provider = HttpInsightsProvider(url="https://insights.example.com/analyze", api_key="k")

        with mock.patch("backend.insights.urlopen", return_value=response) as patched:
            insights = provider.analyze(build_insight_request([sample_transaction()]))

        self.assertIsInstance(insights, AIInsights)
        self.assertEqual(insights.top_categories[0].category, "Assinaturas")
        self.assertEqual(insights.saving_tips, ["Revise assinaturas"])
        sent = patched.call_args.args[0]
        self.assertEqual(sent.get_header("Authorization"), "Bearer k")
        self.assertEqual(json.loads(sent.data)["transactions"][0]["description"], "Streaming")

    def test_malformed_reply_is_unavailable(self) -> None:
        response = mock.MagicMock()
        response.__enter__.return_value = io.BytesIO(b'{"summary": "x"}')
        provider = HttpInsightsProvider(url="https://insights.example.com/analyze")

        with mock.patch("backend.insights.urlopen", return_value=response):
            with self.assertRaises(InsightsUnavailable):
                provider.analyze([])

    def test_transport_failure_is_unavailable(self) -> None:
        provider = HttpInsightsProvider(url="https://insights.example.com/analyze")

        with mock.patch("backend.insights.urlopen", side_effect=URLError("refused")):
            with self.assertRaises(InsightsUnavailable):
                provider.analyze([])


if __name__ == "__main__":
    unittest.main()
