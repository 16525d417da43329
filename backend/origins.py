from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class Origin(str, Enum):
    NUBANK_PJ_PIX = "nubank_pj_pix"
    NUBANK_PF_PIX = "nubank_pf_pix"
    NUBANK_CC = "nubank_cc"
    PICPAY_PF_PIX = "picpay_pf_pix"
    PICPAY_PJ_PIX = "picpay_pj_pix"
    MANUAL = "manual"


class Channel(str, Enum):
    TRANSFER = "transfer"
    CREDIT = "credit"
    MANUAL = "manual"


@dataclass(frozen=True)
class SourceRule:
    origin: Origin
    display_name: str
    channel: Channel
    negate_amounts: bool = False
    drop_descriptions: tuple[str, ...] = ()
    fetchable: bool = True

    def drops(self, description: str) -> bool:
        lowered = description.lower()
        return any(pattern in lowered for pattern in self.drop_descriptions)


SOURCE_RULES: dict[Origin, SourceRule] = {
    Origin.NUBANK_PJ_PIX: SourceRule(Origin.NUBANK_PJ_PIX, "Nubank PJ", Channel.TRANSFER),
    Origin.NUBANK_PF_PIX: SourceRule(Origin.NUBANK_PF_PIX, "Nubank PF", Channel.TRANSFER),
    # Card statements list charges as positive amounts owed; bill payments
    # show up as credits and are not real income.
    Origin.NUBANK_CC: SourceRule(
        Origin.NUBANK_CC,
        "Nubank Cartão",
        Channel.CREDIT,
        negate_amounts=True,
        drop_descriptions=("pagamento recebido", "payment received"),
    ),
    Origin.PICPAY_PF_PIX: SourceRule(Origin.PICPAY_PF_PIX, "PicPay PF", Channel.TRANSFER),
    Origin.PICPAY_PJ_PIX: SourceRule(Origin.PICPAY_PJ_PIX, "PicPay PJ", Channel.TRANSFER),
    Origin.MANUAL: SourceRule(Origin.MANUAL, "Manual", Channel.MANUAL, fetchable=False),
}

# Sub-labels of manual entries that count towards the transfer channel.
TRANSFER_LABEL_KEYWORDS = ("pix", "transf")


def rule_for(origin: Origin | str) -> SourceRule:
    return SOURCE_RULES[Origin(origin)]
