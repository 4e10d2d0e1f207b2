"""Swedish Tax Agency SRU file, form K4 section D (other assets, e.g. cryptocurrency).

Field layout follows SKV 269: each asset occupies one group of six field codes,
``34<i>0`` to ``34<i>5``, and a form block holds at most seven groups.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import ROUND_HALF_EVEN, Decimal
from typing import Iterable, TextIO

from utils.gains_report import CurrencySummary

GROUPS_PER_FORM = 7
SEQUENCE_FIELD = "7014"


class UnresolvedFilingError(ValueError):
    def __init__(self, *, currencies: list[str]) -> None:
        self.currencies = currencies
        super().__init__(
            "Cannot file K4 figures while some disposal costs are not traced to the base currency: "
            + ", ".join(currencies)
        )


@dataclass(frozen=True)
class TaxpayerIdentity:
    # Personal/organisation number, SSÅÅMMDDNNNK. Not validated here.
    number: str
    name: str | None = None


@dataclass(frozen=True)
class Information:
    field_code: str
    field_value: str


@dataclass
class Form:
    form_type: str
    identity: TaxpayerIdentity
    groups: list[list[Information]] = field(default_factory=list)

    @property
    def is_full(self) -> bool:
        return len(self.groups) >= GROUPS_PER_FORM

    def add_summary(self, summary: CurrencySummary) -> None:
        self.groups.append(information_group(len(self.groups) + 1, summary))

    def write(self, sequence: int, handle: TextIO, *, produced_at: datetime) -> None:
        handle.write(f"#BLANKETT {self.form_type}\n")
        handle.write(
            f"#IDENTITET {self.identity.number} {produced_at.strftime('%Y%m%d')} {produced_at.strftime('%H%M%S')}\n"
        )
        if self.identity.name:
            handle.write(f"#NAMN {self.identity.name}\n")
        handle.write(f"#UPPGIFT {SEQUENCE_FIELD} {sequence}\n")
        for group in self.groups:
            for info in group:
                handle.write(f"#UPPGIFT {info.field_code} {info.field_value}\n")
        handle.write("#BLANKETTSLUT\n")


def _whole_units(value: Decimal) -> str:
    return str(abs(value).quantize(Decimal(1), rounding=ROUND_HALF_EVEN))


def information_group(index: int, summary: CurrencySummary) -> list[Information]:
    net_income = summary.total_net_income
    # Gain goes to 34<i>4, loss to 34<i>5.
    result_code = f"34{index}4" if net_income >= 0 else f"34{index}5"
    return [
        Information(field_code=f"34{index}0", field_value=_whole_units(summary.total_amount)),
        Information(field_code=f"34{index}1", field_value=summary.currency),
        Information(field_code=f"34{index}2", field_value=_whole_units(summary.total_income)),
        Information(field_code=f"34{index}3", field_value=_whole_units(summary.total_cost)),
        Information(field_code=result_code, field_value=_whole_units(net_income)),
    ]


class SruFile:
    def __init__(self, forms: list[Form]) -> None:
        self.forms = forms

    @classmethod
    def from_summaries(
        cls,
        summaries: Iterable[CurrencySummary],
        identity: TaxpayerIdentity,
        *,
        tax_year: int,
    ) -> SruFile:
        form_type = f"K4-{tax_year}P4"
        summaries = list(summaries)
        unresolved = [summary for summary in summaries if not summary.is_resolved]
        if unresolved:
            raise UnresolvedFilingError(currencies=[summary.currency for summary in unresolved])

        forms: list[Form] = []
        current = Form(form_type=form_type, identity=identity)
        for summary in summaries:
            if current.is_full:
                forms.append(current)
                current = Form(form_type=form_type, identity=identity)
            current.add_summary(summary)
        forms.append(current)
        return cls(forms)

    def write(self, handle: TextIO, *, produced_at: datetime | None = None) -> None:
        produced_at = produced_at or datetime.now(timezone.utc)
        for sequence, form in enumerate(self.forms, start=1):
            form.write(sequence, handle, produced_at=produced_at)
        handle.write("#FIL_SLUT\n")
