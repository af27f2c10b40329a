from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Sequence

from .models import ZERO, ContributionRate, TaxBracket, round_money, to_decimal

DEFAULT_LEVY_RATE = Decimal("0.03")


@dataclass(frozen=True)
class TaxComputation:
    taxable_income: Decimal
    tax: Decimal
    bracket: Optional[TaxBracket]


class IncomeTaxCalculator:
    """Lookup-and-deduct PAYE.

    One bracket is selected and its rate applies to the whole income, corrected by the
    bracket's deduct: ``tax = income * rate - deduct``. Bracket segments are never summed.
    The lower bound of a bracket is inclusive: the bracket with the greatest ``min`` not
    above the income wins.
    """

    @staticmethod
    def select_bracket(taxable_income: Decimal, brackets: Sequence[TaxBracket]) -> Optional[TaxBracket]:
        selected = None
        for bracket in brackets:
            if bracket.min <= taxable_income and (selected is None or bracket.min > selected.min):
                selected = bracket
        return selected

    def calculate(self, taxable_income, brackets: Sequence[TaxBracket]) -> TaxComputation:
        income = to_decimal(taxable_income)
        if income <= 0:
            return TaxComputation(taxable_income=income, tax=ZERO, bracket=None)
        bracket = self.select_bracket(income, brackets)
        tax = bracket.tax_for(income) if bracket else ZERO
        return TaxComputation(taxable_income=income, tax=tax, bracket=bracket)


class LevyCalculator:
    def __init__(self, rate=DEFAULT_LEVY_RATE):
        self.rate = to_decimal(rate)

    def calculate(self, tax) -> Decimal:
        return to_decimal(tax) * self.rate


@dataclass(frozen=True)
class ContributionComputation:
    gross: Decimal
    capped_base: Decimal
    employee_contribution: Decimal
    employer_contribution: Decimal
    capped: bool

    @property
    def total(self) -> Decimal:
        return self.employee_contribution + self.employer_contribution

    @property
    def effective_employee_rate(self) -> Decimal:
        """Percentage of gross actually contributed; display only."""
        return self._effective(self.employee_contribution)

    @property
    def effective_employer_rate(self) -> Decimal:
        return self._effective(self.employer_contribution)

    def _effective(self, contribution: Decimal) -> Decimal:
        if self.gross <= 0:
            return ZERO
        return round_money(contribution / self.gross * 100)


class ContributionCalculator:
    """Capped percentage-of-gross social-security contributions."""

    def calculate(self, gross_pay, rate: ContributionRate) -> ContributionComputation:
        gross = to_decimal(gross_pay)
        capped = rate.cap is not None and gross > rate.cap
        capped_base = rate.cap if capped else gross
        if capped_base < 0:
            capped_base = ZERO
        return ContributionComputation(
            gross=gross,
            capped_base=capped_base,
            employee_contribution=capped_base * rate.employee_rate,
            employer_contribution=capped_base * rate.employer_rate,
            capped=capped,
        )
