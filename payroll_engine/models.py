from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Dict, List, Optional, Tuple

ZERO = Decimal("0")
CENT = Decimal("0.01")


def to_decimal(value) -> Decimal:
    """Coerce ints, floats and strings to Decimal without binary float artefacts."""
    if isinstance(value, Decimal):
        return value
    if value is None or value == "":
        return ZERO
    return Decimal(str(value))


def round_money(value: Decimal, places: Decimal = CENT) -> Decimal:
    return to_decimal(value).quantize(places, rounding=ROUND_HALF_UP)


class PayFrequency(str, Enum):
    MONTHLY = "MONTHLY"
    FORTNIGHTLY = "FORTNIGHTLY"
    WEEKLY = "WEEKLY"

    @property
    def periods_per_year(self) -> int:
        return {"MONTHLY": 12, "FORTNIGHTLY": 26, "WEEKLY": 52}[self.value]


@dataclass(frozen=True)
class TaxBracket:
    min: Decimal
    max: Optional[Decimal]  # None is unbounded
    rate: Decimal
    deduct: Decimal

    @classmethod
    def from_dict(cls, row: dict) -> "TaxBracket":
        upper = row.get("max")
        return cls(
            min=to_decimal(row["min"]),
            max=None if upper is None else to_decimal(upper),
            rate=to_decimal(row["rate"]),
            deduct=to_decimal(row.get("deduct", 0)),
        )

    def to_dict(self) -> dict:
        return {
            "min": str(self.min),
            "max": None if self.max is None else str(self.max),
            "rate": str(self.rate),
            "deduct": str(self.deduct),
        }

    def tax_for(self, income: Decimal) -> Decimal:
        return max(income * self.rate - self.deduct, ZERO)


def _effective(effective_from: date, effective_to: Optional[date], on: date) -> bool:
    return effective_from <= on and (effective_to is None or on <= effective_to)


@dataclass(frozen=True)
class TaxTable:
    id: str
    tenant_id: str
    name: str
    currency: str
    pay_frequency: PayFrequency
    brackets: Tuple[TaxBracket, ...]
    effective_from: date
    effective_to: Optional[date] = None
    active: bool = True

    def is_effective(self, on: date) -> bool:
        return self.active and _effective(self.effective_from, self.effective_to, on)


@dataclass(frozen=True)
class ContributionRate:
    id: str
    tenant_id: str
    currency: str
    employee_rate: Decimal
    employer_rate: Decimal
    cap: Optional[Decimal]
    effective_from: date
    effective_to: Optional[date] = None
    active: bool = True

    def is_effective(self, on: date) -> bool:
        return self.active and _effective(self.effective_from, self.effective_to, on)


@dataclass
class LeavePolicy:
    tenant_id: str
    annual_leave_days: Decimal = Decimal("22")
    sick_leave_days_before_certificate: int = 2
    maternity_leave_days: int = 98
    paternity_leave_days: int = 7
    carry_over_days: Decimal = Decimal("5")

    @property
    def monthly_accrual(self) -> Decimal:
        return self.annual_leave_days / 12


@dataclass
class LeaveBalance:
    employee_id: str
    year: int
    annual_total: Decimal
    annual_used: Decimal = ZERO
    annual_balance: Decimal = ZERO
    annual_carry_over: Decimal = ZERO
    sick_used: Decimal = ZERO
    maternity_used: Decimal = ZERO
    paternity_used: Decimal = ZERO
    accrued_periods: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class YtdSnapshot:
    year: Optional[int] = None
    gross: Decimal = ZERO
    taxable: Decimal = ZERO
    tax: Decimal = ZERO
    contribution: Decimal = ZERO
    net: Decimal = ZERO


@dataclass
class EmployeePayrollProfile:
    employee_id: str
    tenant_id: str
    currency: str
    pay_frequency: PayFrequency = PayFrequency.MONTHLY
    contract_currency: Optional[str] = None
    hire_date: Optional[date] = None
    ytd: YtdSnapshot = field(default_factory=YtdSnapshot)

    @property
    def tax_currency(self) -> str:
        """Tax tables and contribution caps follow the contract currency."""
        return self.contract_currency or self.currency


@dataclass(frozen=True)
class PayPeriod:
    start: Optional[date]
    end: Optional[date]

    @property
    def key(self) -> str:
        return f"{self.start.isoformat()}/{self.end.isoformat()}"

    @property
    def year(self) -> int:
        return self.end.year


@dataclass
class PeriodInput:
    employee_id: str
    basic_salary: Decimal
    allowances: Dict[str, Decimal] = field(default_factory=dict)
    bonuses: Decimal = ZERO
    commission: Decimal = ZERO
    overtime: Decimal = ZERO
    pension: Decimal = ZERO
    medical_aid: Decimal = ZERO
    loan: Decimal = ZERO
    advance: Decimal = ZERO
    other_deductions: Decimal = ZERO
    payment_currency: Optional[str] = None

    def __post_init__(self) -> None:
        for name in (
            "basic_salary",
            "bonuses",
            "commission",
            "overtime",
            "pension",
            "medical_aid",
            "loan",
            "advance",
            "other_deductions",
        ):
            setattr(self, name, to_decimal(getattr(self, name)))
        self.allowances = {label: to_decimal(amount) for label, amount in self.allowances.items()}

    @property
    def total_allowances(self) -> Decimal:
        return sum(self.allowances.values(), ZERO)

    @property
    def gross(self) -> Decimal:
        return self.basic_salary + self.total_allowances + self.bonuses + self.commission + self.overtime

    @property
    def pre_tax_deductions(self) -> Decimal:
        return self.pension + self.medical_aid

    @property
    def post_tax_deductions(self) -> Decimal:
        return self.loan + self.advance + self.other_deductions


@dataclass(frozen=True)
class LeaveSnapshot:
    year: int
    accrued_this_period: Decimal
    balance_remaining: Decimal


@dataclass(frozen=True)
class PayslipResult:
    employee_id: str
    tenant_id: str
    period_start: date
    period_end: date
    currency: str
    basic: Decimal
    allowances: Decimal
    bonuses: Decimal
    overtime: Decimal
    gross: Decimal
    pre_tax_deductions: Decimal
    taxable_income: Decimal
    tax: Decimal
    levy: Decimal
    employee_contribution: Decimal
    employer_contribution: Decimal
    contribution_capped: bool
    post_tax_deductions: Decimal
    total_deductions: Decimal
    net: Decimal
    payment_currency: str
    exchange_rate: Decimal
    net_in_payment_currency: Decimal
    tax_table_id: str
    contribution_rate_id: str
    ytd: YtdSnapshot
    leave: LeaveSnapshot

    @property
    def period_key(self) -> str:
        return PayPeriod(self.period_start, self.period_end).key

    @property
    def ytd_gross(self) -> Decimal:
        return self.ytd.gross

    @property
    def ytd_net(self) -> Decimal:
        return self.ytd.net

    @property
    def leave_accrued_this_period(self) -> Decimal:
        return self.leave.accrued_this_period

    @property
    def leave_balance_remaining(self) -> Decimal:
        return self.leave.balance_remaining

    def balances(self) -> bool:
        """net + total deductions equals gross less the pre-tax deductions."""
        return self.net + self.total_deductions == self.gross - self.pre_tax_deductions

    def rounded(self) -> "PayslipResult":
        """Copy with every money field rounded to cents, for display and export."""
        money = {
            name: round_money(getattr(self, name))
            for name in (
                "basic",
                "allowances",
                "bonuses",
                "overtime",
                "gross",
                "pre_tax_deductions",
                "taxable_income",
                "tax",
                "levy",
                "employee_contribution",
                "employer_contribution",
                "post_tax_deductions",
                "total_deductions",
                "net",
            )
        }
        return replace(self, **money)


@dataclass(frozen=True)
class EmployeeFailure:
    employee_id: str
    error: str
    reason: str


@dataclass
class PayrollRunRequest:
    tenant_id: str
    period: PayPeriod
    inputs: List[PeriodInput]
    # (from_currency, to_currency) -> rate
    exchange_rates: Dict[Tuple[str, str], Decimal] = field(default_factory=dict)


@dataclass(frozen=True)
class BatchSummary:
    period_start: date
    period_end: date
    employees_processed: int
    employees_failed: int
    total_gross: Decimal
    total_net: Decimal


@dataclass
class BatchReport:
    period: PayPeriod
    succeeded: List[PayslipResult] = field(default_factory=list)
    failed: List[EmployeeFailure] = field(default_factory=list)
    already_applied: List[PayslipResult] = field(default_factory=list)

    def summary(self) -> BatchSummary:
        payslips = self.succeeded + self.already_applied
        return BatchSummary(
            period_start=self.period.start,
            period_end=self.period.end,
            employees_processed=len(payslips),
            employees_failed=len(self.failed),
            total_gross=round_money(sum((p.gross for p in payslips), ZERO)),
            total_net=round_money(sum((p.net for p in payslips), ZERO)),
        )

    def failure_for(self, employee_id: str) -> Optional[EmployeeFailure]:
        return next((f for f in self.failed if f.employee_id == employee_id), None)
