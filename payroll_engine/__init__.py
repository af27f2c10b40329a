"""Statutory payroll computation: PAYE, levy, social security, leave and YTD."""

from .assembler import PayslipAssembler
from .calculator import ContributionCalculator, IncomeTaxCalculator, LevyCalculator
from .errors import (
    ConfigurationError,
    InvalidTaxTable,
    MissingExchangeRate,
    NoActiveRateTable,
    PayrollError,
    PersistenceError,
    ValidationError,
)
from .leave import LeaveAccrualEngine
from .models import PayFrequency, PayPeriod, PayrollRunRequest, PeriodInput, PayslipResult
from .repositories import InMemoryPayrollStore
from .resolver import RateTableResolver
from .ytd import YtdAccumulator

__all__ = [
    "ConfigurationError",
    "ContributionCalculator",
    "InMemoryPayrollStore",
    "IncomeTaxCalculator",
    "InvalidTaxTable",
    "LeaveAccrualEngine",
    "LevyCalculator",
    "MissingExchangeRate",
    "NoActiveRateTable",
    "PayFrequency",
    "PayPeriod",
    "PayrollError",
    "PayrollRunRequest",
    "PayslipAssembler",
    "PayslipResult",
    "PeriodInput",
    "PersistenceError",
    "RateTableResolver",
    "ValidationError",
    "YtdAccumulator",
]
