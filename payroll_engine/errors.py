from __future__ import annotations

from datetime import date
from typing import Optional


class PayrollError(Exception):
    """Base class for every error raised by the engine."""


class ValidationError(PayrollError):
    """Input rejected before any calculation is attempted."""


class ConfigurationError(PayrollError):
    """Rate configuration is missing or inconsistent."""


class NoActiveRateTable(ConfigurationError):
    def __init__(self, kind: str, key: str, as_of: date, matches: int = 0):
        self.kind = kind
        self.key = key
        self.as_of = as_of
        self.matches = matches
        if matches:
            detail = f"{matches} active {kind} records overlap"
        else:
            detail = f"no active {kind}"
        super().__init__(f"{detail} for {key} on {as_of.isoformat()}")


class MissingExchangeRate(ConfigurationError):
    def __init__(self, from_currency: str, to_currency: str):
        self.from_currency = from_currency
        self.to_currency = to_currency
        super().__init__(f"No exchange rate from {from_currency} to {to_currency}")


class InvalidTaxTable(ConfigurationError):
    """Bracket definition failed write-time validation."""


class PersistenceError(PayrollError):
    """Writing leave, YTD or payslip state failed; the employee was rolled back."""


class UnknownEmployee(ValidationError):
    def __init__(self, employee_id: str, detail: Optional[str] = None):
        self.employee_id = employee_id
        super().__init__(detail or f"Employee {employee_id} has no payroll profile")
