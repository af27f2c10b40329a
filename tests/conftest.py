from datetime import date
from decimal import Decimal

import pytest

from payroll_engine.assembler import EmployeeLocks, PayslipAssembler
from payroll_engine.config import Settings
from payroll_engine.models import EmployeePayrollProfile, PayFrequency, PayPeriod, PeriodInput
from payroll_engine.repositories import InMemoryPayrollStore
from payroll_engine.tax_tables import seed_tenant

TENANT = "acme"
JANUARY = PayPeriod(date(2025, 1, 1), date(2025, 1, 31))
FEBRUARY = PayPeriod(date(2025, 2, 1), date(2025, 2, 28))


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None)


@pytest.fixture
def store(settings) -> InMemoryPayrollStore:
    store = InMemoryPayrollStore()
    seed_tenant(store, TENANT, date(2025, 1, 1), settings=settings)
    return store


@pytest.fixture
def assembler(store, settings) -> PayslipAssembler:
    return PayslipAssembler.from_store(store, settings, locks=EmployeeLocks())


def add_employee(store, employee_id: str, currency: str = "USD", frequency=PayFrequency.MONTHLY, **kwargs):
    profile = EmployeePayrollProfile(
        employee_id=employee_id,
        tenant_id=kwargs.pop("tenant_id", TENANT),
        currency=currency,
        pay_frequency=frequency,
        **kwargs,
    )
    store.add_profile(profile)
    return profile


def standard_input(employee_id: str = "e1", **overrides) -> PeriodInput:
    values = dict(
        employee_id=employee_id,
        basic_salary=Decimal("1000"),
        allowances={"housing": Decimal("200"), "transport": Decimal("50")},
        bonuses=Decimal("100"),
        pension=Decimal("50"),
        medical_aid=Decimal("25"),
        loan=Decimal("30"),
    )
    values.update(overrides)
    return PeriodInput(**values)


# Boundaries in the bundled reference tables where tax drops slightly; the
# published figures are kept as issued.
KNOWN_DECREASES = {
    ("USD", "MONTHLY"): set(),
    ("USD", "WEEKLY"): set(),
    ("USD", "FORTNIGHTLY"): {Decimal("1384.63")},
    ("ZWL", "MONTHLY"): set(),
    ("ZWL", "WEEKLY"): {Decimal("12923.09"), Decimal("19384.63")},
    ("ZWL", "FORTNIGHTLY"): {Decimal("3876.93"), Decimal("25846.16")},
}
