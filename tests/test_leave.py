from datetime import date
from decimal import Decimal

import pytest

from payroll_engine.leave import LeaveAccrualEngine, accrual_per_period, initial_entitlement, months_worked
from payroll_engine.models import LeaveBalance, LeavePolicy, PayFrequency
from payroll_engine.repositories import InMemoryPayrollStore

from conftest import FEBRUARY, JANUARY, TENANT


def test_months_worked_counts_calendar_months():
    assert months_worked(date(2025, 1, 5), date(2025, 11, 20)) == 10
    assert months_worked(date(2025, 3, 1), date(2025, 1, 1)) == 0


def test_mid_year_hire_is_prorated():
    assert initial_entitlement(date(2025, 1, 5), 22, date(2025, 11, 20)) == Decimal("20.2")


def test_no_extra_month_before_the_fifteenth():
    assert initial_entitlement(date(2025, 1, 5), 22, date(2025, 11, 14)) == Decimal("18.3")


def test_earlier_year_hire_gets_full_entitlement():
    assert initial_entitlement(date(2019, 8, 1), 22, date(2025, 2, 3)) == Decimal("22")


def test_future_hire_has_no_entitlement():
    assert initial_entitlement(date(2026, 1, 1), 22, date(2025, 6, 1)) == 0


@pytest.mark.parametrize(
    "frequency, periods", [(PayFrequency.MONTHLY, 12), (PayFrequency.FORTNIGHTLY, 26), (PayFrequency.WEEKLY, 52)]
)
def test_accrual_spreads_annual_days_over_pay_periods(frequency, periods):
    policy = LeavePolicy(tenant_id=TENANT)

    assert accrual_per_period(policy, frequency) == Decimal("22") / periods


def test_onboard_creates_prorated_balance_once():
    store = InMemoryPayrollStore()
    engine = LeaveAccrualEngine(store)

    first = engine.onboard("e1", TENANT, date(2025, 1, 5), date(2025, 11, 20))
    second = engine.onboard("e1", TENANT, date(2025, 1, 5), date(2025, 12, 20))

    assert first.annual_balance == Decimal("20.2")
    assert second == first


def test_accrual_is_applied_once_per_period():
    store = InMemoryPayrollStore()
    engine = LeaveAccrualEngine(store)

    first = engine.accrue_for_period("e1", TENANT, JANUARY)
    again = engine.accrue_for_period("e1", TENANT, JANUARY)
    later = engine.accrue_for_period("e1", TENANT, FEBRUARY)

    assert first.applied and not again.applied
    assert again.accrued == 0
    assert later.balance.annual_balance == Decimal("22") / 12 * 2
    assert later.balance.accrued_periods == [JANUARY.key, FEBRUARY.key]


def test_new_year_carries_over_up_to_policy_limit():
    store = InMemoryPayrollStore()
    store.save_leave_balance(LeaveBalance(employee_id="e1", year=2024, annual_total=Decimal("22"), annual_balance=Decimal("8")))

    balance = LeaveAccrualEngine(store).open_year("e1", TENANT, 2025)

    assert balance.annual_carry_over == Decimal("5")
    assert balance.annual_balance == Decimal("5")


def test_small_remainder_carries_over_in_full():
    store = InMemoryPayrollStore()
    store.save_leave_balance(LeaveBalance(employee_id="e1", year=2024, annual_total=Decimal("22"), annual_balance=Decimal("2.5")))

    assert LeaveAccrualEngine(store).open_year("e1", TENANT, 2025).annual_balance == Decimal("2.5")


def test_tenant_policy_drives_accrual():
    store = InMemoryPayrollStore()
    store.save_leave_policy(LeavePolicy(tenant_id=TENANT, annual_leave_days=Decimal("24")))

    accrual = LeaveAccrualEngine(store).accrue_for_period("e1", TENANT, JANUARY)

    assert accrual.accrued == Decimal("2")


def test_recalculate_keeps_used_days():
    store = InMemoryPayrollStore()
    store.save_leave_balance(
        LeaveBalance(employee_id="e1", year=2025, annual_total=Decimal("22"), annual_used=Decimal("3"), annual_balance=Decimal("1"))
    )

    balance = LeaveAccrualEngine(store).recalculate("e1", TENANT, date(2025, 1, 5), date(2025, 11, 20))

    assert balance.annual_balance == Decimal("17.2")
    assert store.get_leave_balance("e1", 2025).annual_balance == Decimal("17.2")


def test_recalculate_never_goes_negative():
    store = InMemoryPayrollStore()
    store.save_leave_balance(
        LeaveBalance(employee_id="e1", year=2025, annual_total=Decimal("22"), annual_used=Decimal("10"))
    )

    balance = LeaveAccrualEngine(store).recalculate("e1", TENANT, date(2025, 6, 1), date(2025, 7, 1))

    assert balance.annual_balance == 0
