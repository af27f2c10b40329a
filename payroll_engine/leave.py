from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal

from .logging import get_logger
from .models import ZERO, LeaveBalance, LeavePolicy, PayFrequency, PayPeriod, to_decimal
from .repositories import LeaveRepository

logger = get_logger(__name__)

ONE_DECIMAL = Decimal("0.1")
MID_MONTH_DAY = 15


def months_worked(hire_date: date, as_of: date) -> int:
    return max(0, (as_of.year - hire_date.year) * 12 + (as_of.month - hire_date.month))


def initial_entitlement(hire_date: date, annual_leave_days, as_of: date) -> Decimal:
    """Leave earned by ``as_of`` for someone hired on ``hire_date``.

    Hires from an earlier year get the full annual entitlement. Hires in the current
    year accrue one twelfth per whole month, plus a month once the 15th is reached.
    """
    annual = to_decimal(annual_leave_days)
    if hire_date > as_of:
        return ZERO
    if hire_date.year < as_of.year:
        return annual
    additional_month = 1 if as_of.day >= MID_MONTH_DAY else 0
    accrued = (months_worked(hire_date, as_of) + additional_month) * (annual / 12)
    return accrued.quantize(ONE_DECIMAL, rounding=ROUND_HALF_UP)


def accrual_per_period(policy: LeavePolicy, frequency: PayFrequency) -> Decimal:
    return policy.annual_leave_days / PayFrequency(frequency).periods_per_year


@dataclass(frozen=True)
class LeaveAccrual:
    balance: LeaveBalance
    accrued: Decimal
    applied: bool


class LeaveAccrualEngine:
    def __init__(self, repository: LeaveRepository):
        self.repository = repository

    def policy(self, tenant_id: str) -> LeavePolicy:
        return self.repository.get_or_create_leave_policy(tenant_id)

    def onboard(self, employee_id: str, tenant_id: str, hire_date: date, as_of: date) -> LeaveBalance:
        existing = self.repository.get_leave_balance(employee_id, as_of.year)
        if existing is not None:
            return existing
        policy = self.policy(tenant_id)
        entitlement = initial_entitlement(hire_date, policy.annual_leave_days, as_of)
        balance = LeaveBalance(
            employee_id=employee_id,
            year=as_of.year,
            annual_total=policy.annual_leave_days,
            annual_balance=entitlement,
        )
        self.repository.save_leave_balance(balance)
        logger.info("leave_onboarded", employee_id=employee_id, year=as_of.year, entitlement=str(entitlement))
        return balance

    def open_year(self, employee_id: str, tenant_id: str, year: int) -> LeaveBalance:
        """Get or create the year's balance, carrying over unused days up to the policy limit."""
        existing = self.repository.get_leave_balance(employee_id, year)
        if existing is not None:
            return existing
        policy = self.policy(tenant_id)
        previous = self.repository.get_leave_balance(employee_id, year - 1)
        carry_over = ZERO
        if previous is not None:
            carry_over = min(max(previous.annual_balance, ZERO), policy.carry_over_days)
        balance = LeaveBalance(
            employee_id=employee_id,
            year=year,
            annual_total=policy.annual_leave_days,
            annual_balance=carry_over,
            annual_carry_over=carry_over,
        )
        self.repository.save_leave_balance(balance)
        return balance

    def accrue_for_period(
        self,
        employee_id: str,
        tenant_id: str,
        period: PayPeriod,
        frequency: PayFrequency = PayFrequency.MONTHLY,
    ) -> LeaveAccrual:
        balance = self.open_year(employee_id, tenant_id, period.year)
        if period.key in balance.accrued_periods:
            logger.info("leave_accrual_skipped", employee_id=employee_id, period=period.key)
            return LeaveAccrual(balance=balance, accrued=ZERO, applied=False)

        accrued = accrual_per_period(self.policy(tenant_id), frequency)
        balance.annual_balance += accrued
        balance.accrued_periods.append(period.key)
        self.repository.save_leave_balance(balance)
        return LeaveAccrual(balance=balance, accrued=accrued, applied=True)

    def recalculate(self, employee_id: str, tenant_id: str, hire_date: date, as_of: date) -> LeaveBalance:
        """Reset the year's balance from the hire date, keeping the days already used."""
        policy = self.policy(tenant_id)
        accrued = initial_entitlement(hire_date, policy.annual_leave_days, as_of)
        balance = self.repository.get_leave_balance(employee_id, as_of.year)
        if balance is None:
            balance = LeaveBalance(employee_id=employee_id, year=as_of.year, annual_total=policy.annual_leave_days)
        balance.annual_total = policy.annual_leave_days
        balance.annual_balance = max(ZERO, accrued - balance.annual_used)
        self.repository.save_leave_balance(balance)
        logger.info(
            "leave_recalculated",
            employee_id=employee_id,
            accrued=str(accrued),
            used=str(balance.annual_used),
            balance=str(balance.annual_balance),
        )
        return balance
