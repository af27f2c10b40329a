"""Repository interfaces consumed by the engine, and an in-memory store implementing all of them."""

from __future__ import annotations

import copy
import threading
from contextlib import contextmanager
from dataclasses import replace
from decimal import Decimal
from typing import ContextManager, Dict, Iterator, List, Optional, Protocol, Tuple

from .errors import ValidationError
from .models import (
    ContributionRate,
    EmployeePayrollProfile,
    LeaveBalance,
    LeavePolicy,
    PayFrequency,
    PayslipResult,
    TaxTable,
    YtdSnapshot,
    to_decimal,
)


class RateTableRepository(Protocol):
    def tax_tables(self, tenant_id: str, currency: str, frequency: PayFrequency) -> List[TaxTable]: ...

    def contribution_rates(self, tenant_id: str, currency: str) -> List[ContributionRate]: ...

    def levy_rate(self, tenant_id: str) -> Optional[Decimal]: ...


class LeaveRepository(Protocol):
    def get_or_create_leave_policy(self, tenant_id: str) -> LeavePolicy: ...

    def get_leave_balance(self, employee_id: str, year: int) -> Optional[LeaveBalance]: ...

    def save_leave_balance(self, balance: LeaveBalance) -> None: ...


class YtdRepository(Protocol):
    def read_ytd(self, employee_id: str) -> YtdSnapshot: ...

    def write_ytd(self, employee_id: str, snapshot: YtdSnapshot) -> None: ...


class EmployeeRepository(Protocol):
    def get_profile(self, employee_id: str) -> Optional[EmployeePayrollProfile]: ...


class PayslipRepository(Protocol):
    def get_payslip(self, employee_id: str, period_key: str) -> Optional[PayslipResult]: ...

    def save_payslip(self, payslip: PayslipResult) -> None: ...


class UnitOfWork(Protocol):
    def atomic(self) -> ContextManager[None]: ...

    def deferred_writes(self) -> ContextManager[None]: ...


_ABSENT = object()


class InMemoryPayrollStore:
    """Holds configuration and per-employee state in dictionaries.

    Reads hand out copies, so nothing changes until a ``save_*``/``write_*`` call.
    Inside ``atomic()`` every write journals the previous value of its key, and a
    block that raises puts exactly those keys back.
    """

    def __init__(self, default_annual_leave_days=Decimal("22")) -> None:
        self.default_annual_leave_days = to_decimal(default_annual_leave_days)
        self._lock = threading.RLock()
        self._journal: Optional[Dict[Tuple[str, object], object]] = None
        self.tax_table_records: Dict[str, TaxTable] = {}
        self.contribution_rate_records: Dict[str, ContributionRate] = {}
        self.levy_rates: Dict[str, Decimal] = {}
        self.leave_policies: Dict[str, LeavePolicy] = {}
        self.leave_balances: Dict[Tuple[str, int], LeaveBalance] = {}
        self.profiles: Dict[str, EmployeePayrollProfile] = {}
        self.payslips: Dict[Tuple[str, str], PayslipResult] = {}

    def _put(self, collection: str, key, value) -> None:
        records = getattr(self, collection)
        if self._journal is not None and (collection, key) not in self._journal:
            # stored values are never mutated in place, so the reference is enough
            self._journal[(collection, key)] = records.get(key, _ABSENT)
        records[key] = value

    # configuration writes

    def add_tax_table(self, table: TaxTable) -> None:
        with self._lock:
            self._put("tax_table_records", table.id, table)

    def add_contribution_rate(self, rate: ContributionRate) -> None:
        with self._lock:
            self._put("contribution_rate_records", rate.id, rate)

    def set_levy_rate(self, tenant_id: str, rate) -> None:
        with self._lock:
            self._put("levy_rates", tenant_id, to_decimal(rate))

    def save_leave_policy(self, policy: LeavePolicy) -> None:
        with self._lock:
            self._put("leave_policies", policy.tenant_id, copy.deepcopy(policy))

    def add_profile(self, profile: EmployeePayrollProfile) -> None:
        with self._lock:
            if profile.employee_id in self.profiles:
                raise ValidationError(f"Employee {profile.employee_id} already has a payroll profile")
            self._put("profiles", profile.employee_id, copy.deepcopy(profile))

    # RateTableRepository

    def tax_tables(self, tenant_id: str, currency: str, frequency: PayFrequency) -> List[TaxTable]:
        frequency = PayFrequency(frequency)
        with self._lock:
            return [
                t
                for t in self.tax_table_records.values()
                if t.tenant_id == tenant_id and t.currency == currency and t.pay_frequency == frequency
            ]

    def contribution_rates(self, tenant_id: str, currency: str) -> List[ContributionRate]:
        with self._lock:
            return [
                r
                for r in self.contribution_rate_records.values()
                if r.tenant_id == tenant_id and r.currency == currency
            ]

    def levy_rate(self, tenant_id: str) -> Optional[Decimal]:
        with self._lock:
            return self.levy_rates.get(tenant_id)

    # LeaveRepository

    def get_or_create_leave_policy(self, tenant_id: str) -> LeavePolicy:
        with self._lock:
            policy = self.leave_policies.get(tenant_id)
            if policy is None:
                policy = LeavePolicy(tenant_id=tenant_id, annual_leave_days=self.default_annual_leave_days)
                self._put("leave_policies", tenant_id, policy)
            return copy.deepcopy(policy)

    def get_leave_balance(self, employee_id: str, year: int) -> Optional[LeaveBalance]:
        with self._lock:
            balance = self.leave_balances.get((employee_id, year))
            return copy.deepcopy(balance) if balance else None

    def save_leave_balance(self, balance: LeaveBalance) -> None:
        with self._lock:
            self._put("leave_balances", (balance.employee_id, balance.year), copy.deepcopy(balance))

    # EmployeeRepository / YtdRepository

    def get_profile(self, employee_id: str) -> Optional[EmployeePayrollProfile]:
        with self._lock:
            profile = self.profiles.get(employee_id)
            return copy.deepcopy(profile) if profile else None

    def list_profiles(self) -> List[EmployeePayrollProfile]:
        with self._lock:
            return [copy.deepcopy(p) for p in sorted(self.profiles.values(), key=lambda p: p.employee_id)]

    def read_ytd(self, employee_id: str) -> YtdSnapshot:
        with self._lock:
            profile = self.profiles.get(employee_id)
            return profile.ytd if profile else YtdSnapshot()

    def write_ytd(self, employee_id: str, snapshot: YtdSnapshot) -> None:
        with self._lock:
            profile = self.profiles[employee_id]
            self._put("profiles", employee_id, replace(profile, ytd=snapshot))

    # PayslipRepository

    def get_payslip(self, employee_id: str, period_key: str) -> Optional[PayslipResult]:
        with self._lock:
            return self.payslips.get((employee_id, period_key))

    def save_payslip(self, payslip: PayslipResult) -> None:
        with self._lock:
            self._put("payslips", (payslip.employee_id, payslip.period_key), payslip)

    def payslips_for(self, employee_id: str) -> List[PayslipResult]:
        with self._lock:
            found = [p for (emp, _), p in self.payslips.items() if emp == employee_id]
        return sorted(found, key=lambda p: p.period_start)

    # UnitOfWork

    @contextmanager
    def atomic(self) -> Iterator[None]:
        with self._lock:
            if self._journal is not None:
                yield
                return
            self._journal = {}
            try:
                yield
                self._on_commit()
            except Exception:
                self._rollback()
                raise
            finally:
                self._journal = None

    @contextmanager
    def deferred_writes(self) -> Iterator[None]:
        """Group many ``atomic()`` commits; stores that persist flush once at the end."""
        yield

    def _on_commit(self) -> None:
        """Hook for stores that persist beyond memory."""

    def _rollback(self) -> None:
        for (collection, key), previous in self._journal.items():
            records = getattr(self, collection)
            if previous is _ABSENT:
                records.pop(key, None)
            else:
                records[key] = previous
