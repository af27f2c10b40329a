from __future__ import annotations

import threading
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Dict, Iterator, List, Optional, Tuple, Union

from .calculator import ContributionCalculator, IncomeTaxCalculator, LevyCalculator
from .config import Settings, get_settings
from .errors import MissingExchangeRate, PayrollError, PersistenceError, UnknownEmployee, ValidationError
from .leave import LeaveAccrualEngine
from .logging import get_logger
from .models import (
    EmployeeFailure,
    EmployeePayrollProfile,
    BatchReport,
    LeaveSnapshot,
    PayPeriod,
    PayrollRunRequest,
    PayslipResult,
    PeriodInput,
    YtdSnapshot,
    round_money,
)
from .monitoring import report_failure
from .observability import get_meter, get_tracer
from .repositories import EmployeeRepository, PayslipRepository, UnitOfWork, YtdRepository
from .resolver import RateTableResolver
from .ytd import YtdAccumulator

logger = get_logger(__name__)
tracer = get_tracer(__name__)
employee_counter = get_meter(__name__).create_counter(
    "payroll_employees", unit="1", description="Employees handled by payroll runs, by outcome"
)

ONE = Decimal("1")
AMOUNT_FIELDS = (
    "basic_salary",
    "bonuses",
    "commission",
    "overtime",
    "pension",
    "medical_aid",
    "loan",
    "advance",
    "other_deductions",
)


class EmployeeLocks:
    """One lock per employee so concurrent runs cannot apply the same period twice.

    An employee's entry lives only while some thread holds or waits for it.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: Dict[str, List] = {}  # employee_id -> [lock, holders]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    @contextmanager
    def hold(self, employee_id: str) -> Iterator[None]:
        with self._guard:
            entry = self._locks.setdefault(employee_id, [threading.Lock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[employee_id]


SHARED_LOCKS = EmployeeLocks()


@dataclass(frozen=True)
class _Applied:
    payslip: PayslipResult
    fresh: bool


Outcome = Union[_Applied, EmployeeFailure]


class PayslipAssembler:
    def __init__(
        self,
        resolver: RateTableResolver,
        leave_engine: LeaveAccrualEngine,
        employees: EmployeeRepository,
        ytd_repository: YtdRepository,
        payslips: PayslipRepository,
        unit_of_work: UnitOfWork,
        *,
        ytd_accumulator: Optional[YtdAccumulator] = None,
        max_workers: int = 1,
        locks: Optional[EmployeeLocks] = None,
    ):
        self.resolver = resolver
        self.leave_engine = leave_engine
        self.employees = employees
        self.ytd_repository = ytd_repository
        self.payslips = payslips
        self.unit_of_work = unit_of_work
        self.ytd_accumulator = ytd_accumulator or YtdAccumulator()
        self.tax_calculator = IncomeTaxCalculator()
        self.contribution_calculator = ContributionCalculator()
        self.max_workers = max_workers
        self.locks = locks or SHARED_LOCKS

    @classmethod
    def from_store(
        cls, store, settings: Optional[Settings] = None, locks: Optional[EmployeeLocks] = None
    ) -> "PayslipAssembler":
        """Wire every collaborator to one store implementing all repository interfaces."""
        settings = settings or get_settings()
        return cls(
            resolver=RateTableResolver(store, settings),
            leave_engine=LeaveAccrualEngine(store),
            employees=store,
            ytd_repository=store,
            payslips=store,
            unit_of_work=store,
            max_workers=settings.max_workers,
            locks=locks,
        )

    def validate(self, request: PayrollRunRequest) -> None:
        if not request.tenant_id:
            raise ValidationError("Tenant is required")
        period = request.period
        if period.start is None or period.end is None:
            raise ValidationError("Period start and end dates are required")
        if period.start > period.end:
            raise ValidationError(f"Period starts {period.start} after it ends {period.end}")
        if not request.inputs:
            raise ValidationError("No employees supplied for payroll")
        seen = Counter(i.employee_id for i in request.inputs)
        duplicates = sorted(emp for emp, count in seen.items() if count > 1)
        if duplicates:
            raise ValidationError(f"Employees listed more than once: {', '.join(duplicates)}")
        for (source, target), rate in request.exchange_rates.items():
            if rate is None or rate <= 0:
                raise ValidationError(f"Exchange rate {source}->{target} must be positive, got {rate}")

    def run(self, request: PayrollRunRequest) -> BatchReport:
        self.validate(request)
        period = request.period
        log = logger.bind(tenant_id=request.tenant_id, period=period.key)
        report = BatchReport(period=period)

        with tracer.start_as_current_span("payroll.batch") as span:
            span.set_attribute("payroll.tenant_id", request.tenant_id)
            span.set_attribute("payroll.employees", len(request.inputs))
            with self.unit_of_work.deferred_writes():
                if self.max_workers > 1:
                    with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
                        outcomes: List[Outcome] = list(pool.map(lambda i: self._process(request, i), request.inputs))
                else:
                    outcomes = [self._process(request, period_input) for period_input in request.inputs]

            for outcome in outcomes:
                if isinstance(outcome, EmployeeFailure):
                    report.failed.append(outcome)
                elif outcome.fresh:
                    report.succeeded.append(outcome.payslip)
                else:
                    report.already_applied.append(outcome.payslip)

        summary = report.summary()
        log.info(
            "payroll_run_completed",
            processed=summary.employees_processed,
            failed=summary.employees_failed,
            already_applied=len(report.already_applied),
            total_gross=str(summary.total_gross),
            total_net=str(summary.total_net),
        )
        return report

    def _process(self, request: PayrollRunRequest, period_input: PeriodInput) -> Outcome:
        employee_id = period_input.employee_id
        with tracer.start_as_current_span("payroll.employee") as span:
            span.set_attribute("payroll.employee_id", employee_id)
            try:
                payslip, fresh = self.process_employee(request, period_input)
            except Exception as exc:
                if isinstance(exc, PayrollError):
                    logger.warning("employee_failed", employee_id=employee_id, error=type(exc).__name__, reason=str(exc))
                else:
                    logger.exception("employee_failed_unexpectedly", employee_id=employee_id)
                report_failure(exc, employee_id=employee_id, tenant_id=request.tenant_id)
                span.record_exception(exc)
                employee_counter.add(1, {"outcome": "failed"})
                return EmployeeFailure(employee_id=employee_id, error=type(exc).__name__, reason=str(exc))
        employee_counter.add(1, {"outcome": "succeeded" if fresh else "already_applied"})
        return _Applied(payslip=payslip, fresh=fresh)

    def process_employee(self, request: PayrollRunRequest, period_input: PeriodInput) -> Tuple[PayslipResult, bool]:
        """Compute and commit one payslip; returns the stored one untouched if the period was already applied."""
        employee_id = period_input.employee_id
        period = request.period
        with self.locks.hold(employee_id):
            existing = self.payslips.get_payslip(employee_id, period.key)
            if existing is not None:
                logger.info("payslip_already_applied", employee_id=employee_id, period=period.key)
                return existing, False

            profile = self.employees.get_profile(employee_id)
            if profile is None:
                raise UnknownEmployee(employee_id)
            if profile.tenant_id != request.tenant_id:
                raise UnknownEmployee(employee_id, f"Employee {employee_id} does not belong to tenant {request.tenant_id}")

            draft = self.compute(request.tenant_id, profile, period_input, period, request.exchange_rates)
            try:
                with self.unit_of_work.atomic():
                    accrual = self.leave_engine.accrue_for_period(
                        employee_id, request.tenant_id, period, profile.pay_frequency
                    )
                    ytd = self.ytd_accumulator.roll_forward(
                        self.ytd_repository.read_ytd(employee_id),
                        year=period.year,
                        gross=draft.gross,
                        taxable=draft.taxable_income,
                        tax=draft.tax,
                        contribution=draft.employee_contribution + draft.employer_contribution,
                        net=draft.net,
                    )
                    self.ytd_repository.write_ytd(employee_id, ytd)
                    payslip = replace(
                        draft,
                        ytd=ytd,
                        leave=LeaveSnapshot(
                            year=accrual.balance.year,
                            accrued_this_period=accrual.accrued,
                            balance_remaining=accrual.balance.annual_balance,
                        ),
                    )
                    self.payslips.save_payslip(payslip)
            except PayrollError:
                raise
            except Exception as exc:
                raise PersistenceError(f"Could not record payslip for {employee_id}: {exc}") from exc

        logger.info(
            "payslip_computed",
            employee_id=employee_id,
            period=period.key,
            gross=str(round_money(payslip.gross)),
            net=str(round_money(payslip.net)),
        )
        return payslip, True

    def compute(
        self,
        tenant_id: str,
        profile: EmployeePayrollProfile,
        period_input: PeriodInput,
        period: PayPeriod,
        exchange_rates: Optional[Dict[Tuple[str, str], Decimal]] = None,
    ) -> PayslipResult:
        """Pure payslip arithmetic; YTD and leave are left empty for the caller to fill."""
        for name in AMOUNT_FIELDS:
            if getattr(period_input, name) < 0:
                raise ValidationError(f"{name} must not be negative for {period_input.employee_id}")
        for label, amount in period_input.allowances.items():
            if amount < 0:
                raise ValidationError(f"Allowance {label} must not be negative for {period_input.employee_id}")

        currency = profile.tax_currency
        tax_table = self.resolver.tax_table(tenant_id, currency, profile.pay_frequency, period.end)
        contribution_rate = self.resolver.contribution_rate(tenant_id, currency, period.end)
        levy_calculator = LevyCalculator(self.resolver.levy_rate(tenant_id))

        gross = period_input.gross
        pre_tax = period_input.pre_tax_deductions
        taxable_income = gross - pre_tax
        tax = self.tax_calculator.calculate(taxable_income, tax_table.brackets).tax
        levy = levy_calculator.calculate(tax)
        contributions = self.contribution_calculator.calculate(gross, contribution_rate)
        post_tax = period_input.post_tax_deductions
        total_deductions = tax + levy + contributions.employee_contribution + post_tax
        net = taxable_income - total_deductions

        payment_currency = period_input.payment_currency or profile.currency
        rate = self._exchange_rate(exchange_rates or {}, currency, payment_currency)

        return PayslipResult(
            employee_id=profile.employee_id,
            tenant_id=tenant_id,
            period_start=period.start,
            period_end=period.end,
            currency=currency,
            basic=period_input.basic_salary,
            allowances=period_input.total_allowances,
            bonuses=period_input.bonuses + period_input.commission,
            overtime=period_input.overtime,
            gross=gross,
            pre_tax_deductions=pre_tax,
            taxable_income=taxable_income,
            tax=tax,
            levy=levy,
            employee_contribution=contributions.employee_contribution,
            employer_contribution=contributions.employer_contribution,
            contribution_capped=contributions.capped,
            post_tax_deductions=post_tax,
            total_deductions=total_deductions,
            net=net,
            payment_currency=payment_currency,
            exchange_rate=rate,
            net_in_payment_currency=round_money(net * rate),
            tax_table_id=tax_table.id,
            contribution_rate_id=contribution_rate.id,
            ytd=YtdSnapshot(year=period.year),
            leave=LeaveSnapshot(year=period.year, accrued_this_period=Decimal("0"), balance_remaining=Decimal("0")),
        )

    @staticmethod
    def _exchange_rate(rates: Dict[Tuple[str, str], Decimal], source: str, target: str) -> Decimal:
        if source == target:
            return ONE
        rate = rates.get((source, target))
        if rate is None:
            raise MissingExchangeRate(source, target)
        return rate
