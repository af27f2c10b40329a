from __future__ import annotations
import argparse
from datetime import date
from decimal import Decimal, InvalidOperation
from pathlib import Path

from .assembler import PayslipAssembler
from .calculator import IncomeTaxCalculator, LevyCalculator
from .config import get_settings
from .csv_io import import_period_inputs
from .errors import PayrollError, ValidationError
from .leave import LeaveAccrualEngine
from .logging import configure_logging
from .models import EmployeePayrollProfile, PayFrequency, PayPeriod, PayrollRunRequest, round_money
from .monitoring import configure_error_monitoring
from .observability import configure_observability
from .resolver import RateTableResolver
from .storage import JsonPayrollStore
from .tax_tables import ReferenceRateRepository, seed_tenant
from .views import format_batch_report, format_leave, format_payslip, format_ytd


DEFAULT_DATA_PATH: Path | None = None


def store_from_args(args: argparse.Namespace) -> JsonPayrollStore:
    settings = get_settings()
    return JsonPayrollStore(DEFAULT_DATA_PATH or settings.data_path, settings.default_annual_leave_days)


def parse_date(value: str) -> date:
    return date.fromisoformat(value)


def parse_rate(value: str) -> tuple[tuple[str, str], Decimal]:
    try:
        source, target, rate = value.split(":")
        return (source.upper(), target.upper()), Decimal(rate)
    except (ValueError, InvalidOperation) as exc:
        raise argparse.ArgumentTypeError(f"Expected FROM:TO:RATE, got {value!r}") from exc


def cmd_seed_defaults(args: argparse.Namespace) -> None:
    store = store_from_args(args)
    reference = ReferenceRateRepository().load(args.version)
    created = seed_tenant(store, args.tenant, parse_date(args.effective_from), reference)
    store.save()
    print(f"Seeded {created} rate records for {args.tenant} from {reference.version}")


def cmd_add_employee(args: argparse.Namespace) -> None:
    store = store_from_args(args)
    hire_date = parse_date(args.hire_date) if args.hire_date else None
    profile = EmployeePayrollProfile(
        employee_id=args.id,
        tenant_id=args.tenant,
        currency=args.currency.upper(),
        pay_frequency=PayFrequency(args.frequency.upper()),
        contract_currency=args.contract_currency.upper() if args.contract_currency else None,
        hire_date=hire_date,
    )
    with store.atomic():
        store.add_profile(profile)
        if hire_date:
            as_of = parse_date(args.as_of) if args.as_of else date.today()
            balance = LeaveAccrualEngine(store).onboard(profile.employee_id, profile.tenant_id, hire_date, as_of)
    print(f"Added employee {profile.employee_id} ({profile.tax_currency} {profile.pay_frequency.value})")
    if hire_date:
        print(format_leave(balance))


def cmd_tax(args: argparse.Namespace) -> None:
    try:
        income = Decimal(args.income)
    except InvalidOperation as exc:
        raise ValidationError(f"Income must be a number, got {args.income!r}") from exc
    store = store_from_args(args)
    resolver = RateTableResolver(store)
    as_of = parse_date(args.as_of) if args.as_of else date.today()
    table = resolver.tax_table(args.tenant, args.currency.upper(), PayFrequency(args.frequency.upper()), as_of)
    result = IncomeTaxCalculator().calculate(income, table.brackets)
    levy = LevyCalculator(resolver.levy_rate(args.tenant)).calculate(result.tax)
    bracket = result.bracket
    label = f"{bracket.min} - {bracket.max if bracket.max is not None else 'and above'} @ {bracket.rate * 100:.0f}%" if bracket else "none"
    print(f"Table {table.name}, bracket {label}")
    print(f"PAYE {round_money(result.tax)}  levy {round_money(levy)}  total {round_money(result.tax + levy)}")


def cmd_run_payroll(args: argparse.Namespace) -> None:
    store = store_from_args(args)
    request = PayrollRunRequest(
        tenant_id=args.tenant,
        period=PayPeriod(parse_date(args.start), parse_date(args.end)),
        inputs=import_period_inputs(Path(args.inputs)),
        exchange_rates=dict(args.rate or []),
    )
    report = PayslipAssembler.from_store(store).run(request)
    print(format_batch_report(report))


def cmd_ytd(args: argparse.Namespace) -> None:
    store = store_from_args(args)
    print(format_ytd(args.employee, store.read_ytd(args.employee)))


def cmd_leave(args: argparse.Namespace) -> None:
    store = store_from_args(args)
    balance = store.get_leave_balance(args.employee, args.year)
    if balance is None:
        print(f"No leave balance for {args.employee} in {args.year}")
        return
    print(format_leave(balance))


def cmd_recalculate_leave(args: argparse.Namespace) -> None:
    store = store_from_args(args)
    profile = store.get_profile(args.employee)
    if profile is None or profile.hire_date is None:
        print(f"Employee {args.employee} not found or has no hire date")
        return
    as_of = parse_date(args.as_of) if args.as_of else date.today()
    with store.atomic():
        balance = LeaveAccrualEngine(store).recalculate(profile.employee_id, profile.tenant_id, profile.hire_date, as_of)
    print(format_leave(balance))


def cmd_payslip(args: argparse.Namespace) -> None:
    store = store_from_args(args)
    payslip = store.get_payslip(args.employee, PayPeriod(parse_date(args.start), parse_date(args.end)).key)
    if payslip is None:
        print(f"No payslip for {args.employee} in {args.start} - {args.end}")
        return
    print(format_payslip(payslip))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Statutory payroll computation CLI")
    sub = parser.add_subparsers(dest="command", required=True)

    seed = sub.add_parser("seed-defaults", help="Install reference tax tables, contribution rates and levy")
    seed.add_argument("tenant")
    seed.add_argument("--effective-from", default="2025-01-01")
    seed.add_argument("--version", default="zimra_2025")
    seed.set_defaults(func=cmd_seed_defaults)

    employee = sub.add_parser("add-employee", help="Register an employee payroll profile")
    employee.add_argument("id")
    employee.add_argument("tenant")
    employee.add_argument("--currency", default="USD")
    employee.add_argument("--frequency", default="MONTHLY", choices=[f.value for f in PayFrequency])
    employee.add_argument("--contract-currency")
    employee.add_argument("--hire-date", help="Onboards leave entitlement when given")
    employee.add_argument("--as-of", help="Reference date for leave proration (default today)")
    employee.set_defaults(func=cmd_add_employee)

    tax = sub.add_parser("tax", help="PAYE and levy for one taxable income")
    tax.add_argument("income")
    tax.add_argument("--tenant", required=True)
    tax.add_argument("--currency", default="USD")
    tax.add_argument("--frequency", default="MONTHLY", choices=[f.value for f in PayFrequency])
    tax.add_argument("--as-of")
    tax.set_defaults(func=cmd_tax)

    run = sub.add_parser("run-payroll", help="Compute and record payslips for a period")
    run.add_argument("tenant")
    run.add_argument("start")
    run.add_argument("end")
    run.add_argument("inputs", help="CSV of period inputs, one row per employee")
    run.add_argument("--rate", type=parse_rate, action="append", help="Exchange rate FROM:TO:RATE")
    run.set_defaults(func=cmd_run_payroll)

    ytd = sub.add_parser("ytd", help="Show year-to-date totals")
    ytd.add_argument("employee")
    ytd.set_defaults(func=cmd_ytd)

    leave = sub.add_parser("leave", help="Show the leave balance for a year")
    leave.add_argument("employee")
    leave.add_argument("year", type=int)
    leave.set_defaults(func=cmd_leave)

    recalc = sub.add_parser("recalculate-leave", help="Rebuild the leave balance from the hire date")
    recalc.add_argument("employee")
    recalc.add_argument("--as-of")
    recalc.set_defaults(func=cmd_recalculate_leave)

    payslip = sub.add_parser("payslip", help="Show a recorded payslip")
    payslip.add_argument("employee")
    payslip.add_argument("start")
    payslip.add_argument("end")
    payslip.set_defaults(func=cmd_payslip)

    return parser


def main(argv: list[str] | None = None) -> int:
    settings = get_settings()
    configure_logging(settings.log_level)
    configure_error_monitoring(settings)
    if settings.otlp_endpoint:
        configure_observability(settings)

    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        args.func(args)
    except PayrollError as exc:
        print(f"Error: {exc}")
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
