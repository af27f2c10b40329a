from __future__ import annotations

from .models import BatchReport, LeaveBalance, PayslipResult, YtdSnapshot, round_money


def format_payslip(payslip: PayslipResult) -> str:
    p = payslip.rounded()
    rows = [
        f"Payslip {p.employee_id}  {p.period_start.isoformat()} - {p.period_end.isoformat()}  ({p.currency})",
        f"{'Basic':<24}{p.basic:>12}",
        f"{'Allowances':<24}{p.allowances:>12}",
        f"{'Bonuses':<24}{p.bonuses:>12}",
        f"{'Overtime':<24}{p.overtime:>12}",
        f"{'Gross':<24}{p.gross:>12}",
        f"{'Pre-tax deductions':<24}{p.pre_tax_deductions:>12}",
        f"{'Taxable income':<24}{p.taxable_income:>12}",
        f"{'PAYE':<24}{p.tax:>12}",
        f"{'Levy':<24}{p.levy:>12}",
        f"{'Social security':<24}{p.employee_contribution:>12}" + ("  (capped)" if p.contribution_capped else ""),
        f"{'Post-tax deductions':<24}{p.post_tax_deductions:>12}",
        f"{'Total deductions':<24}{p.total_deductions:>12}",
        f"{'Net':<24}{p.net:>12}",
    ]
    if p.payment_currency != p.currency:
        rows.append(f"{'Net (' + p.payment_currency + ')':<24}{p.net_in_payment_currency:>12}  @ {p.exchange_rate}")
    rows.append(f"{'Employer contribution':<24}{p.employer_contribution:>12}")
    rows.append(f"Leave accrued {round_money(p.leave.accrued_this_period)}, balance {round_money(p.leave.balance_remaining)}")
    return "\n".join(rows)


def format_ytd(employee_id: str, ytd: YtdSnapshot) -> str:
    rows = [f"YTD {employee_id} ({ytd.year or '-'})"]
    for label, value in (
        ("Gross", ytd.gross),
        ("Taxable", ytd.taxable),
        ("PAYE", ytd.tax),
        ("Contributions", ytd.contribution),
        ("Net", ytd.net),
    ):
        rows.append(f"{label:<16}{round_money(value):>12}")
    return "\n".join(rows)


def format_leave(balance: LeaveBalance) -> str:
    return (
        f"Leave {balance.employee_id} {balance.year}: total {round_money(balance.annual_total)}, "
        f"used {round_money(balance.annual_used)}, balance {round_money(balance.annual_balance)}, "
        f"carried over {round_money(balance.annual_carry_over)}"
    )


def format_batch_report(report: BatchReport) -> str:
    summary = report.summary()
    rows = [
        f"Payroll {summary.period_start.isoformat()} - {summary.period_end.isoformat()}",
        f"Processed {summary.employees_processed} ({len(report.already_applied)} already applied), failed {summary.employees_failed}",
        f"Total gross {summary.total_gross}  total net {summary.total_net}",
    ]
    for payslip in report.succeeded + report.already_applied:
        rows.append(f"  {payslip.employee_id:<12} gross {round_money(payslip.gross):>12}  net {round_money(payslip.net):>12}")
    for failure in report.failed:
        rows.append(f"  {failure.employee_id:<12} FAILED {failure.error}: {failure.reason}")
    return "\n".join(rows)
