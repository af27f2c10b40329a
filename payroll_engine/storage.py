from __future__ import annotations

import json
from contextlib import contextmanager
from dataclasses import asdict
from datetime import date
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import Iterator, Optional

from .errors import PersistenceError
from .logging import get_logger
from .models import (
    ContributionRate,
    EmployeePayrollProfile,
    LeaveBalance,
    LeavePolicy,
    LeaveSnapshot,
    PayFrequency,
    PayslipResult,
    TaxBracket,
    TaxTable,
    YtdSnapshot,
    to_decimal,
)
from .repositories import InMemoryPayrollStore

logger = get_logger(__name__)

PAYSLIP_TEXT_FIELDS = {
    "employee_id",
    "tenant_id",
    "currency",
    "payment_currency",
    "tax_table_id",
    "contribution_rate_id",
}
PAYSLIP_DATE_FIELDS = {"period_start", "period_end"}


class JsonPayrollStore(InMemoryPayrollStore):
    """In-memory store persisted to a single JSON file.

    The file is rewritten after each committed unit of work, or once per
    ``deferred_writes()`` block when commits are grouped into a batch.
    """

    def __init__(self, path: Path, default_annual_leave_days=Decimal("22")) -> None:
        super().__init__(default_annual_leave_days)
        self.path = path
        self._deferred = 0
        self._dirty = False
        if path.exists():
            self.load()

    def load(self) -> None:
        content = json.loads(self.path.read_text(encoding="utf-8"))
        self.tax_table_records = {t["id"]: self._deserialize_tax_table(t) for t in content.get("tax_tables", [])}
        self.contribution_rate_records = {
            r["id"]: self._deserialize_contribution_rate(r) for r in content.get("contribution_rates", [])
        }
        self.levy_rates = {tenant: Decimal(rate) for tenant, rate in content.get("levy_rates", {}).items()}
        self.leave_policies = {p["tenant_id"]: self._deserialize_policy(p) for p in content.get("leave_policies", [])}
        self.leave_balances = {}
        for row in content.get("leave_balances", []):
            balance = self._deserialize_balance(row)
            self.leave_balances[(balance.employee_id, balance.year)] = balance
        self.profiles = {p["employee_id"]: self._deserialize_profile(p) for p in content.get("profiles", [])}
        self.payslips = {}
        for row in content.get("payslips", []):
            payslip = self._deserialize_payslip(row)
            self.payslips[(payslip.employee_id, payslip.period_key)] = payslip

    def save(self) -> None:
        with self._lock:
            payload = {
                "tax_tables": [self._serialize_tax_table(t) for t in self.tax_table_records.values()],
                "contribution_rates": [asdict(r) for r in self.contribution_rate_records.values()],
                "levy_rates": dict(self.levy_rates),
                "leave_policies": [asdict(p) for p in self.leave_policies.values()],
                "leave_balances": [asdict(b) for b in self.leave_balances.values()],
                "profiles": [asdict(p) for p in self.profiles.values()],
                "payslips": [asdict(p) for p in self.payslips.values()],
            }
            self.path.parent.mkdir(parents=True, exist_ok=True)
            staging = self.path.with_name(self.path.name + ".tmp")
            staging.write_text(json.dumps(payload, default=self._json_default, indent=2), encoding="utf-8")
            staging.replace(self.path)
            self._dirty = False

    @contextmanager
    def deferred_writes(self) -> Iterator[None]:
        """Commits inside the block are written to disk once, when the outermost block exits."""
        with self._lock:
            self._deferred += 1
        try:
            yield
        finally:
            with self._lock:
                self._deferred -= 1
                if self._deferred == 0 and self._dirty:
                    self._flush()

    def _on_commit(self) -> None:
        if self._deferred:
            self._dirty = True
            return
        self._flush()

    def _flush(self) -> None:
        try:
            self.save()
        except OSError as exc:
            logger.error("store_save_failed", path=str(self.path), error=str(exc))
            raise PersistenceError(f"Could not write {self.path}: {exc}") from exc

    @staticmethod
    def _json_default(value):
        if isinstance(value, Decimal):
            return str(value)
        if isinstance(value, date):
            return value.isoformat()
        if isinstance(value, Enum):
            return value.value
        raise TypeError(f"Type {type(value)} not serializable")

    @staticmethod
    def _parse_date(value: Optional[str]) -> Optional[date]:
        return date.fromisoformat(value) if value else None

    @staticmethod
    def _optional_decimal(value) -> Optional[Decimal]:
        return None if value is None else to_decimal(value)

    def _serialize_tax_table(self, table: TaxTable) -> dict:
        payload = asdict(table)
        payload["brackets"] = [b.to_dict() for b in table.brackets]
        return payload

    def _deserialize_tax_table(self, data: dict) -> TaxTable:
        return TaxTable(
            id=data["id"],
            tenant_id=data["tenant_id"],
            name=data["name"],
            currency=data["currency"],
            pay_frequency=PayFrequency(data["pay_frequency"]),
            brackets=tuple(TaxBracket.from_dict(row) for row in data["brackets"]),
            effective_from=self._parse_date(data["effective_from"]),
            effective_to=self._parse_date(data.get("effective_to")),
            active=data.get("active", True),
        )

    def _deserialize_contribution_rate(self, data: dict) -> ContributionRate:
        return ContributionRate(
            id=data["id"],
            tenant_id=data["tenant_id"],
            currency=data["currency"],
            employee_rate=to_decimal(data["employee_rate"]),
            employer_rate=to_decimal(data["employer_rate"]),
            cap=self._optional_decimal(data.get("cap")),
            effective_from=self._parse_date(data["effective_from"]),
            effective_to=self._parse_date(data.get("effective_to")),
            active=data.get("active", True),
        )

    def _deserialize_policy(self, data: dict) -> LeavePolicy:
        data["annual_leave_days"] = to_decimal(data["annual_leave_days"])
        data["carry_over_days"] = to_decimal(data["carry_over_days"])
        return LeavePolicy(**data)

    def _deserialize_balance(self, data: dict) -> LeaveBalance:
        for key, value in data.items():
            if key not in ("employee_id", "year", "accrued_periods"):
                data[key] = to_decimal(value)
        return LeaveBalance(**data)

    @staticmethod
    def _deserialize_ytd(data: dict) -> YtdSnapshot:
        return YtdSnapshot(
            year=data.get("year"),
            **{key: to_decimal(data.get(key, "0")) for key in ("gross", "taxable", "tax", "contribution", "net")},
        )

    def _deserialize_profile(self, data: dict) -> EmployeePayrollProfile:
        return EmployeePayrollProfile(
            employee_id=data["employee_id"],
            tenant_id=data["tenant_id"],
            currency=data["currency"],
            pay_frequency=PayFrequency(data["pay_frequency"]),
            contract_currency=data.get("contract_currency"),
            hire_date=self._parse_date(data.get("hire_date")),
            ytd=self._deserialize_ytd(data.get("ytd", {})),
        )

    def _deserialize_payslip(self, data: dict) -> PayslipResult:
        values = {}
        for key, value in data.items():
            if key == "ytd":
                values[key] = self._deserialize_ytd(value)
            elif key == "leave":
                values[key] = LeaveSnapshot(
                    year=value["year"],
                    accrued_this_period=to_decimal(value["accrued_this_period"]),
                    balance_remaining=to_decimal(value["balance_remaining"]),
                )
            elif key in PAYSLIP_DATE_FIELDS:
                values[key] = self._parse_date(value)
            elif key in PAYSLIP_TEXT_FIELDS or key == "contribution_capped":
                values[key] = value
            else:
                values[key] = to_decimal(value)
        return PayslipResult(**values)
