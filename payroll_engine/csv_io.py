from __future__ import annotations
import csv
from decimal import Decimal, InvalidOperation
from pathlib import Path

from .errors import ValidationError
from .models import PeriodInput


ALLOWANCE_PREFIX = "allowance:"
AMOUNT_COLUMNS = [
    "basic_salary",
    "bonuses",
    "commission",
    "overtime",
    "pension",
    "medical_aid",
    "loan",
    "advance",
    "other_deductions",
]
CSV_HEADERS = ["employee_id", *AMOUNT_COLUMNS, "payment_currency"]


def _amount(row: dict, column: str, line: int) -> Decimal:
    raw = (row.get(column) or "").strip()
    if not raw:
        return Decimal("0")
    try:
        return Decimal(raw)
    except InvalidOperation as exc:
        raise ValidationError(f"Line {line}: {column} is not a number: {raw!r}") from exc


def import_period_inputs(path: Path) -> list[PeriodInput]:
    """Read one row per employee; ``allowance:<name>`` columns become itemised allowances."""
    inputs: list[PeriodInput] = []
    try:
        handle = path.open(newline="")
    except OSError as exc:
        raise ValidationError(f"Cannot read {path}: {exc.strerror}") from exc
    with handle:
        reader = csv.DictReader(handle)
        if not reader.fieldnames or "employee_id" not in reader.fieldnames:
            raise ValidationError(f"{path} has no employee_id column")
        allowance_columns = [c for c in reader.fieldnames if c.startswith(ALLOWANCE_PREFIX)]
        for line, row in enumerate(reader, start=2):
            employee_id = (row.get("employee_id") or "").strip()
            if not employee_id:
                raise ValidationError(f"Line {line}: employee_id is empty")
            allowances = {
                column[len(ALLOWANCE_PREFIX):]: _amount(row, column, line)
                for column in allowance_columns
                if (row.get(column) or "").strip()
            }
            inputs.append(
                PeriodInput(
                    employee_id=employee_id,
                    allowances=allowances,
                    payment_currency=(row.get("payment_currency") or "").strip() or None,
                    **{column: _amount(row, column, line) for column in AMOUNT_COLUMNS},
                )
            )
    return inputs
