from decimal import Decimal

import pytest

from payroll_engine.csv_io import import_period_inputs
from payroll_engine.errors import ValidationError


def write_csv(tmp_path, content: str):
    path = tmp_path / "inputs.csv"
    path.write_text(content, encoding="utf-8")
    return path


def test_rows_become_period_inputs(tmp_path):
    path = write_csv(
        tmp_path,
        "employee_id,basic_salary,allowance:housing,allowance:transport,pension,loan,payment_currency\n"
        "e1,1000,200,50,50,30,ZWL\n"
        "e2,800,,,,,\n",
    )

    first, second = import_period_inputs(path)

    assert first.employee_id == "e1"
    assert first.allowances == {"housing": Decimal("200"), "transport": Decimal("50")}
    assert first.gross == Decimal("1250")
    assert first.payment_currency == "ZWL"
    assert second.allowances == {}
    assert second.loan == 0
    assert second.payment_currency is None


def test_bad_number_names_the_line(tmp_path):
    path = write_csv(tmp_path, "employee_id,basic_salary\ne1,1000\ne2,lots\n")

    with pytest.raises(ValidationError, match="Line 3"):
        import_period_inputs(path)


def test_missing_employee_id_column(tmp_path):
    path = write_csv(tmp_path, "name,basic_salary\nAnna,1000\n")

    with pytest.raises(ValidationError):
        import_period_inputs(path)


def test_blank_employee_id(tmp_path):
    path = write_csv(tmp_path, "employee_id,basic_salary\n ,1000\n")

    with pytest.raises(ValidationError, match="employee_id is empty"):
        import_period_inputs(path)


def test_missing_file_is_a_validation_error(tmp_path):
    with pytest.raises(ValidationError, match="Cannot read"):
        import_period_inputs(tmp_path / "absent.csv")
