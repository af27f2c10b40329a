from datetime import date
from decimal import Decimal

import pytest

from payroll_engine.errors import InvalidTaxTable
from payroll_engine.models import ContributionRate, PayFrequency, TaxBracket, TaxTable
from payroll_engine.repositories import InMemoryPayrollStore
from payroll_engine.tax_tables import (
    ReferenceRateRepository,
    register_contribution_rate,
    register_tax_table,
    seed_tenant,
    validate_brackets,
)

from conftest import KNOWN_DECREASES


def bracket(low, high, rate, deduct="0") -> TaxBracket:
    return TaxBracket.from_dict({"min": low, "max": high, "rate": rate, "deduct": deduct})


def build_table(table_id="t1", effective_from=date(2025, 1, 1), effective_to=None, brackets=None) -> TaxTable:
    return TaxTable(
        id=table_id,
        tenant_id="acme",
        name="custom",
        currency="USD",
        pay_frequency=PayFrequency.MONTHLY,
        brackets=tuple(brackets or [bracket("0", "100", "0"), bracket("100.01", None, "0.20", "20")]),
        effective_from=effective_from,
        effective_to=effective_to,
    )


def test_reference_tables_are_listed_and_loaded():
    repo = ReferenceRateRepository()

    assert "zimra_2025" in repo.available_versions()
    reference = repo.load()
    brackets = reference.brackets_for("USD", PayFrequency.MONTHLY)
    assert [b.min for b in brackets] == [Decimal(v) for v in ("0", "100.01", "300.01", "1000.01", "2000.01", "3000.01")]
    assert brackets[-1].max is None
    assert reference.levy_rate == Decimal("0.03")


def test_unknown_version_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        ReferenceRateRepository(tmp_path).load("missing")


def test_usd_monthly_reference_is_continuous(settings):
    brackets = ReferenceRateRepository().load().brackets_for("USD", "MONTHLY")

    assert validate_brackets(brackets, settings=settings) == []


def test_zwl_fortnightly_jumps_are_reported(settings):
    brackets = ReferenceRateRepository().load().brackets_for("ZWL", PayFrequency.FORTNIGHTLY)

    findings = validate_brackets(brackets, settings=settings)

    assert [f.upper.min for f in findings] == [Decimal("3876.93"), Decimal("12923.09"), Decimal("25846.16")]
    assert findings[0].jump == Decimal("-0.0015")
    assert findings[1].jump == Decimal("2.007")
    assert [f.decreasing for f in findings] == [True, False, True]


@pytest.mark.parametrize("table", sorted(KNOWN_DECREASES), ids="-".join)
def test_every_drop_in_reference_tables_is_reported(table, settings):
    brackets = ReferenceRateRepository().load().brackets_for(*table)

    findings = validate_brackets(brackets, settings=settings)

    assert {f.upper.min for f in findings if f.decreasing} == KNOWN_DECREASES[table]


def test_small_drop_is_reported_below_tolerance(settings):
    brackets = [bracket("0", "100", "0.1"), bracket("100.01", None, "0.2", "10.01")]

    findings = validate_brackets(brackets, continuity_tolerance="0.50", settings=settings)

    assert len(findings) == 1
    assert findings[0].decreasing
    assert findings[0].jump == Decimal("-0.008")


def test_strict_continuity_rejects_jumps(settings):
    brackets = ReferenceRateRepository().load().brackets_for("ZWL", PayFrequency.FORTNIGHTLY)

    with pytest.raises(InvalidTaxTable):
        validate_brackets(brackets, strict_continuity=True, settings=settings)


@pytest.mark.parametrize(
    "brackets",
    [
        [],
        [bracket("10", None, "0.2")],
        [bracket("0", "100", "0"), bracket("100.01", "200", "0.2")],
        [bracket("0", "100", "0"), bracket("90", None, "0.2", "20")],
        [bracket("0", "100", "0"), bracket("150", None, "0.2", "20")],
        [bracket("0", "100", "-0.1"), bracket("100.01", None, "0.2", "20")],
        [bracket("0", None, "0"), bracket("100.01", None, "0.2", "20")],
        [bracket("0", "100", "0.1", "5"), bracket("100.01", None, "0.2", "2")],
    ],
    ids=["empty", "not-from-zero", "bounded-top", "overlap", "gap", "negative-rate", "unbounded-middle", "deduct-falls"],
)
def test_structural_problems_are_rejected(brackets, settings):
    with pytest.raises(InvalidTaxTable):
        validate_brackets(brackets, settings=settings)


def test_overlapping_active_tables_are_refused(settings):
    store = InMemoryPayrollStore()
    register_tax_table(store, build_table("t1"), settings=settings)

    with pytest.raises(InvalidTaxTable):
        register_tax_table(store, build_table("t2", effective_from=date(2025, 6, 1)), settings=settings)


def test_successive_tables_are_accepted(settings):
    store = InMemoryPayrollStore()
    register_tax_table(store, build_table("t1", effective_to=date(2025, 6, 30)), settings=settings)
    register_tax_table(store, build_table("t2", effective_from=date(2025, 7, 1)), settings=settings)

    assert len(store.tax_tables("acme", "USD", PayFrequency.MONTHLY)) == 2


def test_negative_contribution_cap_is_refused():
    rate = ContributionRate(
        id="c1",
        tenant_id="acme",
        currency="USD",
        employee_rate=Decimal("0.03"),
        employer_rate=Decimal("0.035"),
        cap=Decimal("-1"),
        effective_from=date(2025, 1, 1),
    )

    with pytest.raises(InvalidTaxTable):
        register_contribution_rate(InMemoryPayrollStore(), rate)


def test_seed_tenant_installs_reference_records(settings):
    store = InMemoryPayrollStore()

    created = seed_tenant(store, "acme", date(2025, 1, 1), settings=settings)

    assert created == 8
    assert len(store.tax_table_records) == 6
    assert store.levy_rate("acme") == Decimal("0.03")
    assert store.contribution_rates("acme", "ZWL")[0].cap == Decimal("30000")
