from dataclasses import replace
from datetime import date
from decimal import Decimal

import pytest

from payroll_engine.errors import NoActiveRateTable
from payroll_engine.models import PayFrequency
from payroll_engine.repositories import InMemoryPayrollStore
from payroll_engine.resolver import RateTableResolver

from conftest import TENANT


def monthly_usd(store):
    return store.tax_tables(TENANT, "USD", PayFrequency.MONTHLY)[0]


def test_resolves_the_seeded_table(store, settings):
    table = RateTableResolver(store, settings).tax_table(TENANT, "USD", PayFrequency.MONTHLY, date(2025, 6, 30))

    assert table.currency == "USD"
    assert table.pay_frequency is PayFrequency.MONTHLY


def test_missing_currency_raises(store, settings):
    with pytest.raises(NoActiveRateTable) as excinfo:
        RateTableResolver(store, settings).tax_table(TENANT, "EUR", PayFrequency.MONTHLY, date(2025, 6, 30))

    assert excinfo.value.matches == 0


def test_date_before_effective_from_raises(store, settings):
    with pytest.raises(NoActiveRateTable):
        RateTableResolver(store, settings).tax_table(TENANT, "USD", PayFrequency.MONTHLY, date(2024, 12, 31))


def test_effective_to_is_inclusive(store, settings):
    table = monthly_usd(store)
    store.add_tax_table(replace(table, effective_to=date(2025, 3, 31)))
    resolver = RateTableResolver(store, settings)

    assert resolver.tax_table(TENANT, "USD", PayFrequency.MONTHLY, date(2025, 3, 31)).id == table.id
    with pytest.raises(NoActiveRateTable):
        resolver.tax_table(TENANT, "USD", PayFrequency.MONTHLY, date(2025, 4, 1))


def test_inactive_tables_are_ignored(store, settings):
    store.add_tax_table(replace(monthly_usd(store), active=False))

    with pytest.raises(NoActiveRateTable):
        RateTableResolver(store, settings).tax_table(TENANT, "USD", PayFrequency.MONTHLY, date(2025, 6, 30))


def test_ambiguous_tables_raise_instead_of_picking_one(store, settings):
    store.add_tax_table(replace(monthly_usd(store), id="duplicate"))

    with pytest.raises(NoActiveRateTable) as excinfo:
        RateTableResolver(store, settings).tax_table(TENANT, "USD", PayFrequency.MONTHLY, date(2025, 6, 30))

    assert excinfo.value.matches == 2


def test_contribution_rate_is_resolved(store, settings):
    rate = RateTableResolver(store, settings).contribution_rate(TENANT, "USD", date(2025, 6, 30))

    assert rate.cap == Decimal("1000")


def test_levy_falls_back_to_settings(settings):
    resolver = RateTableResolver(InMemoryPayrollStore(), settings)

    assert resolver.levy_rate("unconfigured") == Decimal("0.03")


def test_tenant_levy_overrides_default(store, settings):
    store.set_levy_rate(TENANT, "0.05")

    assert RateTableResolver(store, settings).levy_rate(TENANT) == Decimal("0.05")
