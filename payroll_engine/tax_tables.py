"""Rate configuration: typed brackets, write-time validation and the bundled reference tables."""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence

from .config import Settings, get_settings
from .errors import InvalidTaxTable
from .logging import get_logger
from .models import ContributionRate, PayFrequency, TaxBracket, TaxTable, to_decimal

logger = get_logger(__name__)

DEFAULT_RATE_TABLE_DIR = Path(__file__).resolve().parent / "data" / "rate_tables"
DEFAULT_RATE_TABLE_VERSION = "zimra_2025"


@dataclass(frozen=True)
class Discontinuity:
    """Tax change between the top of one bracket and the bottom of the next."""

    lower: TaxBracket
    upper: TaxBracket
    tax_below: Decimal
    tax_above: Decimal

    @property
    def jump(self) -> Decimal:
        return self.tax_above - self.tax_below

    @property
    def decreasing(self) -> bool:
        return self.tax_above < self.tax_below


def validate_brackets(
    brackets: Sequence[TaxBracket],
    *,
    max_gap=None,
    continuity_tolerance=None,
    strict_continuity: Optional[bool] = None,
    settings: Optional[Settings] = None,
) -> List[Discontinuity]:
    """Check that brackets partition [0, inf) and return any continuity findings.

    Structural problems (ordering, overlaps, gaps wider than ``max_gap``, negative
    rates or deducts, a bounded top bracket, deducts that fall as rates rise) raise
    ``InvalidTaxTable``. Any drop in tax at a boundary, and any rise larger than
    ``continuity_tolerance``, are returned as findings; they raise only in strict mode.
    """
    settings = settings or get_settings()
    max_gap = to_decimal(settings.max_bracket_gap if max_gap is None else max_gap)
    tolerance = to_decimal(settings.continuity_tolerance if continuity_tolerance is None else continuity_tolerance)
    strict = settings.strict_bracket_continuity if strict_continuity is None else strict_continuity

    if not brackets:
        raise InvalidTaxTable("A tax table needs at least one bracket")
    if brackets[0].min != 0:
        raise InvalidTaxTable(f"First bracket must start at 0, not {brackets[0].min}")
    if brackets[-1].max is not None:
        raise InvalidTaxTable("Top bracket must be unbounded")

    for bracket in brackets:
        if bracket.rate < 0:
            raise InvalidTaxTable(f"Bracket starting at {bracket.min} has a negative rate")
        if bracket.deduct < 0:
            raise InvalidTaxTable(f"Bracket starting at {bracket.min} has a negative deduct")
        if bracket.max is not None and bracket.max < bracket.min:
            raise InvalidTaxTable(f"Bracket {bracket.min}-{bracket.max} ends before it starts")

    findings: List[Discontinuity] = []
    for lower, upper in zip(brackets, brackets[1:]):
        if lower.max is None:
            raise InvalidTaxTable(f"Only the top bracket may be unbounded (bracket at {lower.min})")
        gap = upper.min - lower.max
        if gap < 0:
            raise InvalidTaxTable(f"Brackets overlap at {upper.min} (previous ends at {lower.max})")
        if gap > max_gap:
            raise InvalidTaxTable(f"Gap of {gap} between {lower.max} and {upper.min}")
        if upper.rate > lower.rate and upper.deduct < lower.deduct:
            raise InvalidTaxTable(f"Deduct falls from {lower.deduct} to {upper.deduct} while the rate rises")

        tax_below = lower.tax_for(lower.max)
        tax_above = upper.tax_for(upper.min)
        if tax_above < tax_below or abs(tax_above - tax_below) > tolerance:
            finding = Discontinuity(lower=lower, upper=upper, tax_below=tax_below, tax_above=tax_above)
            if strict:
                raise InvalidTaxTable(
                    f"Tax changes by {finding.jump} between {lower.max} and {upper.min}"
                )
            findings.append(finding)
    return findings


def windows_overlap(a_from: date, a_to: Optional[date], b_from: date, b_to: Optional[date]) -> bool:
    return (b_to is None or a_from <= b_to) and (a_to is None or b_from <= a_to)


def check_single_active(candidate, existing: Iterable, kind: str) -> None:
    """Refuse a record whose effective window overlaps another active record for the same key."""
    if not candidate.active:
        return
    for other in existing:
        if other.id == candidate.id or not other.active:
            continue
        if windows_overlap(candidate.effective_from, candidate.effective_to, other.effective_from, other.effective_to):
            raise InvalidTaxTable(f"{kind} {candidate.id} overlaps active {kind} {other.id}")


@dataclass(frozen=True)
class ReferenceRates:
    version: str
    levy_rate: Decimal
    tax_brackets: Dict[str, Dict[PayFrequency, List[TaxBracket]]]
    contribution_rates: Dict[str, dict]

    def brackets_for(self, currency: str, frequency: PayFrequency) -> List[TaxBracket]:
        if currency not in self.tax_brackets:
            raise KeyError(f"Currency {currency} not configured in rate tables {self.version}")
        return list(self.tax_brackets[currency][PayFrequency(frequency)])


class ReferenceRateRepository:
    """Versioned rate configuration shipped as JSON files."""

    def __init__(self, base_path: Path = DEFAULT_RATE_TABLE_DIR):
        self.base_path = base_path

    def available_versions(self) -> List[str]:
        return sorted([p.stem for p in self.base_path.glob("*.json")])

    def load(self, version: str = DEFAULT_RATE_TABLE_VERSION) -> ReferenceRates:
        file_path = self.base_path / f"{version}.json"
        if not file_path.exists():
            raise FileNotFoundError(f"Rate table version {version} not found at {file_path}")
        with file_path.open("r", encoding="utf-8") as handle:
            data = json.load(handle)
        tax_brackets = {
            currency: {
                PayFrequency(frequency): [TaxBracket.from_dict(row) for row in rows]
                for frequency, rows in by_frequency.items()
            }
            for currency, by_frequency in data["tax_tables"].items()
        }
        return ReferenceRates(
            version=data["version"],
            levy_rate=to_decimal(data.get("levy_rate", "0.03")),
            tax_brackets=tax_brackets,
            contribution_rates=data.get("contribution_rates", {}),
        )


def register_tax_table(store, table: TaxTable, settings: Optional[Settings] = None) -> List[Discontinuity]:
    findings = validate_brackets(table.brackets, settings=settings)
    for finding in findings:
        logger.warning(
            "tax_table_not_monotonic" if finding.decreasing else "tax_table_discontinuity",
            table_id=table.id,
            boundary=str(finding.upper.min),
            jump=str(finding.jump),
        )
    check_single_active(table, store.tax_tables(table.tenant_id, table.currency, table.pay_frequency), "tax table")
    store.add_tax_table(table)
    return findings


def register_contribution_rate(store, rate: ContributionRate) -> None:
    if rate.employee_rate < 0 or rate.employer_rate < 0:
        raise InvalidTaxTable(f"Contribution rate {rate.id} has a negative rate")
    if rate.cap is not None and rate.cap < 0:
        raise InvalidTaxTable(f"Contribution rate {rate.id} has a negative cap")
    check_single_active(rate, store.contribution_rates(rate.tenant_id, rate.currency), "contribution rate")
    store.add_contribution_rate(rate)


def seed_tenant(
    store,
    tenant_id: str,
    effective_from: date,
    reference: Optional[ReferenceRates] = None,
    settings: Optional[Settings] = None,
) -> int:
    """Install the reference tax tables, contribution rates and levy for a tenant."""
    reference = reference or ReferenceRateRepository().load()
    created = 0
    for currency, by_frequency in reference.tax_brackets.items():
        for frequency, brackets in by_frequency.items():
            table = TaxTable(
                id=f"{tenant_id}:{currency}:{frequency.value}:{effective_from.isoformat()}",
                tenant_id=tenant_id,
                name=f"{reference.version} {currency} {frequency.value.title()}",
                currency=currency,
                pay_frequency=frequency,
                brackets=tuple(brackets),
                effective_from=effective_from,
            )
            register_tax_table(store, table, settings=settings)
            created += 1
    for currency, cfg in reference.contribution_rates.items():
        cap = cfg.get("cap")
        register_contribution_rate(
            store,
            ContributionRate(
                id=f"{tenant_id}:contribution:{currency}:{effective_from.isoformat()}",
                tenant_id=tenant_id,
                currency=currency,
                employee_rate=to_decimal(cfg["employee_rate"]),
                employer_rate=to_decimal(cfg["employer_rate"]),
                cap=None if cap is None else to_decimal(cap),
                effective_from=effective_from,
            ),
        )
        created += 1
    store.set_levy_rate(tenant_id, reference.levy_rate)
    logger.info("tenant_seeded", tenant_id=tenant_id, version=reference.version, records=created)
    return created
