from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Iterable, List, Optional, TypeVar

from .config import Settings, get_settings
from .errors import NoActiveRateTable
from .logging import get_logger
from .models import ContributionRate, PayFrequency, TaxTable
from .repositories import RateTableRepository

logger = get_logger(__name__)

Record = TypeVar("Record", TaxTable, ContributionRate)


class RateTableResolver:
    """Picks the single active, effective-dated rate record for a key and reference date."""

    def __init__(self, repository: RateTableRepository, settings: Optional[Settings] = None):
        self.repository = repository
        self.settings = settings or get_settings()

    def tax_table(self, tenant_id: str, currency: str, frequency: PayFrequency, as_of: date) -> TaxTable:
        frequency = PayFrequency(frequency)
        candidates = self.repository.tax_tables(tenant_id, currency, frequency)
        return self._single(candidates, as_of, "tax table", f"{tenant_id}/{currency}/{frequency.value}")

    def contribution_rate(self, tenant_id: str, currency: str, as_of: date) -> ContributionRate:
        candidates = self.repository.contribution_rates(tenant_id, currency)
        return self._single(candidates, as_of, "contribution rate", f"{tenant_id}/{currency}")

    def levy_rate(self, tenant_id: str) -> Decimal:
        configured = self.repository.levy_rate(tenant_id)
        return self.settings.default_levy_rate if configured is None else configured

    @staticmethod
    def _single(candidates: Iterable[Record], as_of: date, kind: str, key: str) -> Record:
        matches: List[Record] = [record for record in candidates if record.is_effective(as_of)]
        if len(matches) != 1:
            logger.warning("rate_table_unresolved", kind=kind, key=key, as_of=as_of.isoformat(), matches=len(matches))
            raise NoActiveRateTable(kind, key, as_of, matches=len(matches))
        return matches[0]
