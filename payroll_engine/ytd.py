from __future__ import annotations

from dataclasses import replace

from .errors import ValidationError
from .models import YtdSnapshot, to_decimal


class YtdAccumulator:
    """Rolls year-to-date totals forward.

    ``accumulate`` only adds; it never looks at the year. ``roll_forward`` resets when
    a later tax year starts and refuses periods from a year that is already closed.
    """

    @staticmethod
    def requires_reset(snapshot: YtdSnapshot, year: int) -> bool:
        return snapshot.year is not None and year > snapshot.year

    @staticmethod
    def reset(year: int) -> YtdSnapshot:
        return YtdSnapshot(year=year)

    @staticmethod
    def check_year(snapshot: YtdSnapshot, year: int) -> None:
        if snapshot.year is not None and year < snapshot.year:
            raise ValidationError(
                f"Period in {year} is earlier than the year-to-date totals for {snapshot.year}"
            )

    def accumulate(self, snapshot: YtdSnapshot, *, year: int, gross, taxable, tax, contribution, net) -> YtdSnapshot:
        return replace(
            snapshot,
            year=year,
            gross=snapshot.gross + to_decimal(gross),
            taxable=snapshot.taxable + to_decimal(taxable),
            tax=snapshot.tax + to_decimal(tax),
            contribution=snapshot.contribution + to_decimal(contribution),
            net=snapshot.net + to_decimal(net),
        )

    def roll_forward(self, snapshot: YtdSnapshot, *, year: int, **amounts) -> YtdSnapshot:
        self.check_year(snapshot, year)
        if self.requires_reset(snapshot, year):
            snapshot = self.reset(year)
        return self.accumulate(snapshot, year=year, **amounts)
