# Overview: Calendar month value used to scope consignment periods.

from __future__ import annotations

from dataclasses import dataclass
from datetime import date

MONTH_NAMES = (
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
)


@dataclass(frozen=True, order=True)
class Period:
    """A billing month. Orders chronologically (year first)."""
    year: int
    month: int

    def __post_init__(self):
        if not 1 <= self.month <= 12:
            raise ValueError(f"month must be 1-12, got {self.month}")
        if self.year < 1:
            raise ValueError(f"year must be positive, got {self.year}")

    @classmethod
    def of(cls, month: int, year: int) -> "Period":
        return cls(year=year, month=month)

    @classmethod
    def containing(cls, day: date) -> "Period":
        return cls(year=day.year, month=day.month)

    @classmethod
    def parse(cls, value: str) -> "Period":
        """Parse "YYYY-MM"."""
        year_s, sep, month_s = value.strip().partition("-")
        if not sep:
            raise ValueError(f"period must be YYYY-MM, got {value!r}")
        return cls(year=int(year_s), month=int(month_s))

    def next(self) -> "Period":
        if self.month == 12:
            return Period(year=self.year + 1, month=1)
        return Period(year=self.year, month=self.month + 1)

    @property
    def label(self) -> str:
        return f"{MONTH_NAMES[self.month - 1]} {self.year}"

    def __str__(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"
