from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
from typing import Any, Dict, Tuple


@dataclass(frozen=True)
class Holding:
    """One top-weighted security in a fund portfolio."""
    code: str  # 6 digits (mainland) or 5 digits (Hong Kong) when recognised
    name: str
    weight: str = ""  # "<number>%" or "" when unparsed
    change: float | None = None  # Same-day change percent


@dataclass(frozen=True)
class FundQuote:
    """Official net value as reported by the Tencent fund quote."""
    name: str
    nav: str
    nav_change_percent: float | None
    nav_date: str


@dataclass(frozen=True)
class FundSnapshot:
    """Unified fund valuation record: estimate, official value and holdings."""
    code: str
    name: str
    nav: str | None  # Latest official net value (dwjz)
    nav_date: str  # Official net value date (jzrq)
    estimated_nav: str | None = None  # Live estimate (gsz)
    estimate_time: str | None = None  # Estimate timestamp (gztime)
    estimated_change_percent: float | str | None = None  # gszzl
    nav_change_percent: float | None = None  # Official day change (zzl)
    no_valuation: bool = False
    holdings: Tuple[Holding, ...] = field(default_factory=tuple)

    def with_official_quote(self, quote: FundQuote) -> FundSnapshot:
        """Copy with the official value fields taken from ``quote``."""
        return replace(
            self,
            nav=quote.nav,
            nav_date=quote.nav_date,
            nav_change_percent=quote.nav_change_percent,
        )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["holdings"] = [asdict(h) for h in self.holdings]
        return data


@dataclass(frozen=True)
class HistoryPoint:
    """Official net value on one calendar date."""
    date: str  # YYYY-MM-DD
    value: float


@dataclass(frozen=True)
class ReleaseInfo:
    """Latest published release of the upstream application."""
    tag_name: str
    body: str = ""
