from __future__ import annotations

from dataclasses import replace
from datetime import timedelta
from typing import Any
import asyncio
import re

from fundhub.core.config import settings
from fundhub.core.exceptions import (
    CallbackTimeoutError,
    DataUnavailableError,
    InvalidFundCodeError,
    LoadFailureError,
    NoEnvironmentError,
)

from .core import (
    F10_DATA_API_URL,
    NO_DATA_MARKER,
    is_fund_code,
    load_eastmoney_apidata,
    load_fund_gz_data,
    load_tencent_quotes,
    logger,
    now_in_tz,
    parse_finite_number,
    parse_float_prefix,
    split_quote_fields,
    to_tz_date,
)
from .holdings import HoldingsService
from .models import FundQuote, FundSnapshot, HistoryPoint
from .queues import SlotQueues
from .search import SearchService
from .transport import CallbackTransport

_TD_RE = re.compile(r"<td[^>]*>(.*?)</td>")
_TAG_RE = re.compile(r"<[^>]+>")


def parse_fund_quote(payload: Any) -> FundQuote | None:
    """
    Parse a Tencent ``v_jj<code>`` payload.

    Field 1 is the name, 5 the official net value, 7 the change percent and
    8 the official date (first 10 characters kept).
    """
    fields = split_quote_fields(payload)
    if not fields:
        return None

    def field_at(i: int) -> str:
        return fields[i] if i < len(fields) else ""

    return FundQuote(
        name=field_at(1),
        nav=field_at(5),
        nav_change_percent=parse_float_prefix(field_at(7)),
        nav_date=field_at(8)[:10],
    )


def merge_official_quote(snapshot: FundSnapshot, quote: FundQuote | None) -> FundSnapshot:
    """
    Take the official value from ``quote`` when it is at least as recent.

    Equal dates prefer the quote. A quote without a date never wins.
    """
    if quote is None or not quote.nav_date:
        return snapshot
    if not snapshot.nav_date or quote.nav_date >= snapshot.nav_date:
        return snapshot.with_official_quote(quote)
    return snapshot


def parse_net_value_row(content: str, date_str: str) -> float | None:
    """Net value from the row whose date cell equals ``date_str``."""
    if NO_DATA_MARKER in content:
        return None
    for row in content.split("<tr>"):
        if f"<td>{date_str}</td>" not in row:
            continue
        cells = _TD_RE.findall(row)
        if len(cells) >= 2:
            return parse_float_prefix(_TAG_RE.sub("", cells[1]))
    return None


class ValuationService:
    """Live estimate, official value reconciliation and net value lookups."""

    def __init__(
        self,
        transport: CallbackTransport,
        queues: SlotQueues,
        holdings: HoldingsService,
        search: SearchService,
    ) -> None:
        self.transport = transport
        self.queues = queues
        self.holdings = holdings
        self.search = search

    async def fetch_fund_data(self, code: str) -> FundSnapshot:
        """
        Fetch a fund snapshot: live estimate, official value and holdings.

        Falls back to ``fetch_fund_data_fallback`` when the estimate cannot
        be loaded or is not an object. Raises when the fund cannot be
        resolved at all.
        """
        if not is_fund_code(code):
            raise InvalidFundCodeError(code)
        if not self.transport.available:
            raise NoEnvironmentError()

        try:
            payload = await load_fund_gz_data(
                self.transport, self.queues, code, settings.fund_gz_timeout_ms
            )
        except (LoadFailureError, CallbackTimeoutError) as e:
            logger.info(f"Estimate unavailable for {code} ({type(e).__name__}), using fallback")
            return await self.fetch_fund_data_fallback(code)

        if not isinstance(payload, dict):
            logger.info(f"Estimate payload for {code} is empty, using fallback")
            return await self.fetch_fund_data_fallback(code)

        gszzl = payload.get("gszzl")
        gszzl_num = parse_finite_number(gszzl)
        snapshot = FundSnapshot(
            code=str(payload.get("fundcode") or code),
            name=str(payload.get("name") or ""),
            nav=payload.get("dwjz"),
            nav_date=str(payload.get("jzrq") or ""),
            estimated_nav=payload.get("gsz"),
            estimate_time=payload.get("gztime"),
            estimated_change_percent=gszzl_num if gszzl_num is not None else gszzl,
        )

        quote, holdings = await asyncio.gather(
            self.fetch_official_quote(code),
            self.holdings.fetch_holdings(code),
        )
        merged = merge_official_quote(snapshot, quote)
        return replace(merged, holdings=tuple(holdings))

    async def fetch_official_quote(self, code: str) -> FundQuote | None:
        """Tencent fund quote for ``code``; None on any failure."""
        if not is_fund_code(code):
            return None
        try:
            payloads = await load_tencent_quotes(
                self.transport, self.queues, [f"jj{code}"], guard=f"v_jj{code}"
            )
        except Exception as e:
            logger.warning(f"Error fetching official quote for {code}: {type(e).__name__}: {e}")
            return None
        return parse_fund_quote(payloads.get(f"jj{code}"))

    async def fetch_fund_data_fallback(self, code: str) -> FundSnapshot:
        """
        Official-only snapshot from the search and quote endpoints.

        Raises ``DataUnavailableError`` when the quote carries no net value.
        """
        if not is_fund_code(code):
            raise InvalidFundCodeError(code)
        if not self.transport.available:
            raise NoEnvironmentError()

        fund_name = ""
        try:
            entries = await self.search.search_raw(
                code,
                prefix="SuggestData_fallback_",
                timeout_ms=settings.fallback_search_timeout_ms,
            )
            found = next((d for d in entries if isinstance(d, dict) and d.get("CODE") == code), None)
            if found:
                fund_name = found.get("NAME") or found.get("SHORTNAME") or ""
        except Exception as e:
            logger.debug(f"Fallback name search failed for {code}: {type(e).__name__}: {e}")

        payloads = await load_tencent_quotes(
            self.transport, self.queues, [f"jj{code}"], guard=f"v_jj{code}"
        )
        raw = payloads.get(f"jj{code}")
        quote = parse_fund_quote(raw) if isinstance(raw, str) and len(raw) > 5 else None
        if quote is None or not quote.nav:
            raise DataUnavailableError(f"No fund data available for {code}")

        return FundSnapshot(
            code=code,
            name=fund_name or quote.name or f"未知基金({code})",
            nav=quote.nav,
            nav_date=quote.nav_date,
            nav_change_percent=quote.nav_change_percent,
            no_valuation=True,
        )

    async def fetch_fund_net_value(self, code: str, date_str: str) -> float | None:
        """Official net value of ``code`` on exactly ``date_str``; never raises."""
        if not self.transport.available or not is_fund_code(code):
            return None
        url = (
            f"{F10_DATA_API_URL}?type=lsjz&code={code}&page=1&per=1"
            f"&sdate={date_str}&edate={date_str}"
        )
        try:
            apidata = await load_eastmoney_apidata(self.transport, self.queues, url)
        except Exception as e:
            logger.debug(f"Net value lookup failed for {code} on {date_str}: {type(e).__name__}: {e}")
            return None
        content = (apidata or {}).get("content")
        if not content:
            return None
        return parse_net_value_row(str(content), date_str)

    async def fetch_smart_fund_net_value(self, code: str, start_date: Any) -> HistoryPoint | None:
        """
        First published net value on or after ``start_date``.

        Probes one calendar day at a time in the reporting time zone, never
        past today, at most ``smart_probe_max_days`` probes.
        """
        if not is_fund_code(code):
            logger.warning(f"Smart net value lookup skipped for invalid code {code!r}")
            return None
        today = now_in_tz().date()
        try:
            current = to_tz_date(start_date)
        except ValueError as e:
            logger.warning(f"Invalid start date {start_date!r} for {code}: {e}")
            return None

        for _ in range(settings.smart_probe_max_days):
            if current > today:
                break
            date_str = current.isoformat()
            value = await self.fetch_fund_net_value(code, date_str)
            if value is not None:
                return HistoryPoint(date=date_str, value=value)
            current += timedelta(days=1)
        return None
