from __future__ import annotations

from typing import Any, List
from datetime import date
import asyncio
import re

from dateutil.relativedelta import relativedelta

from fundhub.core.config import settings
from fundhub.core.logging_config import (
    log_fetch_start,
    log_fetch_complete,
    log_fetch_error,
)

from .core import (
    F10_DATA_API_URL,
    NO_DATA_MARKER,
    is_fund_code,
    load_eastmoney_apidata,
    logger,
    parse_float_prefix,
    to_tz_date,
)
from .models import HistoryPoint
from .queues import SlotQueues
from .transport import CallbackTransport

_TD_RE = re.compile(r"<td[^>]*>(.*?)</td>")
_TAG_RE = re.compile(r"<[^>]+>")
_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")

VALID_UNITS = ("day", "month")


def parse_history_rows(rows: List[str]) -> List[HistoryPoint]:
    """
    History points from the ``<tr>``-split rows of one lsjz page.

    Only rows with at least 4 cells, a valid YYYY-MM-DD date and a positive
    net value are kept.
    """
    points: List[HistoryPoint] = []
    for row in rows:
        cells = _TD_RE.findall(row)
        if len(cells) < 4:
            continue
        date_str = _TAG_RE.sub("", cells[0]).strip()
        if not _DATE_RE.match(date_str):
            continue
        try:
            date.fromisoformat(date_str)
        except ValueError:
            continue
        value = parse_float_prefix(_TAG_RE.sub("", cells[1]).strip())
        if value is not None and value > 0:
            points.append(HistoryPoint(date=date_str, value=value))
    return points


def history_start_date(end: date, span: int, unit: str = "month") -> date:
    """``end`` minus ``span`` days, or months with end-of-month clamping."""
    if unit not in VALID_UNITS:
        raise ValueError(f"Unknown span unit {unit!r}")
    if unit == "day":
        return end - relativedelta(days=span)
    return end - relativedelta(months=span)


class HistoryService:
    """Paginated historical net value series."""

    def __init__(
        self,
        transport: CallbackTransport,
        queues: SlotQueues,
        page_size: int | None = None,
        max_pages: int | None = None,
        page_delay: float | None = None,
    ) -> None:
        self.transport = transport
        self.queues = queues
        self.page_size = page_size or settings.history_page_size
        self.max_pages = max_pages or settings.history_max_pages
        self.page_delay = settings.history_page_delay_seconds if page_delay is None else page_delay

    async def fetch_fund_history_net_value(
        self,
        code: str,
        end_date: Any = None,
        span: int = 1,
        unit: str = "month",
    ) -> List[HistoryPoint]:
        """
        Net value series of ``code`` over ``span`` days/months ending at ``end_date``.

        Never raises: a transport failure ends pagination and whatever was
        collected so far is returned. Result is sorted ascending by date.
        """
        if not self.transport.available:
            return []
        if not is_fund_code(code):
            logger.warning(f"History skipped for invalid code {code!r}")
            return []
        try:
            end = to_tz_date(end_date)
            start_str = history_start_date(end, span, unit).isoformat()
        except ValueError as e:
            logger.warning(f"Invalid history range for {code} (end={end_date!r}, unit={unit!r}): {e}")
            return []
        end_str = end.isoformat()

        task_name = f"History {code}"
        log_fetch_start(task_name, f"{start_str} -> {end_str}")

        points: List[HistoryPoint] = []
        page = 1
        try:
            while True:
                url = (
                    f"{F10_DATA_API_URL}?type=lsjz&code={code}&page={page}&per={self.page_size}"
                    f"&sdate={start_str}&edate={end_str}"
                )
                apidata = await load_eastmoney_apidata(self.transport, self.queues, url)
                content = (apidata or {}).get("content")
                if not content:
                    break

                content = str(content)
                if NO_DATA_MARKER in content:
                    if page == 1:
                        log_fetch_complete(task_name, "no data")
                        return []
                    break

                rows = content.split("<tr>")
                page_points = parse_history_rows(rows)
                if not page_points:
                    break
                points.extend(page_points)

                # header-only or single-row page: end of range
                if len(rows) <= 2:
                    break

                page += 1
                if page > self.max_pages:
                    logger.warning(f"History for {code} stopped at page cap {self.max_pages}")
                    break

                await asyncio.sleep(self.page_delay)
        except Exception as e:
            log_fetch_error(task_name, f"page {page}: {type(e).__name__}: {e}")

        points.sort(key=lambda p: p.date)
        log_fetch_complete(task_name, f"{len(points)} points over {page} page(s)")
        return points
