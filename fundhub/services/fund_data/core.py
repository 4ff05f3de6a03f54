"""
Shared utilities and infrastructure for the fund data service.
"""
from __future__ import annotations

from typing import Any, Dict, List
from datetime import date, datetime
from zoneinfo import ZoneInfo
import math
import re
import time

from fundhub.core.config import settings
from fundhub.core.logging_config import get_main_logger, get_transport_logger

from .queues import SlotQueues
from .transport import CallbackTransport

# Initialize loggers
logger = get_main_logger()
transport_logger = get_transport_logger()

# Provider endpoints
FUND_GZ_URL = "https://fundgz.1234567.com.cn/js"
F10_DATA_API_URL = "https://fundf10.eastmoney.com/F10DataApi.aspx"
FUND_ARCHIVES_URL = "https://fundf10.eastmoney.com/FundArchivesDatas.aspx"
FUND_SEARCH_URL = "https://fundsuggest.eastmoney.com/FundSearch/api/FundSearchAPI.ashx"
TENCENT_QUOTE_URL = "https://qt.gtimg.cn/q="

# Shared global names written by provider scripts
APIDATA_BINDING = "apidata"
JSONPGZ_BINDING = "jsonpgz"
STOCK_QUOTE_BINDING = "v_s"

NO_DATA_MARKER = "暂无数据"

# Fund codes are interpolated into provider URLs and global binding names
FUND_CODE_PATTERN = r"^\d{6}$"
_FUND_CODE_RE = re.compile(FUND_CODE_PATTERN)

_FLOAT_PREFIX_RE = re.compile(r"\s*([+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)")


def is_fund_code(code: Any) -> bool:
    return isinstance(code, str) and _FUND_CODE_RE.fullmatch(code) is not None


def now_millis() -> int:
    """Epoch milliseconds, used as a cache-busting query value."""
    return int(time.time() * 1000)


def reporting_tz() -> ZoneInfo:
    return ZoneInfo(settings.reporting_timezone)


def now_in_tz() -> datetime:
    """Current wall-clock time in the reporting time zone."""
    return datetime.now(reporting_tz())


def to_tz_date(value: str | date | datetime | None) -> date:
    """Calendar date of ``value`` in the reporting time zone (today when None)."""
    if value is None:
        return now_in_tz().date()
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            return value.astimezone(reporting_tz()).date()
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value).strip()[:10])


def parse_float_prefix(value: Any) -> float | None:
    """
    Parse the leading number of ``value`` ("1.23%" -> 1.23).

    Returns None when there is no leading number or it is not finite.
    """
    if value is None:
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value) if math.isfinite(value) else None
    match = _FLOAT_PREFIX_RE.match(str(value))
    if not match:
        return None
    number = float(match.group(1))
    return number if math.isfinite(number) else None


def parse_finite_number(value: Any) -> float | None:
    """Strict numeric conversion of a whole value; None unless finite."""
    if isinstance(value, bool) or value is None:
        return None
    try:
        number = float(str(value).strip()) if isinstance(value, str) else float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def split_quote_fields(payload: Any) -> List[str]:
    """Split a Tencent '~'-delimited quote payload; [] when absent."""
    if not isinstance(payload, str) or not payload:
        return []
    return payload.split("~")


async def load_eastmoney_apidata(
    transport: CallbackTransport,
    queues: SlotQueues,
    url: str,
) -> Dict[str, Any] | None:
    """Load an F10 page through the ``apidata`` slot and take its result."""
    async def task() -> Dict[str, Any] | None:
        # drop anything a previous page left behind
        transport.pop_global(APIDATA_BINDING)
        await transport.load_script(url)
        result = transport.pop_global(APIDATA_BINDING)
        if result is None:
            transport_logger.debug(f"No apidata binding after {url}")
        return dict(result) if isinstance(result, dict) else None

    return await queues.apidata.run(task)


async def load_fund_gz_data(
    transport: CallbackTransport,
    queues: SlotQueues,
    code: str,
    timeout_ms: int,
) -> Any:
    """Load the live estimate through the ``jsonpgz`` slot."""
    url = f"{FUND_GZ_URL}/{code}.js?rt={now_millis()}"
    return await queues.jsonpgz.run(
        lambda: transport.load_jsonp(
            url,
            callback_param=None,
            callback_name=JSONPGZ_BINDING,
            timeout_ms=timeout_ms,
        )
    )


async def load_tencent_quotes(
    transport: CallbackTransport,
    queues: SlotQueues,
    symbols: List[str],
    guard: str,
    extra_query: str = "",
) -> Dict[str, Any]:
    """
    Load a batch of Tencent quotes and take each ``v_<symbol>`` binding.

    ``guard`` names the binding queue that serializes loads writing the
    same globals.
    """
    url = f"{TENCENT_QUOTE_URL}{','.join(symbols)}{extra_query}"

    async def task() -> Dict[str, Any]:
        for symbol in symbols:
            transport.pop_global(f"v_{symbol}")
        await transport.load_script(url)
        transport_logger.debug(f"Quotes loaded for {len(symbols)} symbol(s) via {guard}")
        return {symbol: transport.pop_global(f"v_{symbol}") for symbol in symbols}

    return await queues.for_binding(guard).run(task)
