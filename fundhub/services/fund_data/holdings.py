from __future__ import annotations

from dataclasses import replace
from html import unescape
from typing import List
import re

from fundhub.core.config import settings

from .core import (
    FUND_ARCHIVES_URL,
    STOCK_QUOTE_BINDING,
    is_fund_code,
    load_eastmoney_apidata,
    load_tencent_quotes,
    logger,
    now_millis,
    parse_float_prefix,
    split_quote_fields,
)
from .models import Holding
from .queues import SlotQueues
from .transport import CallbackTransport

MAX_HOLDINGS = 10

_THEAD_ROW_RE = re.compile(r"<thead\b[\s\S]*?<tr\b[\s\S]*?</tr>[\s\S]*?</thead>", re.I)
_TH_RE = re.compile(r"<th\b[^>]*>([\s\S]*?)</th>", re.I)
_TBODY_RE = re.compile(r"<tbody\b[\s\S]*?</tbody>", re.I)
_TR_RE = re.compile(r"<tr\b[\s\S]*?</tr>", re.I)
_TD_RE = re.compile(r"<td\b[^>]*>([\s\S]*?)</td>", re.I)
_TAG_RE = re.compile(r"<[^>]*>")
_WS_RE = re.compile(r"\s+")

_CODE_RE = re.compile(r"(\d{6})")
_EXACT_CODE_RE = re.compile(r"^\d{6}$")
_HK_CODE_RE = re.compile(r"^\d{5}$")
_WEIGHT_RE = re.compile(r"(\d+(?:\.\d+)?)\s*%")
_BARE_NUMBER_RE = re.compile(r"^\d+(?:\.\d+)?$")

CODE_HEADERS = ("股票代码", "证券代码")
NAME_HEADERS = ("股票名称", "证券名称")
WEIGHT_HEADERS = ("占净值比例", "占比")


def _clean_cell(fragment: str) -> str:
    return unescape(_TAG_RE.sub("", fragment)).strip()


def _cell(cells: List[str], idx: int) -> str:
    return cells[idx] if 0 <= idx < len(cells) else ""


def _locate_columns(header_cells: List[str]) -> tuple[int, int, int]:
    idx_code = idx_name = idx_weight = -1
    for i, text in enumerate(header_cells):
        t = _WS_RE.sub("", text)
        if idx_code < 0 and any(h in t for h in CODE_HEADERS):
            idx_code = i
        if idx_name < 0 and any(h in t for h in NAME_HEADERS):
            idx_name = i
        if idx_weight < 0 and any(h in t for h in WEIGHT_HEADERS):
            idx_weight = i
    return idx_code, idx_name, idx_weight


def _pick_code(cells: List[str], idx_code: int) -> str:
    text = _cell(cells, idx_code)
    if text:
        m = _CODE_RE.search(text)
        return m.group(1) if m else text
    return next((c for c in cells if _EXACT_CODE_RE.match(c)), "")


def _pick_name(cells: List[str], idx_name: int, code: str) -> str:
    text = _cell(cells, idx_name)
    if text:
        return text
    if not code:
        return ""
    return next(
        (
            c for c in cells
            if c and c != code and not c.endswith("%") and not _BARE_NUMBER_RE.match(c)
        ),
        "",
    )


def _pick_weight(cells: List[str], idx_weight: int) -> str:
    text = _cell(cells, idx_weight)
    if not text:
        text = next((c for c in cells if _WEIGHT_RE.search(c)), "")
    m = _WEIGHT_RE.search(text)
    return f"{m.group(1)}%" if m else ""


def parse_holdings_table(html: str, limit: int = MAX_HOLDINGS) -> List[Holding]:
    """
    Extract the top holdings from an F10 holdings table.

    Columns are located by their Chinese header labels. When a label is
    missing, positional heuristics take over: a 6-digit cell is the code,
    the first other non-numeric, non-percentage cell is the name, and the
    first percentage cell is the weight. Holdings come back in table order
    without change data.
    """
    if not html:
        return []

    header = _THEAD_ROW_RE.search(html)
    header_cells = [_clean_cell(c) for c in _TH_RE.findall(header.group(0))] if header else []
    idx_code, idx_name, idx_weight = _locate_columns(header_cells)

    body = _TBODY_RE.search(html)
    rows = _TR_RE.findall(body.group(0) if body else html)

    holdings: List[Holding] = []
    for row in rows:
        cells = [_clean_cell(c) for c in _TD_RE.findall(row)]
        if not cells:
            continue
        code = _pick_code(cells, idx_code)
        name = _pick_name(cells, idx_name, code)
        weight = _pick_weight(cells, idx_weight)
        if code or name or weight:
            holdings.append(Holding(code=code, name=name, weight=weight))
        if len(holdings) >= limit:
            break
    return holdings


def to_quote_symbol(code: str) -> str | None:
    """
    Tencent simple-quote symbol for a security code.

    6 digits: 6/9 -> Shanghai, 4/8 -> Beijing, otherwise Shenzhen.
    5 digits: Hong Kong.
    """
    cd = str(code or "")
    if _EXACT_CODE_RE.match(cd):
        if cd.startswith(("6", "9")):
            market = "sh"
        elif cd.startswith(("4", "8")):
            market = "bj"
        else:
            market = "sz"
        return f"s_{market}{cd}"
    if _HK_CODE_RE.match(cd):
        return f"s_hk{cd}"
    return None


def parse_quote_change(payload: object) -> float | None:
    """Day change percent (field 5) of a simple quote payload."""
    fields = split_quote_fields(payload)
    if len(fields) > 5:
        return parse_float_prefix(fields[5])
    return None


class HoldingsService:
    """Holdings breakdown with best-effort same-day quote enrichment."""

    def __init__(
        self,
        transport: CallbackTransport,
        queues: SlotQueues,
        topline: int | None = None,
    ) -> None:
        self.transport = transport
        self.queues = queues
        self.topline = topline or settings.holdings_topline

    async def fetch_holdings(self, code: str) -> List[Holding]:
        """Top holdings of ``code``; [] on any failure."""
        if not is_fund_code(code):
            logger.warning(f"Holdings skipped for invalid code {code!r}")
            return []
        url = (
            f"{FUND_ARCHIVES_URL}?type=jjcc&code={code}&topline={self.topline}"
            f"&year=&month=&_={now_millis()}"
        )
        try:
            apidata = await load_eastmoney_apidata(self.transport, self.queues, url)
            content = (apidata or {}).get("content") or ""
            holdings = parse_holdings_table(str(content))
        except Exception as e:
            logger.warning(f"Error fetching holdings for {code}: {type(e).__name__}: {e}")
            return []

        if not holdings:
            return []
        return await self.enrich_with_quotes(holdings)

    async def enrich_with_quotes(self, holdings: List[Holding]) -> List[Holding]:
        """
        Attach same-day change percent to each quotable holding.

        One batched quote request; any failure leaves change as None.
        """
        symbols = {h.code: to_quote_symbol(h.code) for h in holdings}
        wanted = list(dict.fromkeys(s for s in symbols.values() if s))
        if not wanted:
            return list(holdings)

        try:
            payloads = await load_tencent_quotes(
                self.transport, self.queues, wanted, guard=STOCK_QUOTE_BINDING
            )
        except Exception as e:
            logger.warning(f"Error fetching holding quotes ({len(wanted)} symbols): {type(e).__name__}: {e}")
            return list(holdings)

        enriched: List[Holding] = []
        for h in holdings:
            symbol = symbols.get(h.code)
            change = parse_quote_change(payloads.get(symbol)) if symbol else None
            enriched.append(replace(h, change=change))
        return enriched
