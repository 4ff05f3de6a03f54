from __future__ import annotations

from typing import Any, Dict, List
from urllib.parse import quote

from fundhub.core.config import settings

from .core import (
    FUND_SEARCH_URL,
    load_tencent_quotes,
    logger,
    now_millis,
    split_quote_fields,
)
from .queues import SlotQueues
from .transport import CallbackTransport

SHANGHAI_COMPOSITE_SYMBOL = "sh000001"
FUND_CATEGORY = 700
FUND_CATEGORY_DESC = "基金"


def is_fund_entry(entry: Dict[str, Any]) -> bool:
    category = entry.get("CATEGORY")
    return (
        category == FUND_CATEGORY
        or category == str(FUND_CATEGORY)
        or entry.get("CATEGORYDESC") == FUND_CATEGORY_DESC
    )


class SearchService:
    """Fund name search and market reference probes."""

    def __init__(self, transport: CallbackTransport, queues: SlotQueues) -> None:
        self.transport = transport
        self.queues = queues

    async def search_raw(
        self,
        text: str,
        prefix: str = "SuggestData_",
        timeout_ms: int | None = None,
    ) -> List[Dict[str, Any]]:
        """Unfiltered ``Datas`` entries of the search endpoint."""
        url = f"{FUND_SEARCH_URL}?m=1&key={quote(text, safe='')}&_={now_millis()}"
        data = await self.transport.load_jsonp(
            url,
            callback_param="callback",
            prefix=prefix,
            timeout_ms=timeout_ms or settings.search_timeout_ms,
        )
        if not isinstance(data, dict):
            return []
        entries = data.get("Datas")
        if not isinstance(entries, list):
            return []
        return [d for d in entries if isinstance(d, dict)]

    async def search_funds(self, text: str) -> List[Dict[str, Any]]:
        """
        Funds matching free-text input.

        Blank input returns [] without any request. Only entries categorised
        as funds are kept.
        """
        if not text or not text.strip():
            return []
        if not self.transport.available:
            logger.warning("Fund search skipped: no script environment")
            return []
        entries = await self.search_raw(text)
        return [d for d in entries if is_fund_entry(d)]

    async def fetch_shanghai_index_date(self) -> str | None:
        """
        Trading date (YYYYMMDD) of the latest Shanghai Composite quote.

        None when the payload has 30 fields or fewer.
        """
        if not self.transport.available:
            return None
        payloads = await load_tencent_quotes(
            self.transport,
            self.queues,
            [SHANGHAI_COMPOSITE_SYMBOL],
            guard=f"v_{SHANGHAI_COMPOSITE_SYMBOL}",
            extra_query=f"&_t={now_millis()}",
        )
        fields = split_quote_fields(payloads.get(SHANGHAI_COMPOSITE_SYMBOL))
        if len(fields) > 30:
            return fields[30][:8]
        return None
