"""Fund data service package facade."""
from __future__ import annotations

from typing import Any, Dict, List, Mapping

import httpx

from fundhub.core.config import settings
from fundhub.core.exceptions import NoEnvironmentError

from .core import logger
from .models import FundQuote, FundSnapshot, HistoryPoint, Holding, ReleaseInfo
from .queues import SingleFlightQueue, SlotQueues, slot_queues
from .transport import CallbackTransport, HttpScriptLoader, ScriptEnvironment
from .search import SearchService
from .holdings import HoldingsService, parse_holdings_table, to_quote_symbol
from .valuation import ValuationService
from .history import HistoryService
from .releases import ReleaseService


class FundDataService:
    """Facade service that composes the fund data sub-services."""

    def __init__(
        self,
        transport: CallbackTransport | None = None,
        queues: SlotQueues | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.transport = transport or CallbackTransport(None)
        self.queues = queues or slot_queues
        self._http_client = http_client
        self._owns_http_client = False

        self.search = SearchService(self.transport, self.queues)
        self.holdings = HoldingsService(self.transport, self.queues)
        self.valuation = ValuationService(self.transport, self.queues, self.holdings, self.search)
        self.history = HistoryService(self.transport, self.queues)
        self.releases = ReleaseService(http_client) if http_client is not None else None

    # Lifecycle
    async def start(self) -> None:
        """Open the HTTP client and the script environment."""
        if self.transport.available:
            return
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                headers={"User-Agent": settings.user_agent},
                timeout=settings.http_timeout_seconds,
                follow_redirects=True,
                proxy=settings.proxy_url or None,
            )
            self._owns_http_client = True
        self.transport.environment = ScriptEnvironment(HttpScriptLoader(self._http_client))
        if self.releases is None:
            self.releases = ReleaseService(self._http_client)
        logger.info("Fund data service started")

    async def close(self) -> None:
        """Cancel in-flight script loads and close the HTTP client."""
        if self.transport.environment is not None:
            await self.transport.environment.close()
        if self._http_client is not None and self._owns_http_client:
            await self._http_client.aclose()
            self._http_client = None
            self._owns_http_client = False
            self.releases = None
        logger.info("Fund data service closed")

    # Valuation
    async def fetch_fund_data(self, code: str) -> FundSnapshot:
        return await self.valuation.fetch_fund_data(code)

    async def fetch_fund_data_fallback(self, code: str) -> FundSnapshot:
        return await self.valuation.fetch_fund_data_fallback(code)

    async def fetch_fund_net_value(self, code: str, date_str: str) -> float | None:
        return await self.valuation.fetch_fund_net_value(code, date_str)

    async def fetch_smart_fund_net_value(self, code: str, start_date: Any) -> HistoryPoint | None:
        return await self.valuation.fetch_smart_fund_net_value(code, start_date)

    # History
    async def fetch_fund_history_net_value(
        self,
        code: str,
        end_date: Any = None,
        span: int = 1,
        unit: str = "month",
    ) -> List[HistoryPoint]:
        return await self.history.fetch_fund_history_net_value(code, end_date, span, unit)

    # Search
    async def search_funds(self, text: str) -> List[Dict[str, Any]]:
        return await self.search.search_funds(text)

    async def fetch_shanghai_index_date(self) -> str | None:
        return await self.search.fetch_shanghai_index_date()

    # Releases
    async def fetch_latest_release(self) -> ReleaseInfo | None:
        if self.releases is None:
            raise NoEnvironmentError("HTTP client not started")
        return await self.releases.fetch_latest_release()

    async def submit_feedback(self, form: Mapping[str, Any]) -> Dict[str, Any]:
        if self.releases is None:
            raise NoEnvironmentError("HTTP client not started")
        return await self.releases.submit_feedback(form)


# Singleton instance
fund_data_service = FundDataService()

__all__ = [
    "CallbackTransport",
    "FundDataService",
    "FundQuote",
    "FundSnapshot",
    "HistoryPoint",
    "Holding",
    "HttpScriptLoader",
    "ReleaseInfo",
    "ScriptEnvironment",
    "SingleFlightQueue",
    "SlotQueues",
    "fund_data_service",
    "parse_holdings_table",
    "slot_queues",
    "to_quote_symbol",
]
