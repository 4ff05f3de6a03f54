"""
Fund-related API endpoints.
"""
from datetime import date
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from fastapi import APIRouter, Depends, Path, Query
from pydantic import BaseModel

from fundhub.core.deps import get_fund_data_service
from fundhub.services.fund_data import FundDataService, FundSnapshot
from fundhub.services.fund_data.core import FUND_CODE_PATTERN

router = APIRouter(prefix="/funds", tags=["funds"])

FundCode = Annotated[str, Path(pattern=FUND_CODE_PATTERN, description="6-digit fund code")]


class HoldingResponse(BaseModel):
    """One top holding of a fund."""
    code: str
    name: str
    weight: str = ""  # "<number>%" or empty
    change: Optional[float] = None  # Same-day change percent


class FundSnapshotResponse(BaseModel):
    """Response model for a fund valuation snapshot."""
    code: str
    name: str
    nav: Optional[str] = None
    nav_date: str = ""
    estimated_nav: Optional[str] = None
    estimate_time: Optional[str] = None
    estimated_change_percent: Optional[Union[float, str]] = None
    nav_change_percent: Optional[float] = None
    no_valuation: bool = False
    holdings: List[HoldingResponse] = []


class HistoryPointResponse(BaseModel):
    date: str
    value: float


class FundHistoryResponse(BaseModel):
    """Response model for a net value history series."""
    code: str
    data: List[HistoryPointResponse]
    count: int


class NetValueResponse(BaseModel):
    """Response model for a single net value lookup."""
    code: str
    date: Optional[str] = None
    value: Optional[float] = None


class FundSearchResponse(BaseModel):
    """Response model for fund search results."""
    data: List[Dict[str, Any]]
    count: int


def _snapshot_response(snapshot: FundSnapshot) -> FundSnapshotResponse:
    return FundSnapshotResponse(**snapshot.to_dict())


@router.get("/search", response_model=FundSearchResponse)
async def search_funds(
    q: str = "",
    service: FundDataService = Depends(get_fund_data_service),
):
    """
    Search funds by code, name or pinyin.

    Args:
        q: Free-text query; blank returns an empty list

    Returns:
        Search entries categorised as funds
    """
    data = await service.search_funds(q)
    return FundSearchResponse(data=data, count=len(data))


@router.get("/{code}", response_model=FundSnapshotResponse)
async def get_fund_snapshot(
    code: FundCode,
    service: FundDataService = Depends(get_fund_data_service),
):
    """
    Get the live valuation snapshot of a fund.

    Args:
        code: 6-digit fund code (e.g., "000001")

    Returns:
        Estimate, official net value and top holdings
    """
    snapshot = await service.fetch_fund_data(code)
    return _snapshot_response(snapshot)


@router.get("/{code}/fallback", response_model=FundSnapshotResponse)
async def get_fund_snapshot_fallback(
    code: FundCode,
    service: FundDataService = Depends(get_fund_data_service),
):
    """Get the official-only snapshot of a fund (no live estimate)."""
    snapshot = await service.fetch_fund_data_fallback(code)
    return _snapshot_response(snapshot)


@router.get("/{code}/history", response_model=FundHistoryResponse)
async def get_fund_history(
    code: FundCode,
    end_date: Optional[date] = None,
    span: int = Query(1, ge=1, le=120),
    unit: Literal["day", "month"] = "month",
    service: FundDataService = Depends(get_fund_data_service),
):
    """
    Get the official net value history of a fund.

    Args:
        code: Fund code
        end_date: Last date of the range (default: today in the reporting time zone)
        span: Range length in `unit`s
        unit: "day" or "month"

    Returns:
        Net value points sorted ascending by date
    """
    points = await service.fetch_fund_history_net_value(code, end_date, span, unit)
    return FundHistoryResponse(
        code=code,
        data=[HistoryPointResponse(date=p.date, value=p.value) for p in points],
        count=len(points)
    )


@router.get("/{code}/net-value", response_model=NetValueResponse)
async def get_fund_net_value(
    code: FundCode,
    on_date: date = Query(..., alias="date"),
    service: FundDataService = Depends(get_fund_data_service),
):
    """Get the official net value published for exactly one date."""
    date_str = on_date.isoformat()
    value = await service.fetch_fund_net_value(code, date_str)
    return NetValueResponse(code=code, date=date_str if value is not None else None, value=value)


@router.get("/{code}/net-value/smart", response_model=NetValueResponse)
async def get_fund_smart_net_value(
    code: FundCode,
    start_date: date,
    service: FundDataService = Depends(get_fund_data_service),
):
    """Get the first official net value published on or after `start_date`."""
    point = await service.fetch_smart_fund_net_value(code, start_date)
    if point is None:
        return NetValueResponse(code=code)
    return NetValueResponse(code=code, date=point.date, value=point.value)
