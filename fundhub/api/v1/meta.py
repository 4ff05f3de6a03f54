"""
Market reference and application meta endpoints.
"""
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends
from pydantic import BaseModel

from fundhub.core.deps import get_fund_data_service
from fundhub.services.fund_data import FundDataService

router = APIRouter(tags=["meta"])


class IndexDateResponse(BaseModel):
    """Latest trading date seen on the Shanghai Composite quote."""
    date: Optional[str] = None  # YYYYMMDD


class ReleaseResponse(BaseModel):
    tag_name: str
    body: str = ""


@router.get("/market/index-date", response_model=IndexDateResponse)
async def get_index_date(service: FundDataService = Depends(get_fund_data_service)):
    """Get the "market is open as of" reference date."""
    return IndexDateResponse(date=await service.fetch_shanghai_index_date())


@router.get("/meta/latest-release", response_model=Optional[ReleaseResponse])
async def get_latest_release(service: FundDataService = Depends(get_fund_data_service)):
    """Get the latest published release, or null when unavailable."""
    release = await service.fetch_latest_release()
    if release is None:
        return None
    return ReleaseResponse(tag_name=release.tag_name, body=release.body)


@router.post("/meta/feedback")
async def submit_feedback(
    form: Dict[str, Any] = Body(...),
    service: FundDataService = Depends(get_fund_data_service),
) -> Dict[str, Any]:
    """Forward a feedback form to the feedback service."""
    return await service.submit_feedback(form)
