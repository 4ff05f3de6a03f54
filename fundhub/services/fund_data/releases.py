from __future__ import annotations

from typing import Any, Dict, Mapping

import httpx

from fundhub.core.config import settings

from .core import logger
from .models import ReleaseInfo

GITHUB_API_URL = "https://api.github.com"


class ReleaseService:
    """Plain HTTP calls: latest release check and feedback submission."""

    def __init__(self, client: httpx.AsyncClient) -> None:
        self.client = client

    async def fetch_latest_release(self) -> ReleaseInfo | None:
        """Latest published release; None when the request is not 2xx."""
        url = f"{GITHUB_API_URL}/repos/{settings.release_repo}/releases/latest"
        response = await self.client.get(url, headers={"Accept": "application/vnd.github+json"})
        if not response.is_success:
            logger.info(f"Latest release check returned HTTP {response.status_code}")
            return None
        data = response.json()
        return ReleaseInfo(tag_name=data.get("tag_name") or "", body=data.get("body") or "")

    async def submit_feedback(self, form: Mapping[str, Any]) -> Dict[str, Any]:
        """Post a feedback form and return the service's JSON answer."""
        response = await self.client.post(settings.feedback_url, data=dict(form))
        return response.json()
