from pydantic_settings import BaseSettings
from typing import List
import json


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # API
    api_v1_prefix: str = "/api/v1"

    # CORS
    cors_origins: str = '["http://localhost:5173","http://localhost:3000"]'

    # Upstream providers
    reporting_timezone: str = "Asia/Shanghai"
    http_timeout_seconds: float = 12.0
    user_agent: str = (
        "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
    )
    proxy_url: str | None = None

    # Callback timeouts (milliseconds)
    fund_gz_timeout_ms: int = 5000
    search_timeout_ms: int = 5000
    fallback_search_timeout_ms: int = 3000

    # Holdings / history
    holdings_topline: int = 10
    history_page_size: int = 500
    history_max_pages: int = 20
    history_page_delay_seconds: float = 0.1
    smart_probe_max_days: int = 30

    # Release check / feedback
    release_repo: str = "Nelsontop/real-time-fund"
    feedback_url: str = "https://api.web3forms.com/submit"

    # Logging
    log_dir: str | None = None

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS origins from JSON string."""
        return json.loads(self.cors_origins)

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
