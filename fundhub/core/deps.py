# Dependency injection utilities
from fundhub.services.fund_data import FundDataService, fund_data_service


def get_fund_data_service() -> FundDataService:
    """Process-wide fund data service; overridden in tests."""
    return fund_data_service
