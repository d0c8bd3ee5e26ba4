"""Sports data API client module."""

from matchday.services.sportsdata.client import (
    SportsDataAPIError,
    SportsDataClient,
    SportsDataErrorType,
)
from matchday.services.sportsdata.rate_limiter import SportsDataRateLimiter

__all__ = ["SportsDataAPIError", "SportsDataClient", "SportsDataErrorType", "SportsDataRateLimiter"]
