"""Sports data API client.

Async access to a SportMonks-style football API with:
- Shared rate limiting
- Retry with exponential backoff on retryable errors
- Error classification
- Parsing of fixture states and score entries into gateway types
"""

import asyncio
from enum import Enum
from typing import Any, Sequence

import httpx
import redis.asyncio as redis
import structlog

from matchday.config import get_settings
from matchday.services.gateways import FixtureScore, FixtureStatus
from matchday.services.sportsdata.rate_limiter import SportsDataRateLimiter

logger = structlog.get_logger(__name__)

# Score entry descriptions, in order of preference
FULL_TIME_DESCRIPTIONS = ("FT", "FULLTIME")
FALLBACK_DESCRIPTION = "CURRENT"
HALF_TIME_DESCRIPTIONS = ("HT", "HALFTIME", "1ST_HALF")
SECOND_HALF_ONLY = "2ND_HALF_ONLY"

# States whose CURRENT score includes extra time or a shootout
EXTENDED_STATES = frozenset({"AET", "PEN", "FT_PEN"})


class SportsDataErrorType(Enum):
    """Classification of sports data API errors."""

    UNAUTHORIZED = "UNAUTHORIZED"
    RATE_LIMITED = "RATE_LIMITED"
    TIMEOUT = "TIMEOUT"
    NOT_FOUND = "NOT_FOUND"
    INVALID_INPUT = "INVALID_INPUT"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
    UNKNOWN = "UNKNOWN"


class SportsDataAPIError(Exception):
    """Sports data API error with classification."""

    def __init__(self, message: str, error_type: SportsDataErrorType, retryable: bool = False):
        super().__init__(message)
        self.error_type = error_type
        self.retryable = retryable


def classify_status(status_code: int) -> tuple[SportsDataErrorType, bool]:
    """Map an HTTP status to an error type and whether retrying can help."""
    if status_code in (401, 403):
        return SportsDataErrorType.UNAUTHORIZED, False
    if status_code == 404:
        return SportsDataErrorType.NOT_FOUND, False
    if status_code == 429:
        return SportsDataErrorType.RATE_LIMITED, True
    if status_code in (400, 422):
        return SportsDataErrorType.INVALID_INPUT, False
    if status_code >= 500:
        return SportsDataErrorType.SERVICE_UNAVAILABLE, True
    return SportsDataErrorType.UNKNOWN, False


def parse_state(fixture: dict[str, Any]) -> str:
    """Upstream short status code of a fixture payload."""
    state = fixture.get("state") or {}
    code = state.get("state") or state.get("short_name") or state.get("developer_name")
    return str(code).upper() if code else "NS"


def _score_pair(scores: list[dict[str, Any]], description: str) -> tuple[int | None, int | None]:
    home = away = None
    for entry in scores:
        if entry.get("description") != description:
            continue
        score = entry.get("score") or {}
        try:
            goals = int(score.get("goals"))
        except (TypeError, ValueError):
            continue
        if score.get("participant") == "home":
            home = goals
        elif score.get("participant") == "away":
            away = goals
    return home, away


def _first_pair(scores: list[dict[str, Any]], descriptions: Sequence[str]) -> tuple[int | None, int | None]:
    """First description with a complete pair, else the first partial one found."""
    partial: tuple[int | None, int | None] = (None, None)
    for description in descriptions:
        pair = _score_pair(scores, description)
        if None not in pair:
            return pair
        if pair != (None, None) and partial == (None, None):
            partial = pair
    return partial


def _complete(pair: tuple[int | None, int | None]) -> tuple[int | None, int | None]:
    """One-sided pairs become (None, None)."""
    return pair if None not in pair else (None, None)


def parse_scores(fixture: dict[str, Any]) -> FixtureScore:
    """
    Extract full-time and half-time scores from a fixture payload.

    Full time prefers FT/FULLTIME entries. For fixtures decided after extra
    time or penalties the 90-minute score is rebuilt from the halves; other
    fixtures fall back to CURRENT. One-sided pairs come back as
    (None, None).
    """
    scores = fixture.get("scores") or []
    status = parse_state(fixture)

    home, away = _first_pair(scores, FULL_TIME_DESCRIPTIONS)
    ht_home, ht_away = _complete(_first_pair(scores, HALF_TIME_DESCRIPTIONS))

    if home is None and away is None and status in EXTENDED_STATES:
        first = _score_pair(scores, "1ST_HALF")
        second = _score_pair(scores, SECOND_HALF_ONLY)
        if None not in first and None not in second:
            home, away = first[0] + second[0], first[1] + second[1]

    if home is None and away is None:
        home, away = _score_pair(scores, FALLBACK_DESCRIPTION)

    if (home is None) != (away is None):
        logger.warning("one_sided_score", fixture_id=fixture.get("id"), home_score=home, away_score=away)
        home = away = None

    return FixtureScore(
        fixture_id=int(fixture["id"]),
        status=status,
        home_score=home,
        away_score=away,
        ht_home_score=ht_home,
        ht_away_score=ht_away,
        source="sportmonks",
    )


class SportsDataClient:
    """
    Sports data API client implementing ``IngestionGateway``.

    Supports:
    - Token authentication (``api_token`` query parameter)
    - Redis token-bucket rate limiting shared across processes
    - Automatic retry with exponential backoff
    """

    def __init__(
        self,
        redis_client: redis.Redis | None = None,
        rate_limiter: SportsDataRateLimiter | None = None,
        http_client: httpx.AsyncClient | None = None,
        max_retries: int = 3,
    ):
        self.settings = get_settings()
        self.redis = redis_client
        self.rate_limiter = rate_limiter or (
            SportsDataRateLimiter(redis_client, rate=self.settings.sportsdata_rate_per_second)
            if redis_client
            else None
        )
        self._http_client = http_client
        self.max_retries = max_retries

    async def __aenter__(self) -> "SportsDataClient":
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=30.0)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=30.0)
        return self._http_client

    async def _request(self, path: str, params: dict[str, Any] | None = None) -> Any:
        """
        GET ``path`` with rate limiting and retry.

        Raises:
            SportsDataAPIError: If the request fails after retries
        """
        url = f"{self.settings.sportsdata_base_url.rstrip('/')}/{path.lstrip('/')}"
        query = {"api_token": self.settings.sportsdata_api_token, **(params or {})}

        for attempt in range(self.max_retries + 1):
            if self.rate_limiter:
                await self.rate_limiter.wait_if_needed("fixtures")

            try:
                client = await self._get_client()
                response = await client.get(url, params=query, headers={"Accept": "application/json"})
                response.raise_for_status()
                return response.json()

            except httpx.TimeoutException:
                if attempt < self.max_retries:
                    wait_time = 2**attempt
                    logger.warning("timeout_retrying", path=path, attempt=attempt, wait_time=wait_time)
                    await asyncio.sleep(wait_time)
                    continue
                raise SportsDataAPIError(
                    "Request timeout", SportsDataErrorType.TIMEOUT, retryable=True
                )

            except httpx.HTTPStatusError as e:
                error_type, retryable = classify_status(e.response.status_code)
                if retryable and attempt < self.max_retries:
                    wait_time = 2**attempt
                    retry_after = e.response.headers.get("Retry-After")
                    if retry_after and retry_after.isdigit():
                        wait_time = max(wait_time, int(retry_after))
                    logger.warning(
                        "api_error_retrying",
                        path=path,
                        status_code=e.response.status_code,
                        attempt=attempt,
                        wait_time=wait_time,
                    )
                    await asyncio.sleep(wait_time)
                    continue
                raise SportsDataAPIError(
                    f"HTTP {e.response.status_code}: {e.response.text[:200]}",
                    error_type,
                    retryable=retryable,
                ) from e

            except httpx.TransportError as e:
                if attempt < self.max_retries:
                    await asyncio.sleep(2**attempt)
                    continue
                raise SportsDataAPIError(
                    f"Transport error: {e}", SportsDataErrorType.SERVICE_UNAVAILABLE, retryable=True
                ) from e

        raise SportsDataAPIError("Retries exhausted", SportsDataErrorType.UNKNOWN, retryable=True)

    async def _fetch_fixtures(self, fixture_ids: Sequence[int], include: str) -> list[dict[str, Any]]:
        if not fixture_ids:
            return []
        ids = ",".join(str(fixture_id) for fixture_id in fixture_ids)
        payload = await self._request(f"fixtures/multi/{ids}", {"include": include})
        data = payload.get("data") if isinstance(payload, dict) else None
        return data or []

    async def fetch_statuses(self, fixture_ids: Sequence[int]) -> list[FixtureStatus]:
        fixtures = await self._fetch_fixtures(fixture_ids, "state")
        return [
            FixtureStatus(fixture_id=int(fixture["id"]), status=parse_state(fixture))
            for fixture in fixtures
            if fixture.get("id") is not None
        ]

    async def fetch_results(self, fixture_ids: Sequence[int]) -> list[FixtureScore]:
        fixtures = await self._fetch_fixtures(fixture_ids, "scores;state")
        return [parse_scores(fixture) for fixture in fixtures if fixture.get("id") is not None]
