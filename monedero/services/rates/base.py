"""
Rate Source Interface

Each upstream group (P2P marketplace, official rate, crypto index) is one
client. A client makes exactly one logical round trip per fetch() and
returns whatever pairs it could read.

DESIGN DECISION: Clients raise. UpstreamFetchError and UpstreamParseError
are caught one level up, at the source boundary inside RateCache, where a
failure becomes "no new data". Keeping the client honest about failures
makes each one testable in isolation.
"""

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Any, Optional

import httpx
from pydantic import BaseModel

from monedero.config import RateSourceSettings
from monedero.models.currency import RateGroup, RatePair, RateSource
from monedero.models.money import to_decimal


class UpstreamError(Exception):
    """Base exception for upstream rate source failures."""

    def __init__(self, source: str, message: str):
        self.source = source
        super().__init__(f"{source}: {message}")


class UpstreamFetchError(UpstreamError):
    """Transport failure or non-2xx response."""

    def __init__(self, source: str, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(source, message)


class UpstreamParseError(UpstreamError):
    """Body was not JSON, had an unexpected shape, or held a non-numeric price."""


class FetchedRate(BaseModel):
    """A value read from an upstream, before it is logged."""

    value: Decimal
    change_24h: Optional[Decimal] = None


class RateSourceClient(ABC):
    """
    Abstract upstream rate client.

    Implementations may share one injected httpx.AsyncClient. When none
    is given, the client creates its own with transport defaults and
    closes it in aclose().
    """

    group: RateGroup
    source: RateSource

    def __init__(
        self,
        settings: Optional[RateSourceSettings] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self._settings = settings or RateSourceSettings()
        self._owns_http_client = http_client is None
        self._http_client = http_client if http_client is not None else httpx.AsyncClient()

    @abstractmethod
    async def fetch(self) -> dict[RatePair, FetchedRate]:
        """
        Fetch current rates for this group.

        Returns a (possibly empty) mapping of pair to value.
        An empty mapping means the upstream answered but had no data.

        Raises:
            UpstreamFetchError: Transport failure or non-2xx response
            UpstreamParseError: Unreadable body
        """
        pass

    async def aclose(self) -> None:
        if self._owns_http_client:
            await self._http_client.aclose()

    async def _request_json(self, method: str, url: str, **kwargs: Any) -> Any:
        """Perform one request and decode its JSON body."""
        name = self.source.value
        try:
            response = await self._http_client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise UpstreamFetchError(name, f"request failed: {e}") from e

        if response.status_code < 200 or response.status_code >= 300:
            raise UpstreamFetchError(
                name,
                f"unexpected status {response.status_code}",
                status_code=response.status_code,
            )

        try:
            return response.json()
        except ValueError as e:
            raise UpstreamParseError(name, "invalid JSON payload") from e

    def _parse_price(self, raw: Any, field: str) -> Decimal:
        """Read a numeric price from an upstream payload."""
        try:
            return to_decimal(raw)
        except ValueError as e:
            raise UpstreamParseError(self.source.value, f"{field} is not numeric: {raw!r}") from e
