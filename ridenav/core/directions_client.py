"""Async client for the Google Directions REST API."""

import asyncio
import logging
import re

import httpx
from pydantic import ValidationError

from ridenav.config import settings
from ridenav.core import polyline
from ridenav.core.errors import RouteFetchError
from ridenav.core.models import Coordinate, RouteData, Step
from ridenav.schemas.directions import DirectionsResponse, DirectionsRoute

logger = logging.getLogger(__name__)

# Retry configuration (transport failures and 5xx only)
MAX_RETRIES = 3
RETRY_BACKOFF = [1, 2, 4]  # seconds between retries

_TAG_RE = re.compile(r"<[^>]*>")


def strip_html(html: str) -> str:
    """Drop markup from an instruction like 'Turn <b>right</b>'."""
    return _TAG_RE.sub("", html).strip()


def _latlng(c: Coordinate) -> str:
    return f"{c.lat},{c.lon}"


class GoogleDirectionsClient:
    """Fetches routes and turns them into navigation steps."""

    def __init__(
        self,
        api_key: str | None = None,
        language: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        retry_backoff: list[float] | None = None,
    ) -> None:
        self.api_key = api_key if api_key is not None else settings.directions_api_key
        self.language = language or settings.directions_language
        self._retry_backoff = RETRY_BACKOFF if retry_backoff is None else retry_backoff
        self._client = httpx.AsyncClient(
            base_url=settings.directions_base_url,
            timeout=settings.directions_timeout_seconds,
            headers={"Accept": "application/json"},
            transport=transport,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def _get_with_retry(self, params: dict[str, str]) -> httpx.Response:
        """GET /json with retry and exponential backoff.

        Raises RouteFetchError once retries are exhausted or on a 4xx.
        """
        retries = min(MAX_RETRIES, len(self._retry_backoff))
        for attempt in range(retries + 1):
            try:
                resp = await self._client.get("/json", params=params)
                resp.raise_for_status()
                return resp
            except (httpx.TimeoutException, httpx.ConnectError) as e:
                if attempt < retries:
                    wait = self._retry_backoff[attempt]
                    logger.warning(
                        "Directions attempt %d/%d failed (%s), retrying in %ss",
                        attempt + 1, retries + 1, type(e).__name__, wait,
                    )
                    await asyncio.sleep(wait)
                else:
                    logger.error("Directions request failed after %d attempts: %s", retries + 1, e)
                    raise RouteFetchError(f"Network error: {type(e).__name__}") from e
            except httpx.HTTPStatusError as e:
                code = e.response.status_code
                if code >= 500 and attempt < retries:
                    wait = self._retry_backoff[attempt]
                    logger.warning(
                        "Directions attempt %d/%d got HTTP %d, retrying in %ss",
                        attempt + 1, retries + 1, code, wait,
                    )
                    await asyncio.sleep(wait)
                else:
                    logger.error("Directions request failed: HTTP %d", code)
                    raise RouteFetchError(f"HTTP {code}", status=str(code)) from e
            except httpx.HTTPError as e:
                logger.exception("Directions request failed")
                raise RouteFetchError(f"HTTP error: {e}") from e
        raise RouteFetchError("Directions request failed")

    async def get_directions(
        self,
        origin: Coordinate,
        destination: Coordinate,
        mode: str = "driving",
        waypoints: list[Coordinate] | None = None,
        alternatives: bool = False,
        avoid_tolls: bool = False,
        avoid_highways: bool = False,
        avoid_ferries: bool = False,
    ) -> DirectionsResponse:
        """Raw Directions response; raises RouteFetchError unless status is OK."""
        params = {
            "origin": _latlng(origin),
            "destination": _latlng(destination),
            "mode": mode,
            "alternatives": str(alternatives).lower(),
            "key": self.api_key,
            "language": self.language,
        }
        if waypoints:
            params["waypoints"] = "|".join(_latlng(w) for w in waypoints)
        avoid = [
            name for name, flag in (
                ("tolls", avoid_tolls), ("highways", avoid_highways), ("ferries", avoid_ferries),
            ) if flag
        ]
        if avoid:
            params["avoid"] = "|".join(avoid)

        resp = await self._get_with_retry(params)
        try:
            directions = DirectionsResponse.model_validate(resp.json())
        except (ValueError, ValidationError) as e:
            logger.exception("Failed to parse directions response")
            raise RouteFetchError("Malformed directions response") from e

        if not directions.is_success:
            detail = f" {directions.error_message}" if directions.error_message else ""
            raise RouteFetchError(
                f"Directions API returned {directions.status}.{detail}", status=directions.status,
            )
        return directions

    async def fetch_route(self, origin: Coordinate, destination: Coordinate, mode: str = "driving") -> RouteData:
        directions = await self.get_directions(origin, destination, mode)
        route = self.to_route_data(directions.primary_route)
        logger.info(
            "Fetched route: %d steps, %.0f m, %d s",
            len(route.steps), route.total_distance_m, route.total_duration_s,
        )
        return route

    async def recalculate_route(self, current: Coordinate, destination: Coordinate, mode: str = "driving") -> RouteData:
        return await self.fetch_route(current, destination, mode)

    @staticmethod
    def extract_steps(route: DirectionsRoute) -> list[Step]:
        """Steps of the route's first leg, with decoded geometry."""
        if not route.legs:
            return []
        steps = []
        for i, raw in enumerate(route.legs[0].steps):
            start = Coordinate(raw.start_location.lat, raw.start_location.lng)
            end = Coordinate(raw.end_location.lat, raw.end_location.lng)
            points = polyline.decode_lenient(raw.polyline.points)
            if len(points) < 2:
                points = [start, end]
            steps.append(Step(
                index=i,
                start=start,
                end=end,
                instruction=strip_html(raw.html_instructions),
                maneuver=raw.maneuver or "straight",
                distance_m=float(raw.distance.value),
                duration_s=raw.duration.value,
                polyline=tuple(points),
            ))
        return steps

    @classmethod
    def to_route_data(cls, route: DirectionsRoute) -> RouteData:
        encoded = route.overview_polyline.points
        return RouteData(
            steps=tuple(cls.extract_steps(route)),
            polyline=tuple(polyline.decode_lenient(encoded)),
            total_distance_m=float(route.total_distance_m),
            total_duration_s=route.total_duration_s,
            overview_polyline=encoded,
        )
