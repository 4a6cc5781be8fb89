"""
Distance & duration resolver.

Primary path: a Nominatim-compatible geocoder (``/search``) and an
OSRM-compatible router (``/route/v1``), called over httpx with a per-call
timeout and at most one retry.

Fallback: haversine distance between the two points and a per-class
minutes-per-km duration model. Addresses the geocoder cannot place may be
matched against the configured regional table; such results are always
flagged ``approximate``.
"""
import logging
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from math import radians, sin, cos, sqrt, atan2, isfinite

import httpx

from rideflow.config import Settings, get_settings
from rideflow.errors import UnresolvableLocation

logger = logging.getLogger(__name__)

EARTH_RADIUS_KM = 6371

OSRM_PROFILES: dict[str, str] = {"bicycle": "bike", "motorcycle": "driving", "car": "driving"}


@dataclass(frozen=True)
class ResolvedLocation:
    address: str
    lat: float
    lng: float
    approximate: bool = False
    # client | geocoder | regional
    source: str = "geocoder"


@dataclass(frozen=True)
class RouteEstimate:
    distance_km: float
    duration_min: int
    approximate: bool = False

    @property
    def min_duration(self) -> int:
        return max(5, self.duration_min - 5)

    @property
    def max_duration(self) -> int:
        return self.duration_min + 5


class GeoServiceError(Exception):
    pass


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance in km."""
    phi1, phi2 = radians(lat1), radians(lat2)
    dphi = radians(lat2 - lat1)
    dlambda = radians(lng2 - lng1)
    a = sin(dphi / 2) ** 2 + cos(phi1) * cos(phi2) * sin(dlambda / 2) ** 2
    return 2 * EARTH_RADIUS_KM * atan2(sqrt(a), sqrt(1 - a))


def _round_minutes(value: float) -> int:
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class GeoResolver:
    def __init__(self, client: httpx.AsyncClient | None = None, settings: Settings | None = None):
        self.settings = settings or get_settings()
        self._client = client

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def resolve(
        self,
        address: str | None = None,
        lat: float | None = None,
        lng: float | None = None,
    ) -> ResolvedLocation:
        """Turn an address and/or a point into a located address."""
        if lat is not None and lng is not None:
            return ResolvedLocation(
                address=address or f"Lat: {lat:.6f}, Lng: {lng:.6f}",
                lat=lat,
                lng=lng,
                source="client",
            )
        if not address:
            raise UnresolvableLocation("An address or a coordinate pair is required")

        if self.settings.geocoder_base_url:
            try:
                found = await self._geocode(address)
            except GeoServiceError as exc:
                logger.warning("Geocoder unavailable for %r: %s", address, exc)
                found = None
            if found is not None:
                return found

        regional = self._regional_fallback(address)
        if regional is not None:
            logger.warning("Using approximate regional coordinates for %r", address)
            return regional

        raise UnresolvableLocation(f"Could not resolve coordinates for {address!r}")

    async def distance_and_duration(
        self,
        origin: ResolvedLocation,
        dest: ResolvedLocation,
        vehicle_class: str,
    ) -> RouteEstimate:
        vehicle_class = getattr(vehicle_class, "value", vehicle_class)
        endpoints_approximate = origin.approximate or dest.approximate

        if self.settings.routing_base_url:
            try:
                routed = await self._route(origin, dest, vehicle_class)
            except GeoServiceError as exc:
                logger.warning("Router unavailable, using haversine fallback: %s", exc)
                routed = None
            if routed is not None:
                if endpoints_approximate:
                    return RouteEstimate(routed.distance_km, routed.duration_min, approximate=True)
                return routed

        return self.offline_route(origin, dest, vehicle_class)

    def offline_route(
        self,
        origin: ResolvedLocation,
        dest: ResolvedLocation,
        vehicle_class: str,
    ) -> RouteEstimate:
        distance = haversine_km(origin.lat, origin.lng, dest.lat, dest.lng)
        per_km = self.settings.minutes_per_km.get(vehicle_class, 3.0)
        duration = max(self.settings.min_duration_minutes, _round_minutes(distance * per_km))
        return RouteEstimate(round(distance, 3), duration, approximate=True)

    # ------------------------------------------------------------------
    # External services
    # ------------------------------------------------------------------

    async def _geocode(self, address: str) -> ResolvedLocation | None:
        url = f"{self.settings.geocoder_base_url.rstrip('/')}/search"
        body = await self._get_json(url, {"q": address, "format": "json", "limit": 1})
        # Nominatim answers errors as a JSON object, matches as a list
        if not isinstance(body, list) or not body:
            return None
        hit = body[0]
        try:
            lat, lng = float(hit["lat"]), float(hit["lon"])
            display_name = hit.get("display_name")
        except (KeyError, TypeError, ValueError, AttributeError):
            return None
        if not (-90 <= lat <= 90 and -180 <= lng <= 180):
            return None
        return ResolvedLocation(
            address=display_name or address,
            lat=lat,
            lng=lng,
            source="geocoder",
        )

    async def _route(
        self,
        origin: ResolvedLocation,
        dest: ResolvedLocation,
        vehicle_class: str,
    ) -> RouteEstimate | None:
        profile = OSRM_PROFILES.get(vehicle_class, "driving")
        coords = f"{origin.lng:.6f},{origin.lat:.6f};{dest.lng:.6f},{dest.lat:.6f}"
        url = f"{self.settings.routing_base_url.rstrip('/')}/route/v1/{profile}/{coords}"
        body = await self._get_json(url, {"overview": "false"})
        if not isinstance(body, dict) or body.get("code") != "Ok" or not body.get("routes"):
            return None
        try:
            route = body["routes"][0]
            distance_m = float(route.get("distance") or 0)
            duration_s = float(route.get("duration") or 0)
            minutes = _round_minutes(duration_s / 60)
        except (KeyError, TypeError, ValueError, AttributeError, ArithmeticError):
            return None
        if not (isfinite(distance_m) and isfinite(duration_s)) or distance_m < 0 or duration_s < 0:
            return None
        distance_km = distance_m / 1000
        duration = max(self.settings.min_duration_minutes, minutes)
        return RouteEstimate(round(distance_km, 3), duration)

    async def _get_json(self, url: str, params: dict):
        attempts = 1 + min(max(self.settings.geo_max_retries, 0), 1)
        timeout = self.settings.geo_timeout_seconds
        headers = {"User-Agent": self.settings.geo_user_agent}
        last_error: Exception | None = None

        for attempt in range(1, attempts + 1):
            try:
                if self._client is not None:
                    resp = await self._client.get(url, params=params, headers=headers, timeout=timeout)
                else:
                    async with httpx.AsyncClient(timeout=timeout, headers=headers) as client:
                        resp = await client.get(url, params=params)
                resp.raise_for_status()
                return resp.json()
            except (httpx.HTTPError, ValueError) as exc:
                last_error = exc
                logger.warning("Geo call %s failed (attempt %d/%d): %s", url, attempt, attempts, exc)

        raise GeoServiceError(str(last_error))

    def _regional_fallback(self, address: str) -> ResolvedLocation | None:
        needle = address.lower()
        for region, (lat, lng) in self.settings.regional_fallbacks.items():
            if region.lower() in needle:
                return ResolvedLocation(address=address, lat=lat, lng=lng, approximate=True, source="regional")
        return None


def get_resolver() -> GeoResolver:
    """FastAPI dependency."""
    return GeoResolver()
