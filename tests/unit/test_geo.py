"""
Unit tests for the distance/duration resolver, with the geocoder and router
replaced by httpx.MockTransport handlers.
"""
import httpx
import pytest

from rideflow.config import Settings
from rideflow.errors import UnresolvableLocation
from rideflow.services.geo import GeoResolver, ResolvedLocation, RouteEstimate, haversine_km

WUSE = ResolvedLocation(address="Wuse 2, Abuja", lat=9.0765, lng=7.3986)
MAITAMA = ResolvedLocation(address="Maitama, Abuja", lat=9.0882, lng=7.4934)


def _settings(**overrides) -> Settings:
    values = {
        "geocoder_base_url": "http://geocoder.test",
        "routing_base_url": "http://router.test",
        "geo_timeout_seconds": 1.0,
        "geo_max_retries": 1,
    }
    values.update(overrides)
    return Settings(**values)


def _resolver(handler, **overrides) -> tuple[GeoResolver, list[httpx.Request]]:
    seen: list[httpx.Request] = []

    def _record(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return handler(request)

    client = httpx.AsyncClient(transport=httpx.MockTransport(_record))
    return GeoResolver(client=client, settings=_settings(**overrides)), seen


def _osrm_ok(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, json={"code": "Ok", "routes": [{"distance": 5000.0, "duration": 900.0}]})


@pytest.mark.asyncio
class TestResolve:
    async def test_coordinates_are_used_as_given(self):
        resolver, seen = _resolver(lambda r: httpx.Response(500))
        loc = await resolver.resolve(lat=9.0, lng=7.0)
        assert (loc.lat, loc.lng) == (9.0, 7.0)
        assert loc.approximate is False
        assert loc.address.startswith("Lat: 9.000000")
        assert seen == []

    async def test_geocoder_hit(self):
        def handler(request):
            assert request.url.path == "/search"
            assert request.url.params["q"] == "Jabi Lake Mall"
            return httpx.Response(200, json=[{"lat": "9.0667", "lon": "7.4250", "display_name": "Jabi Lake Mall, Abuja"}])

        resolver, _ = _resolver(handler)
        loc = await resolver.resolve("Jabi Lake Mall")
        assert loc.lat == pytest.approx(9.0667)
        assert loc.lng == pytest.approx(7.4250)
        assert loc.address == "Jabi Lake Mall, Abuja"
        assert loc.approximate is False

    async def test_no_match_uses_regional_fallback(self):
        resolver, _ = _resolver(lambda r: httpx.Response(200, json=[]))
        loc = await resolver.resolve("Somewhere obscure, Lagos")
        assert (loc.lat, loc.lng) == (6.5244, 3.3792)
        assert loc.approximate is True
        assert loc.source == "regional"

    async def test_geocoder_down_uses_regional_fallback(self):
        resolver, seen = _resolver(lambda r: httpx.Response(503))
        loc = await resolver.resolve("Garki, ABUJA")
        assert loc.approximate is True
        assert len(seen) == 2  # one retry

    async def test_geocoder_error_object_uses_regional_fallback(self):
        resolver, _ = _resolver(lambda r: httpx.Response(200, json={"error": "Unable to geocode"}))
        loc = await resolver.resolve("Nowhere street, Abuja")
        assert loc.approximate is True
        assert loc.source == "regional"

    async def test_geocoder_error_object_without_fallback(self):
        resolver, _ = _resolver(lambda r: httpx.Response(200, json={"error": "Unable to geocode"}))
        with pytest.raises(UnresolvableLocation):
            await resolver.resolve("Nowhere street")

    async def test_geocoder_malformed_hit(self):
        for body in (["not-a-dict"], [{"lat": "north", "lon": "7.4"}], [{"lat": "95", "lon": "7.4"}]):
            resolver, _ = _resolver(lambda r, body=body: httpx.Response(200, json=body))
            with pytest.raises(UnresolvableLocation):
                await resolver.resolve("Nowhere street")

    async def test_unresolvable_address(self):
        resolver, _ = _resolver(lambda r: httpx.Response(200, json=[]))
        with pytest.raises(UnresolvableLocation):
            await resolver.resolve("Atlantis")

    async def test_nothing_to_resolve(self):
        resolver, _ = _resolver(_osrm_ok)
        with pytest.raises(UnresolvableLocation):
            await resolver.resolve()


@pytest.mark.asyncio
class TestDistanceAndDuration:
    async def test_router_result(self):
        def handler(request):
            assert request.url.path.startswith("/route/v1/driving/")
            return _osrm_ok(request)

        resolver, _ = _resolver(handler)
        route = await resolver.distance_and_duration(WUSE, MAITAMA, "car")
        assert route == RouteEstimate(5.0, 15)
        assert route.min_duration == 10
        assert route.max_duration == 20

    async def test_bicycle_uses_bike_profile(self):
        def handler(request):
            assert "/route/v1/bike/" in request.url.path
            return _osrm_ok(request)

        resolver, _ = _resolver(handler)
        await resolver.distance_and_duration(WUSE, MAITAMA, "bicycle")

    async def test_retries_once_then_succeeds(self):
        calls = {"n": 0}

        def handler(request):
            calls["n"] += 1
            if calls["n"] == 1:
                raise httpx.ConnectError("refused", request=request)
            return _osrm_ok(request)

        resolver, seen = _resolver(handler)
        route = await resolver.distance_and_duration(WUSE, MAITAMA, "car")
        assert route.approximate is False
        assert len(seen) == 2

    async def test_router_failure_falls_back_to_haversine(self):
        resolver, seen = _resolver(lambda r: httpx.Response(500))
        route = await resolver.distance_and_duration(WUSE, MAITAMA, "car")
        expected = haversine_km(WUSE.lat, WUSE.lng, MAITAMA.lat, MAITAMA.lng)
        assert route.distance_km == pytest.approx(expected, abs=1e-3)
        assert route.approximate is True
        assert len(seen) == 2

    async def test_malformed_router_body_falls_back(self):
        resolver, _ = _resolver(lambda r: httpx.Response(200, json={"code": "NoRoute"}))
        route = await resolver.distance_and_duration(WUSE, MAITAMA, "car")
        assert route.approximate is True

    async def test_malformed_route_entries_fall_back(self):
        bodies = (
            {"code": "Ok", "routes": [{"distance": "n/a", "duration": 900}]},
            {"code": "Ok", "routes": [{"distance": 5000, "duration": "soon"}]},
            {"code": "Ok", "routes": ["not-a-route"]},
            {"code": "Ok", "routes": [{"distance": -5000, "duration": 900}]},
            {"code": "Ok", "routes": [{"distance": 5000, "duration": "Infinity"}]},
        )
        for body in bodies:
            resolver, _ = _resolver(lambda r, body=body: httpx.Response(200, json=body))
            route = await resolver.distance_and_duration(WUSE, MAITAMA, "car")
            assert route.approximate is True
            assert route == resolver.offline_route(WUSE, MAITAMA, "car")

    async def test_approximate_endpoint_marks_route_approximate(self):
        resolver, _ = _resolver(_osrm_ok)
        rough = ResolvedLocation(address="Lagos", lat=6.5244, lng=3.3792, approximate=True)
        route = await resolver.distance_and_duration(rough, MAITAMA, "car")
        assert route.distance_km == 5.0
        assert route.approximate is True

    async def test_offline_when_no_router_configured(self):
        resolver, seen = _resolver(_osrm_ok, routing_base_url="")
        route = await resolver.distance_and_duration(WUSE, MAITAMA, "motorcycle")
        assert seen == []
        assert route.approximate is True
        assert route.duration_min >= 1


class TestOfflineRoute:
    def test_same_point_has_minimum_duration(self):
        resolver = GeoResolver(settings=_settings(routing_base_url="", min_duration_minutes=1))
        route = resolver.offline_route(WUSE, WUSE, "car")
        assert route.distance_km == 0
        assert route.duration_min == 1

    def test_duration_scales_with_class(self):
        resolver = GeoResolver(settings=_settings(routing_base_url=""))
        bike = resolver.offline_route(WUSE, MAITAMA, "bicycle")
        moto = resolver.offline_route(WUSE, MAITAMA, "motorcycle")
        assert bike.duration_min > moto.duration_min

    def test_haversine_known_distance(self):
        # Abuja to Lagos is roughly 525 km as the crow flies
        assert haversine_km(9.0765, 7.3986, 6.5244, 3.3792) == pytest.approx(525, rel=0.05)
