"""
Rides router: estimate, order, read projections, and the rider/driver
transitions: accept, decline, cancel, status advance, rate.
"""
import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from rideflow.config import get_settings
from rideflow.database import get_db
from rideflow.middleware.auth import (
    Principal,
    get_current_driver,
    get_current_rider,
    get_current_user,
    require_roles,
)
from rideflow.middleware.idempotency import check_idempotency, store_idempotency_result
from rideflow.redis_client import (
    cache_delete,
    cache_get,
    cache_set,
    get_redis,
    invalidate_ride,
    ride_cache_key,
)
from rideflow.schemas.schemas import (
    CancelRideRequest,
    EstimateRequest,
    EstimateResponse,
    FareBreakdown,
    LocationOut,
    RateRideRequest,
    RideCreateRequest,
    RideListResponse,
    RideResponse,
    RideStatusEnum,
    RideStatusUpdateRequest,
    RoleEnum,
    TariffOut,
    VehicleClassEnum,
)
from rideflow.services import rides as ride_service
from rideflow.services.geo import GeoResolver, ResolvedLocation, get_resolver
from rideflow.services.pricing import get_tariff

logger = logging.getLogger(__name__)
settings = get_settings()
router = APIRouter(prefix="/v1/rides", tags=["Rides"])


def _location_out(loc: ResolvedLocation) -> LocationOut:
    return LocationOut(address=loc.address, lat=loc.lat, lng=loc.lng, approximate=loc.approximate)


def _ensure_can_view(body: dict, principal: Principal) -> None:
    if principal.is_admin:
        return
    if principal.role == RoleEnum.rider.value and body["rider_id"] == principal.id:
        return
    if principal.role == RoleEnum.driver.value and body.get("driver_id") == principal.id:
        return
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not a participant of this ride")


@router.post("/estimate", response_model=EstimateResponse)
async def estimate_ride(
    payload: EstimateRequest,
    resolver: GeoResolver = Depends(get_resolver),
    principal: Principal = Depends(get_current_user),
):
    """Price a prospective ride. Nothing is persisted."""
    quote = await ride_service.quote_ride(
        resolver, payload.pickup, payload.destination, payload.vehicle_class.value
    )
    tariff = get_tariff(payload.vehicle_class.value)
    fare = quote.fare
    return EstimateResponse(
        pickup=_location_out(quote.pickup),
        destination=_location_out(quote.destination),
        vehicle_class=payload.vehicle_class,
        distance_km=quote.route.distance_km,
        duration_min=quote.route.duration_min,
        min_duration=quote.route.min_duration,
        max_duration=quote.route.max_duration,
        route_approximate=quote.route.approximate,
        fare=FareBreakdown(
            base_fare=fare.base_fare,
            distance_fare=fare.distance_fare,
            time_fare=fare.time_fare,
            service_fee=fare.service_fee,
            total_fare=fare.total_fare,
            currency=fare.currency,
        ),
        tariff=TariffOut(
            base_fare=tariff.base_fare,
            per_km_rate=tariff.per_km_rate,
            per_minute_rate=tariff.per_minute_rate,
            service_fee_percent=tariff.service_fee_percent,
        ),
    )


@router.post("", status_code=status.HTTP_201_CREATED, response_model=RideResponse)
async def order_ride(
    payload: RideCreateRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    resolver: GeoResolver = Depends(get_resolver),
    rider: Principal = Depends(get_current_rider),
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
):
    """Order a ride. The fare is priced server-side and frozen on the ride."""
    # 1. Idempotency replay
    if idempotency_key:
        cached = await check_idempotency(request, rider.id)
        if cached:
            return cached

    # 2. Price + persist
    ride = await ride_service.order_ride(
        db,
        resolver,
        rider_id=rider.id,
        pickup=payload.pickup,
        destination=payload.destination,
        vehicle_class=payload.vehicle_class.value,
        payment_method=payload.payment_method.value,
        instructions=payload.instructions,
        idempotency_key=idempotency_key,
    )
    resp = RideResponse.from_ride(ride)

    # 3. Store idempotency result
    if idempotency_key:
        await store_idempotency_result(request, rider.id, 201, resp.model_dump(mode="json"))

    return resp


@router.get("", response_model=RideListResponse)
async def list_rides(
    status_filter: Optional[RideStatusEnum] = Query(default=None, alias="status"),
    vehicle_class: Optional[VehicleClassEnum] = None,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_user),
):
    """Dashboard projection: riders see their rides, drivers their assigned rides."""
    rider_id = principal.id if principal.role == RoleEnum.rider.value else None
    driver_id = principal.id if principal.role == RoleEnum.driver.value else None
    items, count = await ride_service.list_rides(
        db,
        rider_id=rider_id,
        driver_id=driver_id,
        status=status_filter,
        vehicle_class=vehicle_class,
        limit=limit,
        offset=offset,
    )
    return RideListResponse(
        items=[RideResponse.from_ride(r) for r in items], count=count, limit=limit, offset=offset
    )


@router.get("/active", response_model=Optional[RideResponse])
async def get_active_ride(
    db: AsyncSession = Depends(get_db),
    rider: Principal = Depends(get_current_rider),
):
    ride = await ride_service.active_ride_for_rider(db, rider.id)
    return RideResponse.from_ride(ride) if ride else None


@router.get("/{ride_id}", response_model=RideResponse)
async def get_ride(
    ride_id: str,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(get_current_user),
):
    redis = await get_redis()

    # Cache-aside: check Redis first
    cache_key = ride_cache_key(ride_id)
    cached = await cache_get(redis, cache_key)
    if cached:
        data = json.loads(cached)
        _ensure_can_view(data, principal)
        return RideResponse(**data)

    # DB fallback
    ride = await ride_service.get_ride(db, ride_id)
    resp = RideResponse.from_ride(ride)
    body = resp.model_dump(mode="json")
    _ensure_can_view(body, principal)

    await cache_set(redis, cache_key, json.dumps(body), ttl=settings.ride_cache_ttl_seconds)
    # A transition may have committed and invalidated between our read and the SETEX
    await db.commit()
    fresh = RideResponse.from_ride(await ride_service.get_ride(db, ride_id)).model_dump(mode="json")
    if fresh != body:
        await cache_delete(redis, cache_key)
    return resp


@router.post("/{ride_id}/accept", response_model=RideResponse)
async def accept_ride(
    ride_id: str,
    db: AsyncSession = Depends(get_db),
    driver: Principal = Depends(get_current_driver),
):
    """Driver claims an unassigned ride. Exactly one concurrent caller wins."""
    ride = await ride_service.accept_ride(db, ride_id, driver.id)
    await invalidate_ride(ride_id)
    return RideResponse.from_ride(ride)


@router.post("/{ride_id}/decline", response_model=RideResponse)
async def decline_ride(
    ride_id: str,
    payload: Optional[CancelRideRequest] = None,
    db: AsyncSession = Depends(get_db),
    driver: Principal = Depends(get_current_driver),
):
    """Assigned driver backs out; the ride is cancelled and the driver released."""
    ride = await ride_service.decline_ride(
        db, ride_id, driver_id=driver.id, reason=payload.reason if payload else None
    )
    await invalidate_ride(ride_id)
    return RideResponse.from_ride(ride)


@router.post("/{ride_id}/cancel", response_model=RideResponse)
async def cancel_ride(
    ride_id: str,
    payload: Optional[CancelRideRequest] = None,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_roles(RoleEnum.rider, RoleEnum.admin)),
):
    """Rider (own ride) or admin cancels. Repeating a cancel is a no-op."""
    ride = await ride_service.cancel_ride(
        db,
        ride_id,
        cancelled_by=principal.role,
        reason=payload.reason if payload else None,
        rider_id=None if principal.is_admin else principal.id,
    )
    await invalidate_ride(ride_id)
    return RideResponse.from_ride(ride)


@router.patch("/{ride_id}/status", response_model=RideResponse)
async def update_ride_status(
    ride_id: str,
    payload: RideStatusUpdateRequest,
    db: AsyncSession = Depends(get_db),
    principal: Principal = Depends(require_roles(RoleEnum.driver, RoleEnum.admin)),
):
    """Ordered advance: arrived -> picked_up -> in_progress -> completed."""
    ride = await ride_service.advance_ride(
        db,
        ride_id,
        payload.status.value,
        driver_id=None if principal.is_admin else principal.id,
    )
    await invalidate_ride(ride_id)
    return RideResponse.from_ride(ride)


@router.post("/{ride_id}/rate", response_model=RideResponse)
async def rate_ride(
    ride_id: str,
    payload: RateRideRequest,
    db: AsyncSession = Depends(get_db),
    rider: Principal = Depends(get_current_rider),
):
    ride = await ride_service.rate_ride(
        db, ride_id, rider_id=rider.id, rating=payload.rating, feedback=payload.feedback
    )
    await invalidate_ride(ride_id)
    return RideResponse.from_ride(ride)
