"""
Ride lifecycle operations.

    order -> (searching / awaiting_driver_confirmation) -> accepted
          -> arrived -> picked_up -> in_progress -> completed
    any non-terminal status -> cancelled

The fare is priced and frozen when the ride is ordered. Every status write is
a compare-and-set on the status that was read; side effects on the driver
(release, trip/earnings credit) happen in the same transaction as the status
change. Repeating a terminal transition returns the ride untouched.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from rideflow.config import get_settings
from rideflow.errors import InvalidTransition, NotRideParticipant
from rideflow.models.driver import Driver
from rideflow.models.ride import Ride
from rideflow.schemas.schemas import LocationInput, RideStatusEnum
from rideflow.services import assignment, pricing
from rideflow.services.geo import GeoResolver, ResolvedLocation, RouteEstimate
from rideflow.services.state_machine import (
    ASSIGNED,
    TERMINAL,
    TIMESTAMP_FOR,
    check_transition,
    next_timestamp,
    status_value,
)

logger = logging.getLogger(__name__)
settings = get_settings()

CANCELLED = RideStatusEnum.cancelled.value
COMPLETED = RideStatusEnum.completed.value


@dataclass(frozen=True)
class RideQuote:
    pickup: ResolvedLocation
    destination: ResolvedLocation
    route: RouteEstimate
    fare: pricing.FareQuote


async def quote_ride(
    resolver: GeoResolver,
    pickup: LocationInput,
    destination: LocationInput,
    vehicle_class: str,
) -> RideQuote:
    """Resolve both ends, route between them and price the trip. No writes."""
    origin = await resolver.resolve(pickup.address, pickup.lat, pickup.lng)
    dest = await resolver.resolve(destination.address, destination.lat, destination.lng)
    route = await resolver.distance_and_duration(origin, dest, vehicle_class)
    fare = pricing.estimate(route.distance_km, route.duration_min, vehicle_class)
    return RideQuote(pickup=origin, destination=dest, route=route, fare=fare)


async def order_ride(
    db: AsyncSession,
    resolver: GeoResolver,
    *,
    rider_id: str,
    pickup: LocationInput,
    destination: LocationInput,
    vehicle_class: str,
    payment_method: str,
    instructions: str | None = None,
    idempotency_key: str | None = None,
) -> Ride:
    """Create a ``pending`` ride with a server-side, frozen fare."""
    # Keys are scoped per rider so two riders can never collide
    scoped_key = f"{rider_id}:{idempotency_key}" if idempotency_key else None
    if scoped_key:
        existing = await db.scalar(select(Ride).where(Ride.idempotency_key == scoped_key))
        if existing is not None:
            return existing

    quote = await quote_ride(resolver, pickup, destination, vehicle_class)
    fare = quote.fare

    ride = Ride(
        rider_id=rider_id,
        pickup_address=quote.pickup.address,
        pickup_lat=quote.pickup.lat,
        pickup_lng=quote.pickup.lng,
        pickup_approximate=quote.pickup.approximate,
        dest_address=quote.destination.address,
        dest_lat=quote.destination.lat,
        dest_lng=quote.destination.lng,
        dest_approximate=quote.destination.approximate,
        vehicle_class=status_value(vehicle_class),
        status=RideStatusEnum.pending.value,
        payment_method=status_value(payment_method),
        distance_km=quote.route.distance_km,
        duration_min=quote.route.duration_min,
        route_approximate=quote.route.approximate,
        base_fare=fare.base_fare,
        distance_fare=fare.distance_fare,
        time_fare=fare.time_fare,
        service_fee=fare.service_fee,
        total_fare=fare.total_fare,
        currency=fare.currency,
        instructions=instructions,
        idempotency_key=scoped_key,
        requested_at=datetime.now(timezone.utc),
    )
    db.add(ride)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        if scoped_key is None:
            raise
        # A concurrent retry with the same key committed first
        existing = await db.scalar(
            select(Ride).where(Ride.idempotency_key == scoped_key).execution_options(populate_existing=True)
        )
        if existing is None:
            raise
        logger.info("Ride %s replayed for rider=%s key=%s", existing.id, rider_id, idempotency_key)
        return existing
    await db.refresh(ride)
    logger.info(
        "Ride %s ordered by rider=%s class=%s total=%s %s",
        ride.id, rider_id, ride.vehicle_class, ride.total_fare, ride.currency,
    )
    return ride


async def get_ride(db: AsyncSession, ride_id: str) -> Ride:
    return await assignment.load_ride(db, ride_id)


async def accept_ride(db: AsyncSession, ride_id: str, driver_id: str) -> Ride:
    """Driver- or admin-initiated acceptance; same invariants either way."""
    await assignment.assign(db, ride_id, driver_id)
    return await get_ride(db, ride_id)


async def advance_ride(
    db: AsyncSession,
    ride_id: str,
    target: str,
    *,
    driver_id: str | None = None,
) -> Ride:
    """
    Move a ride one step forward (arrived, picked_up, in_progress, completed,
    or between the unassigned observability statuses).

    ``driver_id`` restricts the call to the ride's assigned driver.
    """
    target = status_value(target)
    if target == RideStatusEnum.accepted.value:
        raise InvalidTransition("Rides are accepted through driver assignment")
    if target == CANCELLED:
        raise InvalidTransition("Rides are cancelled through cancel or decline")

    ride = await get_ride(db, ride_id)
    if driver_id is not None and ride.driver_id != driver_id:
        raise NotRideParticipant(f"Ride {ride_id} is not assigned to driver {driver_id}")
    if not check_transition(ride.status, target):
        return ride

    observed = ride.status
    values: dict = {"status": target}
    stamp_field = TIMESTAMP_FOR.get(target)
    if stamp_field:
        values[stamp_field] = next_timestamp(ride)

    try:
        moved = await db.execute(
            update(Ride)
            .where(Ride.id == ride_id, Ride.status == observed)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if moved.rowcount != 1:
            raise InvalidTransition(f"Ride {ride_id} changed while moving to {target}")
        if target == COMPLETED:
            await assignment.release(db, ride, fare_earned=ride.total_fare)
    except InvalidTransition:
        await db.rollback()
        current = await get_ride(db, ride_id)
        # A concurrent duplicate of the same terminal move already did the work
        if current.status == target and target in TERMINAL:
            return current
        raise
    except Exception:
        await db.rollback()
        raise

    await db.commit()
    logger.info("Ride %s: %s -> %s", ride_id, observed, target)
    return await get_ride(db, ride_id)


async def cancel_ride(
    db: AsyncSession,
    ride_id: str,
    *,
    cancelled_by: str,
    reason: str | None = None,
    rider_id: str | None = None,
    driver_id: str | None = None,
) -> Ride:
    """
    Cancel any non-terminal ride, releasing the driver if one was bound.

    ``rider_id`` / ``driver_id`` restrict the call to that participant. A
    cancel that races a concurrent advance re-reads and tries again.
    """
    for _ in range(max(settings.cancel_max_attempts, 1)):
        ride = await get_ride(db, ride_id)
        if rider_id is not None and ride.rider_id != rider_id:
            raise NotRideParticipant(f"Ride {ride_id} does not belong to rider {rider_id}")
        if driver_id is not None and ride.driver_id != driver_id:
            raise NotRideParticipant(f"Ride {ride_id} is not assigned to driver {driver_id}")
        if not check_transition(ride.status, CANCELLED):
            return ride

        observed = ride.status
        try:
            moved = await db.execute(
                update(Ride)
                .where(Ride.id == ride_id, Ride.status == observed)
                .values(
                    status=CANCELLED,
                    cancelled_at=next_timestamp(ride),
                    cancelled_by=cancelled_by,
                    cancel_reason=reason,
                )
                .execution_options(synchronize_session=False)
            )
            if moved.rowcount != 1:
                await db.rollback()
                continue
            if observed in ASSIGNED:
                await assignment.release(db, ride)
        except Exception:
            await db.rollback()
            raise

        await db.commit()
        logger.info("Ride %s cancelled by %s from %s", ride_id, cancelled_by, observed)
        return await get_ride(db, ride_id)

    raise InvalidTransition(f"Ride {ride_id} kept changing; cancel not applied")


async def decline_ride(
    db: AsyncSession,
    ride_id: str,
    *,
    driver_id: str | None = None,
    reason: str | None = None,
) -> Ride:
    """
    Driver (or admin, with no ``driver_id``) declines a ride.

    A driver may only decline a ride assigned to them; the ride is cancelled
    and the driver released.
    """
    return await cancel_ride(
        db,
        ride_id,
        cancelled_by="driver" if driver_id is not None else "admin",
        reason=reason or "declined",
        driver_id=driver_id,
    )


async def rate_ride(
    db: AsyncSession,
    ride_id: str,
    *,
    rider_id: str,
    rating: int,
    feedback: str | None = None,
) -> Ride:
    """Rider rates a completed ride; the driver's rating is a running mean."""
    ride = await get_ride(db, ride_id)
    if ride.rider_id != rider_id:
        raise NotRideParticipant(f"Ride {ride_id} does not belong to rider {rider_id}")
    if ride.status != COMPLETED:
        raise InvalidTransition("Only completed rides can be rated")
    if ride.rider_rating is not None:
        raise InvalidTransition(f"Ride {ride_id} has already been rated")

    try:
        rated = await db.execute(
            update(Ride)
            .where(Ride.id == ride_id, Ride.rider_rating.is_(None))
            .values(rider_rating=rating, rider_feedback=feedback)
            .execution_options(synchronize_session=False)
        )
        if rated.rowcount != 1:
            raise InvalidTransition(f"Ride {ride_id} has already been rated")
        await db.execute(
            update(Driver)
            .where(Driver.id == ride.driver_id)
            .values(
                rating=(func.coalesce(Driver.rating, 0.0) * Driver.rated_trips + float(rating))
                / (Driver.rated_trips + 1),
                rated_trips=Driver.rated_trips + 1,
            )
            .execution_options(synchronize_session=False)
        )
    except Exception:
        await db.rollback()
        raise

    await db.commit()
    return await get_ride(db, ride_id)


# ---------------------------------------------------------------------------
# Read-only projections
# ---------------------------------------------------------------------------

async def list_rides(
    db: AsyncSession,
    *,
    rider_id: str | None = None,
    driver_id: str | None = None,
    status: str | None = None,
    vehicle_class: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[Ride], int]:
    query = select(Ride)
    if rider_id is not None:
        query = query.where(Ride.rider_id == rider_id)
    if driver_id is not None:
        query = query.where(Ride.driver_id == driver_id)
    if status is not None:
        query = query.where(Ride.status == status_value(status))
    if vehicle_class is not None:
        query = query.where(Ride.vehicle_class == status_value(vehicle_class))

    total = await db.scalar(select(func.count()).select_from(query.subquery()))
    result = await db.execute(
        query.order_by(Ride.created_at.desc(), Ride.id).limit(limit).offset(offset)
    )
    return list(result.scalars().all()), total or 0


async def active_ride_for_rider(db: AsyncSession, rider_id: str) -> Ride | None:
    return await db.scalar(
        select(Ride)
        .where(Ride.rider_id == rider_id, Ride.status.not_in(sorted(TERMINAL)))
        .order_by(Ride.created_at.desc())
        .limit(1)
    )
