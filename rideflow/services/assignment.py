"""
Driver / vehicle assignment registry.

Invariants:
  - a driver holds at most one vehicle, and the vehicle points back at them
  - a driver is ``on_ride`` for at most one accepted-but-unfinished ride

Every multi-row change is a set of conditional UPDATEs (compare-and-set on
the status read beforehand) inside a single transaction. The row count of
each UPDATE decides who won a race; the loser rolls back and gets a domain
error, so a driver is never double-booked and a ride never has two drivers.
"""
import logging
from dataclasses import dataclass

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from rideflow.errors import (
    AlreadyAssigned,
    DriverBusy,
    DriverNotFound,
    DriverUnavailable,
    InvalidStatusChange,
    InvalidTransition,
    RideNotFound,
    VehicleNotFound,
    VehicleUnavailable,
)
from rideflow.models.driver import Driver
from rideflow.models.ride import Ride
from rideflow.models.vehicle import Vehicle
from rideflow.schemas.schemas import DriverStatusEnum, RideStatusEnum, VehicleStatusEnum
from rideflow.services.state_machine import UNASSIGNED, is_terminal, next_timestamp

logger = logging.getLogger(__name__)

ACTIVE = DriverStatusEnum.active.value
ON_RIDE = DriverStatusEnum.on_ride.value

# Statuses an administrator may put a driver in; on_ride belongs to assignment
ADMIN_DRIVER_STATUSES = frozenset(
    s.value for s in (DriverStatusEnum.pending, DriverStatusEnum.active,
                      DriverStatusEnum.suspended, DriverStatusEnum.inactive)
)
ADMIN_VEHICLE_STATUSES = frozenset(
    s.value for s in (VehicleStatusEnum.available, VehicleStatusEnum.maintenance,
                      VehicleStatusEnum.inactive)
)


@dataclass(frozen=True)
class Assignment:
    ride_id: str
    driver_id: str
    vehicle_id: str


def _cas(statement):
    # Row counts are the source of truth; in-session objects are re-read after commit
    return statement.execution_options(synchronize_session=False)


async def load_ride(db: AsyncSession, ride_id: str) -> Ride:
    ride = await db.get(Ride, ride_id, populate_existing=True)
    if ride is None:
        raise RideNotFound(f"Ride {ride_id} not found")
    return ride


async def load_driver(db: AsyncSession, driver_id: str) -> Driver:
    driver = await db.get(Driver, driver_id, populate_existing=True)
    if driver is None:
        raise DriverNotFound(f"Driver {driver_id} not found")
    return driver


async def load_vehicle(db: AsyncSession, vehicle_id: str) -> Vehicle:
    vehicle = await db.get(Vehicle, vehicle_id, populate_existing=True)
    if vehicle is None:
        raise VehicleNotFound(f"Vehicle {vehicle_id} not found")
    return vehicle


# ---------------------------------------------------------------------------
# Ride assignment
# ---------------------------------------------------------------------------

async def assign(db: AsyncSession, ride_id: str, driver_id: str) -> Assignment:
    """
    Bind a driver (and the vehicle on their file) to an unassigned ride.

    Atomically:
      - driver status active -> on_ride
      - ride status unassigned -> accepted, with driver/vehicle set
    """
    ride = await load_ride(db, ride_id)
    if is_terminal(ride.status):
        raise InvalidTransition(f"Ride {ride_id} is already {ride.status}")
    if ride.status not in UNASSIGNED:
        raise AlreadyAssigned(f"Ride {ride_id} is already assigned")

    driver = await load_driver(db, driver_id)
    if driver.status == ON_RIDE:
        raise AlreadyAssigned(f"Driver {driver_id} is already on a ride")
    if driver.status != ACTIVE:
        raise DriverUnavailable(f"Driver {driver_id} is {driver.status}")
    if driver.vehicle_id is None:
        raise DriverUnavailable(f"Driver {driver_id} has no vehicle on file")

    vehicle = await load_vehicle(db, driver.vehicle_id)
    if vehicle.vehicle_class != ride.vehicle_class:
        raise DriverUnavailable(
            f"Driver {driver_id} drives a {vehicle.vehicle_class}, ride needs a {ride.vehicle_class}"
        )

    accepted_at = next_timestamp(ride)
    try:
        claimed = await db.execute(_cas(
            update(Driver)
            .where(Driver.id == driver_id, Driver.status == ACTIVE, Driver.vehicle_id == vehicle.id)
            .values(status=ON_RIDE)
        ))
        if claimed.rowcount != 1:
            raise AlreadyAssigned(f"Driver {driver_id} was claimed by another assignment")

        bound = await db.execute(_cas(
            update(Ride)
            .where(Ride.id == ride_id, Ride.status.in_(sorted(UNASSIGNED)))
            .values(
                status=RideStatusEnum.accepted.value,
                driver_id=driver_id,
                vehicle_id=vehicle.id,
                accepted_at=accepted_at,
            )
        ))
        if bound.rowcount != 1:
            raise AlreadyAssigned(f"Ride {ride_id} was claimed by another assignment")
    except Exception:
        await db.rollback()
        raise

    await db.commit()
    logger.info("Assigned ride=%s to driver=%s vehicle=%s", ride_id, driver_id, vehicle.id)
    return Assignment(ride_id=ride_id, driver_id=driver_id, vehicle_id=vehicle.id)


async def release(db: AsyncSession, ride: Ride, fare_earned: int | None = None) -> None:
    """
    Return the ride's driver to ``active``; the vehicle stays bound to them.

    With ``fare_earned`` (ride completion) the driver's trip count and
    earnings are credited in the same statement. Runs inside the caller's
    transaction and does not commit.
    """
    if ride.driver_id is None:
        return
    values: dict = {"status": ACTIVE}
    if fare_earned is not None:
        values["total_trips"] = Driver.total_trips + 1
        values["total_earnings"] = Driver.total_earnings + fare_earned
    await db.execute(_cas(update(Driver).where(Driver.id == ride.driver_id).values(**values)))
    logger.info("Released driver=%s from ride=%s", ride.driver_id, ride.id)


# ---------------------------------------------------------------------------
# Vehicle binding (administrative)
# ---------------------------------------------------------------------------

async def bind_vehicle(db: AsyncSession, driver_id: str, vehicle_id: str) -> Driver:
    driver = await load_driver(db, driver_id)
    vehicle = await load_vehicle(db, vehicle_id)
    if vehicle.status != VehicleStatusEnum.available.value or vehicle.assigned_driver_id is not None:
        raise VehicleUnavailable(f"Vehicle {vehicle_id} is {vehicle.status}")
    if driver.vehicle_id is not None:
        raise AlreadyAssigned(f"Driver {driver_id} already has vehicle {driver.vehicle_id}")

    try:
        taken = await db.execute(_cas(
            update(Vehicle)
            .where(
                Vehicle.id == vehicle_id,
                Vehicle.status == VehicleStatusEnum.available.value,
                Vehicle.assigned_driver_id.is_(None),
            )
            .values(status=VehicleStatusEnum.assigned.value, assigned_driver_id=driver_id)
        ))
        if taken.rowcount != 1:
            raise VehicleUnavailable(f"Vehicle {vehicle_id} was taken by another assignment")

        linked = await db.execute(_cas(
            update(Driver)
            .where(Driver.id == driver_id, Driver.vehicle_id.is_(None))
            .values(vehicle_id=vehicle_id)
        ))
        if linked.rowcount != 1:
            raise AlreadyAssigned(f"Driver {driver_id} received another vehicle concurrently")
    except Exception:
        await db.rollback()
        raise

    await db.commit()
    logger.info("Bound vehicle=%s to driver=%s", vehicle_id, driver_id)
    return await load_driver(db, driver_id)


async def unbind_vehicle(db: AsyncSession, driver_id: str) -> Driver:
    driver = await load_driver(db, driver_id)
    if driver.status == ON_RIDE:
        raise DriverBusy(f"Driver {driver_id} is on a ride")
    if driver.vehicle_id is None:
        raise VehicleNotFound(f"Driver {driver_id} has no vehicle assigned")
    vehicle_id = driver.vehicle_id

    try:
        unlinked = await db.execute(_cas(
            update(Driver)
            .where(Driver.id == driver_id, Driver.vehicle_id == vehicle_id, Driver.status != ON_RIDE)
            .values(vehicle_id=None)
        ))
        if unlinked.rowcount != 1:
            raise DriverBusy(f"Driver {driver_id} changed concurrently (on a ride or vehicle moved)")

        await db.execute(_cas(
            update(Vehicle)
            .where(Vehicle.id == vehicle_id, Vehicle.assigned_driver_id == driver_id)
            .values(status=VehicleStatusEnum.available.value, assigned_driver_id=None)
        ))
    except Exception:
        await db.rollback()
        raise

    await db.commit()
    logger.info("Unbound vehicle=%s from driver=%s", vehicle_id, driver_id)
    return await load_driver(db, driver_id)


# ---------------------------------------------------------------------------
# Administrative status changes
# ---------------------------------------------------------------------------

async def set_driver_status(db: AsyncSession, driver_id: str, status: str) -> Driver:
    status = getattr(status, "value", status)
    if status not in ADMIN_DRIVER_STATUSES:
        raise InvalidStatusChange(f"status must be one of {sorted(ADMIN_DRIVER_STATUSES)}")
    await load_driver(db, driver_id)

    try:
        changed = await db.execute(_cas(
            update(Driver).where(Driver.id == driver_id, Driver.status != ON_RIDE).values(status=status)
        ))
        if changed.rowcount != 1:
            raise DriverBusy(f"Driver {driver_id} is on a ride")
    except Exception:
        await db.rollback()
        raise

    await db.commit()
    logger.info("Driver %s status -> %s", driver_id, status)
    return await load_driver(db, driver_id)


async def set_vehicle_status(db: AsyncSession, vehicle_id: str, status: str) -> Vehicle:
    status = getattr(status, "value", status)
    if status not in ADMIN_VEHICLE_STATUSES:
        raise InvalidStatusChange(f"status must be one of {sorted(ADMIN_VEHICLE_STATUSES)}")
    await load_vehicle(db, vehicle_id)

    try:
        changed = await db.execute(_cas(
            update(Vehicle)
            .where(Vehicle.id == vehicle_id, Vehicle.assigned_driver_id.is_(None))
            .values(status=status)
        ))
        if changed.rowcount != 1:
            raise VehicleUnavailable(f"Vehicle {vehicle_id} is assigned to a driver")
    except Exception:
        await db.rollback()
        raise

    await db.commit()
    logger.info("Vehicle %s status -> %s", vehicle_id, status)
    return await load_vehicle(db, vehicle_id)


# ---------------------------------------------------------------------------
# Read-only projections
# ---------------------------------------------------------------------------

async def available_drivers_for_ride(db: AsyncSession, ride: Ride) -> list[Driver]:
    """Active drivers whose vehicle matches the ride's class."""
    result = await db.execute(
        select(Driver)
        .join(Vehicle, Driver.vehicle_id == Vehicle.id)
        .where(Driver.status == ACTIVE, Vehicle.vehicle_class == ride.vehicle_class)
        .order_by(Driver.rating.desc().nulls_last(), Driver.created_at)
    )
    return list(result.scalars().all())


async def driver_stats(db: AsyncSession) -> dict[str, int]:
    rows = await db.execute(select(Driver.status, func.count()).group_by(Driver.status))
    by_status = {status: count for status, count in rows.all()}
    with_vehicle = await db.scalar(select(func.count()).select_from(Driver).where(Driver.vehicle_id.is_not(None)))
    return {
        "total_drivers": sum(by_status.values()),
        "active_drivers": by_status.get(ACTIVE, 0),
        "pending_drivers": by_status.get(DriverStatusEnum.pending.value, 0),
        "on_ride_drivers": by_status.get(ON_RIDE, 0),
        "suspended_drivers": by_status.get(DriverStatusEnum.suspended.value, 0),
        "inactive_drivers": by_status.get(DriverStatusEnum.inactive.value, 0),
        "drivers_with_vehicles": with_vehicle or 0,
    }
