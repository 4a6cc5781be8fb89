"""
Admin router: ride assignment and oversight, driver status, vehicle fleet
and driver/vehicle binding. Every route requires an admin token.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from rideflow.database import get_db
from rideflow.middleware.auth import get_current_admin
from rideflow.models.driver import Driver
from rideflow.models.vehicle import Vehicle
from rideflow.redis_client import invalidate_ride
from rideflow.schemas.schemas import (
    AssignDriverRequest,
    AssignVehicleRequest,
    CancelRideRequest,
    DriverResponse,
    DriverStatsResponse,
    DriverStatusEnum,
    DriverStatusUpdateRequest,
    RideListResponse,
    RideResponse,
    RideStatusEnum,
    RideStatusUpdateRequest,
    VehicleClassEnum,
    VehicleCreateRequest,
    VehicleResponse,
    VehicleStatusEnum,
    VehicleStatusUpdateRequest,
)
from rideflow.services import assignment
from rideflow.services import rides as ride_service
from rideflow.services.pricing import get_tariff

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/v1/admin", tags=["Admin"], dependencies=[Depends(get_current_admin)])


# ---------------------------------------------------------------------------
# Rides
# ---------------------------------------------------------------------------

@router.get("/rides", response_model=RideListResponse)
async def list_rides(
    status_filter: Optional[RideStatusEnum] = Query(default=None, alias="status"),
    vehicle_class: Optional[VehicleClassEnum] = None,
    rider_id: Optional[str] = None,
    driver_id: Optional[str] = None,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: AsyncSession = Depends(get_db),
):
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


@router.post("/rides/{ride_id}/assign", response_model=RideResponse)
async def assign_driver(
    ride_id: str,
    payload: AssignDriverRequest,
    db: AsyncSession = Depends(get_db),
):
    """Administrative equivalent of a driver accepting the ride."""
    ride = await ride_service.accept_ride(db, ride_id, payload.driver_id)
    await invalidate_ride(ride_id)
    return RideResponse.from_ride(ride)


@router.post("/rides/{ride_id}/decline", response_model=RideResponse)
async def decline_ride(
    ride_id: str,
    payload: Optional[CancelRideRequest] = None,
    db: AsyncSession = Depends(get_db),
):
    ride = await ride_service.decline_ride(db, ride_id, reason=payload.reason if payload else None)
    await invalidate_ride(ride_id)
    return RideResponse.from_ride(ride)


@router.patch("/rides/{ride_id}/status", response_model=RideResponse)
async def update_ride_status(
    ride_id: str,
    payload: RideStatusUpdateRequest,
    db: AsyncSession = Depends(get_db),
):
    ride = await ride_service.advance_ride(db, ride_id, payload.status.value)
    await invalidate_ride(ride_id)
    return RideResponse.from_ride(ride)


@router.get("/rides/{ride_id}/available-drivers", response_model=list[DriverResponse])
async def available_drivers(
    ride_id: str,
    db: AsyncSession = Depends(get_db),
):
    """Active drivers whose vehicle matches the ride's class."""
    ride = await ride_service.get_ride(db, ride_id)
    drivers = await assignment.available_drivers_for_ride(db, ride)
    return [DriverResponse.model_validate(d) for d in drivers]


# ---------------------------------------------------------------------------
# Drivers
# ---------------------------------------------------------------------------

@router.get("/drivers", response_model=list[DriverResponse])
async def list_drivers(
    status_filter: Optional[DriverStatusEnum] = Query(default=None, alias="status"),
    without_vehicle: bool = False,
    db: AsyncSession = Depends(get_db),
):
    query = select(Driver).order_by(Driver.created_at)
    if status_filter is not None:
        query = query.where(Driver.status == status_filter.value)
    if without_vehicle:
        query = query.where(Driver.vehicle_id.is_(None))
    result = await db.execute(query)
    return [DriverResponse.model_validate(d) for d in result.scalars().all()]


@router.get("/drivers/stats", response_model=DriverStatsResponse)
async def driver_stats(db: AsyncSession = Depends(get_db)):
    return DriverStatsResponse(**await assignment.driver_stats(db))


@router.get("/drivers/{driver_id}", response_model=DriverResponse)
async def get_driver(driver_id: str, db: AsyncSession = Depends(get_db)):
    return DriverResponse.model_validate(await assignment.load_driver(db, driver_id))


@router.patch("/drivers/{driver_id}/status", response_model=DriverResponse)
async def update_driver_status(
    driver_id: str,
    payload: DriverStatusUpdateRequest,
    db: AsyncSession = Depends(get_db),
):
    """Activate, suspend or deactivate a driver. on_ride is set by assignment only."""
    driver = await assignment.set_driver_status(db, driver_id, payload.status.value)
    return DriverResponse.model_validate(driver)


@router.post("/drivers/{driver_id}/assign-vehicle", response_model=DriverResponse)
async def assign_vehicle(
    driver_id: str,
    payload: AssignVehicleRequest,
    db: AsyncSession = Depends(get_db),
):
    driver = await assignment.bind_vehicle(db, driver_id, payload.vehicle_id)
    return DriverResponse.model_validate(driver)


@router.post("/drivers/{driver_id}/unassign-vehicle", response_model=DriverResponse)
async def unassign_vehicle(
    driver_id: str,
    db: AsyncSession = Depends(get_db),
):
    driver = await assignment.unbind_vehicle(db, driver_id)
    return DriverResponse.model_validate(driver)


# ---------------------------------------------------------------------------
# Vehicles
# ---------------------------------------------------------------------------

@router.post("/vehicles", status_code=status.HTTP_201_CREATED, response_model=VehicleResponse)
async def create_vehicle(
    payload: VehicleCreateRequest,
    db: AsyncSession = Depends(get_db),
):
    plate = payload.license_plate.upper()
    existing = await db.scalar(select(Vehicle.id).where(Vehicle.license_plate == plate))
    if existing:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="License plate already registered")
    vehicle = Vehicle(
        make=payload.make,
        model=payload.model,
        license_plate=plate,
        vehicle_class=payload.vehicle_class.value,
        capacity=payload.capacity or get_tariff(payload.vehicle_class.value).capacity,
        status=VehicleStatusEnum.available.value,
    )
    db.add(vehicle)
    await db.commit()
    await db.refresh(vehicle)
    logger.info("Vehicle %s registered (%s)", vehicle.id, vehicle.vehicle_class)
    return VehicleResponse.model_validate(vehicle)


@router.get("/vehicles", response_model=list[VehicleResponse])
async def list_vehicles(
    status_filter: Optional[VehicleStatusEnum] = Query(default=None, alias="status"),
    vehicle_class: Optional[VehicleClassEnum] = None,
    db: AsyncSession = Depends(get_db),
):
    query = select(Vehicle).order_by(Vehicle.created_at)
    if status_filter is not None:
        query = query.where(Vehicle.status == status_filter.value)
    if vehicle_class is not None:
        query = query.where(Vehicle.vehicle_class == vehicle_class.value)
    result = await db.execute(query)
    return [VehicleResponse.model_validate(v) for v in result.scalars().all()]


@router.get("/vehicles/{vehicle_id}", response_model=VehicleResponse)
async def get_vehicle(vehicle_id: str, db: AsyncSession = Depends(get_db)):
    return VehicleResponse.model_validate(await assignment.load_vehicle(db, vehicle_id))


@router.patch("/vehicles/{vehicle_id}/status", response_model=VehicleResponse)
async def update_vehicle_status(
    vehicle_id: str,
    payload: VehicleStatusUpdateRequest,
    db: AsyncSession = Depends(get_db),
):
    """available / maintenance / inactive; assigned is set by binding only."""
    vehicle = await assignment.set_vehicle_status(db, vehicle_id, payload.status.value)
    return VehicleResponse.model_validate(vehicle)
