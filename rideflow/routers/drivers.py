"""
Drivers router — POST /v1/drivers (onboarding), GET /v1/drivers/me,
                 GET /v1/drivers/me/rides
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from rideflow.database import get_db
from rideflow.middleware.auth import Principal, get_current_driver
from rideflow.models.driver import Driver
from rideflow.schemas.schemas import (
    DriverCreateRequest,
    DriverResponse,
    DriverStatusEnum,
    RideListResponse,
    RideResponse,
    RideStatusEnum,
)
from rideflow.services import assignment
from rideflow.services import rides as ride_service

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/v1/drivers", tags=["Drivers"])


@router.post("", status_code=status.HTTP_201_CREATED, response_model=DriverResponse)
async def create_driver(
    payload: DriverCreateRequest,
    db: AsyncSession = Depends(get_db),
):
    """Register a new driver. No auth required for onboarding; starts as pending."""
    existing = await db.scalar(select(Driver.id).where(Driver.phone == payload.phone))
    if existing:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Phone already registered")
    driver = Driver(
        name=payload.name,
        phone=payload.phone,
        status=DriverStatusEnum.pending.value,
    )
    db.add(driver)
    await db.commit()
    await db.refresh(driver)
    logger.info("Driver %s registered", driver.id)
    return DriverResponse.model_validate(driver)


@router.get("/me", response_model=DriverResponse)
async def get_me(
    db: AsyncSession = Depends(get_db),
    driver: Principal = Depends(get_current_driver),
):
    return DriverResponse.model_validate(await assignment.load_driver(db, driver.id))


@router.get("/me/rides", response_model=RideListResponse)
async def my_rides(
    status_filter: Optional[RideStatusEnum] = Query(default=None, alias="status"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: AsyncSession = Depends(get_db),
    driver: Principal = Depends(get_current_driver),
):
    """Rides assigned to the calling driver."""
    items, count = await ride_service.list_rides(
        db, driver_id=driver.id, status=status_filter, limit=limit, offset=offset
    )
    return RideListResponse(
        items=[RideResponse.from_ride(r) for r in items], count=count, limit=limit, offset=offset
    )
