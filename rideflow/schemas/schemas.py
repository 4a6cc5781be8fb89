from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Optional
from pydantic import BaseModel, Field, model_validator

if TYPE_CHECKING:
    from rideflow.models.ride import Ride


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class VehicleClassEnum(str, Enum):
    bicycle = "bicycle"
    motorcycle = "motorcycle"
    car = "car"


class PaymentMethodEnum(str, Enum):
    cash = "cash"
    online = "online"


class RideStatusEnum(str, Enum):
    pending = "pending"
    searching = "searching"
    awaiting_driver_confirmation = "awaiting_driver_confirmation"
    accepted = "accepted"
    arrived = "arrived"
    picked_up = "picked_up"
    in_progress = "in_progress"
    completed = "completed"
    cancelled = "cancelled"


class DriverStatusEnum(str, Enum):
    pending = "pending"
    active = "active"
    on_ride = "on_ride"
    suspended = "suspended"
    inactive = "inactive"


class VehicleStatusEnum(str, Enum):
    available = "available"
    assigned = "assigned"
    maintenance = "maintenance"
    inactive = "inactive"


class RoleEnum(str, Enum):
    rider = "rider"
    driver = "driver"
    admin = "admin"


# ---------------------------------------------------------------------------
# Shared
# ---------------------------------------------------------------------------

class LocationInput(BaseModel):
    """An address, a coordinate pair, or both."""
    address: Optional[str] = Field(default=None, min_length=1, max_length=500)
    lat: Optional[float] = Field(default=None, ge=-90, le=90)
    lng: Optional[float] = Field(default=None, ge=-180, le=180)

    @model_validator(mode="after")
    def _address_or_point(self) -> "LocationInput":
        if (self.lat is None) != (self.lng is None):
            raise ValueError("lat and lng must be given together")
        if self.address is None and self.lat is None:
            raise ValueError("either an address or lat/lng is required")
        return self


class LocationOut(BaseModel):
    address: str
    lat: float
    lng: float
    approximate: bool = False


class FareBreakdown(BaseModel):
    base_fare: int
    distance_fare: int
    time_fare: int
    service_fee: int
    total_fare: int
    currency: str


# ---------------------------------------------------------------------------
# Ride schemas
# ---------------------------------------------------------------------------

class EstimateRequest(BaseModel):
    pickup: LocationInput
    destination: LocationInput
    vehicle_class: VehicleClassEnum = VehicleClassEnum.car


class TariffOut(BaseModel):
    base_fare: int
    per_km_rate: int
    per_minute_rate: int
    service_fee_percent: int


class EstimateResponse(BaseModel):
    pickup: LocationOut
    destination: LocationOut
    vehicle_class: VehicleClassEnum
    distance_km: float
    duration_min: int
    min_duration: int
    max_duration: int
    route_approximate: bool
    fare: FareBreakdown
    tariff: TariffOut


class RideCreateRequest(BaseModel):
    pickup: LocationInput
    destination: LocationInput
    vehicle_class: VehicleClassEnum
    payment_method: PaymentMethodEnum = PaymentMethodEnum.cash
    instructions: Optional[str] = Field(default=None, max_length=500)


class RideStatusUpdateRequest(BaseModel):
    status: RideStatusEnum


class CancelRideRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=255)


class AssignDriverRequest(BaseModel):
    driver_id: str


class RateRideRequest(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    feedback: Optional[str] = Field(default=None, max_length=1000)


class RideResponse(BaseModel):
    id: str
    rider_id: str
    driver_id: Optional[str] = None
    vehicle_id: Optional[str] = None
    status: RideStatusEnum
    vehicle_class: VehicleClassEnum
    payment_method: PaymentMethodEnum
    pickup: LocationOut
    destination: LocationOut
    distance_km: float
    duration_min: int
    route_approximate: bool
    fare: FareBreakdown
    instructions: Optional[str] = None
    cancelled_by: Optional[str] = None
    cancel_reason: Optional[str] = None
    rider_rating: Optional[int] = None
    rider_feedback: Optional[str] = None

    requested_at: Optional[datetime] = None
    accepted_at: Optional[datetime] = None
    arrived_at: Optional[datetime] = None
    picked_up_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    @classmethod
    def from_ride(cls, ride: "Ride") -> "RideResponse":
        return cls(
            id=ride.id,
            rider_id=ride.rider_id,
            driver_id=ride.driver_id,
            vehicle_id=ride.vehicle_id,
            status=ride.status,
            vehicle_class=ride.vehicle_class,
            payment_method=ride.payment_method,
            pickup=LocationOut(
                address=ride.pickup_address,
                lat=ride.pickup_lat,
                lng=ride.pickup_lng,
                approximate=ride.pickup_approximate,
            ),
            destination=LocationOut(
                address=ride.dest_address,
                lat=ride.dest_lat,
                lng=ride.dest_lng,
                approximate=ride.dest_approximate,
            ),
            distance_km=ride.distance_km,
            duration_min=ride.duration_min,
            route_approximate=ride.route_approximate,
            fare=FareBreakdown(
                base_fare=ride.base_fare,
                distance_fare=ride.distance_fare,
                time_fare=ride.time_fare,
                service_fee=ride.service_fee,
                total_fare=ride.total_fare,
                currency=ride.currency,
            ),
            instructions=ride.instructions,
            cancelled_by=ride.cancelled_by,
            cancel_reason=ride.cancel_reason,
            rider_rating=ride.rider_rating,
            rider_feedback=ride.rider_feedback,
            requested_at=ride.requested_at,
            accepted_at=ride.accepted_at,
            arrived_at=ride.arrived_at,
            picked_up_at=ride.picked_up_at,
            started_at=ride.started_at,
            completed_at=ride.completed_at,
            cancelled_at=ride.cancelled_at,
        )


class RideListResponse(BaseModel):
    items: list[RideResponse]
    count: int
    limit: int
    offset: int


# ---------------------------------------------------------------------------
# Driver schemas
# ---------------------------------------------------------------------------

class DriverCreateRequest(BaseModel):
    name: str = Field(..., min_length=2, max_length=255)
    phone: str = Field(..., min_length=10, max_length=20)


class DriverResponse(BaseModel):
    id: str
    name: str
    phone: str
    status: DriverStatusEnum
    vehicle_id: Optional[str] = None
    total_trips: int
    total_earnings: int
    rating: Optional[float] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class DriverStatusUpdateRequest(BaseModel):
    status: DriverStatusEnum


class DriverStatsResponse(BaseModel):
    total_drivers: int
    active_drivers: int
    pending_drivers: int
    on_ride_drivers: int
    suspended_drivers: int
    inactive_drivers: int
    drivers_with_vehicles: int


# ---------------------------------------------------------------------------
# Vehicle schemas
# ---------------------------------------------------------------------------

class VehicleCreateRequest(BaseModel):
    make: str = Field(..., min_length=1, max_length=100)
    model: str = Field(..., min_length=1, max_length=100)
    license_plate: str = Field(..., min_length=2, max_length=20)
    vehicle_class: VehicleClassEnum
    capacity: Optional[int] = Field(default=None, gt=0, le=60)


class VehicleResponse(BaseModel):
    id: str
    make: str
    model: str
    license_plate: str
    vehicle_class: VehicleClassEnum
    capacity: int
    status: VehicleStatusEnum
    assigned_driver_id: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class VehicleStatusUpdateRequest(BaseModel):
    status: VehicleStatusEnum


class AssignVehicleRequest(BaseModel):
    vehicle_id: str
