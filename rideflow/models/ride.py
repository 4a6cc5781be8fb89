import uuid
from datetime import datetime
from sqlalchemy import String, Float, Integer, Boolean, DateTime, ForeignKey, Text, func
from sqlalchemy.orm import Mapped, mapped_column, validates
from rideflow.database import Base

FARE_FIELDS = ("base_fare", "distance_fare", "time_fare", "service_fee", "total_fare")

TIMESTAMP_FIELDS = (
    "requested_at",
    "accepted_at",
    "arrived_at",
    "picked_up_at",
    "started_at",
    "completed_at",
    "cancelled_at",
)


class Ride(Base):
    __tablename__ = "rides"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    rider_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    driver_id: Mapped[str | None] = mapped_column(String, ForeignKey("drivers.id"), nullable=True, index=True)
    vehicle_id: Mapped[str | None] = mapped_column(String, ForeignKey("vehicles.id"), nullable=True)

    pickup_address: Mapped[str] = mapped_column(String(500), nullable=False)
    pickup_lat: Mapped[float] = mapped_column(Float, nullable=False)
    pickup_lng: Mapped[float] = mapped_column(Float, nullable=False)
    pickup_approximate: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    dest_address: Mapped[str] = mapped_column(String(500), nullable=False)
    dest_lat: Mapped[float] = mapped_column(Float, nullable=False)
    dest_lng: Mapped[float] = mapped_column(Float, nullable=False)
    dest_approximate: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    vehicle_class: Mapped[str] = mapped_column(String(20), nullable=False)
    # pending | searching | awaiting_driver_confirmation | accepted | arrived |
    # picked_up | in_progress | completed | cancelled
    status: Mapped[str] = mapped_column(String(30), nullable=False, default="pending", index=True)
    payment_method: Mapped[str] = mapped_column(String(30), nullable=False)

    distance_km: Mapped[float] = mapped_column(Float, nullable=False)
    duration_min: Mapped[int] = mapped_column(Integer, nullable=False)
    route_approximate: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Smallest currency unit, frozen at order time
    base_fare: Mapped[int] = mapped_column(Integer, nullable=False)
    distance_fare: Mapped[int] = mapped_column(Integer, nullable=False)
    time_fare: Mapped[int] = mapped_column(Integer, nullable=False)
    service_fee: Mapped[int] = mapped_column(Integer, nullable=False)
    total_fare: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(5), nullable=False, default="NGN")

    instructions: Mapped[str | None] = mapped_column(Text, nullable=True)
    cancelled_by: Mapped[str | None] = mapped_column(String(20), nullable=True)
    cancel_reason: Mapped[str | None] = mapped_column(String(255), nullable=True)
    rider_rating: Mapped[int | None] = mapped_column(Integer, nullable=True)
    rider_feedback: Mapped[str | None] = mapped_column(Text, nullable=True)
    idempotency_key: Mapped[str | None] = mapped_column(String(255), unique=True, nullable=True)

    requested_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    accepted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    arrived_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    picked_up_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), index=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    @validates(*FARE_FIELDS)
    def _freeze_fare(self, key: str, value: int) -> int:
        current = self.__dict__.get(key)
        if current is not None and current != value:
            raise ValueError(f"{key} is frozen once the ride has been ordered")
        return value
