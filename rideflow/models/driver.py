import uuid
from datetime import datetime
from sqlalchemy import String, Float, Integer, DateTime, ForeignKey, func
from sqlalchemy.orm import Mapped, mapped_column
from rideflow.database import Base


class Driver(Base):
    __tablename__ = "drivers"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    phone: Mapped[str] = mapped_column(String(20), unique=True, nullable=False)
    # pending | active | on_ride | suspended | inactive
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending", index=True)
    # At most one vehicle per driver; mirrored by vehicles.assigned_driver_id
    vehicle_id: Mapped[str | None] = mapped_column(
        String, ForeignKey("vehicles.id"), unique=True, nullable=True
    )

    total_trips: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_earnings: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    rating: Mapped[float | None] = mapped_column(Float, nullable=True)
    rated_trips: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
