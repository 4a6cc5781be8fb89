"""Initial schema — vehicles, drivers, rides"""
from alembic import op
import sqlalchemy as sa

revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "vehicles",
        sa.Column("id", sa.String, primary_key=True),
        sa.Column("make", sa.String(100), nullable=False),
        sa.Column("model", sa.String(100), nullable=False),
        sa.Column("license_plate", sa.String(20), unique=True, nullable=False),
        sa.Column("vehicle_class", sa.String(20), nullable=False),
        sa.Column("capacity", sa.Integer, nullable=False, server_default="1"),
        sa.Column("status", sa.String(20), nullable=False, server_default="available"),
        sa.Column("assigned_driver_id", sa.String, unique=True, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("idx_vehicles_class", "vehicles", ["vehicle_class"])
    op.create_index("idx_vehicles_status", "vehicles", ["status"])

    op.create_table(
        "drivers",
        sa.Column("id", sa.String, primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("phone", sa.String(20), unique=True, nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("vehicle_id", sa.String, sa.ForeignKey("vehicles.id"), unique=True, nullable=True),
        sa.Column("total_trips", sa.Integer, nullable=False, server_default="0"),
        sa.Column("total_earnings", sa.Integer, nullable=False, server_default="0"),
        sa.Column("rating", sa.Float, nullable=True),
        sa.Column("rated_trips", sa.Integer, nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("idx_drivers_status", "drivers", ["status"])

    op.create_table(
        "rides",
        sa.Column("id", sa.String, primary_key=True),
        sa.Column("rider_id", sa.String, nullable=False),
        sa.Column("driver_id", sa.String, sa.ForeignKey("drivers.id"), nullable=True),
        sa.Column("vehicle_id", sa.String, sa.ForeignKey("vehicles.id"), nullable=True),
        sa.Column("pickup_address", sa.String(500), nullable=False),
        sa.Column("pickup_lat", sa.Float, nullable=False),
        sa.Column("pickup_lng", sa.Float, nullable=False),
        sa.Column("pickup_approximate", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("dest_address", sa.String(500), nullable=False),
        sa.Column("dest_lat", sa.Float, nullable=False),
        sa.Column("dest_lng", sa.Float, nullable=False),
        sa.Column("dest_approximate", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("vehicle_class", sa.String(20), nullable=False),
        sa.Column("status", sa.String(30), nullable=False, server_default="pending"),
        sa.Column("payment_method", sa.String(30), nullable=False),
        sa.Column("distance_km", sa.Float, nullable=False),
        sa.Column("duration_min", sa.Integer, nullable=False),
        sa.Column("route_approximate", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("base_fare", sa.Integer, nullable=False),
        sa.Column("distance_fare", sa.Integer, nullable=False),
        sa.Column("time_fare", sa.Integer, nullable=False),
        sa.Column("service_fee", sa.Integer, nullable=False),
        sa.Column("total_fare", sa.Integer, nullable=False),
        sa.Column("currency", sa.String(5), nullable=False, server_default="NGN"),
        sa.Column("instructions", sa.Text, nullable=True),
        sa.Column("cancelled_by", sa.String(20), nullable=True),
        sa.Column("cancel_reason", sa.String(255), nullable=True),
        sa.Column("rider_rating", sa.Integer, nullable=True),
        sa.Column("rider_feedback", sa.Text, nullable=True),
        sa.Column("idempotency_key", sa.String(255), unique=True, nullable=True),
        sa.Column("requested_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("accepted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("arrived_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("picked_up_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("idx_rides_status", "rides", ["status"])
    op.create_index("idx_rides_rider", "rides", ["rider_id"])
    op.create_index("idx_rides_driver", "rides", ["driver_id"])
    op.create_index("idx_rides_created", "rides", ["created_at"])


def downgrade() -> None:
    op.drop_table("rides")
    op.drop_table("drivers")
    op.drop_table("vehicles")
