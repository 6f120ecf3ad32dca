"""Initial schema: rides, payment attempts and customer payment info.

Revision ID: 001
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


revision = "001"
down_revision = None
branch_labels = None
depends_on = None

RIDE_STATUSES = (
    "REQUESTED",
    "ACCEPTED",
    "DRIVER_EN_ROUTE",
    "STARTED",
    "IN_PROGRESS",
    "COMPLETED",
    "CANCELLED",
)
PAYMENT_OUTCOMES = ("SUCCESS", "FAILED", "METHOD_MISSING", "SERVICE_ERROR")


def _ts(name: str, nullable: bool = True) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable)


def upgrade() -> None:
    # ── rides ─────────────────────────────────────────────────────────
    op.create_table(
        "rides",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("customer_id", sa.String(64), nullable=False),
        sa.Column("driver_id", sa.String(64), nullable=True),
        sa.Column(
            "status",
            sa.Enum(*RIDE_STATUSES, name="ridestatus"),
            default="REQUESTED",
            nullable=False,
        ),
        _ts("scheduled_time", nullable=False),
        sa.Column("pickup_lat", sa.Float, nullable=True),
        sa.Column("pickup_lng", sa.Float, nullable=True),
        sa.Column("dropoff_lat", sa.Float, nullable=True),
        sa.Column("dropoff_lng", sa.Float, nullable=True),
        sa.Column("fare", sa.Float, nullable=False),
        sa.Column("currency", sa.String(3), default="usd", nullable=False),
        sa.Column("cancellation_reason", sa.String(255), nullable=True),
        _ts("requested_at", nullable=False),
        _ts("accepted_at"),
        _ts("en_route_at"),
        _ts("started_at"),
        _ts("in_progress_at"),
        _ts("completed_at"),
        _ts("cancelled_at"),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )
    op.create_index("idx_rides_status", "rides", ["status"])
    op.create_index("idx_rides_customer", "rides", ["customer_id"])
    op.create_index(
        "idx_rides_driver_time", "rides", ["driver_id", "scheduled_time"]
    )

    # ── payment_attempts ──────────────────────────────────────────────
    op.create_table(
        "payment_attempts",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "ride_id", sa.Integer, sa.ForeignKey("rides.id"), nullable=False
        ),
        sa.Column("customer_id", sa.String(64), nullable=False),
        sa.Column("amount", sa.Float, nullable=False),
        sa.Column("currency", sa.String(3), default="usd", nullable=False),
        sa.Column(
            "outcome",
            sa.Enum(*PAYMENT_OUTCOMES, name="paymentoutcome"),
            nullable=False,
        ),
        sa.Column("reference", sa.String(255), nullable=True),
        _ts("created_at", nullable=False),
    )
    op.create_index("idx_payment_attempts_ride", "payment_attempts", ["ride_id"])

    # ── customer_payment_info ─────────────────────────────────────────
    op.create_table(
        "customer_payment_info",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("customer_id", sa.String(64), unique=True, nullable=False),
        sa.Column("gateway_customer_id", sa.String(64), nullable=False),
        sa.Column("default_payment_method_id", sa.String(64), nullable=True),
    )


def downgrade() -> None:
    op.drop_table("customer_payment_info")
    op.drop_table("payment_attempts")
    op.drop_table("rides")
    op.execute("DROP TYPE IF EXISTS paymentoutcome")
    op.execute("DROP TYPE IF EXISTS ridestatus")
