"""Initial schema: drivers, documents, trips, payments, invites, activity log.

Revision ID: 001
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


revision = "001"
down_revision = None
branch_labels = None
depends_on = None

verification_status = sa.Enum(
    "unverified", "pending", "verified", "declined", name="verification_status"
)
doc_type = sa.Enum("license", "insurance", "registration", "other", name="doc_type")
trip_status = sa.Enum(
    "pending", "accepted", "in_progress", "completed", "cancelled", name="trip_status"
)
payment_method = sa.Enum("card", "cash", name="payment_method")
payment_status = sa.Enum("pending", "completed", "failed", name="payment_status")
invite_status = sa.Enum("active", "used", "expired", name="invite_status")


def _timestamps(*, updated: bool = True) -> list[sa.Column]:
    cols = [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        )
    ]
    if updated:
        cols.append(
            sa.Column(
                "updated_at",
                sa.DateTime(timezone=True),
                server_default=sa.func.now(),
            )
        )
    return cols


def upgrade() -> None:
    # ── drivers ───────────────────────────────────────────────────────
    op.create_table(
        "drivers",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("account_id", sa.String(64), unique=True, nullable=False),
        sa.Column(
            "verification_status",
            verification_status,
            server_default="unverified",
            nullable=False,
        ),
        sa.Column("is_available", sa.Boolean, server_default=sa.false(), nullable=False),
        sa.Column("license_number", sa.String(64), nullable=True),
        sa.Column("decline_reason", sa.Text, nullable=True),
        sa.Column("verified_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("idx_drivers_status", "drivers", ["verification_status"])
    op.create_index("idx_drivers_available", "drivers", ["is_available"])

    # ── driver_documents ──────────────────────────────────────────────
    op.create_table(
        "driver_documents",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "driver_id", sa.Integer, sa.ForeignKey("drivers.id"), nullable=False
        ),
        sa.Column("doc_type", doc_type, nullable=False),
        sa.Column("storage_location", sa.String(512), nullable=False),
        sa.Column("name", sa.String(255), nullable=True),
        sa.Column("verified", sa.Boolean, server_default=sa.false(), nullable=False),
        sa.Column("expiry_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("uploaded_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("driver_id", "doc_type", name="uq_driver_documents_type"),
    )
    op.create_index("idx_driver_documents_driver", "driver_documents", ["driver_id"])

    # ── trips ─────────────────────────────────────────────────────────
    op.create_table(
        "trips",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("customer_id", sa.String(64), nullable=False),
        sa.Column(
            "driver_id", sa.Integer, sa.ForeignKey("drivers.id"), nullable=True
        ),
        sa.Column("pickup_location", sa.String(255), nullable=False),
        sa.Column("dropoff_location", sa.String(255), nullable=False),
        sa.Column("scheduled_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", trip_status, server_default="pending", nullable=False),
        sa.Column(
            "driver_acknowledged", sa.Boolean, server_default=sa.false(), nullable=False
        ),
        sa.Column("estimated_price", sa.Numeric(10, 2), nullable=False),
        sa.Column("vehicle", sa.String(64), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("idx_trips_status", "trips", ["status"])
    op.create_index("idx_trips_driver", "trips", ["driver_id"])
    op.create_index("idx_trips_customer", "trips", ["customer_id"])
    op.create_index("idx_trips_scheduled", "trips", ["scheduled_at"])

    # ── payments ──────────────────────────────────────────────────────
    op.create_table(
        "payments",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "trip_id",
            sa.Integer,
            sa.ForeignKey("trips.id"),
            unique=True,
            nullable=False,
        ),
        sa.Column("amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("currency", sa.String(3), server_default="eur", nullable=False),
        sa.Column("method", payment_method, nullable=False),
        sa.Column("status", payment_status, server_default="pending", nullable=False),
        sa.Column("gateway_reference", sa.String(255), unique=True, nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(updated=False),
    )

    # ── invite_links ──────────────────────────────────────────────────
    op.create_table(
        "invite_links",
        sa.Column("code", sa.String(64), primary_key=True),
        sa.Column("role", sa.String(20), nullable=False),
        sa.Column("created_by", sa.String(64), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("used_by", sa.String(64), nullable=True),
        sa.Column("status", invite_status, server_default="active", nullable=False),
        *_timestamps(updated=False),
    )
    op.create_index("idx_invite_links_status", "invite_links", ["status"])

    # ── activity_logs ─────────────────────────────────────────────────
    op.create_table(
        "activity_logs",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("actor_id", sa.String(64), nullable=False),
        sa.Column("action", sa.String(64), nullable=False),
        sa.Column(
            "driver_id", sa.Integer, sa.ForeignKey("drivers.id"), nullable=True
        ),
        sa.Column("trip_id", sa.Integer, sa.ForeignKey("trips.id"), nullable=True),
        sa.Column("details", sa.JSON, nullable=False),
        *_timestamps(updated=False),
    )
    op.create_index("idx_activity_logs_driver", "activity_logs", ["driver_id"])
    op.create_index("idx_activity_logs_trip", "activity_logs", ["trip_id"])


def downgrade() -> None:
    op.drop_table("activity_logs")
    op.drop_table("invite_links")
    op.drop_table("payments")
    op.drop_table("trips")
    op.drop_table("driver_documents")
    op.drop_table("drivers")
    for name in (
        "invite_status",
        "payment_status",
        "payment_method",
        "trip_status",
        "doc_type",
        "verification_status",
    ):
        op.execute(f"DROP TYPE IF EXISTS {name}")
