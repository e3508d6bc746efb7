import datetime

from sqlalchemy import JSON, DateTime, Float, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from ridenav.models.base import Base


class NavigationSessionRow(Base):
    __tablename__ = "navigation_sessions"
    __table_args__ = (
        Index("ix_nav_sessions_status_created", "status", "created_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)  # uuid4
    origin_lat: Mapped[float] = mapped_column(Float, nullable=False)
    origin_lon: Mapped[float] = mapped_column(Float, nullable=False)
    destination_lat: Mapped[float] = mapped_column(Float, nullable=False)
    destination_lon: Mapped[float] = mapped_column(Float, nullable=False)
    destination_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    group_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    mode: Mapped[str] = mapped_column(String(16), nullable=False, default="driving")
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    polyline: Mapped[str] = mapped_column(Text, nullable=False, default="")  # encoded
    # list of step dicts, each with its own encoded polyline
    steps: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    total_distance_m: Mapped[float] = mapped_column(Float, nullable=False)
    total_duration_s: Mapped[int] = mapped_column(Integer, nullable=False)
    current_step_index: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    distance_traveled_m: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    started_at: Mapped[datetime.datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )


class NavigationProgressRow(Base):
    """Latest progress checkpoint of a session, one row per session."""

    __tablename__ = "navigation_progress"

    session_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("navigation_sessions.id", ondelete="CASCADE"), primary_key=True
    )
    step_index: Mapped[int] = mapped_column(Integer, nullable=False)
    lat: Mapped[float] = mapped_column(Float, nullable=False)
    lon: Mapped[float] = mapped_column(Float, nullable=False)
    distance_to_step_end_m: Mapped[float] = mapped_column(Float, nullable=False)
    remaining_distance_m: Mapped[float] = mapped_column(Float, nullable=False)
    remaining_duration_s: Mapped[int] = mapped_column(Integer, nullable=False)
    off_route: Mapped[bool] = mapped_column(nullable=False, default=False)
    speed_kmh: Mapped[float | None] = mapped_column(Float, nullable=True)
    bearing: Mapped[float | None] = mapped_column(Float, nullable=True)
    eta: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    computed_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
