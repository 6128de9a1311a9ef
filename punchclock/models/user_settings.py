import uuid
from typing import Optional

from sqlalchemy import Boolean, Float, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class UserSettings(Base):
    __tablename__ = "user_settings"
    __table_args__ = (
        UniqueConstraint("tenant_id", "user_id", name="uq_user_settings_tenant_user"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)

    interrupt_interval_minutes: Mapped[float] = mapped_column(
        Float, nullable=False, default=60.0
    )
    interrupt_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    budget_warning_enabled: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True
    )
    budget_warning_threshold_hours: Mapped[Optional[float]] = mapped_column(
        Float, nullable=True, default=1.0
    )
    budget_warning_threshold_amount: Mapped[Optional[float]] = mapped_column(
        Float, nullable=True, default=50.0
    )

    pomodoro_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    pomodoro_work_minutes: Mapped[float] = mapped_column(Float, nullable=False, default=25.0)
    pomodoro_break_minutes: Mapped[float] = mapped_column(Float, nullable=False, default=5.0)
