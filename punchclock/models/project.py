"""Client and project records.

Owned by the CRUD layer; the timer core only reads them for tenant checks,
budget evaluation and notification display names.
"""

import enum
import uuid
from typing import Optional

from sqlalchemy import Boolean, Float, ForeignKey, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base


class BudgetType(str, enum.Enum):
    hours = "hours"
    amount = "amount"


class Client(Base):
    __tablename__ = "clients"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)


class Project(Base):
    __tablename__ = "projects"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    client_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("clients.id"), nullable=True
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    hourly_rate: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)

    # Budget: either hours or money, value optional
    budget_type: Mapped[str] = mapped_column(
        String(10), nullable=False, default=BudgetType.hours
    )
    budget_hours: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    budget_amount: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    archived: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    client: Mapped[Optional["Client"]] = relationship("Client", lazy="selectin")
