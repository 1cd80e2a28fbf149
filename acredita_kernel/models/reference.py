"""
Reference entities the accreditation core reads but does not own.

Events, zones, areas, providers, employees and templates are maintained by
the surrounding application (CRUD screens, spreadsheet import).  They are
mapped here as thin tables so the state machine, the credential snapshots
and the print selector can query them.
"""

from __future__ import annotations

from datetime import date, datetime
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    ForeignKey,
    Index,
    Integer,
    String,
    Table,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from acredita_kernel.db.base import Base, UUIDString
from acredita_kernel.domain.values import ProviderType

event_zones = Table(
    "event_zones",
    Base.metadata,
    Column("event_id", UUIDString(), ForeignKey("events.id", ondelete="CASCADE"), primary_key=True),
    Column("zone_id", UUIDString(), ForeignKey("zones.id", ondelete="CASCADE"), primary_key=True),
)


class Event(Base):
    __tablename__ = "events"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    location: Mapped[str | None] = mapped_column(String(200), nullable=True)
    start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    status: Mapped[str] = mapped_column(String(30), default="active", nullable=False)

    zones: Mapped[list["Zone"]] = relationship(
        "Zone", secondary=event_zones, back_populates="events", order_by="Zone.code",
    )
    templates: Mapped[list["Template"]] = relationship("Template", back_populates="event")


class Zone(Base):
    __tablename__ = "zones"

    code: Mapped[str] = mapped_column(String(30), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    color: Mapped[str | None] = mapped_column(String(20), nullable=True)

    events: Mapped[list["Event"]] = relationship(
        "Event", secondary=event_zones, back_populates="zones",
    )


class Area(Base):
    __tablename__ = "areas"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    code: Mapped[str | None] = mapped_column(String(30), nullable=True)

    providers: Mapped[list["Provider"]] = relationship("Provider", back_populates="area")


class Provider(Base):
    __tablename__ = "providers"

    __table_args__ = (
        Index("ix_providers_area_active", "area_id", "active"),
    )

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    area_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("areas.id"), nullable=True,
    )
    provider_type: Mapped[str] = mapped_column(
        String(20), default=ProviderType.EXTERNAL.value, nullable=False,
    )
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    area: Mapped["Area"] = relationship("Area", back_populates="providers")
    employees: Mapped[list["Employee"]] = relationship("Employee", back_populates="provider")

    @property
    def is_internal(self) -> bool:
        return self.provider_type == ProviderType.INTERNAL.value


class Employee(Base):
    __tablename__ = "employees"

    provider_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("providers.id"), nullable=False,
    )
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    document_type: Mapped[str | None] = mapped_column(String(20), nullable=True)
    document_number: Mapped[str | None] = mapped_column(String(50), nullable=True)
    function: Mapped[str | None] = mapped_column(String(100), nullable=True)
    photo_path: Mapped[str | None] = mapped_column(String(500), nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    provider: Mapped["Provider"] = relationship("Provider", back_populates="employees")

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


class Template(Base):
    """Credential layout for an event; exactly one is expected to be default."""

    __tablename__ = "templates"

    event_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("events.id"), nullable=False,
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    is_default: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    layout_meta: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    file_path: Mapped[str | None] = mapped_column(String(500), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    updated_at: Mapped[datetime | None] = mapped_column(nullable=True)

    event: Mapped["Event"] = relationship("Event", back_populates="templates")
