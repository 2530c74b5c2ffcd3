"""Audit log model for tracking demand lifecycle events."""

from typing import Any

from sqlalchemy import JSON, String
from sqlalchemy.orm import Mapped, mapped_column

from building_finance.models import Base, BaseModel


class AuditLog(Base, BaseModel):
    """Audit log entry for billing actions.

    Records who (actor) did what (action) to which entity (entity_type, entity_id)
    with an optional JSON snapshot of the relevant fields (changes).
    """

    __tablename__ = "audit_logs"

    entity_type: Mapped[str] = mapped_column(String(50), index=False)
    """Entity type being audited: "demand", "settings", "quarter"."""

    entity_id: Mapped[int] = mapped_column(index=False)
    """Primary key of the entity being audited (building id for quarter-level actions)."""

    action: Mapped[str] = mapped_column(String(50), index=False)
    """Action performed: "issue", "payment", "penalty", "cancel", "remind", "update"."""

    actor: Mapped[str | None] = mapped_column(String(100), nullable=True, index=False)
    """Manager identifier supplied by the caller. None for system actions."""

    changes: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True, index=False)
    """Optional JSON snapshot: {"amount": "1000.00", "outstanding": "1800.00"}."""

    def __repr__(self) -> str:
        return (
            f"<AuditLog(id={self.id}, entity_type={self.entity_type}, entity_id={self.entity_id}, "
            f"action={self.action}, actor={self.actor}, created_at={self.created_at})>"
        )


__all__ = ["AuditLog"]
