"""Audit service for logging billing lifecycle events."""

from sqlalchemy.ext.asyncio import AsyncSession

from building_finance.models.audit_log import AuditLog


class AuditService:
    """Service for audit log operations.

    Provides static method to create minimal audit log entries. The entry joins
    the caller's unit of work and is committed with it.
    """

    @staticmethod
    def log(
        session: AsyncSession,
        entity_type: str,
        entity_id: int,
        action: str,
        actor: str | None = None,
        changes: dict | None = None,
    ) -> AuditLog:
        """Create audit log entry (one-liner).

        Args:
            session: Database session
            entity_type: Type of entity ("demand", "settings", "quarter")
            entity_id: Primary key of the entity
            action: Action performed ("issue", "payment", "penalty", "cancel", "remind")
            actor: Manager who performed the action (optional)
            changes: Optional JSON snapshot of changed fields

        Returns:
            Created AuditLog object
        """
        audit = AuditLog(
            entity_type=entity_type,
            entity_id=entity_id,
            action=action,
            actor=actor,
            changes=changes,
        )
        session.add(audit)
        return audit


__all__ = ["AuditService"]
