"""
Audit Logger

Every ledger mutation, retry and rejection leaves an audit record, so a
balance that looks wrong can be traced back to the writes that made it.

Records go to two places: the structured process log and the audit_log
table. They are written after the ledger commits; a record that cannot
be stored is reported in the process log and dropped, never allowed to
fail the operation it describes. Related records share a correlation id.
"""

from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4

import structlog

from finance_tracker.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity
from finance_tracker.services.storage import AuditStorageInterface


# JSON lines through the stdlib logging tree
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

_LEVELS = {
    AuditSeverity.DEBUG: "debug",
    AuditSeverity.INFO: "info",
    AuditSeverity.WARNING: "warning",
    AuditSeverity.ERROR: "error",
    AuditSeverity.CRITICAL: "critical",
}


class AuditLogger:
    """
    Writes AuditEvents to the process log and, when a store is given, to
    the audit_log table. Without a store it only logs.
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        self._storage = storage
        self._logger = structlog.get_logger("finance_tracker.audit")

    async def log(self, event: AuditEvent) -> bool:
        """
        Record one event.

        Returns False only when a configured store refused the event.
        """
        emit = getattr(self._logger, _LEVELS[event.severity])
        emit("audit_event", **event.to_log_dict())

        if self._storage is None:
            return True

        try:
            return await self._storage.append_event(event)
        except Exception as e:
            # A committed ledger write is never undone by its audit record
            self._logger.error(
                "audit_storage_failed",
                error=str(e),
                event_id=str(event.event_id),
                event_type=event.event_type.value,
            )
            return False

    async def log_transaction_created(
        self,
        transaction_id: UUID,
        owner_id: str,
        transaction_type: str,
        amount: Decimal,
        balance_changes: dict[UUID, tuple[Decimal, Decimal]],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        event = AuditEventBuilder.transaction_created(
            transaction_id=transaction_id,
            owner_id=owner_id,
            transaction_type=transaction_type,
            amount=amount,
            balance_changes=balance_changes,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_transaction_updated(
        self,
        transaction_id: UUID,
        owner_id: str,
        fields: list[str],
        balance_changes: dict[UUID, tuple[Decimal, Decimal]],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        event = AuditEventBuilder.transaction_updated(
            transaction_id=transaction_id,
            owner_id=owner_id,
            fields=fields,
            balance_changes=balance_changes,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_transaction_deleted(
        self,
        transaction_id: UUID,
        owner_id: str,
        balance_changes: dict[UUID, tuple[Decimal, Decimal]],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        event = AuditEventBuilder.transaction_deleted(
            transaction_id=transaction_id,
            owner_id=owner_id,
            balance_changes=balance_changes,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_balance_update_skipped(
        self,
        transaction_id: UUID,
        owner_id: str,
        account_ids: list[UUID],
        operation: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a balance effect dropped because its account is gone."""
        event = AuditEventBuilder.balance_update_skipped(
            transaction_id=transaction_id,
            owner_id=owner_id,
            account_ids=account_ids,
            operation=operation,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_write_conflict(
        self,
        operation: str,
        attempt: int,
        owner_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        event = AuditEventBuilder.write_conflict_retried(
            operation=operation,
            attempt=attempt,
            owner_id=owner_id,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_operation_failed(
        self,
        operation: str,
        error: Exception,
        owner_id: Optional[str] = None,
        entity_id: Optional[UUID] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a ledger operation that was rejected or rolled back."""
        event = AuditEventBuilder.ledger_operation_failed(
            operation=operation,
            error_type=type(error).__name__,
            error_message=str(error),
            owner_id=owner_id,
            entity_id=entity_id,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_balance_drift(
        self,
        account_id: UUID,
        owner_id: str,
        stored: Decimal,
        expected: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        event = AuditEventBuilder.balance_drift_detected(
            account_id=account_id,
            owner_id=owner_id,
            stored=stored,
            expected=expected,
            correlation_id=correlation_id,
        )
        await self.log(event)


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a new user action (e.g., saving a transaction).
    Pass it through all subsequent operations.
    """
    return uuid4()
