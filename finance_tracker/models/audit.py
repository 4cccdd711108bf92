"""
Audit Models for Finance Tracker

Every ledger mutation is logged for audit purposes.
This provides:
1. Complete traceability of balance changes
2. Debugging information when an operation fails or retries
3. A record of every skipped balance write and detected drift

Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """
    Types of events we audit.
    """
    # Accounts
    ACCOUNT_CREATED = "account_created"
    ACCOUNT_UPDATED = "account_updated"
    ACCOUNT_DELETED = "account_deleted"

    # Ledger
    TRANSACTION_CREATED = "transaction_created"
    TRANSACTION_UPDATED = "transaction_updated"
    TRANSACTION_DELETED = "transaction_deleted"
    BALANCE_UPDATE_SKIPPED = "balance_update_skipped"
    WRITE_CONFLICT_RETRIED = "write_conflict_retried"
    LEDGER_OPERATION_FAILED = "ledger_operation_failed"
    BALANCE_DRIFT_DETECTED = "balance_drift_detected"

    # Budgets and settings
    BUDGET_SAVED = "budget_saved"
    BUDGET_DELETED = "budget_deleted"
    SETTINGS_UPDATED = "settings_updated"
    USER_DATA_PURGED = "user_data_purged"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    Every ledger mutation creates one of these.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=datetime.utcnow,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - what entity is this about?
    owner_id: Optional[str] = Field(
        default=None,
        description="User the event belongs to"
    )
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'transaction', 'account', 'budget')"
    )
    entity_id: Optional[UUID] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., one user action)"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    # Error information (if applicable)
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user action?"
    )

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "owner_id": self.owner_id,
            "entity_type": self.entity_type,
            "entity_id": str(self.entity_id) if self.entity_id else None,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }

    def to_row(self) -> tuple:
        """
        Convert to a row for the audit_log table.

        Columns in order:
        (event_id, timestamp, event_type, severity, owner_id, entity_type,
         entity_id, correlation_id, description, details_json, error_code,
         error_message, is_user_action)
        """
        return (
            str(self.event_id),
            self.timestamp.isoformat(timespec="microseconds"),
            self.event_type.value,
            self.severity.value,
            self.owner_id,
            self.entity_type,
            str(self.entity_id) if self.entity_id else None,
            str(self.correlation_id) if self.correlation_id else None,
            self.description,
            json.dumps(self.details, default=str) if self.details else None,
            self.error_code,
            self.error_message,
            int(self.is_user_action),
        )


def _money(value: Decimal) -> str:
    return str(value)


def _balance_changes(changes: dict[UUID, tuple[Decimal, Decimal]]) -> dict[str, dict[str, str]]:
    return {
        str(account_id): {"before": _money(before), "after": _money(after)}
        for account_id, (before, after) in changes.items()
    }


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.transaction_created(tx, changes, correlation_id)
        event = AuditEventBuilder.balance_update_skipped(tx_id, account_ids, "delete", correlation_id)
    """

    @staticmethod
    def account_created(
        account_id: UUID,
        owner_id: str,
        name: str,
        opening_balance: Decimal,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ACCOUNT_CREATED,
            owner_id=owner_id,
            entity_type="account",
            entity_id=account_id,
            correlation_id=correlation_id,
            description=f"Account opened: {name}",
            details={"name": name, "opening_balance": _money(opening_balance)},
            is_user_action=True,
        )

    @staticmethod
    def account_updated(
        account_id: UUID,
        owner_id: str,
        fields: list[str],
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ACCOUNT_UPDATED,
            owner_id=owner_id,
            entity_type="account",
            entity_id=account_id,
            correlation_id=correlation_id,
            description=f"Account updated: {', '.join(fields) or 'no fields'}",
            details={"fields": fields},
            is_user_action=True,
        )

    @staticmethod
    def account_deleted(
        account_id: UUID,
        owner_id: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ACCOUNT_DELETED,
            owner_id=owner_id,
            entity_type="account",
            entity_id=account_id,
            correlation_id=correlation_id,
            description="Account deleted",
            is_user_action=True,
        )

    @staticmethod
    def transaction_created(
        transaction_id: UUID,
        owner_id: str,
        transaction_type: str,
        amount: Decimal,
        balance_changes: dict[UUID, tuple[Decimal, Decimal]],
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_CREATED,
            owner_id=owner_id,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description=f"Transaction recorded: {transaction_type} {_money(amount)}",
            details={
                "type": transaction_type,
                "amount": _money(amount),
                "balances": _balance_changes(balance_changes),
            },
            is_user_action=True,
        )

    @staticmethod
    def transaction_updated(
        transaction_id: UUID,
        owner_id: str,
        fields: list[str],
        balance_changes: dict[UUID, tuple[Decimal, Decimal]],
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        metadata_only = not balance_changes
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_UPDATED,
            owner_id=owner_id,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description=(
                "Transaction metadata updated"
                if metadata_only
                else f"Transaction updated with {len(balance_changes)} balance change(s)"
            ),
            details={
                "fields": fields,
                "balances": _balance_changes(balance_changes),
            },
            is_user_action=True,
        )

    @staticmethod
    def transaction_deleted(
        transaction_id: UUID,
        owner_id: str,
        balance_changes: dict[UUID, tuple[Decimal, Decimal]],
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_DELETED,
            owner_id=owner_id,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description="Transaction deleted and its balance effect reverted",
            details={"balances": _balance_changes(balance_changes)},
            is_user_action=True,
        )

    @staticmethod
    def balance_update_skipped(
        transaction_id: UUID,
        owner_id: str,
        account_ids: list[UUID],
        operation: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BALANCE_UPDATE_SKIPPED,
            severity=AuditSeverity.WARNING,
            owner_id=owner_id,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description=f"Balance update skipped during {operation}: account(s) no longer exist",
            details={
                "operation": operation,
                "missing_accounts": [str(a) for a in account_ids],
            },
        )

    @staticmethod
    def write_conflict_retried(
        operation: str,
        attempt: int,
        owner_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.WRITE_CONFLICT_RETRIED,
            severity=AuditSeverity.WARNING,
            owner_id=owner_id,
            correlation_id=correlation_id,
            description=f"Write conflict during {operation}, attempt {attempt} rolled back",
            details={"operation": operation, "attempt": attempt},
        )

    @staticmethod
    def ledger_operation_failed(
        operation: str,
        error_type: str,
        error_message: str,
        owner_id: Optional[str] = None,
        entity_id: Optional[UUID] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.LEDGER_OPERATION_FAILED,
            severity=AuditSeverity.ERROR,
            owner_id=owner_id,
            entity_type="transaction",
            entity_id=entity_id,
            correlation_id=correlation_id,
            description=f"Ledger {operation} failed: {error_type}",
            error_code=error_type,
            error_message=error_message,
            details={"operation": operation},
        )

    @staticmethod
    def balance_drift_detected(
        account_id: UUID,
        owner_id: str,
        stored: Decimal,
        expected: Decimal,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BALANCE_DRIFT_DETECTED,
            severity=AuditSeverity.ERROR,
            owner_id=owner_id,
            entity_type="account",
            entity_id=account_id,
            correlation_id=correlation_id,
            description="Stored balance disagrees with transaction history",
            details={"stored": _money(stored), "expected": _money(expected)},
        )

    @staticmethod
    def budget_saved(
        budget_id: UUID,
        owner_id: str,
        category_name: str,
        amount: Decimal,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BUDGET_SAVED,
            owner_id=owner_id,
            entity_type="budget",
            entity_id=budget_id,
            correlation_id=correlation_id,
            description=f"Budget saved: {category_name} - {_money(amount)}",
            details={"category_name": category_name, "amount": _money(amount)},
            is_user_action=True,
        )

    @staticmethod
    def budget_deleted(
        budget_id: UUID,
        owner_id: str,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BUDGET_DELETED,
            owner_id=owner_id,
            entity_type="budget",
            entity_id=budget_id,
            correlation_id=correlation_id,
            description="Budget deleted",
            is_user_action=True,
        )

    @staticmethod
    def settings_updated(
        owner_id: str,
        fields: list[str],
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SETTINGS_UPDATED,
            owner_id=owner_id,
            entity_type="settings",
            correlation_id=correlation_id,
            description=f"Settings updated: {', '.join(fields)}",
            details={"fields": fields},
            is_user_action=True,
        )

    @staticmethod
    def user_data_purged(
        owner_id: str,
        counts: dict[str, int],
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.USER_DATA_PURGED,
            severity=AuditSeverity.WARNING,
            owner_id=owner_id,
            correlation_id=correlation_id,
            description="All user data cleared",
            details=counts,
            is_user_action=True,
        )
