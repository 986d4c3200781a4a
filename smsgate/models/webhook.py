"""SMS Gate - Inbound webhook log model."""

from datetime import datetime

import sqlalchemy as sa
from sqlmodel import Field, SQLModel


class WebhookLog(SQLModel, table=True):
    """Record of every inbound payment notification.

    Written before processing starts and updated with the outcome, so a crash
    mid-processing still leaves an auditable entry.

    Attributes:
        id: Auto-increment primary key
        source: Delivery path ('webhook', 'test_simulation', ...)
        event_type: Provider event name (e.g. 'charge.completed')
        tx_ref: Associated deposit reference
        provider_tx_id: Payment provider transaction id
        raw_payload: Raw request body, exactly as received
        signature_valid: Whether the signature matched the shared secret
        idempotency_key: Derived key collapsing duplicate deliveries
        processed: Whether processing reached a final outcome
        processing_error: Error message when processing failed
        processing_ms: Processing latency in milliseconds
    """

    __tablename__ = "webhook_logs"

    id: int | None = Field(default=None, primary_key=True)
    source: str = Field(default="webhook", max_length=32)
    event_type: str = Field(max_length=64, index=True)
    tx_ref: str | None = Field(default=None, max_length=64, index=True)
    provider_tx_id: str | None = Field(default=None, max_length=64)
    raw_payload: str = Field(sa_column=sa.Column(sa.Text, nullable=False))
    signature_valid: bool = Field(default=False, index=True)
    idempotency_key: str = Field(max_length=64, index=True)

    processed: bool = Field(default=False, index=True)
    processing_error: str | None = Field(default=None, max_length=1000)
    processing_ms: int | None = Field(default=None)

    created_at: datetime = Field(default_factory=datetime.utcnow, index=True)
    processed_at: datetime | None = Field(default=None)
