"""Pydantic models for message schema validation."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from messaging.routing import TRANSACTION_ROUTING_KEY


class MessageType(str, Enum):
    """Message type enumeration."""
    NOTIFICATION = "notification"


class RelayModel(BaseModel):
    """Base for relay payloads: camelCase aliases, unknown fields ignored."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class InnerInstruction(RelayModel):
    """Instruction invoked via CPI from a top-level instruction."""
    program_id: str = Field(alias="programId")
    accounts: List[str] = Field(default_factory=list)
    data: str = ""


class Instruction(InnerInstruction):
    """Top-level transaction instruction (data is base58)."""
    inner_instructions: List[InnerInstruction] = Field(default_factory=list, alias="innerInstructions")


class NativeTransfer(RelayModel):
    """SOL transfer in lamports."""
    from_user_account: Optional[str] = Field(default=None, alias="fromUserAccount")
    to_user_account: Optional[str] = Field(default=None, alias="toUserAccount")
    amount: int = 0


class TokenTransfer(RelayModel):
    """SPL token transfer (tokenAmount is in UI units)."""
    from_user_account: Optional[str] = Field(default=None, alias="fromUserAccount")
    to_user_account: Optional[str] = Field(default=None, alias="toUserAccount")
    mint: str = ""
    token_amount: float = Field(default=0, alias="tokenAmount")


class TransactionNotification(RelayModel):
    """Enhanced transaction as delivered by the relay webhook.

    Attributes:
        signature: Transaction signature (base58)
        timestamp: Block time (Unix epoch), if the relay provides it
        slot: Slot the transaction landed in
        instructions: Top-level instructions with their inner instructions
        native_transfers: SOL transfers
        token_transfers: SPL token transfers
    """
    signature: str
    timestamp: Optional[int] = None
    slot: Optional[int] = None
    instructions: List[Instruction] = Field(default_factory=list)
    native_transfers: List[NativeTransfer] = Field(default_factory=list, alias="nativeTransfers")
    token_transfers: List[TokenTransfer] = Field(default_factory=list, alias="tokenTransfers")

    @field_validator("signature")
    @classmethod
    def non_empty_signature(cls, v: str) -> str:
        """Reject blank signatures."""
        if not v or not v.strip():
            raise ValueError("signature must not be empty")
        return v.strip()


class BaseMessage(BaseModel):
    """Base message model with common fields."""
    published_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class NotificationMessage(BaseMessage):
    """Queue envelope around one transaction notification."""
    message_type: Literal["notification"] = "notification"
    notification: TransactionNotification

    def to_routing_key(self) -> str:
        """Get the routing key for this message."""
        return TRANSACTION_ROUTING_KEY


def parse_message(data: Dict[str, Any]) -> BaseMessage:
    """Parse a message dictionary into the appropriate message type.

    Args:
        data: Message data dictionary

    Returns:
        Parsed message object

    Raises:
        ValueError: If message type is unknown
    """
    message_type = data.get("message_type")

    if message_type == MessageType.NOTIFICATION.value:
        return NotificationMessage(**data)
    else:
        raise ValueError(f"Unknown message type: {message_type}")
