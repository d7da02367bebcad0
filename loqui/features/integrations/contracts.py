"""
loqui/features/integrations/contracts.py

Shared types for email marketing provider adapters.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Generic, List, Literal, Optional, TypeVar, Union

from pydantic import BaseModel, ConfigDict

from loqui.core.errors import format_timestamp


MARKETING_PROVIDERS = ("kit", "mailchimp", "sendgrid", "beehiiv", "gohighlevel")

Fallback = Literal["manual", "not_configured"]

T = TypeVar("T")


@dataclass(frozen=True)
class ProviderCapabilities:
    auth: bool = True
    audiences: bool = False
    upsert_contact: bool = False
    subscribe: bool = False
    tag: bool = False
    send_or_trigger: bool = False


class DeliveryMode(str, Enum):
    """How a scheduled email reaches subscribers through a provider."""
    SEND = "send"
    TAG_TRIGGER = "tag_trigger"
    MANUAL = "manual"


@dataclass(frozen=True)
class Supported(Generic[T]):
    data: T
    supported: Literal[True] = True


@dataclass(frozen=True)
class Unsupported:
    fallback: Fallback
    message: str
    supported: Literal[False] = False


AdapterResult = Union[Supported[T], Unsupported]


def supported_response(data: T) -> Supported[T]:
    return Supported(data=data)


def unsupported_response(message: str, fallback: Fallback = "manual") -> Unsupported:
    return Unsupported(fallback=fallback, message=message)


def result_to_dict(result: "AdapterResult[Any]") -> Dict[str, Any]:
    if isinstance(result, Supported):
        return {"supported": True, "data": result.data}
    return {"supported": False, "fallback": result.fallback, "message": result.message}


@dataclass
class AdapterContext:
    tenant_id: str
    provider: str
    request_id: Optional[str] = None
    # connected_accounts row for (tenant_id, provider), if any
    account: Optional[Dict[str, Any]] = None
    now: Optional[datetime] = None
    extra: Dict[str, Any] = field(default_factory=dict)


class IntegrationStatus(BaseModel):
    model_config = ConfigDict(frozen=True)

    connected: bool
    account_name: Optional[str] = None
    account_id: Optional[str] = None
    scopes: Optional[List[str]] = None
    token_expired: bool = False
    expires_at: Optional[datetime] = None
    last_sync_at: Optional[datetime] = None
    status: Optional[Literal["connected", "error", "disconnected"]] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"connected": self.connected, "tokenExpired": self.token_expired}
        if self.account_name:
            payload["accountName"] = self.account_name
        if self.account_id:
            payload["accountId"] = self.account_id
        if self.scopes is not None:
            payload["scopes"] = self.scopes
        if self.expires_at:
            payload["expiresAt"] = format_timestamp(self.expires_at)
        if self.last_sync_at:
            payload["lastSyncAt"] = format_timestamp(self.last_sync_at)
        if self.status:
            payload["status"] = self.status
        return payload
