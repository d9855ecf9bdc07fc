from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional, Protocol, Set

import httpx

from shared.contracts.enums import ChannelType
from shared.contracts.models import MessageOut

logger = logging.getLogger(__name__)


@dataclass
class DeliveryResult:
    ok: bool
    address: str
    message_id: Optional[str] = None
    error: Optional[str] = None


class MessageTransport(Protocol):
    """Fire-and-confirm outbound text delivery."""

    def send(self, address: str, body: str) -> DeliveryResult:
        ...


class GatewayTransport:
    """Posts outbound messages to the whatsapp_gateway ``/send`` endpoint."""

    def __init__(
        self,
        gateway_url: str,
        channel: ChannelType = ChannelType.SMS,
        timeout: float = 10.0,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self.gateway_url = gateway_url
        self.channel = channel
        self.client = client or httpx.Client(timeout=timeout)

    def send(self, address: str, body: str) -> DeliveryResult:
        message = MessageOut(to=address, body=body, channel=self.channel)
        try:
            response = self.client.post(self.gateway_url, json=message.model_dump(mode="json"))
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPError as exc:
            logger.warning(f"Gateway delivery to {address} failed: {exc}")
            return DeliveryResult(ok=False, address=address, error=str(exc))
        except ValueError as exc:
            logger.warning(f"Gateway returned an unreadable reply for {address}: {exc}")
            return DeliveryResult(ok=False, address=address, error=f"invalid gateway response: {exc}")

        if not isinstance(payload, dict):
            logger.warning(f"Gateway reply for {address} is not an object: {payload!r}")
            return DeliveryResult(ok=False, address=address, error="invalid gateway response")
        return DeliveryResult(ok=True, address=address, message_id=payload.get("message_id"))

    def close(self) -> None:
        self.client.close()


@dataclass
class SentMessage:
    to: str
    body: str
    sent_at: datetime


@dataclass
class RecordingTransport:
    """In-memory transport for local runs and tests.

    Addresses listed in ``failing_addresses`` (or every address when ``fail_all``)
    get a failed delivery result instead of being recorded.
    """

    sent: List[SentMessage] = field(default_factory=list)
    failing_addresses: Set[str] = field(default_factory=set)
    fail_all: bool = False

    def send(self, address: str, body: str) -> DeliveryResult:
        if self.fail_all or address in self.failing_addresses:
            return DeliveryResult(ok=False, address=address, error="delivery rejected")
        self.sent.append(SentMessage(to=address, body=body, sent_at=datetime.now(timezone.utc)))
        return DeliveryResult(ok=True, address=address, message_id=f"msg_{len(self.sent)}")

    def messages_to(self, address: str) -> List[SentMessage]:
        return [m for m in self.sent if m.to == address]
