"""
Transport sender interface.

Channel integrations (Slack, email, SMS) live outside this library; they
are consumed through the :class:`TransportSender` protocol. Any exception
raised by ``send`` is treated as a retryable failure candidate.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from hitl_dispatch.transport.contacts import ContactChannel, Contacts


@runtime_checkable
class TransportSender(Protocol):
    """Delivers a payload to a worker on one channel."""

    async def send(
        self,
        channel: ContactChannel,
        payload: dict[str, Any],
        contacts: Contacts,
    ) -> None:
        """Send a payload. May raise on delivery failure."""
        ...


@dataclass
class RecordingSender:
    """In-memory sender that records every payload it is given.

    Useful as a stand-in while wiring dispatchers together.

    Attributes:
        sent: (channel, payload) pairs in send order
    """

    sent: list[tuple[ContactChannel, dict[str, Any]]] = field(default_factory=list)

    async def send(
        self,
        channel: ContactChannel,
        payload: dict[str, Any],
        contacts: Contacts,
    ) -> None:
        """Record the payload."""
        self.sent.append((channel, payload))
