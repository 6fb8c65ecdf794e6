"""
Contact channels and address resolution.

A worker's contacts map each :class:`ContactChannel` to either a plain
address string or a structured :class:`ContactAddress`. Resolution turns
them into uniform addresses a transport sender can deliver to.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union


class ContactChannel(str, Enum):
    """How a worker can be reached."""

    EMAIL = "email"
    SLACK = "slack"
    TEAMS = "teams"
    DISCORD = "discord"
    PHONE = "phone"
    SMS = "sms"
    WHATSAPP = "whatsapp"
    TELEGRAM = "telegram"
    WEB = "web"
    API = "api"
    WEBHOOK = "webhook"

    @property
    def transport(self) -> str:
        """Transport that delivers messages for this channel."""
        return _CHANNEL_TRANSPORTS[self]


_CHANNEL_TRANSPORTS: dict[ContactChannel, str] = {
    ContactChannel.EMAIL: "email",
    ContactChannel.SLACK: "slack",
    ContactChannel.TEAMS: "teams",
    ContactChannel.DISCORD: "discord",
    ContactChannel.PHONE: "voice",
    ContactChannel.SMS: "sms",
    ContactChannel.WHATSAPP: "whatsapp",
    ContactChannel.TELEGRAM: "telegram",
    ContactChannel.WEB: "web",
    ContactChannel.API: "webhook",
    ContactChannel.WEBHOOK: "webhook",
}

# Channels tried by primary_address() when no preference is given
DEFAULT_CHANNEL_ORDER: tuple[ContactChannel, ...] = (
    ContactChannel.SLACK,
    ContactChannel.EMAIL,
    ContactChannel.TEAMS,
    ContactChannel.SMS,
    ContactChannel.PHONE,
)


@dataclass
class ContactAddress:
    """Structured contact on a single channel.

    Attributes:
        value: Address on the channel (email address, user id, number, URL)
        name: Optional display name
        metadata: Channel-specific extras (workspace, server, secret)
    """

    value: str
    name: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


Contacts = dict[ContactChannel, Union[str, ContactAddress]]


@dataclass(frozen=True)
class ResolvedAddress:
    """A contact resolved to a concrete channel and transport."""

    channel: ContactChannel
    transport: str
    value: str
    name: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


def resolve_address(
    contacts: Contacts, channel: ContactChannel | str
) -> ResolvedAddress | None:
    """Resolve the contact for one channel.

    Args:
        contacts: Worker contacts
        channel: Channel to resolve

    Returns:
        Resolved address, or None if the worker has no such contact
    """
    channel = ContactChannel(channel)
    contact = contacts.get(channel)
    if contact is None:
        contact = contacts.get(channel.value)  # type: ignore[call-overload]
    if not contact:
        return None

    if isinstance(contact, str):
        return ResolvedAddress(channel=channel, transport=channel.transport, value=contact)

    return ResolvedAddress(
        channel=channel,
        transport=channel.transport,
        value=contact.value,
        name=contact.name,
        metadata=dict(contact.metadata),
    )


def resolve_addresses(contacts: Contacts) -> list[ResolvedAddress]:
    """Resolve every contact a worker has, in channel declaration order."""
    addresses = []
    for channel in ContactChannel:
        address = resolve_address(contacts, channel)
        if address is not None:
            addresses.append(address)
    return addresses


def primary_address(
    contacts: Contacts, preferred: ContactChannel | str | None = None
) -> ResolvedAddress | None:
    """Pick the address a notification should go to first.

    A preferred channel wins when set; otherwise the default order
    (slack, email, teams, sms, phone) is tried, then any other contact.

    Args:
        contacts: Worker contacts
        preferred: Preferred channel

    Returns:
        Resolved address, or None if the worker has no contacts
    """
    if preferred is not None:
        return resolve_address(contacts, preferred)

    for channel in DEFAULT_CHANNEL_ORDER:
        address = resolve_address(contacts, channel)
        if address is not None:
            return address

    addresses = resolve_addresses(contacts)
    return addresses[0] if addresses else None
