"""
Transport layer - contact channels and the sender interface.
"""

from hitl_dispatch.transport.contacts import (
    DEFAULT_CHANNEL_ORDER,
    ContactAddress,
    ContactChannel,
    Contacts,
    ResolvedAddress,
    primary_address,
    resolve_address,
    resolve_addresses,
)
from hitl_dispatch.transport.sender import RecordingSender, TransportSender

__all__ = [
    "DEFAULT_CHANNEL_ORDER",
    "ContactAddress",
    "ContactChannel",
    "Contacts",
    "RecordingSender",
    "ResolvedAddress",
    "TransportSender",
    "primary_address",
    "resolve_address",
    "resolve_addresses",
]
