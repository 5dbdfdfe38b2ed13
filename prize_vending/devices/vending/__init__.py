"""
Spring vending controller driver.

Layers:
    constants    - opcodes, response codes, error descriptions
    codec        - frame encoding/decoding
    transactions - request/response correlation with timeouts
    transport    - async serial port
    endpoints    - port ranking and fallback opening
    reconnect    - reopening links after read errors
    protocol     - enhanced protocol client
    legacy       - six-byte direct-drive client
"""

from .codec import build_frame, encode_legacy_command, parse_frame
from .endpoints import open_with_fallback, rank_endpoints
from .legacy import LegacyVendingClient
from .reconnect import LinkSupervisor
from .protocol import ProtocolTimeouts, VendingProtocolClient
from .transactions import TransactionKind, TransactionRegistry, TransactionState
from .transport import SerialTransport


__all__ = [
    "build_frame",
    "encode_legacy_command",
    "parse_frame",
    "open_with_fallback",
    "rank_endpoints",
    "LinkSupervisor",
    "LegacyVendingClient",
    "ProtocolTimeouts",
    "VendingProtocolClient",
    "TransactionKind",
    "TransactionRegistry",
    "TransactionState",
    "SerialTransport",
]
