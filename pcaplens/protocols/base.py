"""
Protocol handler base classes and types.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import IntEnum

from pcaplens.core.packet import UNKNOWN, ProtocolInfo, format_endpoint


class Layer(IntEnum):
    """Protocol layer enumeration."""
    PHYSICAL = 1
    DATA_LINK = 2
    NETWORK = 3
    TRANSPORT = 4
    SESSION = 5
    PRESENTATION = 6
    APPLICATION = 7


APP_LAYER_MODES = ('full', 'port_only', 'none')


@dataclass
class ProtocolContext:
    """
    Decode state of one frame, threaded through the handlers.

    Handlers append their decoded layer and overwrite the display fields as
    they go deeper, so after the walk the context holds the values of the
    innermost layer that could be decoded.
    """
    link_type: int | None
    app_layer_parsing: str = 'full'
    layers: list[ProtocolInfo] = field(default_factory=list)
    source: str = UNKNOWN
    destination: str = UNKNOWN
    protocol: str = UNKNOWN
    info: str = ""
    transport: str | None = None
    src_port: int | None = None
    dst_port: int | None = None
    # Layer implied by a well-known port when no payload could be decoded
    implied_layer: str | None = None
    errors: list[str] = field(default_factory=list)

    def add_layer(self, info: ProtocolInfo) -> None:
        self.layers.append(info)

    def find(self, kind: type):
        for layer in self.layers:
            if isinstance(layer, kind):
                return layer
        return None

    def set_addresses(self, src: str, dst: str) -> None:
        self.source = src
        self.destination = dst

    def attach_ports(self, transport: str, sport: int, dport: int) -> None:
        """Record the transport ports and append them to the address endpoints."""
        self.transport = transport
        self.src_port = sport
        self.dst_port = dport
        if self.source != UNKNOWN:
            self.source = format_endpoint(self.source, sport)
        if self.destination != UNKNOWN:
            self.destination = format_endpoint(self.destination, dport)

    @property
    def ports(self) -> tuple[int, ...]:
        return tuple(p for p in (self.src_port, self.dst_port) if p is not None)

    @property
    def trace(self) -> tuple[str, ...]:
        names = tuple(layer.layer_name for layer in self.layers)
        if self.implied_layer and self.implied_layer not in names:
            names += (self.implied_layer,)
        return names


@dataclass
class ParseResult:
    """Result returned by protocol handler."""
    success: bool
    data: bytes = b""  # Payload handed to the next handler
    info: object | None = None  # Decoded layer (e.g. TCPInfo)
    next_protocol: str | None = None  # Registry name of the next handler
    error: str | None = None


class BaseProtocolHandler(ABC):
    """
    Abstract base class for protocol handlers.

    A handler decodes one layer from the front of ``payload``, records what
    it found on the context and names the handler for the remaining bytes.
    """

    # Protocol name/identifier
    name: str = ""

    # Label used for the packet's protocol column
    label: str = ""

    # Layer this handler operates on
    layer: Layer = Layer.APPLICATION

    # Protocol this handler is carried by (e.g. 'tcp' for HTTP)
    encapsulates: str | None = None

    # Default port(s) this protocol uses (for auto-detection)
    default_ports: list[int] = []

    # DLT values a link layer handler accepts
    link_types: list[int] = []

    # Priority for handler selection (higher = preferred)
    priority: int = 0

    # Whether to attempt parsing even if default ports don't match
    force_parse: bool = False

    @abstractmethod
    def parse(self, payload: bytes, context: ProtocolContext) -> ParseResult:
        """
        Parse protocol from payload.

        Args:
            payload: Raw bytes starting at this handler's header
            context: Per-frame decode state

        Returns:
            ParseResult with the decoded layer and the bytes that follow it
        """

    def matches_port(self, context: ProtocolContext) -> bool:
        return any(p in self.default_ports for p in context.ports)

    def can_parse(self, payload: bytes, context: ProtocolContext) -> bool:
        """
        Check if this handler should be tried for the given payload.

        Default implementation checks the port list unless ``force_parse``
        is set. Override for custom detection logic.
        """
        if not self.force_parse and self.default_ports and not self.matches_port(context):
            return False
        return len(payload) > 0

    @classmethod
    def handler_id(cls) -> str:
        """Get unique handler identifier."""
        return f"{cls.layer.name.lower()}.{cls.name}"
