"""
Protocol handler registry with decorator support.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Callable

from pcaplens.protocols.base import Layer

if TYPE_CHECKING:
    from pcaplens.protocols.base import BaseProtocolHandler


class ProtocolHandlerRegistry:
    """
    Registry for protocol handlers.

    Handlers are indexed by layer, by the protocol that carries them, by
    default port and, for link layer handlers, by DLT value.
    """

    def __init__(self):
        self._handlers: dict[str, type[BaseProtocolHandler]] = {}
        self._by_layer: dict[int, list[str]] = {}
        self._by_encapsulation: dict[str, list[str]] = {}
        self._by_port: dict[int, list[str]] = {}
        self._by_link_type: dict[int, list[str]] = {}

    def register(self, handler_cls: type[BaseProtocolHandler]) -> type[BaseProtocolHandler]:
        """Register a protocol handler class."""
        if not handler_cls.name:
            raise ValueError(f"Handler {handler_cls.__name__} must have a name")

        handler_id = handler_cls.handler_id()
        if handler_id in self._handlers:
            raise ValueError(f"Handler {handler_id} already registered")

        self._handlers[handler_id] = handler_cls
        self._by_layer.setdefault(handler_cls.layer.value, []).append(handler_id)
        if handler_cls.encapsulates:
            self._by_encapsulation.setdefault(handler_cls.encapsulates, []).append(handler_id)
        for port in handler_cls.default_ports:
            self._by_port.setdefault(port, []).append(handler_id)
        for dlt in handler_cls.link_types:
            self._by_link_type.setdefault(dlt, []).append(handler_id)
        return handler_cls

    def get(self, name: str) -> type[BaseProtocolHandler] | None:
        """Get handler by id or by short name."""
        handler_cls = self._handlers.get(name)
        if handler_cls:
            return handler_cls
        for cls in self._handlers.values():
            if cls.name == name:
                return cls
        return None

    def _resolve(self, ids: list[str]) -> list[type[BaseProtocolHandler]]:
        handlers = [self._handlers[hid] for hid in ids if hid in self._handlers]
        return sorted(handlers, key=lambda h: h.priority, reverse=True)

    def get_by_layer(self, layer: Layer) -> list[type[BaseProtocolHandler]]:
        return self._resolve(self._by_layer.get(layer.value, []))

    def get_by_encapsulation(self, protocol: str) -> list[type[BaseProtocolHandler]]:
        return self._resolve(self._by_encapsulation.get(protocol, []))

    def get_by_port(self, port: int) -> list[type[BaseProtocolHandler]]:
        return self._resolve(self._by_port.get(port, []))

    def get_by_link_type(self, dlt: int) -> list[type[BaseProtocolHandler]]:
        return self._resolve(self._by_link_type.get(dlt, []))

    def list_handlers(self) -> list[str]:
        """List all registered handler IDs."""
        return list(self._handlers.keys())

    def unregister(self, name: str) -> bool:
        """Unregister a handler by id or short name."""
        handler_cls = self.get(name)
        if not handler_cls:
            return False

        handler_id = handler_cls.handler_id()
        del self._handlers[handler_id]
        for index in (self._by_layer, self._by_encapsulation, self._by_port, self._by_link_type):
            for key in list(index):
                index[key] = [hid for hid in index[key] if hid != handler_id]
        return True


# Global registry instance
_global_registry = ProtocolHandlerRegistry()


def get_global_registry() -> ProtocolHandlerRegistry:
    """Get the global protocol handler registry."""
    return _global_registry


def register_protocol(
    name: str,
    layer: Layer,
    label: str | None = None,
    encapsulates: str | None = None,
    default_ports: list[int] | None = None,
    link_types: list[int] | None = None,
    priority: int = 0,
    force_parse: bool = False,
    registry: ProtocolHandlerRegistry | None = None
) -> Callable[[type[BaseProtocolHandler]], type[BaseProtocolHandler]]:
    """
    Decorator to register a protocol handler.

    Args:
        name: Protocol handler name
        layer: Protocol layer this handler operates on
        label: Protocol column label (defaults to the upper-cased name)
        encapsulates: Protocol that carries this one (e.g. 'tcp' for HTTP)
        default_ports: Default port(s) for this protocol
        link_types: DLT values handled by a link layer handler
        priority: Handler priority (higher = preferred)
        force_parse: Whether to parse even if ports don't match
        registry: Registry to use (defaults to global)

    Example:
        @register_protocol('http', Layer.APPLICATION, encapsulates='tcp',
                           default_ports=[80, 8080], priority=100)
        class HTTPHandler(BaseProtocolHandler):
            pass
    """
    if registry is None:
        registry = _global_registry

    def decorator(cls: type[BaseProtocolHandler]) -> type[BaseProtocolHandler]:
        cls.name = name
        cls.label = label or name.upper()
        cls.layer = layer
        cls.encapsulates = encapsulates
        cls.default_ports = default_ports or []
        cls.link_types = link_types or []
        cls.priority = priority
        cls.force_parse = force_parse
        return registry.register(cls)

    return decorator


def unregister_protocol(name: str, registry: ProtocolHandlerRegistry | None = None) -> bool:
    """Unregister a protocol handler by name."""
    if registry is None:
        registry = _global_registry
    return registry.unregister(name)


def get_protocol_handlers(
    layer: Layer | None = None,
    encapsulates: str | None = None,
    port: int | None = None,
    registry: ProtocolHandlerRegistry | None = None
) -> list[type[BaseProtocolHandler]]:
    """
    Get protocol handlers matching the given criteria, highest priority first.
    """
    if registry is None:
        registry = _global_registry

    if layer is not None:
        return registry.get_by_layer(layer)
    if encapsulates is not None:
        return registry.get_by_encapsulation(encapsulates)
    if port is not None:
        return registry.get_by_port(port)
    return registry._resolve(registry.list_handlers())
