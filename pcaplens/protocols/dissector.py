"""
Frame dissection: walks the handler chain from the link layer inwards.
"""

from __future__ import annotations

import logging

from pcaplens.protocols.application import ApplicationLayerClassifier
from pcaplens.protocols.base import BaseProtocolHandler, ParseResult, ProtocolContext
from pcaplens.protocols.registry import ProtocolHandlerRegistry, get_global_registry

logger = logging.getLogger(__name__)


class FrameDissector:
    """
    Decodes one captured frame into a ProtocolContext.

    The link layer handler is chosen by DLT value; each handler then names
    the next one through ``ParseResult.next_protocol``. The special name
    ``"application"`` hands the transport payload to the
    ApplicationLayerClassifier.

    A handler exception ends the walk for that frame only: the context keeps
    whatever the outer layers decoded and the error is recorded on it.
    """

    def __init__(self, app_layer_parsing: str = 'full',
                 registry: ProtocolHandlerRegistry | None = None):
        self.registry = registry or get_global_registry()
        self.classifier = ApplicationLayerClassifier(app_layer_parsing, self.registry)
        self.app_layer_parsing = app_layer_parsing
        self._instances: dict[str, BaseProtocolHandler] = {}

    def _handler(self, name: str) -> BaseProtocolHandler | None:
        handler = self._instances.get(name)
        if handler is None:
            cls = self.registry.get(name)
            if cls is None:
                return None
            handler = self._instances[name] = cls()
        return handler

    def _link_handler(self, link_type: int) -> BaseProtocolHandler | None:
        handlers = self.registry.get_by_link_type(link_type)
        if not handlers:
            return None
        return self._handler(handlers[0].handler_id())

    def dissect(self, data: bytes, link_type: int | None) -> ProtocolContext:
        context = ProtocolContext(link_type=link_type, app_layer_parsing=self.app_layer_parsing)

        if link_type is None:
            context.info = "Frame references an undefined capture interface"
            return context

        handler = self._link_handler(link_type)
        if handler is None:
            context.protocol = f"Link-type {link_type}"
            context.info = f"Unsupported link-layer type {link_type}; frame not decoded"
            return context

        payload = data
        while handler is not None:
            try:
                result = handler.parse(payload, context)
            except Exception as e:
                result = ParseResult(success=False, error=f"{handler.name}: {e}")
                logger.debug("Decode error in %s handler: %s", handler.name, e)
                context.info = f"Malformed {handler.label} packet"

            if not result.success:
                if result.error:
                    context.errors.append(result.error)
                break

            if result.next_protocol == 'application':
                self.classifier.classify(result.data, context)
                break
            if result.next_protocol is None:
                break

            handler = self._handler(result.next_protocol)
            payload = result.data

        return context
