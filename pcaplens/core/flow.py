"""
Conversation tracking.

A conversation is the bidirectional exchange between two endpoints
(``ip`` or ``ip:port``). Packets A→B and B→A land in the same record because
the key orders the two endpoints lexicographically.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator

from pcaplens.core.packet import UNKNOWN


@dataclass(frozen=True)
class ConversationKey:
    """
    Immutable hashable key for a conversation.

    Examples:
        >>> key = ConversationKey.from_endpoints('10.0.0.2:80', '10.0.0.1:5000')
        >>> key.endpoint_a, key.endpoint_b
        ('10.0.0.1:5000', '10.0.0.2:80')
        >>> key == ConversationKey.from_endpoints('10.0.0.1:5000', '10.0.0.2:80')
        True
    """
    endpoint_a: str
    endpoint_b: str

    @classmethod
    def from_endpoints(cls, src: str, dst: str) -> ConversationKey:
        if dst < src:
            src, dst = dst, src
        return cls(src, dst)

    def __str__(self) -> str:
        return f"{self.endpoint_a} <-> {self.endpoint_b}"

    def direction(self, src: str) -> int:
        """Returns 1 when ``src`` is endpoint A, -1 otherwise."""
        return 1 if src == self.endpoint_a else -1


@dataclass
class ConversationRecord:
    """
    Running totals for one conversation.

    ``protocol_label`` is the label of the first packet seen. Start and end
    times stay None until a packet with a timestamp arrives.
    """
    endpoint_a: str
    endpoint_b: str
    protocol_label: str
    packet_count: int = 0
    total_bytes: int = 0
    start_time: float | None = None
    end_time: float | None = None

    @property
    def key(self) -> ConversationKey:
        return ConversationKey(self.endpoint_a, self.endpoint_b)

    @property
    def duration(self) -> float:
        if self.start_time is None or self.end_time is None:
            return 0.0
        return self.end_time - self.start_time

    def update(self, length: int, timestamp: float | None) -> None:
        self.packet_count += 1
        self.total_bytes += length
        if timestamp is None:
            return
        if self.start_time is None or timestamp < self.start_time:
            self.start_time = timestamp
        if self.end_time is None or timestamp > self.end_time:
            self.end_time = timestamp

    def to_dict(self) -> dict:
        return {
            'endpoint_a': self.endpoint_a,
            'endpoint_b': self.endpoint_b,
            'protocol': self.protocol_label,
            'packets': self.packet_count,
            'bytes': self.total_bytes,
            'start_time': self.start_time,
            'end_time': self.end_time,
            'duration': self.duration,
        }


class ConversationTable:
    """Conversations in order of first appearance."""

    def __init__(self):
        self._conversations: dict[ConversationKey, ConversationRecord] = {}

    def add(self, src: str, dst: str, protocol: str, length: int,
            timestamp: float | None) -> ConversationRecord | None:
        """
        Account one packet. Packets with an unknown endpoint belong to no
        conversation and return None.
        """
        if src == UNKNOWN or dst == UNKNOWN:
            return None

        key = ConversationKey.from_endpoints(src, dst)
        record = self._conversations.get(key)
        if record is None:
            record = ConversationRecord(key.endpoint_a, key.endpoint_b, protocol)
            self._conversations[key] = record
        record.update(length, timestamp)
        return record

    def get(self, src: str, dst: str) -> ConversationRecord | None:
        return self._conversations.get(ConversationKey.from_endpoints(src, dst))

    def records(self) -> list[ConversationRecord]:
        return list(self._conversations.values())

    def __len__(self) -> int:
        return len(self._conversations)

    def __iter__(self) -> Iterator[ConversationRecord]:
        return iter(self._conversations.values())


__all__ = [
    'ConversationKey',
    'ConversationRecord',
    'ConversationTable',
]
