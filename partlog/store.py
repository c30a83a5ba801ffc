"""Per-partition message cache backed by segment files on disk."""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from os import PathLike
from pathlib import Path

SEGMENT_SIZE = 10


class OffsetError(Exception):
    """An offset could not be committed."""


@dataclass
class PartitionCache:
    """Messages not yet flushed to disk and the partition's total count."""

    messages: list[bytes] = field(default_factory=list)
    total_messages: int = 0


class MessageStore:
    """Message caches for every topic and partition under ``root``.

    Flushed messages live in ``root/logs/<topic>/<partition>/<base>.log``,
    one message per line, where ``base`` is the offset of the first message
    in the segment. Committed offsets live in ``root/offsets/<topic>/<partition>``.
    """

    def __init__(self, root: str | PathLike[str]) -> None:
        self.root = Path(root)
        self.topics: dict[str, dict[int, PartitionCache]] = {}

    def add_topic(self, topic_name: str, partitions: int) -> None:
        """Register a topic with at least one partition; existing topics are kept."""
        if topic_name in self.topics:
            return
        count = max(1, partitions)
        self.topics[topic_name] = {i: PartitionCache() for i in range(count)}

    def delete_topic(self, topic_name: str) -> None:
        self.topics.pop(topic_name, None)

    def write_to_cache(self, topic_name: str, partition: int, message: bytes) -> tuple[int, int]:
        """Append ``message``; return the cache size and the partition's total count."""
        cache = self.topics[topic_name][partition]
        cache.messages.append(bytes(message))
        cache.total_messages += 1
        return len(cache.messages), cache.total_messages

    def clear_cache(self, topic_name: str, partition: int) -> list[bytes]:
        """Empty the partition's cache and return what it held."""
        cache = self.topics[topic_name][partition]
        messages, cache.messages = cache.messages, []
        return messages

    def get_message_by_offset(self, topic: str, partition: int, offset: int) -> bytes | None:
        """Return the message at ``offset``, from the cache or from its segment file."""
        cache = self._partition(topic, partition)
        if cache is None or offset < 0 or offset >= cache.total_messages:
            return None
        cache_start = cache.total_messages // SEGMENT_SIZE * SEGMENT_SIZE
        if offset >= cache_start:
            index = offset % SEGMENT_SIZE
            return cache.messages[index] if index < len(cache.messages) else None
        return self._read_line(topic, partition, offset)

    def commit_offset(self, topic: str, partition: int, offset: int) -> None:
        """Persist ``offset`` as the partition's committed offset."""
        cache = self._partition(topic, partition)
        if cache is None:
            raise OffsetError(f"unknown topic {topic!r} or partition {partition}")
        if offset >= cache.total_messages:
            raise OffsetError(
                f"offset {offset} is beyond the {cache.total_messages} stored messages"
            )
        path = self.root / "offsets" / topic / str(partition)
        try:
            encoded = struct.pack("<i", offset)
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(encoded)
        except (OSError, struct.error) as exc:
            raise OffsetError(f"cannot commit offset {offset}: {exc}") from exc

    def _partition(self, topic: str, partition: int) -> PartitionCache | None:
        return self.topics.get(topic, {}).get(partition)

    def _read_line(self, topic: str, partition: int, offset: int) -> bytes | None:
        base = offset // SEGMENT_SIZE * SEGMENT_SIZE
        path = self.root / "logs" / topic / str(partition) / f"{base}.log"
        try:
            content = path.read_bytes()
        except OSError:
            return None
        lines = content.split(b"\n")
        if lines and lines[-1] == b"":
            lines.pop()
        index = offset - base
        if index >= len(lines):
            return None
        line = lines[index]
        return line[:-1] if line.endswith(b"\r") else line