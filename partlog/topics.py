"""Topic registry: partitioning, segment flushing and consumer group membership."""

from __future__ import annotations

import shutil
import struct
from dataclasses import dataclass, field
from os import PathLike
from pathlib import Path

from partlog.store import SEGMENT_SIZE, MessageStore

_MASK = (1 << 64) - 1


class ConsumerJoinError(Exception):
    """A consumer could not join a topic's group."""


@dataclass
class ConsumerState:
    """A consumer in a topic's group and the partitions it is assigned."""

    consumer_id: str
    assigned_partitions: list[int] = field(default_factory=list)
    last_accessed_partition_index: int = -1


@dataclass
class TopicInfo:
    """Partition count of a topic and the partition last written without a key."""

    partition_count: int
    prev_written_partition: int = -1


def _rotl(value: int, shift: int) -> int:
    return ((value << shift) | (value >> (64 - shift))) & _MASK


def _sip_round(v0: int, v1: int, v2: int, v3: int) -> tuple[int, int, int, int]:
    v0 = (v0 + v1) & _MASK
    v1 = _rotl(v1, 13) ^ v0
    v0 = _rotl(v0, 32)
    v2 = (v2 + v3) & _MASK
    v3 = _rotl(v3, 16) ^ v2
    v0 = (v0 + v3) & _MASK
    v3 = _rotl(v3, 21) ^ v0
    v2 = (v2 + v1) & _MASK
    v1 = _rotl(v1, 17) ^ v2
    v2 = _rotl(v2, 32)
    return v0, v1, v2, v3


def _siphash13(data: bytes, k0: int = 0, k1: int = 0) -> int:
    """SipHash-1-3 of ``data`` with the given keys."""
    v0 = k0 ^ 0x736F6D6570736575
    v1 = k1 ^ 0x646F72616E646F6D
    v2 = k0 ^ 0x6C7967656E657261
    v3 = k1 ^ 0x7465646279746573
    whole = len(data) - len(data) % 8
    for (word,) in struct.iter_unpack("<Q", data[:whole]):
        v3 ^= word
        v0, v1, v2, v3 = _sip_round(v0, v1, v2, v3)
        v0 ^= word
    last = ((len(data) & 0xFF) << 56) | int.from_bytes(data[whole:], "little")
    v3 ^= last
    v0, v1, v2, v3 = _sip_round(v0, v1, v2, v3)
    v0 ^= last
    v2 ^= 0xFF
    for _ in range(3):
        v0, v1, v2, v3 = _sip_round(v0, v1, v2, v3)
    return v0 ^ v1 ^ v2 ^ v3


def partition_for_key(key: str, partitions: int) -> int:
    """Map ``key`` to a partition in ``range(partitions)`` by a stable hash."""
    if partitions < 1:
        raise ValueError("partitions must be at least 1")
    return _siphash13(key.encode("utf-8") + b"\xff") % partitions


class TopicRegistry:
    """All topics, their stored messages and their consumer groups under ``root``."""

    def __init__(self, root: str | PathLike[str]) -> None:
        self.root = Path(root)
        self.store = MessageStore(self.root)
        self.topics: dict[str, TopicInfo] = {}
        self.consumers: dict[str, list[ConsumerState]] = {}

    def _log_dir(self, topic_name: str) -> Path:
        return self.root / "logs" / topic_name

    def add_topic(self, topic_name: str, partitions: int) -> None:
        """Create a topic with at least one partition; an existing topic is kept."""
        if topic_name in self.topics:
            return
        count = max(1, partitions)
        path = self._log_dir(topic_name)
        for index in range(count):
            (path / str(index)).mkdir(parents=True, exist_ok=True)
        self.topics[topic_name] = TopicInfo(partition_count=count)
        self.store.add_topic(topic_name, count)
        self.consumers[topic_name] = []

    def delete_topic(self, topic_name: str) -> None:
        """Remove a topic, its log files and its consumer group."""
        if topic_name not in self.topics:
            return
        shutil.rmtree(self._log_dir(topic_name), ignore_errors=True)
        del self.topics[topic_name]
        self.store.delete_topic(topic_name)
        self.consumers.pop(topic_name, None)

    def send_message(self, key: str | None, data: bytes, topic_name: str) -> int | None:
        """Store ``data`` in a partition of ``topic_name`` and return that partition.

        Keyed messages go to the partition their key hashes to; others are
        spread round-robin. A full cache is flushed to a segment file.
        Returns ``None`` when the topic does not exist.
        """
        info = self.topics.get(topic_name)
        if info is None:
            return None
        if key is not None:
            index = partition_for_key(key, info.partition_count)
        else:
            index = (info.prev_written_partition + 1) % info.partition_count
            info.prev_written_partition = index
        cache_size, total = self.store.write_to_cache(topic_name, index, data)
        if cache_size == SEGMENT_SIZE:
            self._flush(topic_name, index, total - SEGMENT_SIZE)
        return index

    def _flush(self, topic_name: str, partition: int, base: int) -> None:
        lines = self.store.clear_cache(topic_name, partition)
        directory = self._log_dir(topic_name) / str(partition)
        directory.mkdir(parents=True, exist_ok=True)
        (directory / f"{base}.log").write_bytes(b"".join(line + b"\n" for line in lines))

    def add_consumer(self, connection_id: str, topic_name: str) -> None:
        """Add a consumer to a topic's group, taking a partition from the first member."""
        info = self.topics.get(topic_name)
        if info is None:
            raise ConsumerJoinError(f"unknown topic {topic_name!r}")
        group = self.consumers[topic_name]
        if not group:
            group.append(
                ConsumerState(connection_id, list(range(info.partition_count)))
            )
            return
        if len(group) >= info.partition_count:
            raise ConsumerJoinError(f"topic {topic_name!r} has no free partition")
        donor = group[0].assigned_partitions
        if not donor:
            raise ConsumerJoinError(f"topic {topic_name!r} has no free partition")
        group.append(ConsumerState(connection_id, [donor.pop()]))

    def leave_consumer(self, connection_id: str, topic_name: str) -> None:
        """Remove a consumer from a topic's group, returning its partitions."""
        group = self.consumers.get(topic_name)
        if topic_name not in self.topics or not group:
            return
        for index, consumer in enumerate(group):
            if consumer.consumer_id == connection_id:
                self._remove(group, index)
                return

    def disconnect_user(self, connection_id: str) -> None:
        """Remove a consumer from the first group it belongs to."""
        for group in self.consumers.values():
            for index, consumer in enumerate(group):
                if consumer.consumer_id == connection_id:
                    self._remove(group, index)
                    return

    @staticmethod
    def _remove(group: list[ConsumerState], index: int) -> None:
        removed = group.pop(index)
        if group:
            group[0].assigned_partitions.extend(removed.assigned_partitions)

    def read_message(self, topic: str, partition: int, offset: int) -> bytes | None:
        """Return the message at ``offset`` of a partition, or ``None``."""
        return self.store.get_message_by_offset(topic, partition, offset)