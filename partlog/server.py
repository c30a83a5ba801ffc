"""TCP broker: accepts producers and consumers and serves their requests."""

from __future__ import annotations

import argparse
import asyncio
import sys
from contextlib import suppress
from os import PathLike
from pathlib import Path

from partlog.ids import generate_unique_id
from partlog.messages import (
    FRAME_TERMINATOR,
    CommitOffset,
    CreateTopic,
    DeleteTopic,
    GetOffsetMessage,
    JoinConsumer,
    LeaveConsumer,
    MessageTopic,
    ProtocolError,
    Role,
    decode_consumer_message,
    decode_init,
    decode_producer_message,
    failure_frame,
    offset_frame,
    read_frame,
    success_frame,
)
from partlog.store import OffsetError
from partlog.topics import ConsumerJoinError, TopicRegistry

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8000


def _peer(writer: asyncio.StreamWriter) -> str:
    peer = writer.get_extra_info("peername")
    if isinstance(peer, tuple) and len(peer) >= 2:
        return f"{peer[0]}:{peer[1]}"
    return str(peer)


async def _send(writer: asyncio.StreamWriter, frame: bytes) -> None:
    writer.write(frame)
    with suppress(ConnectionError):
        await writer.drain()


class Broker:
    """A message broker keeping its topics under ``root``."""

    def __init__(
        self,
        root: str | PathLike[str] = ".",
        host: str = DEFAULT_HOST,
        port: int = DEFAULT_PORT,
    ) -> None:
        self.root = Path(root)
        self.host = host
        self.port = port
        self.registry = TopicRegistry(self.root)

    async def serve(self) -> None:
        """Listen on the configured address and serve clients until cancelled."""
        server = await asyncio.start_server(self.handle_connection, self.host, self.port)
        print(f"Server listening on {self.host}:{self.port}")
        async with server:
            await server.serve_forever()

    async def handle_connection(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        """Read the opening frame and hand the connection to the matching role."""
        print(f"New connection from: {_peer(writer)}")
        try:
            await self._dispatch(reader, writer)
        finally:
            writer.close()
            with suppress(ConnectionError):
                await writer.wait_closed()

    async def _dispatch(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        try:
            frame = await read_frame(reader)
        except (ConnectionError, ProtocolError) as exc:
            print(f"Failed to read from socket; err = {exc!r}", file=sys.stderr)
            return
        if frame is None:
            return
        try:
            role = decode_init(frame)
        except ProtocolError as exc:
            print(f"Invalid data {exc}")
            return
        if role is Role.PRODUCER:
            print("producer task in")
            await _send(writer, success_frame())
            await self.handle_producer(reader, writer)
        elif role is Role.CONSUMER:
            print("consumer task in")
            await _send(writer, success_frame())
            await self.handle_consumer(reader, writer)
        else:
            print("Invalid data")
            writer.write(frame + FRAME_TERMINATOR)
            try:
                await writer.drain()
            except ConnectionError as exc:
                print(f"Failed to write to socket; err = {exc!r}", file=sys.stderr)

    async def handle_producer(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        """Serve topic creation, deletion and publishing until the producer leaves."""
        while True:
            try:
                frame = await read_frame(reader)
            except (ConnectionError, ProtocolError) as exc:
                print(f"Failed to read from socket; err = {exc!r}", file=sys.stderr)
                return
            if frame is None:
                print("disconnect")
                return
            try:
                request = decode_producer_message(frame)
            except ProtocolError:
                await _send(writer, failure_frame())
                continue
            try:
                if isinstance(request, CreateTopic):
                    self.registry.add_topic(request.topic_name, request.partitions)
                elif isinstance(request, DeleteTopic):
                    self.registry.delete_topic(request.topic_name)
                elif isinstance(request, MessageTopic):
                    self.registry.send_message(request.key, request.data, request.topic_name)
            except OSError as exc:
                print(f"Failed to update topic storage; err = {exc!r}", file=sys.stderr)
                return
            await _send(writer, success_frame())

    async def handle_consumer(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        """Serve group membership, reads and commits until the consumer leaves."""
        consumer_id = generate_unique_id()
        while True:
            try:
                frame = await read_frame(reader)
            except (ConnectionError, ProtocolError) as exc:
                print(f"Failed to read from socket; err = {exc!r}", file=sys.stderr)
                return
            if frame is None:
                self.registry.disconnect_user(consumer_id)
                return
            try:
                request = decode_consumer_message(frame)
            except ProtocolError:
                await _send(writer, failure_frame())
                continue
            if isinstance(request, JoinConsumer):
                try:
                    self.registry.add_consumer(consumer_id, request.topic_name)
                except ConsumerJoinError:
                    await _send(writer, failure_frame())
                else:
                    await _send(writer, success_frame())
            elif isinstance(request, LeaveConsumer):
                self.registry.leave_consumer(consumer_id, request.topic_name)
                await _send(writer, success_frame())
                return
            elif isinstance(request, GetOffsetMessage):
                message = self.registry.read_message(
                    request.topic_name, request.partition, request.offset
                )
                if message is None:
                    await _send(writer, failure_frame())
                else:
                    await _send(writer, offset_frame(message))
            elif isinstance(request, CommitOffset):
                try:
                    self.registry.store.commit_offset(
                        request.topic_name, request.partition, request.offset
                    )
                except OffsetError:
                    await _send(writer, failure_frame())
                else:
                    await _send(writer, success_frame())


def main(argv: list[str] | None = None) -> int:
    """Run the broker until interrupted."""
    parser = argparse.ArgumentParser(
        prog="partlog-server", description="Run the partitioned log broker."
    )
    parser.add_argument("--host", default=DEFAULT_HOST, help="address to listen on")
    parser.add_argument("--port", type=int, default=DEFAULT_PORT, help="port to listen on")
    parser.add_argument("--root", default=".", help="directory holding logs and offsets")
    args = parser.parse_args(argv)
    broker = Broker(args.root, args.host, args.port)
    try:
        asyncio.run(broker.serve())
    except KeyboardInterrupt:
        return 0
    except OSError as exc:
        print(f"cannot start server: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())