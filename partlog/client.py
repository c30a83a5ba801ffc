"""Sample producer that creates a topic and publishes a batch of messages."""

from __future__ import annotations

import argparse
import asyncio
import sys
from contextlib import suppress

from partlog.messages import (
    CreateTopic,
    MessageTopic,
    ProtocolError,
    Role,
    decode_success,
    encode_init,
    encode_producer_message,
    read_frame,
)

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8000
TOPIC_NAME = "new_topic"
TOPIC_PARTITIONS = 4
MESSAGE_KEY = "test"


async def _request(
    reader: asyncio.StreamReader, writer: asyncio.StreamWriter, frame: bytes
) -> None:
    writer.write(frame)
    await writer.drain()
    await _expect_success(reader)


async def _expect_success(reader: asyncio.StreamReader) -> None:
    reply = await read_frame(reader)
    if reply is None:
        raise ConnectionError("server closed the connection")
    decode_success(reply)


async def produce(host: str = DEFAULT_HOST, port: int = DEFAULT_PORT) -> int:
    """Create the sample topic and publish messages to it.

    Returns the number of published messages the server acknowledged.
    """
    reader, writer = await asyncio.open_connection(host, port)
    print(f"producer connected to server at {host}:{port}")
    try:
        writer.write(encode_init(Role.PRODUCER))
        await writer.drain()
        await _expect_success(reader)

        await _request(
            reader,
            writer,
            encode_producer_message(CreateTopic(TOPIC_NAME, TOPIC_PARTITIONS)),
        )

        sent = 0
        for i in range(1, 80):
            data = f"Message without key = {i}".encode()
            await _request(
                reader, writer, encode_producer_message(MessageTopic(None, TOPIC_NAME, data))
            )
            sent += 1
        for i in range(1, 23):
            data = f"Message with key = {i}".encode()
            await _request(
                reader,
                writer,
                encode_producer_message(MessageTopic(MESSAGE_KEY, TOPIC_NAME, data)),
            )
            sent += 1
        return sent
    finally:
        writer.close()
        with suppress(ConnectionError):
            await writer.wait_closed()


def main(argv: list[str] | None = None) -> int:
    """Run the sample producer against a broker."""
    parser = argparse.ArgumentParser(
        prog="partlog-produce", description="Publish sample messages to a broker."
    )
    parser.add_argument("--host", default=DEFAULT_HOST, help="broker address")
    parser.add_argument("--port", type=int, default=DEFAULT_PORT, help="broker port")
    args = parser.parse_args(argv)
    try:
        asyncio.run(produce(args.host, args.port))
    except (OSError, ProtocolError) as exc:
        print(f"producer failed: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())