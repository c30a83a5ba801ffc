import asyncio
import contextlib
import socket

import pytest

from partlog.messages import (
    CommitOffset,
    CreateTopic,
    DeleteTopic,
    GetOffsetMessage,
    JoinConsumer,
    LeaveConsumer,
    MessageTopic,
    Role,
    decode_offset_reply,
    decode_success,
    encode_consumer_message,
    encode_frame,
    encode_init,
    encode_producer_message,
    failure_frame,
    success_frame,
)
from partlog.server import Broker, main


@contextlib.asynccontextmanager
async def running(broker):
    server = await asyncio.start_server(broker.handle_connection, "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]
    try:
        yield port
    finally:
        server.close()
        await server.wait_closed()


async def read_reply(reader):
    return await asyncio.wait_for(reader.readuntil(b"\0"), timeout=5)


async def connect(port, role):
    reader, writer = await asyncio.open_connection("127.0.0.1", port)
    writer.write(encode_init(role))
    await writer.drain()
    assert await read_reply(reader) == success_frame()
    return reader, writer


async def request(reader, writer, frame):
    writer.write(frame)
    await writer.drain()
    return await read_reply(reader)


async def close(writer):
    writer.close()
    with contextlib.suppress(ConnectionError):
        await writer.wait_closed()


async def wait_until(condition):
    for _ in range(500):
        if condition():
            return True
        await asyncio.sleep(0.01)
    return condition()


@pytest.mark.asyncio
async def test_producer_handshake_replies_with_empty_object(tmp_path):
    broker = Broker(tmp_path)
    async with running(broker) as port:
        reader, writer = await asyncio.open_connection("127.0.0.1", port)
        writer.write(encode_init(Role.PRODUCER))
        await writer.drain()
        reply = await read_reply(reader)
        await close(writer)
    assert reply == b"{}\0"
    assert decode_success(reply) == {}


@pytest.mark.asyncio
async def test_create_topic_makes_partition_directories(tmp_path):
    broker = Broker(tmp_path)
    async with running(broker) as port:
        reader, writer = await connect(port, Role.PRODUCER)
        reply = await request(
            reader, writer, encode_producer_message(CreateTopic("new_topic", 4))
        )
        await close(writer)
    assert reply == success_frame()
    assert sorted(p.name for p in (tmp_path / "logs" / "new_topic").iterdir()) == [
        "0",
        "1",
        "2",
        "3",
    ]
    assert broker.registry.topics["new_topic"].partition_count == 4


@pytest.mark.asyncio
async def test_delete_topic_removes_it(tmp_path):
    broker = Broker(tmp_path)
    async with running(broker) as port:
        reader, writer = await connect(port, Role.PRODUCER)
        await request(reader, writer, encode_producer_message(CreateTopic("gone", 2)))
        reply = await request(reader, writer, encode_producer_message(DeleteTopic("gone")))
        await close(writer)
    assert reply == success_frame()
    assert "gone" not in broker.registry.topics
    assert not (tmp_path / "logs" / "gone").exists()


@pytest.mark.asyncio
async def test_invalid_producer_frame_gets_failure_and_connection_continues(tmp_path):
    broker = Broker(tmp_path)
    async with running(broker) as port:
        reader, writer = await connect(port, Role.PRODUCER)
        bad = await request(reader, writer, b"not json\0")
        good = await request(reader, writer, encode_producer_message(CreateTopic("t", 1)))
        await close(writer)
    assert bad == failure_frame()
    assert good == success_frame()
    assert "t" in broker.registry.topics


@pytest.mark.asyncio
async def test_published_message_is_read_by_consumer(tmp_path):
    broker = Broker(tmp_path)
    async with running(broker) as port:
        p_reader, p_writer = await connect(port, Role.PRODUCER)
        await request(p_reader, p_writer, encode_producer_message(CreateTopic("t", 1)))
        await request(
            p_reader, p_writer, encode_producer_message(MessageTopic(None, "t", b"hello"))
        )
        c_reader, c_writer = await connect(port, Role.CONSUMER)
        reply = await request(
            c_reader, c_writer, encode_consumer_message(GetOffsetMessage("t", 0, 0))
        )
        missing = await request(
            c_reader, c_writer, encode_consumer_message(GetOffsetMessage("t", 0, 1))
        )
        await close(p_writer)
        await close(c_writer)
    assert decode_offset_reply(reply) == b"hello"
    assert missing == failure_frame()


@pytest.mark.asyncio
async def test_get_offset_of_unknown_topic_fails(tmp_path):
    broker = Broker(tmp_path)
    async with running(broker) as port:
        reader, writer = await connect(port, Role.CONSUMER)
        reply = await request(
            reader, writer, encode_consumer_message(GetOffsetMessage("nope", 0, 0))
        )
        await close(writer)
    assert reply == failure_frame()


@pytest.mark.asyncio
async def test_join_unknown_topic_fails_and_known_topic_succeeds(tmp_path):
    broker = Broker(tmp_path)
    broker.registry.add_topic("t", 2)
    async with running(broker) as port:
        reader, writer = await connect(port, Role.CONSUMER)
        unknown = await request(reader, writer, encode_consumer_message(JoinConsumer("x")))
        known = await request(reader, writer, encode_consumer_message(JoinConsumer("t")))
        group = list(broker.registry.consumers["t"])
        await close(writer)
    assert unknown == failure_frame()
    assert known == success_frame()
    assert len(group) == 1
    assert group[0].assigned_partitions == [0, 1]


@pytest.mark.asyncio
async def test_consumer_disconnect_leaves_group(tmp_path):
    broker = Broker(tmp_path)
    broker.registry.add_topic("t", 2)
    async with running(broker) as port:
        reader, writer = await connect(port, Role.CONSUMER)
        await request(reader, writer, encode_consumer_message(JoinConsumer("t")))
        assert len(broker.registry.consumers["t"]) == 1
        await close(writer)
        emptied = await wait_until(lambda: broker.registry.consumers["t"] == [])
    assert emptied


@pytest.mark.asyncio
async def test_leave_replies_success_and_closes(tmp_path):
    broker = Broker(tmp_path)
    broker.registry.add_topic("t", 2)
    async with running(broker) as port:
        reader, writer = await connect(port, Role.CONSUMER)
        await request(reader, writer, encode_consumer_message(JoinConsumer("t")))
        reply = await request(reader, writer, encode_consumer_message(LeaveConsumer("t")))
        rest = await asyncio.wait_for(reader.read(), timeout=5)
        await close(writer)
    assert reply == success_frame()
    assert rest == b""
    assert broker.registry.consumers["t"] == []


@pytest.mark.asyncio
async def test_commit_offset_writes_little_endian_value(tmp_path):
    broker = Broker(tmp_path)
    broker.registry.add_topic("t", 1)
    broker.registry.send_message(None, b"a", "t")
    async with running(broker) as port:
        reader, writer = await connect(port, Role.CONSUMER)
        beyond = await request(reader, writer, encode_consumer_message(CommitOffset("t", 0, 1)))
        ok = await request(reader, writer, encode_consumer_message(CommitOffset("t", 0, 0)))
        await close(writer)
    assert beyond == failure_frame()
    assert ok == success_frame()
    assert (tmp_path / "offsets" / "t" / "0").read_bytes() == (0).to_bytes(4, "little")


@pytest.mark.asyncio
async def test_unknown_role_is_echoed_back(tmp_path):
    broker = Broker(tmp_path)
    async with running(broker) as port:
        reader, writer = await asyncio.open_connection("127.0.0.1", port)
        frame = encode_frame({"message": 7})
        writer.write(frame)
        await writer.drain()
        reply = await asyncio.wait_for(reader.read(), timeout=5)
        await close(writer)
    assert reply == frame


@pytest.mark.asyncio
async def test_invalid_handshake_closes_without_reply(tmp_path):
    broker = Broker(tmp_path)
    async with running(broker) as port:
        reader, writer = await asyncio.open_connection("127.0.0.1", port)
        writer.write(b"{broken\0")
        await writer.drain()
        reply = await asyncio.wait_for(reader.read(), timeout=5)
        await close(writer)
    assert reply == b""


def test_main_rejects_bad_port_argument():
    with pytest.raises(SystemExit) as info:
        main(["--port", "not-a-port"])
    assert info.value.code == 2


def test_main_reports_address_in_use(tmp_path):
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        sock.listen()
        port = sock.getsockname()[1]
        result = main(["--host", "127.0.0.1", "--port", str(port), "--root", str(tmp_path)])
    assert result == 1