# partlog

A small message broker that keeps topics split into partitions and stores
their messages as log files. Producers create topics and publish messages;
consumers join a topic, are given a share of its partitions, read messages
by offset and commit the offsets they have processed.

## Installing

```
pip install .
```

For the tests:

```
pip install ".[test]"
pytest
```

## Running the broker

```
partlog-server [--host HOST] [--port PORT] [--root DIR]
```

By default the broker listens on `127.0.0.1:8000` and keeps its data under
the current directory (`--root` changes that):

- `logs/<topic>/<partition>/<n>.log` holds flushed messages, ten per file,
  one message per line, where `<n>` is the offset of the file's first
  message. The directories are created when a topic is created;
- `offsets/<topic>/<partition>` holds the last committed offset as a
  4-byte little-endian integer.

Each partition keeps its latest messages in memory and writes them out once
ten have gathered.

## Sending test traffic

```
partlog-produce [--host HOST] [--port PORT]
```

This connects as a producer, creates the topic `new_topic` with four
partitions, and publishes 79 messages without a key (spread round-robin over
the partitions) and 22 messages with the key `test` (all to the one partition
the key hashes to). It exits with status 1 if the connection or a reply fails.

## Protocol

Every frame is a JSON document followed by a zero byte. A connection opens
with `{"message": 0}` for a producer or `{"message": 1}` for a consumer, and
the broker answers `{}`. Any other number is echoed back and the connection
is closed.

Producer requests:

```
{"message": {"CREATETOPIC": {"topic_name": "t", "partitions": 4}}}
{"message": {"DELETETOPIC": {"topic_name": "t"}}}
{"message": {"MESSAGETOPIC": {"key": null, "topic_name": "t", "data": [104, 105]}}}
```

Consumer requests:

```
{"message": {"JOINCONSUMER": {"topic_name": "t"}}}
{"message": {"LEAVECONSUMER": {"topic_name": "t"}}}
{"message": {"GETOFFSETMESSAGE": {"topic_name": "t", "partition": 0, "offset": 3}}}
{"message": {"COMMITOFFSET": {"topic_name": "t", "partition": 0, "offset": 3}}}
```

Success and failure replies are both `{}`. A fetched message comes back as
`{"message": [..bytes..]}`. A consumer joining a topic with more members than
partitions is refused; `LEAVECONSUMER` is answered and then the connection
ends, and a consumer that disconnects leaves its group, its partitions going
to the group's first member.

## Using it from Python

```python
import asyncio
from partlog.server import Broker

asyncio.run(Broker(".", "127.0.0.1", 8000).serve())
```

- `partlog.messages` builds and reads frames: `encode_init`,
  `encode_producer_message`, `encode_consumer_message`, `read_frame`,
  `decode_success`, `decode_offset_reply`, and the request classes
  `CreateTopic`, `DeleteTopic`, `MessageTopic`, `JoinConsumer`,
  `LeaveConsumer`, `GetOffsetMessage`, `CommitOffset`.
- `partlog.topics.TopicRegistry` holds topics, partitioning and consumer
  groups without any networking; `partition_for_key` gives the partition a
  key maps to.
- `partlog.store.MessageStore` holds the per-partition caches and reads and
  commits offsets.
- `partlog.client.produce` runs the same traffic as `partlog-produce`.

## What it does not do

- Topics live in memory only: after a restart the broker does not reload the
  topics or messages found under `logs`, and messages still in a partition's
  in-memory cache are lost.
- Committed offsets are written to disk but never read back.
- There is no consumer command; consumers speak the protocol above directly.
- Messages are stored one per line, so data containing a newline byte does
  not read back whole once flushed to a log file.