# remotesupport

A remote support system for factories. Factory clients open work orders
(tickets) for faulty devices; experts accept and complete them. While a
ticket is open, the sessions that have joined it can exchange chat
messages, media, files and stream notifications, and every connected client
receives live readings from simulated devices.

The package has no third-party dependencies.

## Installing

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Running the server

```
remotesupport-server
remotesupport-server 9000
remotesupport-server 9000 --host 127.0.0.1 --db-dir /var/lib/remotesupport
```

Options:

- `port` (positional, default `8888`): the TCP port to listen on.
- `--host` (default `0.0.0.0`): the address to bind.
- `--db-dir` (default `Db`): the directory holding `server.db`. The
  directory must exist; the database file and its tables are created if
  missing.

On start-up the server registers three simulated devices
(`SIM_PLC_1001`, `SIM_SENSOR_2002`, `SIM_MOTOR_3003`), replacing any earlier
`SIM_` rows, and then writes a fresh reading for each of them every three
seconds, broadcasting it to all connected clients as a
`device_realtime_update` message. The server runs until interrupted.

From code, `remotesupport.servercore.build_services(database)` assembles all
server components on an initialised `Database`, and
`ServerCore(port, host, services)` serves them: `await start()` returns the
bound port (pass port `0` to pick a free one), `await close()` stops it, and
`clients` lists the connected `ClientSession` objects.

## Wire protocol

Every message in either direction is a frame: a 4-byte big-endian length
followed by that many bytes of UTF-8 JSON. Each JSON message has a `type`
and a `data` object.

`remotesupport.protocol` provides the framing:

```python
from remotesupport.protocol import FrameDecoder, pack_message, unpack_message

frame = pack_message(b'{"type":"get_device_list","data":{}}')

message, rest = unpack_message(frame)   # None if the frame is incomplete

decoder = FrameDecoder()
for message in decoder.feed(frame[:3]) + decoder.feed(frame[3:]):
    print(message)
```

`pack_message` raises `ValueError` for a payload too large for the 4-byte
header. `FrameDecoder.feed` keeps any incomplete tail for the next call;
`FrameDecoder.buffered` tells how many bytes are waiting.

Requests the server handles (`remotesupport.clientsession.ClientSession`):

| type | effect |
| --- | --- |
| `register` | create a `client` or `expert` account; replies `register_result` |
| `login` | check a username and password; replies `login_result` |
| `create_ticket` | open a work order for a list of `device_ids`; replies `ticket_created` |
| `join_ticket` | join an open work order; replies `joined_ticket` |
| `accept_ticket` | an expert takes a pending work order |
| `complete_ticket` | an expert closes an in-progress work order with a description and solution |
| `text_msg` | chat, forwarded unchanged to the other members of the ticket |
| `get_device_list` | devices with their latest readings; replies `device_list` |
| `request_device_data` | one snapshot of simulated readings; replies `device_data` |
| `control_command` | count a command against a device and broadcast the result |
| `deviceControl` | passed to the session's `device_control_request` listeners |
| `file_upload_start`, `file_upload_chunk`, `file_download` | chunked, base64-encoded file transfer inside a ticket |
| `rtmp_stream_start`, `rtmp_stream_stop`, `rtmp_stream_data` | announce, end and relay a stream to the other members of the ticket |

Frames that are not JSON, unknown types and requests that fail (an unknown
ticket, a wrong ticket state, a bad upload) are logged and skipped; the
connection stays open.

Work orders move from `pending` to `in_progress` to `completed`
(`remotesupport.protocol.WorkOrderStatus`). `WorkOrderManager` raises
`TicketNotFoundError` for an unknown ticket and `TicketStateError` for any
other transition. A completed ticket is closed and forgotten by the
manager; its record stays in the database.

Uploaded files are written to `uploads/<ticket_id>/<file_name>` below the
working directory and served back in 64 KiB chunks.

## Using the client

```python
from remotesupport.client import FactoryClient, Page

client = FactoryClient()
client.connect("127.0.0.1", 8888)
client.login_result.append(lambda ok: print("login", ok))

password = "password"
client.register("alice", password)
client.receive()
client.login("alice", password)
client.receive()
assert client.page is Page.MAIN   # after a successful login
client.close()
```

`FactoryClient` can also be given a `write` callable instead of a socket
and fed received bytes with `feed(data)`. `login` and `register` return
`False` without sending anything when a field is empty. The client tracks
the page it would show (`Page.LOGIN`, `Page.REGISTER`, `Page.MAIN`) and
reacts only to `login_result` and `register_result` replies.

## Storage

`remotesupport.database.Database` opens `server.db` in the directory passed
to `initialize` and creates the tables for users, work orders and their
devices, devices, realtime readings, reading history and device logs; it
raises `DatabaseError` on failure. `UserDAO`, `DeviceDAO` and `WorkOrderDAO`
work on top of it. Passwords are stored only as SHA-256 hex digests
(`remotesupport.userdao.hash_password`).

## Streaming

`remotesupport.rtmpmanager.RTMPManager` tracks one stream per ticket and
relays base64-encoded stream data sent over the main protocol.
`remotesupport.rtmpserver.RTMPServer` is a separate asyncio listener
(default port 1935) that answers the RTMP handshake and notices a
`publish` command, registering the session's `stream_name` with a
`StreamManager`.

## What it does not do

- There is no graphical client: `FactoryClient` has no screens, only the
  `page` it tracks, and there is no expert client program.
- `RTMPServer` does not decode RTMP messages. It does not read the stream
  name from the peer, so a session publishes only if `stream_name` has been
  set on it, and no audio or video is relayed. `remotesupport-server` does
  not start it.
- Device readings are simulated; nothing talks to real devices.