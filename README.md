# wsredis

An HTTP and WebSocket server that lets clients follow a shared "table" in
real time. Every table is a Redis hash. Actions sent by a client holding a
valid session are stored in the hash and published on a Redis channel named
after the table, and every WebSocket client watching that table receives
them.

## Installation

```
pip install .
```

The server needs a reachable Redis instance.

## Running

```
wsredis
```

The command takes no options besides `--help`. Configuration comes from
environment variables:

| Variable     | Default     | Meaning                      |
|--------------|-------------|------------------------------|
| `REDIS_ADDR` | `127.0.0.1` | Redis host                   |
| `REDIS_PORT` | `6379`      | Redis port                   |
| `WS_ADDR`    | `127.0.0.1` | Address the server binds to  |
| `WS_PORT`    | `3030`      | Port the server listens on   |

`WS_ADDR` must be an IPv4 or IPv6 address and `WS_PORT` a number from 0 to
65535; otherwise start-up fails with a `ValueError`. Redis is pinged when the
server starts.

## Endpoints

### `GET /tables`

Returns a JSON list of every Redis key that matches `table:*` and holds a
hash. If Redis fails, the answer is `500 Internal Server Error`.

Requests to `/tables` from any origin are allowed: the response carries the
caller's origin in `Access-Control-Allow-Origin` and allows credentials.
Preflight requests are accepted for the methods GET, POST and OPTIONS and the
headers `Content-Type` and `Authorization`.

### `GET /ws?tablename=<table>&session=<session>`

Opens a WebSocket connection to a table. Missing parameters count as empty
strings.

- On connecting, the client gets the table's current `action` at once. If
  that action is `time` and the table has a non-zero `time` counter, the
  counter follows it, for example `time 3`.
- Each text message the client sends is accepted only if the Redis key
  `<session>` exists and its value equals the table name. Rejected messages
  are only logged. Accepted messages are published on the table's channel,
  reach every client on that table, and are stored as the table's `action`.
- The message `time` increases the table's `time` counter (setting it to 0
  the first time); when the counter is above zero the published message
  becomes `time <n>`.
- The message `no action` clears the table's `time` counter.

One Redis subscription is kept per table while at least one client is
connected to it, and stopped when the last client leaves.

## What it does not do

The server does not create tables or sessions. There is no endpoint for
registering a table or signing in: the `table:*` hashes and the session keys
must be written to Redis by something else.

## Using it from Python

- `wsredis.config.create()` reads the settings above and returns the Redis
  URL together with a `ServerConfig` (`host`, `port`); `redis_url()` and
  `server_config()` read each part alone. All three accept a mapping to use
  in place of the environment.
- `wsredis.pubsub.ConnectionRegistry` holds the outgoing queues of connected
  clients per channel (`add`, `remove`, `broadcast`, `channels`), and
  `wsredis.pubsub.listener()` relays a Redis channel into it.
- `wsredis.tables.list_hash_tables()` lists the table hashes.
- `wsredis.session` holds `initial_message()`, `session_is_valid()` and
  `process_message()`, the table logic used by the WebSocket endpoint.
- `wsredis.server.create_app()` builds the aiohttp application from an
  asyncio Redis client, a `ConnectionRegistry` and the Redis URL, and
  `wsredis.server.main()` starts the whole server.

## Tests

```
pip install .[test]
pytest
```