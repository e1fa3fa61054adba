import asyncio
import logging
import sys
import time

from load_config import configure_logging, parse_args
from websocket_connection import ConnectError, SendError, WebSocketConnection

logger = logging.getLogger(__name__)

MARKER = "rate_test"


def format_message(index):
    return f"message #{index}"


def burst_messages(count):
    yield MARKER
    for index in range(count):
        yield format_message(index)


async def send_burst(endpoint, count, **options):
    """Send the marker and ``count`` numbered messages over one connection.

    The connection is closed exactly once, whether every send succeeded or
    one of them failed. Raises ``ConnectError`` if the connection never
    opens and ``SendError`` if a send fails; no message is sent after a
    failure. Returns the number of messages sent.
    """
    if count < 0:
        raise ValueError(f"count must be >= 0, got {count}")

    connection = WebSocketConnection(endpoint, **options)
    try:
        await connection.connect()
        for message in burst_messages(count):
            await connection.send_message(message)
        logger.info(f"Sent {connection.messages_sent} messages to {endpoint}")
        return connection.messages_sent
    finally:
        await connection.close()


def _log_failure(connection, error):
    logger.warning(f"Pooled connection failed: {error}")


async def open_connections(endpoint, count, on_failure=None, **options):
    """Start ``count`` independent connections and hand them to the caller.

    Every connection attempt has begun when this returns, but the handles
    may still be CONNECTING. A failed attempt marks only its own handle as
    FAILED and is reported to ``on_failure(connection, error)``. Nothing
    here closes the handles; use ``close_connections`` when done.
    """
    if count < 0:
        raise ValueError(f"count must be >= 0, got {count}")

    callback = on_failure or _log_failure
    connections = [WebSocketConnection(endpoint, **options) for _ in range(count)]
    for connection in connections:
        connection.start(callback)
    # Let every connect task run up to its first suspension point
    await asyncio.sleep(0)
    logger.info(f"Started {count} connections to {endpoint}")
    return connections


async def wait_for_connections(connections):
    results = await asyncio.gather(
        *(connection.wait_open() for connection in connections),
        return_exceptions=True,
    )
    opened = []
    failed = []
    for connection, result in zip(connections, results):
        if isinstance(result, ConnectError):
            failed.append(connection)
        elif isinstance(result, BaseException):
            raise result
        else:
            opened.append(connection)
    return opened, failed


async def close_connections(connections):
    await asyncio.gather(*(connection.close() for connection in connections))
    logger.info(f"Closed {len(connections)} connections")


async def run_burst(config):
    start_time = time.time()
    try:
        sent = await send_burst(config.endpoint, config.count, **config.connection_options())
    except (ConnectError, SendError) as e:
        logger.error(f"Burst to {config.endpoint} failed: {e}")
        return 1
    duration = time.time() - start_time
    print(f"Sent {sent} messages in {duration:.2f} seconds")
    if duration > 0:
        print(f"Average throughput: {sent / duration:.2f} messages/second")
    return 0


async def run_connections(config):
    connections = await open_connections(config.endpoint, config.count, **config.connection_options())
    try:
        opened, failed = await wait_for_connections(connections)
        print(f"Opened {len(opened)} of {len(connections)} connections ({len(failed)} failed)")
        if config.hold > 0 and opened:
            logger.info(f"Holding {len(opened)} connections for {config.hold:.1f} seconds")
            await asyncio.sleep(config.hold)
    finally:
        await close_connections(connections)
    return 1 if failed else 0


async def run(config):
    if config.mode == "burst":
        return await run_burst(config)
    return await run_connections(config)


def main(argv=None):
    config = parse_args(argv)
    configure_logging(config.log_level, config.log_file)
    logger.info(f"Starting {config.mode} load against {config.endpoint} (count={config.count})")
    try:
        return asyncio.run(run(config))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130


if __name__ == "__main__":
    sys.exit(main())
