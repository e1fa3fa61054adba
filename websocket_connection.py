import asyncio
import enum
import logging

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

logger = logging.getLogger(__name__)


class ConnectionState(enum.Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"
    FAILED = "failed"


class ConnectError(ConnectionError):
    """The endpoint refused, timed out, was unreachable or rejected the handshake."""


class SendError(Exception):
    """A message could not be written to the connection."""


class WebSocketConnection:
    """Handle to a single WebSocket connection.

    The handle starts in CONNECTING. ``connect()`` (or ``start()`` for a
    background attempt) moves it to OPEN or FAILED, and ``close()`` moves it
    to CLOSED. Messages may only be sent while the handle is OPEN.
    """

    def __init__(self, endpoint, open_timeout=10, close_timeout=10, write_limit=65536):
        self.endpoint = endpoint
        self.open_timeout = open_timeout
        self.close_timeout = close_timeout
        self.write_limit = write_limit

        self.state = ConnectionState.CONNECTING
        self.error = None
        self.messages_sent = 0
        self.websocket = None
        self._connect_task = None
        self._closed = False

    def __repr__(self):
        return f"<WebSocketConnection {self.endpoint} {self.state.value}>"

    async def connect(self):
        logger.debug(f"Connecting to {self.endpoint}")
        try:
            self.websocket = await websockets.connect(
                self.endpoint,
                open_timeout=self.open_timeout,
                close_timeout=self.close_timeout,
                write_limit=self.write_limit,
            )
        except ConnectionRefusedError as e:
            self._fail(f"Connection refused by {self.endpoint}. Is the server running?", e)
        except (OSError, asyncio.TimeoutError, WebSocketException) as e:
            self._fail(f"Error connecting to {self.endpoint}: {e}", e)

        if self._closed:
            # close() was called while the handshake was finishing
            await self.websocket.close()
            raise ConnectError(f"Connection to {self.endpoint} was closed before it opened")

        self.state = ConnectionState.OPEN
        logger.info(f"Connected to {self.endpoint}")
        return self

    def _fail(self, message, cause):
        logger.error(message)
        logger.debug("Connection failure details", exc_info=cause)
        self.state = ConnectionState.FAILED
        self.error = ConnectError(message)
        raise self.error from cause

    def start(self, on_failure=None):
        # Begin connecting in the background; failures stay on the handle
        self._connect_task = asyncio.ensure_future(self._connect_in_background(on_failure))
        return self._connect_task

    async def _connect_in_background(self, on_failure):
        try:
            await self.connect()
        except ConnectError as e:
            if on_failure is not None:
                on_failure(self, e)
            return False
        return True

    async def wait_open(self):
        if self._connect_task is not None:
            await asyncio.gather(self._connect_task, return_exceptions=True)
        if self.state is ConnectionState.FAILED:
            raise self.error
        if self.state is not ConnectionState.OPEN:
            raise ConnectError(f"Connection to {self.endpoint} is {self.state.value}, not open")
        return self

    async def send_message(self, message):
        if self.state is not ConnectionState.OPEN:
            raise SendError(f"Cannot send on {self.state.value} connection to {self.endpoint}")

        logger.debug(f"Sending message: {message}")
        try:
            await self.websocket.send(message)
        except ConnectionClosed as e:
            logger.error(f"Connection to {self.endpoint} closed while sending: {e}")
            raise SendError(f"Connection to {self.endpoint} closed by peer") from e
        self.messages_sent += 1

    async def close(self):
        if self._closed:
            logger.debug(f"Connection to {self.endpoint} already closed")
            return
        self._closed = True

        task = self._connect_task
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

        if self.websocket is not None and self.state is ConnectionState.OPEN:
            logger.info(f"Closing WebSocket connection to {self.endpoint}")
            await self.websocket.close()

        if self.state is not ConnectionState.FAILED:
            self.state = ConnectionState.CLOSED
