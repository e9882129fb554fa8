"""
WebSocket adapter for the downstream streaming sink.
One connection is shared by every concurrent sender of a batch.
"""
import threading
from typing import Any, Callable, Optional

import websocket

from utils.logging import get_logger

logger = get_logger(__name__)


class SinkConnectionError(ConnectionError):
    """Raised when the sink cannot be reached or the connection is gone"""


class StreamSinkAdapter:
    """Thread-safe text-message connection to a WebSocket sink"""

    def __init__(self, url: str, handshake_timeout: float = 10.0,
                 connect: Callable[..., Any] = websocket.create_connection):
        """
        Args:
            url: Sink address, e.g. wss://host/path
            handshake_timeout: Seconds allowed for the opening handshake
            connect: Connection factory, websocket.create_connection by default
        """
        self.url = url
        self.handshake_timeout = handshake_timeout
        self.connected = False
        self._connect = connect
        self._ws: Optional[Any] = None
        # websocket-client sockets are not safe for concurrent writers
        self._send_lock = threading.Lock()

    def connect(self) -> None:
        """
        Open the connection

        Raises:
            SinkConnectionError: if the handshake fails or times out
        """
        try:
            self._ws = self._connect(self.url, timeout=self.handshake_timeout)
        except (websocket.WebSocketException, OSError) as e:
            logger.error(f"error connecting to WebSocket endpoint {self.url}: {e}")
            raise SinkConnectionError(f"cannot connect to {self.url}: {e}") from e

        self.connected = True
        logger.info(f"connected to WebSocket server: {self.url}")

    def send_text(self, message: str) -> None:
        """Write one text message; writers are serialized"""
        if not self.connected:
            raise SinkConnectionError(f"not connected to {self.url}")

        with self._send_lock:
            self._ws.send(message)

    def disconnect(self) -> None:
        """Close the connection"""
        if self._ws is not None:
            try:
                self._ws.close()
            except (websocket.WebSocketException, OSError) as e:
                logger.warning(f"Error closing WebSocket connection: {e}")
        self._ws = None
        self.connected = False

    def __enter__(self) -> "StreamSinkAdapter":
        self.connect()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.disconnect()
