"""WebSocket connections to downstream streaming sinks."""

from .sink_adapter import SinkConnectionError, StreamSinkAdapter

__all__ = ["SinkConnectionError", "StreamSinkAdapter"]
