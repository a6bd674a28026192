"""Python client for the roomchat send stream."""

from .stream_consumer import SendOutcome, StreamConnectError, StreamConsumer, StreamProtocolError
from .transcript import MessageView, Transcript

__all__ = [
    "MessageView",
    "SendOutcome",
    "StreamConnectError",
    "StreamConsumer",
    "StreamProtocolError",
    "Transcript",
]
