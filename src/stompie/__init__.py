__version__ = "0.1.0"

from stompie.client import ConnectionState, StompClient
from stompie.errors import (
    BrokerError,
    CorrelationError,
    ErrorKind,
    ProtocolError,
    Result,
    StompConnectionError,
    StompError,
    StompTimeoutError,
)
from stompie.frame import Command, Frame, decode, encode
