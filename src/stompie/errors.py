""" This module contains the exceptions and the operation result type. """

import enum
from collections import namedtuple
from typing import Optional


class StompError(Exception):
    """ Base class for all stompie errors """


class StompConnectionError(StompError):
    """ The transport could not be opened or was unexpectedly closed """


class ProtocolError(StompError):
    """ A stream segment could not be decoded into a valid frame """


class StompTimeoutError(StompError):
    """ No matching response arrived within the configured window """


class CorrelationError(StompError):
    """ The receipt for an operation never arrived """


class BrokerError(StompError):
    """ The broker replied with an ERROR frame """


class ErrorKind(enum.Enum):
    CONNECTION = "connection"
    PROTOCOL = "protocol"
    TIMEOUT = "timeout"
    CORRELATION = "correlation"
    BROKER = "broker"


EXCEPTIONS = {
    ErrorKind.CONNECTION: StompConnectionError,
    ErrorKind.PROTOCOL: ProtocolError,
    ErrorKind.TIMEOUT: StompTimeoutError,
    ErrorKind.CORRELATION: CorrelationError,
    ErrorKind.BROKER: BrokerError,
}


class Result(namedtuple("Result", ("ok", "error", "receipt_id", "detail"))):
    """
    The outcome of a client operation.

    Every client operation reports through this one type so that callers never
    need to tell apart a returned failure from a raised one. A result is truthy
    when the operation succeeded which allows it to be used like a boolean:

    .. code-block:: python

        if not await client.send("/queue/a", b"hello"):
            ...

    :param ok: True when the operation succeeded.

    :param error: An :class:`ErrorKind` describing the failure, or None.

    :param receipt_id: The receipt identifier issued for the operation, if any.
      It can be passed to ``StompClient.wait_for_receipt`` later on.

    :param detail: A short human readable explanation of a failure.
    """

    __slots__ = ()

    def __bool__(self) -> bool:
        return bool(self.ok)

    @classmethod
    def success(cls, receipt_id: Optional[str] = None) -> "Result":
        return cls(True, None, receipt_id, "")

    @classmethod
    def failure(
        cls, error: ErrorKind, detail: str = "", receipt_id: Optional[str] = None
    ) -> "Result":
        return cls(False, error, receipt_id, detail)

    def raise_for_error(self) -> None:
        """ Raise the exception matching the failure kind, if any. """
        if self.ok:
            return
        raise EXCEPTIONS[self.error](self.detail or self.error.value)
