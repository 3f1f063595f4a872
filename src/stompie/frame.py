"""
This module contains the STOMP frame value object and the codec that converts
frames to and from their wire representation.

.. code-block:: console

    COMMAND
    header-key:header-value
    header-key:header-value

    body bytes (may contain newlines)
    <terminator byte 0x00>

Header keys and values are escaped on the wire. A colon becomes ``\\c``, a
line feed becomes ``\\n`` and a backslash becomes ``\\\\``. Decoding reverses
the escapes exactly.
"""

import enum
import re
from types import MappingProxyType
from typing import Any, Iterable, Mapping, Optional, Tuple, Union

from stompie.errors import ProtocolError


NULL = b"\x00"
EOL = b"\n"

_ESCAPES = (("\\", "\\\\"), ("\n", "\\n"), (":", "\\c"))
_UNESCAPES = {"\\\\": "\\", "\\n": "\n", "\\c": ":"}
_ESCAPE_SEQUENCE = re.compile(r"\\.?", re.DOTALL)


class Command(enum.Enum):
    """ The known STOMP 1.1 commands.

    Any command token the client does not know about, such as one used by a
    newer broker, is represented by ``EXTENSION`` so decoding never breaks.
    """

    # client frames
    CONNECT = "CONNECT"
    STOMP = "STOMP"
    SEND = "SEND"
    SUBSCRIBE = "SUBSCRIBE"
    UNSUBSCRIBE = "UNSUBSCRIBE"
    ACK = "ACK"
    NACK = "NACK"
    BEGIN = "BEGIN"
    COMMIT = "COMMIT"
    ABORT = "ABORT"
    DISCONNECT = "DISCONNECT"

    # broker frames
    CONNECTED = "CONNECTED"
    MESSAGE = "MESSAGE"
    RECEIPT = "RECEIPT"
    ERROR = "ERROR"

    EXTENSION = ""

    @classmethod
    def lookup(cls, token: str) -> "Command":
        """ Return the variant for a command token """
        try:
            return cls(token)
        except ValueError:
            return cls.EXTENSION


class Frame(object):
    """
    A single STOMP protocol message.

    Frames are immutable values. The headers are copied on construction and
    exposed through a read-only mapping that keeps insertion order, which is
    the order headers are rendered in on the wire.
    """

    __slots__ = ("_command", "_headers", "_body")

    def __init__(
        self,
        command: Union[str, Command],
        headers: Union[Mapping[str, Any], Iterable[Tuple[str, Any]], None] = None,
        body: Union[bytes, str] = b"",
    ) -> None:
        """
        :param command: The command token, e.g. ``SEND``.

        :param headers: A mapping (or sequence of pairs) of header names to
          values. Values are converted to strings.

        :param body: The frame body. A str body is encoded as UTF-8.
        """
        if isinstance(command, Command):
            command = command.value
        if not command:
            raise ProtocolError("Frame command must not be empty")

        if isinstance(body, str):
            body = body.encode("utf-8")
        elif not isinstance(body, bytes):
            body = bytes(body)

        items = headers.items() if isinstance(headers, Mapping) else headers or ()

        self._command = command
        self._headers = MappingProxyType({str(k): str(v) for k, v in items})
        self._body = body

    @property
    def command(self) -> str:
        return self._command

    @property
    def headers(self) -> Mapping[str, str]:
        return self._headers

    @property
    def body(self) -> bytes:
        return self._body

    @property
    def kind(self) -> Command:
        """ Return the command variant this frame belongs to """
        return Command.lookup(self._command)

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        return self._headers.get(key, default)

    def __eq__(self, other):
        if not isinstance(other, Frame):
            return NotImplemented
        return (
            self._command == other._command
            and dict(self._headers) == dict(other._headers)
            and self._body == other._body
        )

    def __hash__(self):
        return hash((self._command, frozenset(self._headers.items()), self._body))

    def __repr__(self):
        return (
            f"Frame(command={self._command!r}, headers={dict(self._headers)!r}, "
            f"body={self._body!r})"
        )


def escape(value: str) -> str:
    """ Escape a header key or value for the wire """
    for char, replacement in _ESCAPES:
        value = value.replace(char, replacement)
    return value


def unescape(value: str) -> str:
    """ Reverse :func:`escape`.

    :raises ProtocolError: if the value holds an undefined escape sequence.
    """

    def _replace(match):
        sequence = match.group(0)
        try:
            return _UNESCAPES[sequence]
        except KeyError:
            raise ProtocolError(
                f"Invalid escape sequence {sequence!r} in header {value!r}"
            ) from None

    return _ESCAPE_SEQUENCE.sub(_replace, value)


def encode(frame: Frame) -> bytes:
    """ Render a frame into its wire representation, terminator included. """
    lines = [frame.command]
    for key, value in frame.headers.items():
        lines.append(f"{escape(key)}:{escape(value)}")
    head = "\n".join(lines) + "\n\n"
    return head.encode("utf-8") + frame.body + NULL


def decode(data: Union[bytes, str]) -> Frame:
    """ Parse a frame from its wire representation.

    :param data: The frame bytes with the terminator already removed. Any
      EOLs in front of the command (heart-beats) are ignored.

    :raises ProtocolError: if the command is empty, a header line has no
      colon or a header holds an invalid escape sequence.
    """
    if isinstance(data, str):
        data = data.encode("utf-8")
    data = data.lstrip(b"\r\n")

    lines = []
    pos = 0
    while pos < len(data):
        eol = data.find(EOL, pos)
        if eol == -1:
            line, pos = data[pos:], len(data)
        else:
            line, pos = data[pos:eol], eol + 1
        if line.endswith(b"\r"):
            line = line[:-1]
        if not line:
            # the first empty line separates the headers from the body
            break
        lines.append(line)

    if not lines:
        raise ProtocolError("Frame has an empty command")

    try:
        command = lines[0].decode("utf-8").strip()
        header_lines = [line.decode("utf-8") for line in lines[1:]]
    except UnicodeDecodeError as exc:
        raise ProtocolError(f"Frame head is not valid UTF-8: {exc}") from None

    if not command:
        raise ProtocolError("Frame has an empty command")

    headers = {}
    for line in header_lines:
        key, sep, value = line.partition(":")
        if not sep:
            raise ProtocolError(f"Malformed header line {line!r} in {command} frame")
        key = unescape(key)
        # a repeated header keeps its first value
        if key not in headers:
            headers[key] = unescape(value)

    return Frame(command, headers, data[pos:])
