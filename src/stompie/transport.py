import asyncio
import logging

from ssl import SSLContext
from typing import Optional, Tuple

from stompie.errors import StompConnectionError

logger = logging.getLogger(__name__)


READ_SIZE = 64 * 1024


class StreamTransport(object):
    """
    A duplex byte stream to a broker.

    The transport never reads on its own. Data is only pulled from the socket
    when the client asks for it, with a bounded wait, which keeps all
    processing on the caller's task.
    """

    def __init__(self) -> None:
        self._reader = None  # type: Optional[asyncio.StreamReader]
        self._writer = None  # type: Optional[asyncio.StreamWriter]
        self._remote_address = None  # type: Optional[Tuple[str, int]]
        self._local_address = None  # type: Optional[Tuple[str, int]]

    @property
    def raddr(self) -> Optional[Tuple[str, int]]:
        """ Return the remote address the transport is connected with """
        return self._remote_address

    @property
    def laddr(self) -> Optional[Tuple[str, int]]:
        """ Return the local address the transport is using """
        return self._local_address

    @property
    def connected(self) -> bool:
        """ Return True while the stream is open in both directions """
        if self._writer is None or self._reader is None:
            return False
        return not (self._writer.is_closing() or self._reader.at_eof())

    async def open(
        self,
        host: str,
        port: int,
        ssl: SSLContext = None,
        timeout: Optional[float] = None,
    ) -> None:
        """ Open a connection to a broker.

        :param host: The broker host name or address.

        :param port: The broker port.

        :param ssl: an optional sslContext for use with TLS.

        :param timeout: The number of seconds to wait for the connection to
          be established. None waits forever.

        :raises StompConnectionError: if the connection can't be opened.
        """
        logger.debug(f"Starting to connect to {host}:{port}")

        try:
            self._reader, self._writer = await asyncio.wait_for(
                asyncio.open_connection(host=host, port=port, ssl=ssl), timeout
            )
        except asyncio.TimeoutError:
            logger.error(f"Connection to {host}:{port} timed out after {timeout}s")
            raise StompConnectionError(
                f"Connection to {host}:{port} timed out"
            ) from None
        except (ConnectionRefusedError, OSError) as exc:
            # When connecting to "localhost", some systems try to connect to
            # both 127.0.0.1 and ::1 resulting in an OSError(Multiple errors
            # occurred) that wraps two ConnectionRefusedErrors
            logger.error(f"Connection to {host}:{port} was refused: {exc}")
            raise StompConnectionError(f"Can't connect to {host}:{port}") from exc

        # AF_INET6 returns a four-tuple (host, port, flowinfo, scopeid) which
        # is reduced to the (host, port) pair used for IPv4.
        def get_host_port(info) -> Optional[Tuple[str, int]]:
            if info is not None and len(info) == 4:
                info = (info[0], info[1])
            return info

        self._remote_address = get_host_port(self._writer.get_extra_info("peername"))
        self._local_address = get_host_port(self._writer.get_extra_info("sockname"))

        logger.debug(
            f"Connection made. "
            f"laddr={self._local_address}, raddr={self._remote_address}"
        )

    async def write(self, data: bytes) -> None:
        """ Write data to the stream and wait until it has been flushed.

        :raises StompConnectionError: if the transport is not open or the
          write fails.
        """
        if not isinstance(data, bytes):
            raise TypeError(f"data must be bytes, got {type(data)}")

        if self._writer is None:
            raise StompConnectionError("Transport is not open")

        logger.debug(f"Sending {len(data)} bytes")

        try:
            self._writer.write(data)
            await self._writer.drain()
        except (ConnectionError, OSError) as exc:
            raise StompConnectionError(
                f"Write to {self._remote_address} failed: {exc}"
            ) from exc

    async def read(self, timeout: Optional[float]) -> bytes:
        """ Read whatever data is available, waiting at most timeout seconds.

        :returns: the bytes read, or an empty bytes object if nothing arrived
          within the timeout window.

        :raises StompConnectionError: if the transport is not open, the read
          fails or the broker closed the connection.
        """
        if self._reader is None:
            raise StompConnectionError("Transport is not open")

        try:
            data = await asyncio.wait_for(self._reader.read(READ_SIZE), timeout)
        except asyncio.TimeoutError:
            return b""
        except (ConnectionError, OSError) as exc:
            raise StompConnectionError(
                f"Read from {self._remote_address} failed: {exc}"
            ) from exc

        if not data:
            raise StompConnectionError(f"Connection closed by {self._remote_address}")

        return data

    async def close(self) -> None:
        """ Close the stream. Closing a closed transport does nothing. """
        writer = self._writer
        if writer is None:
            return

        logger.debug(
            f"Closing connection. "
            f"laddr={self._local_address}, raddr={self._remote_address}"
        )

        self._reader = None
        self._writer = None

        writer.close()
        try:
            await writer.wait_closed()
        except (ConnectionError, OSError) as exc:
            logger.debug(f"Error while closing connection: {exc}")
