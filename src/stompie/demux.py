import collections
import logging
from typing import Callable, Deque, List, Optional

from stompie.errors import ProtocolError
from stompie.frame import NULL, Command, Frame, decode

logger = logging.getLogger(__name__)


CONTENT_LENGTH_PREFIX = b"content-length:"

# Segments shorter than this are keep-alive noise, not frames.
MIN_FRAME_SIZE = 2


class StreamDemultiplexer(object):
    """
    The demultiplexer turns the unbounded byte stream received from a broker
    into discrete frames and routes each of them into one of three FIFO queues.

    A single connection interleaves MESSAGE deliveries with RECEIPT frames for
    unrelated requests, so a reply can not be assumed to be "the" response to
    the last request sent. Frames are instead queued in the order their
    terminators appear in the stream and request/response pairing is done later
    by looking into the queues:

    - ``messages`` holds MESSAGE frames,
    - ``receipts`` holds RECEIPT frames,
    - ``other`` holds everything else (CONNECTED, ERROR, extension commands).

    A frame normally ends at the first terminator byte. When the frame head is
    complete and carries a ``content-length`` header the end is located by that
    length instead, which allows bodies to contain the terminator byte, as long
    as the whole body is buffered. A terminator that has already arrived is
    never waited past: if the declared length does not end on a terminator the
    first terminator after the head completes the frame.
    """

    def __init__(self) -> None:
        self._buffer = bytearray()
        self.messages = collections.deque()  # type: Deque[Frame]
        self.receipts = collections.deque()  # type: Deque[Frame]
        self.other = collections.deque()  # type: Deque[Frame]

    @property
    def buffered(self) -> int:
        """ Return the number of bytes waiting for a frame terminator """
        return len(self._buffer)

    def data_received(self, data: bytes) -> int:
        """ Process some bytes received from the transport.

        Upon receiving some bytes they are added to a buffer and then every
        complete frame in the buffer is extracted, decoded and queued. Bytes
        following the last complete frame stay buffered until more data
        arrives.

        This method supports the worst case scenario of receiving a single
        byte at a time as well as receiving many frames at once.

        :returns: the number of frames queued.
        """
        self._buffer.extend(data)

        count = 0
        while self._buffer:
            # Heart-beats are bare EOLs sent between frames.
            stripped = self._buffer.lstrip(b"\r\n")
            if len(stripped) != len(self._buffer):
                del self._buffer[: len(self._buffer) - len(stripped)]
                continue

            end = self._find_frame_end()
            if end is None:
                # There are not enough bytes to complete a frame yet.
                break

            segment = bytes(self._buffer[:end])
            del self._buffer[: end + 1]

            if len(segment) < MIN_FRAME_SIZE:
                continue

            try:
                frame = decode(segment)
            except ProtocolError as exc:
                logger.error(
                    f"Dropping undecodable segment ({len(segment)} bytes): {exc}"
                )
                continue

            self._route(frame)
            count += 1

        return count

    def pop_message(self) -> Optional[Frame]:
        """ Return the oldest MESSAGE frame or None if there is none """
        if self.messages:
            return self.messages.popleft()
        return None

    def pop_receipt(self, receipt_id: str) -> Optional[Frame]:
        """ Remove and return the RECEIPT frame matching a receipt id """
        return self._pop_matching(self.receipts, receipt_id)

    def pop_error(self, receipt_id: str) -> Optional[Frame]:
        """ Remove and return an ERROR frame that refers to a receipt id """
        for frame in self.other:
            if frame.kind is Command.ERROR and frame.get("receipt-id") == receipt_id:
                self.other.remove(frame)
                return frame
        return None

    def remove_messages(self, predicate: Callable[[Frame], bool]) -> List[Frame]:
        """ Discard every queued MESSAGE frame the predicate selects.

        :returns: the frames discarded.
        """
        return self._remove(self.messages, predicate)

    def remove_receipts(self, predicate: Callable[[Frame], bool]) -> List[Frame]:
        """ Discard every queued RECEIPT frame the predicate selects.

        :returns: the frames discarded.
        """
        return self._remove(self.receipts, predicate)

    def remove_other(self, predicate: Callable[[Frame], bool]) -> List[Frame]:
        """ Discard every frame in the ``other`` queue the predicate selects.

        :returns: the frames discarded.
        """
        return self._remove(self.other, predicate)

    def clear(self) -> None:
        """ Discard all queued frames.

        Partially received data is kept so the next frame in the stream is
        still decoded correctly.
        """
        self.messages.clear()
        self.receipts.clear()
        self.other.clear()

    def reset(self) -> None:
        """ Discard all queued frames and any partially received data """
        self._buffer.clear()
        self.clear()

    def _route(self, frame: Frame) -> None:
        kind = frame.kind
        if kind is Command.MESSAGE:
            self.messages.append(frame)
        elif kind is Command.RECEIPT:
            self.receipts.append(frame)
        else:
            self.other.append(frame)
        logger.debug(f"Received {frame.command} frame, headers={dict(frame.headers)}")

    @staticmethod
    def _remove(
        queue: Deque[Frame], predicate: Callable[[Frame], bool]
    ) -> List[Frame]:
        removed = [frame for frame in queue if predicate(frame)]
        if removed:
            keep = [frame for frame in queue if not predicate(frame)]
            queue.clear()
            queue.extend(keep)
        return removed

    @staticmethod
    def _pop_matching(queue: Deque[Frame], receipt_id: str) -> Optional[Frame]:
        for frame in queue:
            if frame.get("receipt-id") == receipt_id:
                queue.remove(frame)
                return frame
        return None

    def _find_frame_end(self) -> Optional[int]:
        """ Return the index of the terminator that ends the first frame in
        the buffer, or None when the frame is not complete yet.
        """
        terminator = self._buffer.find(NULL)

        head_end = self._find_head_end()
        if head_end is not None and (terminator == -1 or head_end <= terminator):
            length = self._content_length(bytes(self._buffer[:head_end]))
            if length is not None:
                end = head_end + length
                if end < len(self._buffer) and self._buffer[end] == 0:
                    return end
                if terminator == -1:
                    # The body and its terminator have not arrived yet.
                    return None
                # A terminator already received always completes a frame.
                logger.warning(
                    f"Frame body does not end after content-length={length}, "
                    f"using the first terminator instead"
                )

        return terminator if terminator != -1 else None

    def _find_head_end(self) -> Optional[int]:
        """ Return the index where the frame body starts, if the blank line
        ending the frame head has been received.
        """
        candidates = []
        for separator in (b"\n\n", b"\n\r\n"):
            index = self._buffer.find(separator)
            if index != -1:
                candidates.append(index + len(separator))
        return min(candidates) if candidates else None

    @staticmethod
    def _content_length(head: bytes) -> Optional[int]:
        for line in head.split(b"\n")[1:]:
            if line.startswith(CONTENT_LENGTH_PREFIX):
                try:
                    length = int(line[len(CONTENT_LENGTH_PREFIX) :].strip())
                except ValueError:
                    return None
                return length if length >= 0 else None
        return None
