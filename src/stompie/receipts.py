"""
This module contains the registry that correlates RECEIPT frames with the
requests that asked for them.
"""

import logging
import time
import uuid
from collections import namedtuple
from typing import Awaitable, Callable, Dict, Optional

from stompie.demux import StreamDemultiplexer
from stompie.errors import BrokerError
from stompie.frame import Command, Frame

logger = logging.getLogger(__name__)


DrainType = Callable[[float], Awaitable[int]]


PendingReceipt = namedtuple("PendingReceipt", ("receipt_id", "operation", "issued"))


class ReceiptRegistry(object):
    """
    The registry generates receipt identifiers and keeps track of which of
    them are still outstanding.

    A receipt identifier is only valid for the connection it was issued on.
    Clearing the registry, which happens on every (re)connect, abandons all
    outstanding identifiers so that waiting for one of them fails immediately.

    Receipts that are never collected, for instance because the request timed
    out and the RECEIPT arrived afterwards, would otherwise accumulate forever.
    A sweep drops outstanding identifiers older than ``ttl`` seconds along
    with queued RECEIPT frames that no outstanding identifier matches.
    """

    def __init__(
        self, demultiplexer: StreamDemultiplexer, ttl: Optional[float] = 60.0
    ) -> None:
        """
        :param demultiplexer: The demultiplexer whose receipts queue is
          inspected for matching RECEIPT frames.

        :param ttl: The number of seconds an unmatched receipt identifier is
          kept around. A value of None disables expiry.
        """
        self._demux = demultiplexer
        self.ttl = ttl
        self._pending = {}  # type: Dict[str, PendingReceipt]

    def __contains__(self, receipt_id: str) -> bool:
        return receipt_id in self._pending

    def __len__(self) -> int:
        return len(self._pending)

    def new_receipt_id(self, prefix: str = "receipt", operation: str = "") -> str:
        """ Create a new outstanding receipt identifier.

        :param prefix: A string placed in front of the unique part of the
          identifier. It makes the identifiers easier to spot in broker logs.

        :param operation: The command the receipt belongs to.
        """
        self.sweep()
        receipt_id = f"{prefix}-{uuid.uuid4().hex}"
        self._pending[receipt_id] = PendingReceipt(
            receipt_id, operation, time.monotonic()
        )
        return receipt_id

    def discard(self, receipt_id: str) -> None:
        """ Stop tracking a receipt identifier """
        self._pending.pop(receipt_id, None)

    async def wait(self, receipt_id: str, timeout: float, drain: DrainType) -> bool:
        """ Wait for the RECEIPT frame matching a receipt identifier.

        The receipts queue is inspected first. While no match is queued the
        ``drain`` coroutine function is awaited to pull more data from the
        stream into the demultiplexer.

        :param receipt_id: The receipt identifier to wait for.

        :param timeout: The number of seconds to wait in total.

        :param drain: A coroutine function that reads from the transport for
          at most the number of seconds it is passed.

        :returns: True if the receipt was matched. False if the timeout
          elapsed, in which case the identifier stays outstanding and a late
          RECEIPT remains queued, or if the identifier is not outstanding.

        :raises BrokerError: if the broker replied with an ERROR frame that
          refers to the receipt identifier.
        """
        self.sweep()

        if receipt_id not in self._pending:
            logger.warning(f"Receipt {receipt_id} is not outstanding, can't match it")
            return False

        deadline = time.monotonic() + timeout
        while True:
            if self._demux.pop_receipt(receipt_id) is not None:
                pending = self._pending.pop(receipt_id)
                logger.debug(f"Matched receipt {receipt_id} for {pending.operation}")
                return True

            error = self._demux.pop_error(receipt_id)
            if error is not None:
                self._pending.pop(receipt_id, None)
                reason = error.get("message") or error.body.decode("utf-8", "replace")
                raise BrokerError(f"Broker rejected {receipt_id}: {reason}")

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                logger.warning(f"No receipt for {receipt_id} within {timeout} seconds")
                return False

            await drain(remaining)

    def sweep(self) -> None:
        """ Drop expired receipt identifiers and queued frames nobody waits for """
        if self.ttl is None:
            return

        now = time.monotonic()
        expired = [p for p in self._pending.values() if now - p.issued > self.ttl]
        for pending in expired:
            del self._pending[pending.receipt_id]
            logger.warning(
                f"Receipt {pending.receipt_id} for {pending.operation} expired "
                f"after {self.ttl} seconds"
            )

        removed = self._demux.remove_receipts(
            lambda frame: frame.get("receipt-id") not in self._pending
        )
        if removed:
            logger.warning(f"Discarded {len(removed)} unmatched receipt frames")

        for frame in self._demux.remove_other(self._is_stale):
            reason = frame.get("message") or frame.body.decode("utf-8", "replace")
            logger.warning(f"Discarded unsolicited {frame.command} frame: {reason}")

    def _is_stale(self, frame: Frame) -> bool:
        # ERROR frames for an outstanding receipt are left for wait() to match
        if frame.kind is Command.ERROR:
            return frame.get("receipt-id") not in self._pending
        return True

    def clear(self) -> None:
        """ Abandon every outstanding receipt identifier """
        if self._pending:
            logger.debug(f"Abandoning {len(self._pending)} outstanding receipts")
        self._pending.clear()
