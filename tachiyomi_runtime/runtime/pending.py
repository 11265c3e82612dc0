"""
Pending-call bookkeeping for the async façade

Each dispatched call gets a correlation id and a future; replies are matched
back by id. Futures are only touched from the owning event loop.
"""
from __future__ import annotations

import asyncio
import itertools
import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

from pydantic import ValidationError

from ..errors import EnvelopeDecodeError, RuntimeBridgeError

logger = logging.getLogger(__name__)

Decoder = Callable[[Any], Any]


@dataclass
class PendingCall:
    correlation_id: str
    future: asyncio.Future
    seq: int
    op: str
    source_id: Optional[str] = None
    decode: Optional[Decoder] = None


class PendingCalls:
    """
    Outstanding calls of one loaded extension, keyed by correlation id.

    Sequence numbers increase monotonically in dispatch order.
    """

    def __init__(self, prefix: str = "call"):
        self._prefix = prefix
        self._seq = itertools.count(1)
        self._calls: dict[str, PendingCall] = {}

    def create(
        self,
        loop: asyncio.AbstractEventLoop,
        op: str,
        source_id: Optional[str] = None,
        decode: Optional[Decoder] = None,
    ) -> PendingCall:
        seq = next(self._seq)
        call = PendingCall(
            correlation_id=f"{self._prefix}-{seq}",
            future=loop.create_future(),
            seq=seq,
            op=op,
            source_id=source_id,
            decode=decode,
        )
        self._calls[call.correlation_id] = call
        return call

    def pop(self, correlation_id: str) -> Optional[PendingCall]:
        return self._calls.pop(correlation_id, None)

    def resolve(self, correlation_id: str, data: Any) -> bool:
        """
        Complete a call with its reply data, decoding it first.

        Returns:
            False if the id is unknown or the call was already settled
        """
        call = self.pop(correlation_id)
        if call is None or call.future.done():
            return False

        if call.decode is None:
            call.future.set_result(data)
            return True

        try:
            value = call.decode(data)
        except ValidationError as e:
            call.future.set_exception(
                EnvelopeDecodeError(
                    f"Invalid {call.op} result: {e}",
                    details={"op": call.op, "source_id": call.source_id},
                )
            )
        except RuntimeBridgeError as e:
            call.future.set_exception(e)
        except Exception as e:
            logger.warning(f"Decoder for {call.op} failed: {type(e).__name__}: {e}")
            call.future.set_exception(
                EnvelopeDecodeError(
                    f"Could not decode {call.op} result: {type(e).__name__}: {e}",
                    details={"op": call.op, "source_id": call.source_id},
                )
            )
        else:
            call.future.set_result(value)
        return True

    def reject(self, correlation_id: str, error: BaseException) -> bool:
        call = self.pop(correlation_id)
        if call is None or call.future.done():
            return False
        call.future.set_exception(error)
        return True

    def reject_all(self, error_factory: Callable[[PendingCall], BaseException]) -> int:
        """Reject every outstanding call; returns how many were rejected"""
        calls, self._calls = self._calls, {}
        rejected = 0
        for call in sorted(calls.values(), key=lambda c: c.seq):
            if not call.future.done():
                call.future.set_exception(error_factory(call))
                rejected += 1
        if rejected:
            logger.debug(f"Rejected {rejected} pending call(s)")
        return rejected

    def __len__(self) -> int:
        return len(self._calls)

    def __contains__(self, correlation_id: str) -> bool:
        return correlation_id in self._calls
