from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Any

import anyio
from anyio.abc import ObjectReceiveStream, ObjectSendStream

from .errors import ControlProtocolError
from .logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class ControlOutcome:
    payload: Any = None
    error: str | None = None


class PendingResponse:
    """Receiving half of a one-shot slot created by ``PendingRequests``."""

    __slots__ = ("request_id", "_receive")

    def __init__(
        self, request_id: str, receive: ObjectReceiveStream[ControlOutcome]
    ) -> None:
        self.request_id = request_id
        self._receive = receive

    async def wait(self) -> Any:
        try:
            outcome = await self._receive.receive()
        except (anyio.EndOfStream, anyio.ClosedResourceError):
            raise ControlProtocolError("Response channel closed") from None
        finally:
            self._receive.close()
        return _unwrap(outcome)

    def poll(self) -> tuple[bool, Any]:
        """``(True, payload)`` once resolved, ``(False, None)`` while pending."""
        try:
            outcome = self._receive.receive_nowait()
        except anyio.WouldBlock:
            return False, None
        except (anyio.EndOfStream, anyio.ClosedResourceError):
            self._receive.close()
            raise ControlProtocolError("Response channel closed") from None
        self._receive.close()
        return True, _unwrap(outcome)

    def close(self) -> None:
        self._receive.close()


def _unwrap(outcome: ControlOutcome) -> Any:
    if outcome.error is not None:
        raise ControlProtocolError(outcome.error)
    return outcome.payload


class PendingRequests:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._slots: dict[str, ObjectSendStream[ControlOutcome]] = {}
        self._closed = False

    def __len__(self) -> int:
        with self._lock:
            return len(self._slots)

    def __contains__(self, request_id: object) -> bool:
        with self._lock:
            return request_id in self._slots

    def register(self, request_id: str) -> PendingResponse:
        send, receive = anyio.create_memory_object_stream[ControlOutcome](1)
        with self._lock:
            if self._closed:
                send.close()
                receive.close()
                raise ControlProtocolError("Response channel closed")
            if request_id in self._slots:
                send.close()
                receive.close()
                raise ControlProtocolError(f"Duplicate request id: {request_id}")
            self._slots[request_id] = send
        return PendingResponse(request_id, receive)

    def resolve(self, request_id: str, outcome: ControlOutcome) -> bool:
        with self._lock:
            send = self._slots.pop(request_id, None)
        if send is None:
            logger.debug("control_response.unmatched", request_id=request_id)
            return False
        try:
            send.send_nowait(outcome)
        except (anyio.BrokenResourceError, anyio.WouldBlock):
            return False
        finally:
            send.close()
        return True

    def discard(self, request_id: str) -> None:
        with self._lock:
            send = self._slots.pop(request_id, None)
        if send is not None:
            send.close()

    def close(self) -> None:
        with self._lock:
            self._closed = True
            slots = list(self._slots.values())
            self._slots.clear()
        for send in slots:
            send.close()
        if slots:
            logger.debug("control_requests.abandoned", count=len(slots))
