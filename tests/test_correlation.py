from __future__ import annotations

import anyio
import pytest

from claude_duplex.correlation import ControlOutcome, PendingRequests
from claude_duplex.errors import ControlProtocolError


@pytest.mark.anyio
async def test_resolve_delivers_payload_to_waiter() -> None:
    table = PendingRequests()
    pending = table.register("req_1_aa")

    assert "req_1_aa" in table
    assert table.resolve("req_1_aa", ControlOutcome(payload={"ok": True}))
    assert await pending.wait() == {"ok": True}
    assert len(table) == 0


@pytest.mark.anyio
async def test_error_outcome_raises_with_child_message() -> None:
    table = PendingRequests()
    pending = table.register("req_1_aa")
    table.resolve("req_1_aa", ControlOutcome(error="model not available"))

    with pytest.raises(ControlProtocolError, match="model not available"):
        await pending.wait()


def test_resolve_unknown_or_duplicate_is_ignored() -> None:
    table = PendingRequests()
    table.register("req_1_aa")

    assert not table.resolve("req_2_bb", ControlOutcome())
    assert table.resolve("req_1_aa", ControlOutcome())
    assert not table.resolve("req_1_aa", ControlOutcome())


def test_duplicate_registration_is_rejected() -> None:
    table = PendingRequests()
    table.register("req_1_aa")

    with pytest.raises(ControlProtocolError, match="Duplicate request id"):
        table.register("req_1_aa")


def test_poll_reports_pending_then_resolved() -> None:
    table = PendingRequests()
    pending = table.register("req_1_aa")

    assert pending.poll() == (False, None)
    table.resolve("req_1_aa", ControlOutcome(payload=3))
    assert pending.poll() == (True, 3)


def test_discarded_slot_ignores_late_response() -> None:
    table = PendingRequests()
    pending = table.register("req_1_aa")
    table.discard("req_1_aa")

    assert not table.resolve("req_1_aa", ControlOutcome(payload="late"))
    with pytest.raises(ControlProtocolError, match="Response channel closed"):
        pending.poll()


@pytest.mark.anyio
async def test_waiter_that_gave_up_does_not_break_resolve() -> None:
    table = PendingRequests()
    pending = table.register("req_1_aa")

    with anyio.move_on_after(0.01):
        await pending.wait()

    assert not table.resolve("req_1_aa", ControlOutcome())


@pytest.mark.anyio
async def test_close_fails_every_waiter() -> None:
    table = PendingRequests()
    waiters = [table.register(f"req_{n}_aa") for n in range(3)]
    failures: list[str] = []

    async def wait(pending) -> None:
        try:
            await pending.wait()
        except ControlProtocolError as exc:
            failures.append(str(exc))

    async with anyio.create_task_group() as tg:
        for pending in waiters:
            tg.start_soon(wait, pending)
        await anyio.sleep(0.01)
        table.close()

    assert failures == ["Response channel closed"] * 3
    assert len(table) == 0
    with pytest.raises(ControlProtocolError):
        table.register("req_9_aa")
