"""Tests for the command relay: ordering, reply slots, backpressure, shutdown."""

from __future__ import annotations

import asyncio
import threading
from typing import Any

import pytest  # type: ignore[import-not-found]
from pydantic import ValidationError

from webview_inspector.relay import (
    CommandReceiver,
    CommandRelay,
    RelayError,
    RelayState,
    RelayTimeout,
    RelayUnavailable,
    ReplyDropped,
    ReplySlot,
    open_relay,
)
from webview_inspector.types import EvalResponse


def _run(coro: Any) -> Any:
    return asyncio.run(coro)


# =============================================================================
# EvalResponse
# =============================================================================


class TestEvalResponse:
    def test_ok(self) -> None:
        response = EvalResponse.ok("42")
        assert response.success is True
        assert response.result == "42"
        assert response.error is None

    def test_fail(self) -> None:
        response = EvalResponse.fail("boom")
        assert response.success is False
        assert response.error == "boom"
        assert response.result is None

    def test_success_requires_result(self) -> None:
        with pytest.raises(ValidationError):
            EvalResponse(success=True)

    def test_failure_rejects_result(self) -> None:
        with pytest.raises(ValidationError):
            EvalResponse(success=False, result="x", error="y")

    def test_empty_result_is_allowed(self) -> None:
        assert EvalResponse.ok("").result == ""


# =============================================================================
# ReplySlot
# =============================================================================


class TestReplySlot:
    def test_first_fulfill_wins(self) -> None:
        async def scenario() -> tuple[bool, bool, bool, EvalResponse]:
            slot = ReplySlot(asyncio.get_running_loop())
            first = slot.fulfill(EvalResponse.ok("first"))
            second = slot.fulfill(EvalResponse.ok("second"))
            dropped = slot.drop(ReplyDropped("late"))
            return first, second, dropped, await slot.wait()

        first, second, dropped, response = _run(scenario())
        assert first is True
        assert second is False
        assert dropped is False
        assert response.result == "first"

    def test_drop_raises_in_waiter(self) -> None:
        async def scenario() -> None:
            slot = ReplySlot(asyncio.get_running_loop())
            slot.drop(ReplyDropped("gone"))
            await slot.wait()

        with pytest.raises(ReplyDropped):
            _run(scenario())

    def test_fulfill_from_another_thread(self) -> None:
        async def scenario() -> EvalResponse:
            loop = asyncio.get_running_loop()
            slot = ReplySlot(loop)
            await loop.run_in_executor(None, slot.fulfill, EvalResponse.ok("threaded"))
            return await slot.wait()

        assert _run(scenario()).result == "threaded"

    def test_abandoned_slot_discards_reply(self) -> None:
        async def scenario() -> tuple[bool, bool]:
            slot = ReplySlot(asyncio.get_running_loop())
            slot.abandon()
            return slot.fulfill(EvalResponse.ok("late")), slot.settled

        delivered, settled = _run(scenario())
        assert delivered is False
        assert settled is False


# =============================================================================
# CommandRelay
# =============================================================================


class TestCommandRelay:
    def test_round_trip(self) -> None:
        async def scenario() -> EvalResponse:
            relay, receiver = open_relay()
            pending = asyncio.create_task(relay.enqueue("return 41 + 1"))
            command = await receiver.recv()
            assert command is not None
            assert command.script == "return 41 + 1"
            command.reply(EvalResponse.ok("42"))
            return await pending

        response = _run(scenario())
        assert response.success is True
        assert response.result == "42"

    def test_script_failure_is_an_outcome(self) -> None:
        async def scenario() -> EvalResponse:
            relay, receiver = open_relay()
            pending = asyncio.create_task(relay.enqueue("throw new Error('x')"))
            command = await receiver.recv()
            assert command is not None
            command.reply(EvalResponse.fail("Error: x"))
            return await pending

        response = _run(scenario())
        assert response.success is False
        assert response.error == "Error: x"

    def test_fifo_order(self) -> None:
        async def scenario() -> tuple[list[str], list[str]]:
            relay, receiver = open_relay(8)
            tasks = [
                asyncio.create_task(relay.enqueue(f"return {i}")) for i in range(5)
            ]
            seen = []
            for _ in range(5):
                command = await receiver.recv()
                assert command is not None
                seen.append(command.script)
                command.reply(EvalResponse.ok(command.script.split()[-1]))
            results = await asyncio.gather(*tasks)
            return seen, [r.result for r in results]

        seen, results = _run(scenario())
        assert seen == [f"return {i}" for i in range(5)]
        assert results == ["0", "1", "2", "3", "4"]

    def test_replies_pair_with_their_commands(self) -> None:
        async def scenario() -> list[str]:
            relay, receiver = open_relay()
            tasks = [asyncio.create_task(relay.enqueue(f"return '{c}'")) for c in "abc"]
            commands = [await receiver.recv() for _ in range(3)]
            # Reply out of order; each caller still gets its own outcome.
            for command in reversed(commands):
                assert command is not None
                command.reply(EvalResponse.ok(command.script))
            return [r.result for r in await asyncio.gather(*tasks)]

        assert _run(scenario()) == ["return 'a'", "return 'b'", "return 'c'"]

    def test_rejects_empty_script(self) -> None:
        relay, _ = open_relay()
        with pytest.raises(ValueError):
            _run(relay.enqueue(""))

    def test_closed_relay_fails_fast(self) -> None:
        relay, receiver = open_relay()
        receiver.close()
        with pytest.raises(RelayUnavailable, match="relay unavailable"):
            _run(relay.enqueue("return 1"))

    def test_timeout(self) -> None:
        async def scenario() -> tuple[int, bool]:
            relay, receiver = open_relay()
            with pytest.raises(RelayTimeout):
                await relay.enqueue("return 1", timeout=0.05)
            # The command is not withdrawn; a late reply is discarded.
            command = await receiver.recv()
            assert command is not None
            return relay.pending, command.reply(EvalResponse.ok("late"))

        pending, delivered = _run(scenario())
        assert pending == 0
        assert delivered is False

    def test_timeout_message(self) -> None:
        assert "1.5s" in str(RelayTimeout(1.5))

    def test_backpressure(self) -> None:
        async def scenario() -> list[str]:
            relay, receiver = open_relay(1)
            first = asyncio.create_task(relay.enqueue("return 'a'"))
            second = asyncio.create_task(relay.enqueue("return 'b'"))
            await asyncio.sleep(0.01)
            assert relay.pending == 2
            assert not second.done()

            results = []
            for _ in range(2):
                command = await receiver.recv()
                assert command is not None
                command.reply(EvalResponse.ok(command.script))
            results.append((await first).result)
            results.append((await second).result)
            return results

        assert _run(scenario()) == ["return 'a'", "return 'b'"]

    def test_close_drops_buffered_commands(self) -> None:
        async def scenario() -> None:
            relay, receiver = open_relay()
            pending = asyncio.create_task(relay.enqueue("return 1"))
            await asyncio.sleep(0)
            receiver.close()
            await pending

        with pytest.raises(ReplyDropped):
            _run(scenario())

    def test_close_wakes_blocked_producer(self) -> None:
        async def scenario() -> None:
            relay, receiver = open_relay(1)
            first = asyncio.create_task(relay.enqueue("return 1"))
            second = asyncio.create_task(relay.enqueue("return 2"))
            await asyncio.sleep(0.01)
            receiver.close()
            results = await asyncio.gather(first, second, return_exceptions=True)
            assert all(isinstance(r, RelayError) for r in results)

        _run(scenario())

    def test_state(self) -> None:
        async def scenario() -> list[RelayState]:
            relay, receiver = open_relay()
            states = [relay.state]
            pending = asyncio.create_task(relay.enqueue("return 1"))
            command = await receiver.recv()
            states.append(relay.state)
            assert command is not None
            command.reply(EvalResponse.ok("1"))
            await pending
            states.append(relay.state)
            relay.close()
            states.append(relay.state)
            return states

        assert _run(scenario()) == [
            RelayState.IDLE,
            RelayState.PENDING,
            RelayState.IDLE,
            RelayState.CLOSED,
        ]

    def test_close_is_idempotent(self) -> None:
        relay, _ = open_relay()
        relay.close()
        relay.close()
        assert relay.closed

    def test_capacity_must_be_positive(self) -> None:
        with pytest.raises(ValueError):
            CommandRelay(0)


# =============================================================================
# CommandReceiver
# =============================================================================


class TestCommandReceiver:
    def test_single_receiver(self) -> None:
        relay, _ = open_relay()
        with pytest.raises(RuntimeError):
            relay.take_receiver()

    def test_iteration_ends_on_close(self) -> None:
        async def scenario() -> list[str]:
            relay, receiver = open_relay()
            seen: list[str] = []

            async def consume() -> None:
                async for command in receiver:
                    seen.append(command.script)
                    command.reply(EvalResponse.ok("ok"))

            consumer = asyncio.create_task(consume())
            await relay.enqueue("return 1")
            await relay.enqueue("return 2")
            relay.close()
            await asyncio.wait_for(consumer, 1)
            return seen

        assert _run(scenario()) == ["return 1", "return 2"]

    def test_try_recv_unbound(self) -> None:
        _, receiver = open_relay()
        assert receiver.try_recv() is None

    def test_try_recv_on_loop(self) -> None:
        async def scenario() -> EvalResponse:
            relay, receiver = open_relay()
            relay.bind()
            assert receiver.try_recv() is None
            pending = asyncio.create_task(relay.enqueue("return 3"))
            await asyncio.sleep(0)
            command = receiver.try_recv()
            assert command is not None
            command.reply(EvalResponse.ok("3"))
            return await pending

        assert _run(scenario()).result == "3"

    def test_recv_blocking_from_thread(self) -> None:
        async def scenario() -> EvalResponse:
            relay, receiver = open_relay()
            relay.bind()
            loop = asyncio.get_running_loop()

            def executor() -> None:
                command = receiver.recv_blocking(5)
                assert command is not None
                command.reply(EvalResponse.ok(command.script.upper()))

            worker = loop.run_in_executor(None, executor)
            response = await relay.enqueue("return 'x'")
            await worker
            return response

        assert _run(scenario()).result == "RETURN 'X'"

    def test_short_poll_never_loses_commands(self) -> None:
        async def scenario() -> list[str]:
            relay, receiver = open_relay()
            relay.bind()
            loop = asyncio.get_running_loop()
            stop = threading.Event()

            def executor() -> None:
                while not stop.is_set():
                    command = receiver.recv_blocking(0.0005)
                    if command is not None:
                        command.reply(EvalResponse.ok(command.script))

            worker = loop.run_in_executor(None, executor)
            results = []
            try:
                for i in range(1000):
                    response = await relay.enqueue(f"return {i}", timeout=5.0)
                    results.append(response.result)
            finally:
                stop.set()
                await worker
            return results

        assert _run(scenario()) == [f"return {i}" for i in range(1000)]

    def test_recv_blocking_wakes_on_close(self) -> None:
        async def scenario() -> Any:
            relay, receiver = open_relay()
            relay.bind()
            loop = asyncio.get_running_loop()
            waiting = loop.run_in_executor(None, receiver.recv_blocking)
            await asyncio.sleep(0.05)
            relay.close()
            return await asyncio.wait_for(waiting, 1)

        assert _run(scenario()) is None

    def test_recv_blocking_after_loop_exit(self) -> None:
        async def scenario() -> CommandReceiver:
            relay, receiver = open_relay()
            relay.bind()
            return receiver

        receiver = _run(scenario())
        assert receiver.recv_blocking(0.1) is None

    def test_recv_blocking_on_closed_relay(self) -> None:
        _, receiver = open_relay()
        receiver.close()
        assert receiver.recv_blocking(0.1) is None

    def test_recv_blocking_unbound_times_out(self) -> None:
        _, receiver = open_relay()
        assert receiver.recv_blocking(0.01) is None
