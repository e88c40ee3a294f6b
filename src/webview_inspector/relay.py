"""Command relay between HTTP handlers and the single UI executor.

HTTP handlers call :meth:`CommandRelay.enqueue`, which pushes an
:class:`EvalCommand` onto a bounded queue and waits on the command's
:class:`ReplySlot`. The UI executor owns the one :class:`CommandReceiver`,
pulls commands in FIFO order, runs them and replies through the slot.

All queue operations run on the event loop the relay is bound to. The
receiver's blocking methods and :meth:`ReplySlot.fulfill` may be called from
any thread; they are marshalled onto that loop.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import enum
import logging
import threading
from dataclasses import dataclass
from typing import Any, AsyncIterator, Optional

from .types import EvalResponse

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 32


class RelayError(Exception):
    """Base class for relay failures."""


class RelayUnavailable(RelayError):
    """The consuming side of the relay has been torn down."""

    def __init__(self, message: str = "relay unavailable") -> None:
        super().__init__(message)


class RelayTimeout(RelayError):
    """No reply arrived before the deadline."""

    def __init__(self, timeout: float) -> None:
        super().__init__(f"no reply from the UI executor within {timeout:g}s")
        self.timeout = timeout


class ReplyDropped(RelayError):
    """The command was discarded without a reply."""


class RelayState(str, enum.Enum):
    IDLE = "idle"
    PENDING = "pending"
    CLOSED = "closed"


def _running_loop() -> Optional[asyncio.AbstractEventLoop]:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None


class ReplySlot:
    """Single-use reply channel for one command.

    The first :meth:`fulfill` or :meth:`drop` settles the slot; every later
    call is ignored and returns False. Once the waiter has given up
    (:meth:`abandon`), replies are discarded.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop
        self._future: asyncio.Future[EvalResponse] = loop.create_future()
        self._lock = threading.Lock()
        self._settled = False
        self._abandoned = False

    @property
    def settled(self) -> bool:
        return self._settled

    @property
    def abandoned(self) -> bool:
        return self._abandoned

    def fulfill(self, response: EvalResponse) -> bool:
        """Deliver the reply. Returns False if it was not delivered."""
        if not self._claim():
            return False
        self._settle(lambda fut: fut.set_result(response))
        return True

    def drop(self, exc: RelayError) -> bool:
        """Fail the waiter instead of replying."""
        if not self._claim():
            return False
        self._settle(lambda fut: fut.set_exception(exc))
        return True

    def abandon(self) -> None:
        with self._lock:
            if not self._settled:
                self._abandoned = True

    async def wait(self) -> EvalResponse:
        try:
            return await self._future
        except asyncio.CancelledError:
            self.abandon()
            raise

    def _claim(self) -> bool:
        with self._lock:
            if self._settled or self._abandoned:
                logger.debug(
                    "Discarding reply: slot already %s",
                    "settled" if self._settled else "abandoned",
                )
                return False
            self._settled = True
            return True

    def _settle(self, apply) -> None:
        def _apply() -> None:
            if not self._future.done():
                apply(self._future)

        if _running_loop() is self._loop:
            _apply()
            return
        try:
            self._loop.call_soon_threadsafe(_apply)
        except RuntimeError:
            # Loop already closed; nobody is left to wait.
            logger.debug("Relay loop closed, reply discarded")


@dataclass
class EvalCommand:
    """A script for the UI executor plus the slot its reply goes to."""

    script: str
    reply_slot: ReplySlot

    def reply(self, response: EvalResponse) -> bool:
        return self.reply_slot.fulfill(response)


class CommandRelay:
    """Bounded FIFO relay from many producers to one UI executor."""

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError("relay capacity must be at least 1")
        self.capacity = capacity
        self._queue: asyncio.Queue[EvalCommand] = asyncio.Queue(maxsize=capacity)
        self._closed_event = asyncio.Event()
        self._closed = False
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._ready = threading.Event()
        self._lock = threading.Lock()
        self._in_flight = 0
        self._receiver: Optional[CommandReceiver] = None

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def bind(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        """Pin the relay to the loop that serves HTTP requests."""
        loop = loop or asyncio.get_running_loop()
        with self._lock:
            if self._loop is None:
                self._loop = loop
                self._ready.set()
            elif self._loop is not loop:
                raise RuntimeError("relay is already bound to another event loop")

    @property
    def loop(self) -> Optional[asyncio.AbstractEventLoop]:
        return self._loop

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        """Number of commands enqueued and still awaiting a reply."""
        return self._in_flight

    @property
    def state(self) -> RelayState:
        if self._closed:
            return RelayState.CLOSED
        return RelayState.PENDING if self._in_flight else RelayState.IDLE

    def take_receiver(self) -> "CommandReceiver":
        """Hand out the sole consuming end. Only one may ever exist."""
        with self._lock:
            if self._receiver is not None:
                raise RuntimeError("relay already has a receiver")
            self._receiver = CommandReceiver(self)
            return self._receiver

    def close(self) -> None:
        """Tear down the consuming side. Safe to call from any thread."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            loop = self._loop
        self._ready.set()
        logger.debug("Closing relay")
        if loop is None or _running_loop() is loop:
            self._finish_close()
        else:
            try:
                loop.call_soon_threadsafe(self._finish_close)
            except RuntimeError:
                logger.debug("Relay loop closed before relay shutdown")

    def _finish_close(self) -> None:
        self._closed_event.set()
        self._discard_buffered()

    def _discard_buffered(self) -> None:
        dropped = 0
        while True:
            try:
                command = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            command.reply_slot.drop(ReplyDropped("relay closed before the command ran"))
            dropped += 1
        if dropped:
            logger.debug("Dropped %d buffered command(s) on relay close", dropped)

    # -------------------------------------------------------------------------
    # Producer side
    # -------------------------------------------------------------------------

    async def enqueue(self, script: str, timeout: Optional[float] = None) -> EvalResponse:
        """Run ``script`` on the UI executor and return its outcome.

        Raises:
            RelayUnavailable: the receiver is closed.
            RelayTimeout: ``timeout`` seconds elapsed without a reply.
            ReplyDropped: the command was discarded unanswered.
        """
        if not isinstance(script, str) or not script:
            raise ValueError("script must be a non-empty string")
        if self._closed:
            raise RelayUnavailable()
        self.bind()

        command = EvalCommand(script=script, reply_slot=ReplySlot(self._loop))
        self._in_flight += 1
        try:
            return await asyncio.wait_for(self._send_and_wait(command), timeout)
        except asyncio.TimeoutError:
            command.reply_slot.abandon()
            raise RelayTimeout(timeout) from None
        finally:
            self._in_flight -= 1

    async def _send_and_wait(self, command: EvalCommand) -> EvalResponse:
        await self._push(command)
        return await command.reply_slot.wait()

    async def _push(self, command: EvalCommand) -> None:
        try:
            self._queue.put_nowait(command)
            return
        except asyncio.QueueFull:
            logger.debug("Relay full (%d commands), waiting for space", self.capacity)

        put = asyncio.ensure_future(self._queue.put(command))
        closed = asyncio.ensure_future(self._closed_event.wait())
        try:
            await asyncio.wait({put, closed}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (put, closed):
                if not task.done():
                    task.cancel()

        if not put.done() or put.cancelled():
            raise RelayUnavailable()
        if self._closed:
            # Space opened up while closing; nobody will ever read this.
            self._discard_buffered()

    # -------------------------------------------------------------------------
    # Consumer side (used through CommandReceiver)
    # -------------------------------------------------------------------------

    async def _pull(self, timeout: Optional[float] = None) -> Optional[EvalCommand]:
        """Take the next command, or None once closed or after ``timeout``.

        The deadline is applied here, on the relay loop, so a command is
        either returned or left on the queue; it is never lost in between.
        """
        if self._closed:
            return None
        try:
            return self._queue.get_nowait()
        except asyncio.QueueEmpty:
            pass

        get = asyncio.ensure_future(self._queue.get())
        closed = asyncio.ensure_future(self._closed_event.wait())
        try:
            await asyncio.wait(
                {get, closed}, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
            )
        except asyncio.CancelledError:
            if get.done() and not get.cancelled():
                # Dequeued but nobody will run it.
                get.result().reply_slot.drop(ReplyDropped("receiver cancelled"))
            raise
        finally:
            for task in (get, closed):
                if not task.done():
                    task.cancel()

        if get.done() and not get.cancelled():
            command = get.result()
            if self._closed:
                command.reply_slot.drop(ReplyDropped("relay closed before the command ran"))
                return None
            return command
        return None


class CommandReceiver:
    """The UI executor's end of the relay.

    Obtain it from :func:`open_relay` or :meth:`CommandRelay.take_receiver`.
    """

    def __init__(self, relay: CommandRelay) -> None:
        self._relay = relay

    @property
    def relay(self) -> CommandRelay:
        return self._relay

    @property
    def closed(self) -> bool:
        return self._relay.closed

    async def recv(self) -> Optional[EvalCommand]:
        """Wait for the next command. Returns None once the relay is closed."""
        self._relay.bind()
        return await self._relay._pull()

    def __aiter__(self) -> AsyncIterator[EvalCommand]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[EvalCommand]:
        while True:
            command = await self.recv()
            if command is None:
                return
            yield command

    def recv_blocking(self, timeout: Optional[float] = None) -> Optional[EvalCommand]:
        """Blocking receive for executors living on a non-asyncio thread.

        Returns None on timeout, once the relay is closed, or when the relay
        loop shuts down mid-wait.
        """
        if not self._relay._ready.wait(timeout):
            return None
        loop = self._relay.loop
        if loop is None or self._relay.closed:
            return None
        if _running_loop() is loop:
            raise RuntimeError("recv_blocking() would deadlock on the relay loop; use recv()")
        # The deadline is enforced by the pull itself, on the relay loop.
        return self._wait_on_loop(self._relay._pull(timeout), loop)

    def _wait_on_loop(
        self, coro: Any, loop: asyncio.AbstractEventLoop
    ) -> Optional[EvalCommand]:
        try:
            future = asyncio.run_coroutine_threadsafe(coro, loop)
        except RuntimeError:
            coro.close()
            logger.debug("Relay loop closed, nothing to receive")
            return None
        try:
            return future.result()
        except concurrent.futures.CancelledError:
            return None

    def try_recv(self) -> Optional[EvalCommand]:
        """Non-blocking poll. Returns None when nothing is queued."""
        loop = self._relay.loop
        if loop is None or self._relay.closed:
            return None
        if _running_loop() is loop:
            return self._take_nowait()
        return self._wait_on_loop(self._take_async(), loop)

    async def _take_async(self) -> Optional[EvalCommand]:
        return self._take_nowait()

    def _take_nowait(self) -> Optional[EvalCommand]:
        if self._relay.closed:
            return None
        try:
            return self._relay._queue.get_nowait()
        except asyncio.QueueEmpty:
            return None

    def close(self) -> None:
        self._relay.close()


def open_relay(capacity: int = DEFAULT_CAPACITY) -> tuple[CommandRelay, CommandReceiver]:
    """Create a relay and its sole receiver."""
    relay = CommandRelay(capacity)
    return relay, relay.take_receiver()
