"""Cooperative cancellation contexts for transport waits.

A Context is a cancellation and deadline signal shared between a caller
and the transport. Every wait inside the pacer and pipeline is taken on a
Context, so cancelling it (or letting its deadline pass) aborts the wait
promptly with a ContextError.

Usage:
    ctx = Context.with_timeout(None, 30)
    request = with_context(client.build_request("GET", url), ctx)
    response = await client.send(request)

    # elsewhere
    ctx.cancel()

Cancellation propagates synchronously from a parent to its children.
Deadlines are checked lazily, whenever the context is consulted or waited
on, so no timers or tasks are created per context.
"""

from __future__ import annotations

import asyncio
import inspect
import time
import weakref
from collections.abc import Awaitable, Callable
from typing import TypeVar

import httpx

from htb_client.exceptions import ContextCanceledError, ContextError, DeadlineExceededError

T = TypeVar("T")

DoneCallback = Callable[["Context"], None]

# Key under which a request's Context travels in httpx request extensions
CONTEXT_EXTENSION = "htb_client.context"


class Context:
    """Cancellation signal with an optional deadline.

    Contexts form a tree: a child finishes when its parent finishes, and
    inherits the earlier of its own and its parent's deadline. The
    background context never finishes.
    """

    def __init__(
        self,
        parent: Context | None = None,
        *,
        deadline: float | None = None,
        cancelable: bool = True,
    ) -> None:
        """Initialize a context.

        Prefer the constructors background(), with_cancel(), with_timeout()
        and with_deadline().

        Args:
            parent: Optional parent whose cancellation propagates to this one
            deadline: Optional time.monotonic() instant after which the
                      context reports DeadlineExceededError
            cancelable: False only for the background context
        """
        if parent is not None and parent.deadline is not None:
            deadline = parent.deadline if deadline is None else min(deadline, parent.deadline)

        self._parent = parent
        self._deadline = deadline
        self._cancelable = cancelable
        self._error: ContextError | None = None
        self._callbacks: list[DoneCallback] = []
        self._children: weakref.WeakSet[Context] = weakref.WeakSet()

        if parent is not None and parent.cancelable:
            parent_error = parent.error()
            if parent_error is not None:
                self._error = parent_error
            else:
                parent._children.add(self)

    # -------------------------------------------------------------------------
    # Constructors
    # -------------------------------------------------------------------------
    @classmethod
    def background(cls) -> Context:
        """A context that is never canceled and has no deadline."""
        return cls(cancelable=False)

    @classmethod
    def with_cancel(cls, parent: Context | None = None) -> Context:
        """A cancelable child of parent (or a new root)."""
        return cls(parent)

    @classmethod
    def with_deadline(cls, parent: Context | None, deadline: float) -> Context:
        """A child that expires at the given time.monotonic() instant."""
        return cls(parent, deadline=deadline)

    @classmethod
    def with_timeout(cls, parent: Context | None, seconds: float) -> Context:
        """A child that expires after the given number of seconds."""
        return cls(parent, deadline=time.monotonic() + seconds)

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------
    @property
    def cancelable(self) -> bool:
        """Whether this context can ever finish."""
        return self._cancelable

    @property
    def deadline(self) -> float | None:
        """time.monotonic() instant at which the context expires, if any."""
        return self._deadline

    def remaining(self) -> float | None:
        """Seconds until the deadline (never negative), None without one."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def error(self) -> ContextError | None:
        """The reason this context finished, or None while it is live."""
        if (
            self._error is None
            and self._deadline is not None
            and time.monotonic() >= self._deadline
        ):
            self._finish(DeadlineExceededError())
        return self._error

    @property
    def done(self) -> bool:
        """Whether the context has been canceled or has expired."""
        return self.error() is not None

    def cancel(self, error: ContextError | None = None) -> None:
        """Cancel this context and all of its children.

        Args:
            error: Reason to report (defaults to ContextCanceledError)

        Raises:
            RuntimeError: If called on the background context
        """
        if not self._cancelable:
            raise RuntimeError("background context cannot be canceled")
        self._finish(error or ContextCanceledError())

    def _finish(self, error: ContextError) -> None:
        if self._error is not None:
            return
        self._error = error

        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback(self)

        children = list(self._children)
        self._children.clear()
        for child in children:
            child._finish(error)

        if self._parent is not None:
            self._parent._children.discard(self)

    # -------------------------------------------------------------------------
    # Callbacks
    # -------------------------------------------------------------------------
    def add_done_callback(self, callback: DoneCallback) -> None:
        """Call callback(ctx) once the context finishes.

        Runs immediately if the context has already finished.
        """
        if self.error() is not None:
            callback(self)
            return
        self._callbacks.append(callback)

    def remove_done_callback(self, callback: DoneCallback) -> bool:
        """Unregister a callback. Returns True if it was registered."""
        try:
            self._callbacks.remove(callback)
            return True
        except ValueError:
            return False

    # -------------------------------------------------------------------------
    # Waiting
    # -------------------------------------------------------------------------
    async def _wait_for_done(self, timeout: float | None) -> None:
        """Wait until the context finishes or timeout seconds pass."""
        loop = asyncio.get_running_loop()
        waiter: asyncio.Future[None] = loop.create_future()

        def _resolve() -> None:
            if not waiter.done():
                waiter.set_result(None)

        def _on_done(_ctx: Context) -> None:
            loop.call_soon_threadsafe(_resolve)

        self.add_done_callback(_on_done)
        remaining = self.remaining()
        if remaining is not None:
            timeout = remaining if timeout is None else min(timeout, remaining)
        try:
            if timeout is None:
                await waiter
            else:
                await asyncio.wait_for(waiter, timeout)
        except TimeoutError:
            pass
        finally:
            self.remove_done_callback(_on_done)

    async def sleep(self, seconds: float) -> None:
        """Sleep for seconds unless the context finishes first.

        Raises:
            ContextError: If the context is or becomes finished
        """
        error = self.error()
        if error is not None:
            raise error

        if not self._cancelable:
            await asyncio.sleep(max(0.0, seconds))
            return

        # Loop timers may fire marginally early, so re-check until the
        # sleep has fully elapsed or the context has finished
        end = time.monotonic() + max(0.0, seconds)
        while True:
            await self._wait_for_done(end - time.monotonic())
            error = self.error()
            if error is not None:
                raise error
            if time.monotonic() >= end:
                return

    async def wait(self) -> ContextError:
        """Wait until the context finishes and return its error.

        Never returns for the background context.
        """
        while True:
            error = self.error()
            if error is not None:
                return error
            await self._wait_for_done(None)

    async def run(self, awaitable: Awaitable[T]) -> T:
        """Await awaitable, abandoning it if the context finishes first.

        The awaitable is cancelled when the context finishes and the
        context's error is raised in place of the cancellation.

        Raises:
            ContextError: If the context is or becomes finished
        """
        error = self.error()
        if error is not None:
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            raise error

        if not self._cancelable:
            return await awaitable

        loop = asyncio.get_running_loop()
        task = asyncio.ensure_future(awaitable)

        def _on_done(_ctx: Context) -> None:
            loop.call_soon_threadsafe(task.cancel)

        self.add_done_callback(_on_done)
        try:
            remaining = self.remaining()
            if remaining is not None:
                await asyncio.wait({task}, timeout=remaining)
                if not task.done():
                    self._finish(DeadlineExceededError())
            return await task
        except asyncio.CancelledError:
            error = self.error()
            current = asyncio.current_task()
            if error is not None and (current is None or current.cancelling() == 0):
                raise error from None
            raise
        finally:
            self.remove_done_callback(_on_done)
            if not task.done():
                task.cancel()

    def __repr__(self) -> str:
        if not self._cancelable:
            return "Context(background)"
        state = type(self._error).__name__ if self._error else "live"
        return f"Context({state}, deadline={self._deadline})"


def merge_contexts(primary: Context, secondary: Context) -> Context:
    """Return a context that finishes when either input finishes.

    When one side can never finish the other is returned unchanged, so
    merging with the background context costs nothing. Otherwise the
    result is a child of primary that also carries secondary's deadline
    and is canceled from a done callback on secondary. The callback is
    unregistered as soon as the merged context finishes, whichever side
    triggered it.

    Args:
        primary: Usually the caller's context
        secondary: Usually a long-lived owner context

    Returns:
        A context honoring both signals
    """
    if not secondary.cancelable:
        return primary
    if not primary.cancelable:
        return secondary

    merged = Context(primary, deadline=secondary.deadline)
    if merged.done:
        return merged

    def _propagate(ctx: Context) -> None:
        error = ctx.error()
        merged._finish(error or ContextCanceledError())

    def _detach(_ctx: Context) -> None:
        secondary.remove_done_callback(_propagate)

    merged.add_done_callback(_detach)
    secondary.add_done_callback(_propagate)
    return merged


def with_context(request: httpx.Request, ctx: Context) -> httpx.Request:
    """Attach a caller context to a request and return the request."""
    request.extensions[CONTEXT_EXTENSION] = ctx
    return request


def get_context(request: httpx.Request) -> Context | None:
    """Return the context attached to a request, if any."""
    ctx = request.extensions.get(CONTEXT_EXTENSION)
    return ctx if isinstance(ctx, Context) else None
