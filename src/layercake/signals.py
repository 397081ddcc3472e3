"""Externally constructible cancellation handles.

An ``AbortController`` owns an ``AbortSignal``. The signal is passed to requests
through the ``signal`` option; aborting the controller cancels the in-flight
transport call or retry delay that is waiting on it. Signals compose with
``AbortSignal.any`` so several sources can cancel the same operation.

Derived signals (``any`` and ``timeout``) hold no strong reference from their
sources: a derived signal that is dropped stops listening and cancels its
timer. ``dispose()`` does the same eagerly, and aborting runs it implicitly.
"""

import asyncio
import contextlib
import weakref
from typing import Any, Callable, Union

from .errors import AbortError, RequestTimeoutError


class _Relay:
    """Forwards a source abort to a derived signal it does not keep alive."""

    def __init__(self, target: "AbortSignal"):
        self._target = weakref.ref(target)

    @property
    def alive(self) -> bool:
        target = self._target()
        return target is not None and not target.aborted

    def __call__(self, reason: Any) -> None:
        target = self._target()
        if target is not None:
            target._abort(reason)


def _fire_timeout(ref: "weakref.ref[AbortSignal]", delay_ms: float) -> None:
    signal = ref()
    if signal is not None:
        signal._abort(RequestTimeoutError(f"Timed out after {delay_ms}ms"))


class AbortSignal:
    def __init__(self):
        self._aborted = False
        self._reason: Any = None
        self._event = asyncio.Event()
        self._listeners: list[Callable[[Any], None]] = []
        self._cleanups: list[Callable[[], None]] = []

    @property
    def aborted(self) -> bool:
        return self._aborted

    @property
    def reason(self) -> Any:
        return self._reason

    def add_listener(self, fn: Callable[[Any], None]) -> None:
        if self._aborted:
            fn(self._reason)
            return
        # relays whose derived signal is gone or settled are dropped here
        self._listeners = [f for f in self._listeners if getattr(f, "alive", True)]
        self._listeners.append(fn)

    def remove_listener(self, fn: Callable[[Any], None]) -> None:
        with contextlib.suppress(ValueError):
            self._listeners.remove(fn)

    async def wait(self) -> None:
        """Suspend until the signal is aborted."""
        await self._event.wait()

    def error(self) -> AbortError:
        """Return the cancellation error to raise for this signal."""
        if isinstance(self._reason, AbortError):
            return self._reason
        return AbortError(reason=self._reason)

    def raise_if_aborted(self) -> None:
        if self._aborted:
            raise self.error()

    def dispose(self) -> None:
        """Detach from source signals and cancel a pending timer. The signal stays usable."""
        cleanups, self._cleanups = self._cleanups, []
        for cleanup in cleanups:
            with contextlib.suppress(Exception):
                cleanup()

    def _abort(self, reason: Any) -> None:
        if self._aborted:
            return
        self._aborted = True
        self._reason = reason if reason is not None else AbortError()
        self._event.set()
        self.dispose()
        listeners, self._listeners = self._listeners, []
        for fn in listeners:
            # a faulty listener must not keep the others from firing
            with contextlib.suppress(Exception):
                fn(self._reason)

    @classmethod
    def any(cls, *signals: Union["AbortSignal", None]) -> "AbortSignal":
        """Return a signal aborted as soon as any of ``signals`` is."""
        combined = cls()
        relay = _Relay(combined)
        sources = []
        for signal in signals:
            if signal is None:
                continue
            if signal.aborted:
                combined._abort(signal.reason)
                break
            signal.add_listener(relay)
            sources.append(signal)

        def _detach():
            for source in sources:
                source.remove_listener(relay)

        if combined.aborted:
            _detach()
        else:
            combined._cleanups.append(_detach)
        return combined

    @classmethod
    def timeout(cls, delay_ms: float) -> "AbortSignal":
        """Return a signal aborted with ``RequestTimeoutError`` after ``delay_ms``.

        Must be called from a running event loop.
        """
        signal = cls()
        loop = asyncio.get_running_loop()
        handle = loop.call_later(
            max(0.0, delay_ms) / 1000.0, _fire_timeout, weakref.ref(signal), delay_ms
        )
        signal._cleanups.append(handle.cancel)
        weakref.finalize(signal, handle.cancel)
        return signal


class AbortController:
    def __init__(self):
        self.signal = AbortSignal()

    def abort(self, reason: Any = None) -> None:
        self.signal._abort(reason)
