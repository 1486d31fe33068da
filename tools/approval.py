"""Thread-safe correlation of tool-approval requests and user responses.

When the model flags a tool call with ``<requires_approval>true``, the
execution loop suspends on ``request_approval()``. The request is announced on
the host message bus as ``approval:request``; the UI answers, possibly from a
different thread, through ``handle_approval_response()``. Each request is keyed
by a process-unique id, so any number of concurrent agent sessions can have
approvals outstanding without interfering with each other.

This module provides the request table keyed by request id, with proper
locking, plus a module-level default correlator for hosts that do not need
more than one.
"""

import asyncio
import inspect
import logging
import random
import string
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from hive_constants import APPROVAL_REQUEST_EVENT, APPROVAL_RESPONSE_EVENT

logger = logging.getLogger(__name__)

_ID_ALPHABET = string.digits + string.ascii_lowercase
_ID_SUFFIX_LENGTH = 9

WindowLookup = Callable[[str], Any]


@dataclass
class PendingApproval:
    """One outstanding approval request."""

    request_id: str
    future: asyncio.Future
    loop: asyncio.AbstractEventLoop
    tool_name: str
    tool_input: str
    reason: str
    session_id: str
    window_id: Optional[Any] = None


def _running_loop() -> Optional[asyncio.AbstractEventLoop]:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None


def _settle(future: asyncio.Future, approved: bool) -> None:
    # A timed-out or cancelled waiter has already given up on the future.
    if not future.done():
        future.set_result(approved)


class ApprovalCorrelator:
    """Correlates approval requests with responses.

    Args:
        bus: Message bus used to announce requests and echo responses. Anything
            with fire-and-forget ``publish(event_type, payload)`` and
            ``async emit(event_type, payload)``.
        window_lookup: Maps a session id to the UI window showing it. May be
            sync or async. Failures are logged and the window is left unknown.
        timeout: Seconds to wait for a response before treating the request
            as rejected. None waits indefinitely.
    """

    def __init__(self, bus=None, window_lookup: Optional[WindowLookup] = None,
                 timeout: Optional[float] = None):
        self.bus = bus
        self.window_lookup = window_lookup
        self.timeout = timeout
        self._lock = threading.Lock()
        self._pending: Dict[str, PendingApproval] = {}

    # ------------------------------------------------------------------
    # Table inspection
    # ------------------------------------------------------------------

    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def has_pending(self, request_id: str) -> bool:
        with self._lock:
            return request_id in self._pending

    def pending_for_session(self, session_id: str) -> List[PendingApproval]:
        with self._lock:
            return [p for p in self._pending.values() if p.session_id == session_id]

    # ------------------------------------------------------------------
    # Request side
    # ------------------------------------------------------------------

    def _new_request_id(self) -> str:
        """``approval_<epoch-ms>_<9 base36 chars>``. Caller holds the lock."""
        while True:
            suffix = "".join(random.choices(_ID_ALPHABET, k=_ID_SUFFIX_LENGTH))
            request_id = f"approval_{int(time.time() * 1000)}_{suffix}"
            if request_id not in self._pending:
                return request_id

    async def _resolve_window(self, session_id: str) -> Optional[Any]:
        if self.window_lookup is None:
            return None
        try:
            window_id = self.window_lookup(session_id)
            if inspect.isawaitable(window_id):
                window_id = await window_id
            return window_id
        except Exception as e:
            logger.warning("Could not resolve window for session %s: %s", session_id, e)
            return None

    async def request_approval(self, session_id: str, tool_name: str, tool_input: str,
                               reason: str, window_id: Optional[Any] = None) -> bool:
        """Announce an approval request and wait for the user's decision.

        Returns True when approved. Rejection, timeout and session
        cancellation all return False.
        """
        if window_id is None:
            window_id = await self._resolve_window(session_id)

        loop = asyncio.get_running_loop()
        future = loop.create_future()

        with self._lock:
            request_id = self._new_request_id()
            self._pending[request_id] = PendingApproval(
                request_id=request_id,
                future=future,
                loop=loop,
                tool_name=tool_name,
                tool_input=tool_input,
                reason=reason,
                session_id=session_id,
                window_id=window_id,
            )

        logger.info("Approval requested for %s (%s)", tool_name, request_id)

        # Handlers run in their own task; the wait below starts now.
        if self.bus is not None:
            try:
                self.bus.publish(APPROVAL_REQUEST_EVENT, {
                    "requestId": request_id,
                    "toolName": tool_name,
                    "toolInput": tool_input,
                    "reason": reason,
                    "sessionId": session_id,
                    "windowId": window_id,
                })
            except Exception as e:
                logger.warning("Failed to publish approval request %s: %s", request_id, e)

        try:
            if self.timeout is None:
                return await future
            return await asyncio.wait_for(future, self.timeout)
        except asyncio.TimeoutError:
            logger.warning("Approval request %s timed out after %ss; treating as rejected",
                           request_id, self.timeout)
            return False
        finally:
            with self._lock:
                self._pending.pop(request_id, None)

    # ------------------------------------------------------------------
    # Response side
    # ------------------------------------------------------------------

    def _resolve(self, entry: PendingApproval, approved: bool) -> None:
        current = _running_loop()
        if current is entry.loop:
            _settle(entry.future, approved)
        elif not entry.loop.is_closed():
            entry.loop.call_soon_threadsafe(_settle, entry.future, approved)

    def _publish_response(self, entry: PendingApproval, approved: bool) -> None:
        if self.bus is None:
            return
        payload = {"requestId": entry.request_id, "approved": approved}
        try:
            current = _running_loop()
            if current is None and not entry.loop.is_closed() and entry.loop.is_running():
                asyncio.run_coroutine_threadsafe(
                    self.bus.emit(APPROVAL_RESPONSE_EVENT, payload), entry.loop)
            else:
                self.bus.publish(APPROVAL_RESPONSE_EVENT, payload)
        except Exception as e:
            logger.warning("Failed to publish approval response %s: %s", entry.request_id, e)

    def handle_approval_response(self, request_id: str, approved: bool) -> bool:
        """Resolve a pending request. Safe to call from any thread.

        Returns False (and logs) when the id is unknown or already resolved.
        """
        with self._lock:
            entry = self._pending.pop(request_id, None)

        if entry is None:
            logger.warning("No pending approval request found for id %s", request_id)
            return False

        approved = bool(approved)
        logger.info("Approval %s %s", request_id, "granted" if approved else "rejected")
        self._resolve(entry, approved)
        self._publish_response(entry, approved)
        return True

    def cancel_session(self, session_id: str) -> int:
        """Reject every outstanding request for ``session_id``.

        Returns the number of requests rejected.
        """
        with self._lock:
            entries = [p for p in self._pending.values() if p.session_id == session_id]
            for entry in entries:
                del self._pending[entry.request_id]

        for entry in entries:
            self._resolve(entry, False)
        if entries:
            logger.info("Rejected %d pending approval(s) for session %s", len(entries), session_id)
        return len(entries)


# ----------------------------------------------------------------------
# Module-level default correlator
# ----------------------------------------------------------------------

_default = ApprovalCorrelator()


def get_correlator() -> ApprovalCorrelator:
    return _default


def configure(bus=None, window_lookup: Optional[WindowLookup] = None,
              timeout: Optional[float] = None) -> ApprovalCorrelator:
    """Attach a bus, window lookup and timeout to the default correlator."""
    _default.bus = bus
    _default.window_lookup = window_lookup
    _default.timeout = timeout
    return _default


async def request_approval(session_id: str, tool_name: str, tool_input: str, reason: str,
                           window_id: Optional[Any] = None) -> bool:
    return await _default.request_approval(session_id, tool_name, tool_input, reason, window_id)


def handle_approval_response(request_id: str, approved: bool) -> bool:
    return _default.handle_approval_response(request_id, approved)
