"""Unix socket server receiving Claude Code hook events.

One JSON event is read per connection. Fire-and-forget events close the
connection straight away; PermissionRequest events keep it open until a
decision is written back, the request is cancelled, or it times out.

All socket mutation happens on the event loop the server was started on.
The public respond/cancel methods may be called from any thread.
"""

import asyncio
import os

from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import structlog
from pydantic import ValidationError

from ..config.settings import Settings
from ..exceptions import SocketBindError
from ..utils.constants import READ_CHUNK_SIZE, SOCKET_LISTEN_BACKLOG
from .backoff import ReconnectionBackoff
from .correlation import ToolUseCorrelationCache
from .events import HookEvent, HookResponse
from .ledger import PendingPermission, PermissionLedger


logger = structlog.get_logger()

EventCallback = Callable[[HookEvent], Any]
PermissionFailureCallback = Callable[[str, str], Any]


class UnixSocketServer:
    """Unix domain socket server for hook events and permission decisions."""

    def __init__(
        self,
        config: Settings,
        cache: Optional[ToolUseCorrelationCache] = None,
        ledger: Optional[PermissionLedger] = None,
        backoff: Optional[ReconnectionBackoff] = None,
    ):
        self.config = config
        self.socket_path = Path(config.socket_path)
        self.cache = cache or ToolUseCorrelationCache()
        self.ledger = ledger or PermissionLedger(config.max_responded_permissions)
        self.backoff = backoff or ReconnectionBackoff(
            base_delay=config.retry_base_delay,
            max_delay=config.retry_max_delay,
            max_attempts=config.retry_max_attempts,
        )

        self.server: Optional[asyncio.Server] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._stopped = False
        self._retry_task: Optional[asyncio.Task] = None
        self._timeouts: Dict[str, asyncio.TimerHandle] = {}
        self._on_event: Optional[EventCallback] = None
        self._on_permission_failure: Optional[PermissionFailureCallback] = None
        # Track background tasks for proper cleanup
        self.background_tasks: List[asyncio.Task] = []

    @property
    def is_listening(self) -> bool:
        return self.server is not None and self.server.is_serving()

    def _create_background_task(self, coro):
        """Create a background task and track it for cleanup."""
        task = asyncio.ensure_future(coro)
        self.background_tasks.append(task)

        # Clean up completed tasks
        self.background_tasks = [t for t in self.background_tasks if not t.done()]

        return task

    async def start(
        self,
        on_event: EventCallback,
        on_permission_failure: Optional[PermissionFailureCallback] = None,
    ) -> bool:
        """Bind the socket and start accepting connections.

        Returns immediately. If binding fails a retry task is scheduled and
        False is returned.
        """
        self._loop = asyncio.get_running_loop()
        self._on_event = on_event
        self._on_permission_failure = on_permission_failure
        self._stopped = False

        if self.is_listening:
            return True

        if await self._bind():
            return True

        self._schedule_retry()
        return False

    async def stop(self) -> None:
        """Stop accepting, drop pending permissions and remove the socket file."""
        self._stopped = True

        if self._retry_task and not self._retry_task.done():
            self._retry_task.cancel()
            try:
                await self._retry_task
            except asyncio.CancelledError:
                pass
        self._retry_task = None

        for handle in self._timeouts.values():
            handle.cancel()
        self._timeouts.clear()

        dropped = self.ledger.drain()
        for pending in dropped:
            self._close_writer(pending.writer)

        if self.server is not None:
            self.server.close()
            try:
                await asyncio.wait_for(self.server.wait_closed(), timeout=1.0)
            except asyncio.TimeoutError:
                logger.warning("Timed out waiting for hook connections to close")
            self.server = None

        self._remove_socket_file()

        for task in self.background_tasks:
            if not task.done():
                task.cancel()
        if self.background_tasks:
            await asyncio.gather(*self.background_tasks, return_exceptions=True)
        self.background_tasks.clear()

        logger.info(
            "Unix socket server stopped",
            socket_path=str(self.socket_path),
            dropped_permissions=len(dropped),
        )

    # Binding

    async def _bind(self) -> bool:
        try:
            await self._listen()
        except SocketBindError as e:
            logger.error(
                "Failed to bind hook socket",
                socket_path=str(self.socket_path),
                error=str(e),
            )
            return False

        self.backoff.reset()
        logger.info(
            "Unix socket server started",
            socket_path=str(self.socket_path),
            mode=oct(self.config.socket_mode),
        )
        return True

    async def _listen(self) -> None:
        """Replace any stale socket file, listen, then restrict its mode.

        Raises:
            SocketBindError: If the socket cannot be created or its mode set
        """
        self._remove_socket_file()
        try:
            self.server = await asyncio.start_unix_server(
                self._handle_client,
                path=str(self.socket_path),
                backlog=SOCKET_LISTEN_BACKLOG,
            )
        except OSError as e:
            raise SocketBindError(f"listen on {self.socket_path}: {e}") from e

        try:
            os.chmod(self.socket_path, self.config.socket_mode)
        except OSError as e:
            self.server.close()
            self.server = None
            raise SocketBindError(f"chmod {self.socket_path}: {e}") from e

    def _remove_socket_file(self) -> None:
        try:
            self.socket_path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(
                "Could not remove socket file",
                socket_path=str(self.socket_path),
                error=str(e),
            )

    def _schedule_retry(self) -> None:
        if self._stopped:
            return
        if self._retry_task and not self._retry_task.done():
            return
        self._retry_task = asyncio.ensure_future(self._retry_bind())

    async def _retry_bind(self) -> None:
        while not self._stopped:
            delay = self.backoff.next_delay()
            if delay is None:
                logger.error(
                    "Giving up binding hook socket",
                    attempts=self.backoff.current_attempt,
                    socket_path=str(self.socket_path),
                )
                return

            logger.warning(
                "Retrying hook socket bind",
                attempt=self.backoff.current_attempt,
                delay=round(delay, 3),
            )
            await asyncio.sleep(delay)

            if self._stopped:
                return
            if await self._bind():
                return

    # Connections

    async def _handle_client(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        """Read one event and route it."""
        try:
            data = await self._read_event_bytes(reader)
        except (ConnectionError, OSError) as e:
            logger.warning("Error reading hook connection", error=str(e))
            self._close_writer(writer)
            return

        if not data:
            self._close_writer(writer)
            return

        try:
            event = HookEvent.from_bytes(data)
        except ValueError as e:
            logger.warning(
                "Failed to decode hook event", error=str(e), size=len(data)
            )
            self._close_writer(writer)
            return

        logger.debug(
            "Received hook event",
            session_id=event.session_id[:8],
            hook_event=event.event,
            status=event.status,
            tool=event.tool,
        )

        if event.event == "PreToolUse":
            self.cache.cache_tool_use_id(event)
        elif event.event == "SessionEnd":
            self.cache.cleanup_cache(event.session_id)

        if event.expects_response:
            self._register_permission(event, writer)
        else:
            self._close_writer(writer)
            self._dispatch_event(event)

    async def _read_event_bytes(self, reader: asyncio.StreamReader) -> bytes:
        """Collect bytes until EOF, a quiet poll after data, or the budget ends."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.config.read_budget_seconds
        buffer = bytearray()

        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                break
            try:
                chunk = await asyncio.wait_for(
                    reader.read(READ_CHUNK_SIZE),
                    timeout=min(self.config.read_poll_seconds, remaining),
                )
            except asyncio.TimeoutError:
                if buffer:
                    break
                continue

            if not chunk:
                break
            buffer.extend(chunk)

        return bytes(buffer)

    def _register_permission(
        self, event: HookEvent, writer: asyncio.StreamWriter
    ) -> None:
        tool_use_id = event.tool_use_id or self.cache.pop_cached_tool_use_id(event)

        if not tool_use_id:
            logger.warning(
                "Permission request without tool_use_id, forwarding without response channel",
                session_id=event.session_id[:8],
                tool=event.tool,
            )
            self._close_writer(writer)
            self._dispatch_event(event)
            return

        if event.tool_use_id != tool_use_id:
            event = event.with_tool_use_id(tool_use_id)

        pending = PendingPermission(
            session_id=event.session_id,
            tool_use_id=tool_use_id,
            writer=writer,
            event=event,
        )
        accepted, displaced = self.ledger.add(pending)

        if displaced is not None:
            logger.warning(
                "Replacing pending permission with same tool_use_id",
                tool_use_id=tool_use_id[:12],
            )
            self._cancel_timeout(tool_use_id)
            self._close_writer(displaced.writer)

        if not accepted:
            logger.info(
                "Ignoring permission request for already answered tool_use_id",
                session_id=event.session_id[:8],
                tool_use_id=tool_use_id[:12],
            )
            self._close_writer(writer)
            return

        self._schedule_timeout(
            tool_use_id, event.session_id, self.config.permission_timeout_seconds
        )

        logger.info(
            "Permission request pending",
            session_id=event.session_id[:8],
            tool=event.tool,
            tool_use_id=tool_use_id[:12],
        )
        self._dispatch_event(event)

    # Timeouts

    def _schedule_timeout(self, tool_use_id: str, session_id: str, delay: float) -> None:
        loop = self._loop or asyncio.get_running_loop()
        self._timeouts[tool_use_id] = loop.call_later(
            delay, self._sweep_timeout, tool_use_id, session_id
        )

    def _cancel_timeout(self, tool_use_id: str) -> None:
        handle = self._timeouts.pop(tool_use_id, None)
        if handle is not None:
            handle.cancel()

    def _sweep_timeout(self, tool_use_id: str, session_id: str) -> None:
        self._timeouts.pop(tool_use_id, None)
        timeout = self.config.permission_timeout_seconds

        pending = self.ledger.pop_expired(tool_use_id, session_id, timeout)
        if pending is None:
            # Fired slightly early or the entry was refreshed
            remaining = self.ledger.time_remaining(tool_use_id, session_id, timeout)
            if remaining is not None:
                self._schedule_timeout(tool_use_id, session_id, remaining)
            return

        logger.warning(
            "Permission request timed out",
            session_id=session_id[:8],
            tool_use_id=tool_use_id[:12],
            timeout=timeout,
        )
        self._close_writer(pending.writer)
        self._notify_permission_failure(session_id, tool_use_id)

    # Decisions

    def respond_to_permission(
        self, tool_use_id: str, decision: str, reason: Optional[str] = None
    ) -> None:
        """Answer a pending permission by tool_use_id; no-op if it is gone."""
        response = self._build_response(decision, reason)
        if response is not None:
            self._call_on_loop(self._respond_by_id, tool_use_id, response)

    def respond_to_permission_by_session(
        self, session_id: str, decision: str, reason: Optional[str] = None
    ) -> None:
        """Answer the session's most recently received pending permission."""
        response = self._build_response(decision, reason)
        if response is not None:
            self._call_on_loop(self._respond_by_session, session_id, response)

    def cancel_pending_permissions(self, session_id: str) -> None:
        """Close every pending permission of a session without answering."""
        self._call_on_loop(self._cancel_session, session_id)

    def cancel_pending_permission(self, tool_use_id: str) -> None:
        """Close one pending permission without answering; the id counts as answered."""
        self._call_on_loop(self._cancel_one, tool_use_id)

    def has_pending_permission(self, session_id: str) -> bool:
        return self.ledger.has_session(session_id)

    def get_pending_permission(self, session_id: str) -> Optional[PendingPermission]:
        return self.ledger.get_for_session(session_id)

    @staticmethod
    def _build_response(decision: str, reason: Optional[str]) -> Optional[HookResponse]:
        """Validate a decision before any pending entry is consumed."""
        try:
            return HookResponse(decision=decision, reason=reason)
        except ValidationError as e:
            logger.error("Invalid permission decision", decision=decision, error=str(e))
            return None

    def _respond_by_id(self, tool_use_id: str, response: HookResponse) -> None:
        pending = self.ledger.pop(tool_use_id)
        if pending is None:
            logger.debug(
                "No pending permission to respond to", tool_use_id=tool_use_id[:12]
            )
            return
        self._send_response(pending, response)

    def _respond_by_session(self, session_id: str, response: HookResponse) -> None:
        pending = self.ledger.pop_latest_for_session(session_id)
        if pending is None:
            logger.debug(
                "No pending permission for session", session_id=session_id[:8]
            )
            return
        self._send_response(pending, response)

    def _cancel_session(self, session_id: str) -> None:
        removed = self.ledger.discard_session(session_id)
        for pending in removed:
            self._cancel_timeout(pending.tool_use_id)
            self._close_writer(pending.writer)
        if removed:
            logger.info(
                "Cancelled pending permissions",
                session_id=session_id[:8],
                count=len(removed),
            )

    def _cancel_one(self, tool_use_id: str) -> None:
        pending = self.ledger.discard(tool_use_id, mark_responded=True)
        if pending is None:
            return
        self._cancel_timeout(tool_use_id)
        self._close_writer(pending.writer)
        logger.info(
            "Cancelled pending permission",
            session_id=pending.session_id[:8],
            tool_use_id=tool_use_id[:12],
        )

    def _send_response(self, pending: PendingPermission, response: HookResponse) -> None:
        self._cancel_timeout(pending.tool_use_id)
        writer = pending.writer

        if writer.is_closing():
            logger.warning(
                "Hook connection already closed, cannot deliver decision",
                session_id=pending.session_id[:8],
                tool_use_id=pending.tool_use_id[:12],
            )
            self._notify_permission_failure(pending.session_id, pending.tool_use_id)
            return

        try:
            writer.write(response.to_bytes())
        except (ConnectionError, OSError, RuntimeError) as e:
            logger.error(
                "Failed to write permission decision",
                tool_use_id=pending.tool_use_id[:12],
                error=str(e),
            )
            self._close_writer(writer)
            self._notify_permission_failure(pending.session_id, pending.tool_use_id)
            return

        self._close_writer(writer)
        logger.info(
            "Permission decision sent",
            session_id=pending.session_id[:8],
            tool_use_id=pending.tool_use_id[:12],
            decision=response.decision,
        )

    # Plumbing

    def _call_on_loop(self, func: Callable[..., None], *args: Any) -> None:
        loop = self._loop
        if loop is None:
            func(*args)
            return

        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is loop:
            func(*args)
            return

        try:
            loop.call_soon_threadsafe(func, *args)
        except RuntimeError as e:
            logger.warning("Event loop unavailable for hook socket call", error=str(e))

    def _dispatch_event(self, event: HookEvent) -> None:
        if self._on_event is None:
            return
        try:
            result = self._on_event(event)
            if asyncio.iscoroutine(result):
                self._create_background_task(result)
        except Exception as e:
            logger.error(
                "Hook event handler failed",
                session_id=event.session_id[:8],
                hook_event=event.event,
                error=str(e),
            )

    def _notify_permission_failure(self, session_id: str, tool_use_id: str) -> None:
        if self._on_permission_failure is None:
            return
        try:
            result = self._on_permission_failure(session_id, tool_use_id)
            if asyncio.iscoroutine(result):
                self._create_background_task(result)
        except Exception as e:
            logger.error(
                "Permission failure handler failed",
                session_id=session_id[:8],
                error=str(e),
            )

    @staticmethod
    def _close_writer(writer: asyncio.StreamWriter) -> None:
        try:
            writer.close()
        except (ConnectionError, OSError, RuntimeError) as e:
            logger.debug("Error closing hook connection", error=str(e))
