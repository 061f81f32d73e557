"""Registry of isolated trading sessions addressed by session key."""

import asyncio
from typing import Any, Callable, Optional

import structlog

from ..errors import SessionStateError
from .orchestrator import TradeOrchestrator

logger = structlog.get_logger(__name__)

OrchestratorFactory = Callable[[str], TradeOrchestrator]


class SessionRegistry:
    """
    Owns one TradeOrchestrator per session key.

    Each orchestrator is built by the factory with its own connection,
    strategy and aggregates; the registry only tracks their lifecycle.

    Args:
        orchestrator_factory: Builds the orchestrator for a session key
    """

    def __init__(self, orchestrator_factory: OrchestratorFactory):
        self._factory = orchestrator_factory
        self._sessions: dict[str, TradeOrchestrator] = {}
        self._tasks: dict[str, asyncio.Task] = {}

    def create(self, session_key: str) -> TradeOrchestrator:
        """
        Create the session for a key.

        Raises:
            SessionStateError: If a session already exists for the key
        """
        if session_key in self._sessions:
            raise SessionStateError(f"Session {session_key!r} already exists", session_key=session_key)

        orchestrator = self._factory(session_key)
        self._sessions[session_key] = orchestrator
        logger.info("Session created", session_key=session_key)
        return orchestrator

    def get(self, session_key: str) -> Optional[TradeOrchestrator]:
        return self._sessions.get(session_key)

    def start(self, session_key: str, params: dict[str, Any]) -> asyncio.Task:
        """
        Run a session's trading loop as a background task.

        Raises:
            SessionStateError: If the session does not exist or is running
        """
        orchestrator = self._require(session_key)
        task = self._tasks.get(session_key)
        if orchestrator.is_running or (task is not None and not task.done()):
            raise SessionStateError(f"Session {session_key!r} is already running", session_key=session_key)

        task = asyncio.get_running_loop().create_task(orchestrator.start_session(params))
        task.add_done_callback(lambda done: self._on_session_done(session_key, done))
        self._tasks[session_key] = task
        return task

    def stop(self, session_key: str, reason: str = "Stopped by user") -> bool:
        """Stop a running session; returns False when it was not running."""
        return self._require(session_key).stop_session(reason)

    async def dispose(self, session_key: str) -> None:
        """Stop a session, wait for its loop to exit and forget it."""
        orchestrator = self._sessions.pop(session_key, None)
        if orchestrator is None:
            return

        orchestrator.stop_session("Session disposed")
        task = self._tasks.pop(session_key, None)
        if task is not None and not task.done():
            await asyncio.gather(task, return_exceptions=True)
        logger.info("Session disposed", session_key=session_key)

    def active_sessions(self) -> list[str]:
        return [key for key, orchestrator in self._sessions.items() if orchestrator.is_running]

    def _require(self, session_key: str) -> TradeOrchestrator:
        orchestrator = self._sessions.get(session_key)
        if orchestrator is None:
            raise SessionStateError(f"No session for {session_key!r}", session_key=session_key)
        return orchestrator

    def _on_session_done(self, session_key: str, task: asyncio.Task) -> None:
        if task.cancelled():
            logger.warning("Session task cancelled", session_key=session_key)
            return

        error = task.exception()
        if error is not None:
            logger.error("Session ended with error", session_key=session_key,
                         error=str(error), error_type=type(error).__name__)
        else:
            logger.info("Session task finished", session_key=session_key, reason=task.result().reason)
