"""In-memory registry of live tracking sessions."""

import logging
import threading
import uuid
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Dict, List, Optional

from barpath.config import Settings, get_settings
from barpath.cv.session_controller import SessionController
from barpath.errors import SessionNotFoundError
from barpath.labels import ExerciseType, Tempo

logger = logging.getLogger(__name__)


@dataclass
class SessionHandle:
    """A registered session and the labels it was created with."""
    session_id: str
    exercise: ExerciseType
    tempo: Tempo
    controller: SessionController
    report_tasks: List[str] = field(default_factory=list)  # Celery ids of queued reports


class SessionRegistry:
    """Thread-safe map of session id to live session."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self._sessions: Dict[str, SessionHandle] = {}
        self._lock = threading.Lock()

    def create(self, exercise: ExerciseType, tempo: Tempo) -> SessionHandle:
        controller = SessionController(
            exercise=exercise.display_name,
            tempo=tempo.display_name,
            settings=self.settings,
        )
        controller.start()

        handle = SessionHandle(
            session_id=str(uuid.uuid4()),
            exercise=exercise,
            tempo=tempo,
            controller=controller,
        )
        with self._lock:
            self._sessions[handle.session_id] = handle
        logger.info(f"Registered session {handle.session_id}")
        return handle

    def get(self, session_id: str) -> SessionHandle:
        with self._lock:
            handle = self._sessions.get(session_id)
        if handle is None:
            raise SessionNotFoundError(session_id)
        return handle

    def remove(self, session_id: str) -> None:
        with self._lock:
            if self._sessions.pop(session_id, None) is None:
                raise SessionNotFoundError(session_id)
        logger.info(f"Removed session {session_id}")

    def list_ids(self) -> List[str]:
        with self._lock:
            return list(self._sessions)

    def clear(self) -> None:
        with self._lock:
            self._sessions.clear()


@lru_cache
def get_session_registry() -> SessionRegistry:
    """Get the process-wide session registry."""
    return SessionRegistry()
