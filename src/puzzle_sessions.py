"""
FirstFrame - Puzzle sessions

A puzzle session is the ephemeral state behind one jigsaw: the shuffled
piece order shown to the player and the solution sequence. Sessions live
only as long as their TTL and are kept behind a store interface so a
multi-instance deployment can swap the in-process store for a shared one.

Image slicing is done by the client; the server only deals in piece ids.
"""

import logging
import random
import secrets
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

MIN_DIFFICULTY = 2
MAX_DIFFICULTY = 8
DEFAULT_DIFFICULTY = 3

DEFAULT_SESSION_TTL = 3600.0


@dataclass
class PuzzleSession:
    """One puzzle instance."""

    session_id: str
    pieces: list[int]  # Order presented to the player
    solution: list[int]  # Order that solves the puzzle
    difficulty: int
    content_id: str | None = None
    created_at: float = field(default_factory=time.time)

    def to_dict(self, include_solution: bool = False) -> dict[str, Any]:
        data = {
            "puzzle_id": self.session_id,
            "content_id": self.content_id,
            "difficulty": self.difficulty,
            "pieces": self.pieces,
            "created_at": self.created_at,
        }
        if include_solution:
            data["solution"] = self.solution
        return data


class PuzzleSessionStore(ABC):
    """Storage for puzzle sessions keyed by session id."""

    @abstractmethod
    def get(self, session_id: str) -> PuzzleSession | None:
        pass

    @abstractmethod
    def put(self, session: PuzzleSession) -> None:
        pass

    @abstractmethod
    def delete(self, session_id: str) -> bool:
        pass


class LocalPuzzleSessionStore(PuzzleSessionStore):
    """
    In-memory session store for single-instance deployments.

    Thread-safe; expired sessions are dropped on access and by a periodic
    sweep. When full, the oldest session is evicted.
    """

    def __init__(self, ttl: float = DEFAULT_SESSION_TTL, max_size: int = 10000,
                 cleanup_interval: float = 60.0):
        self.ttl = ttl
        self._sessions: dict[str, tuple[PuzzleSession, float]] = {}
        self._lock = threading.RLock()
        self._max_size = max_size
        self._cleanup_interval = cleanup_interval
        self._last_cleanup = time.time()

    def _maybe_cleanup(self) -> None:
        now = time.time()
        if now - self._last_cleanup < self._cleanup_interval:
            return
        self._last_cleanup = now
        expired = [sid for sid, (_, expires_at) in self._sessions.items() if now > expires_at]
        for sid in expired:
            del self._sessions[sid]
        if expired:
            logger.debug("Dropped %d expired puzzle sessions", len(expired))

    def get(self, session_id: str) -> PuzzleSession | None:
        with self._lock:
            self._maybe_cleanup()
            item = self._sessions.get(session_id)
            if item is None:
                return None
            session, expires_at = item
            if time.time() > expires_at:
                del self._sessions[session_id]
                return None
            return session

    def put(self, session: PuzzleSession) -> None:
        with self._lock:
            self._maybe_cleanup()
            if session.session_id not in self._sessions and len(self._sessions) >= self._max_size:
                oldest = min(self._sessions, key=lambda sid: self._sessions[sid][0].created_at)
                del self._sessions[oldest]
            self._sessions[session.session_id] = (session, time.time() + self.ttl)

    def delete(self, session_id: str) -> bool:
        with self._lock:
            return self._sessions.pop(session_id, None) is not None

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)


class PuzzleService:
    """Creates puzzles and checks submitted solutions."""

    def __init__(self, store: PuzzleSessionStore | None = None):
        self.store = store or LocalPuzzleSessionStore()
        self._rng = random.SystemRandom()

    def create_puzzle(self, content_id: str | None = None,
                      difficulty: int = DEFAULT_DIFFICULTY) -> PuzzleSession:
        """
        Create a ``difficulty x difficulty`` puzzle.

        Raises:
            ValueError: If difficulty is outside 2..8
        """
        difficulty = int(difficulty)
        if not MIN_DIFFICULTY <= difficulty <= MAX_DIFFICULTY:
            raise ValueError(
                f"difficulty must be between {MIN_DIFFICULTY} and {MAX_DIFFICULTY}"
            )

        solution = list(range(difficulty * difficulty))
        pieces = solution[:]
        while pieces == solution:
            self._rng.shuffle(pieces)

        session = PuzzleSession(
            session_id=f"puzzle_{secrets.token_hex(12)}",
            pieces=pieces,
            solution=solution,
            difficulty=difficulty,
            content_id=content_id,
        )
        self.store.put(session)
        logger.info("Created %dx%d puzzle %s", difficulty, difficulty, session.session_id)
        return session

    def get(self, session_id: str) -> PuzzleSession | None:
        return self.store.get(session_id)

    def validate_solution(self, session_id: str, submitted: list[Any]) -> bool:
        """
        Check a submitted piece order.

        Position matters: the submission must equal the solution sequence
        exactly. An unknown or expired session is an invalid solution.
        """
        session = self.store.get(session_id)
        if session is None:
            return False
        if not isinstance(submitted, list):
            return False
        return list(submitted) == session.solution
