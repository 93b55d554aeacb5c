"""
Tests for puzzle sessions (src/puzzle_sessions.py)
"""

import sys
import time

import pytest

sys.path.insert(0, "src")

from puzzle_sessions import (
    LocalPuzzleSessionStore,
    PuzzleService,
    PuzzleSession,
    PuzzleSessionStore,
)


class DictSessionStore(PuzzleSessionStore):
    """Minimal injected store, standing in for a shared one."""

    def __init__(self):
        self.data = {}

    def get(self, session_id):
        return self.data.get(session_id)

    def put(self, session):
        self.data[session.session_id] = session

    def delete(self, session_id):
        return self.data.pop(session_id, None) is not None


# ============================================================
# Creation Tests
# ============================================================

class TestCreatePuzzle:
    """Tests for PuzzleService.create_puzzle."""

    def test_default_grid(self, puzzles):
        session = puzzles.create_puzzle(content_id="0xabc")

        assert session.difficulty == 3
        assert session.solution == list(range(9))
        assert sorted(session.pieces) == session.solution
        assert session.pieces != session.solution
        assert session.content_id == "0xabc"
        assert session.session_id.startswith("puzzle_")

    @pytest.mark.parametrize("difficulty", [2, 8])
    def test_difficulty_bounds(self, puzzles, difficulty):
        session = puzzles.create_puzzle(difficulty=difficulty)
        assert len(session.pieces) == difficulty * difficulty

    @pytest.mark.parametrize("difficulty", [1, 9])
    def test_difficulty_out_of_range(self, puzzles, difficulty):
        with pytest.raises(ValueError):
            puzzles.create_puzzle(difficulty=difficulty)

    def test_unique_session_ids(self, puzzles):
        ids = {puzzles.create_puzzle().session_id for _ in range(50)}
        assert len(ids) == 50

    def test_to_dict_hides_solution(self, puzzles):
        data = puzzles.create_puzzle().to_dict()

        assert "solution" not in data
        assert data["puzzle_id"].startswith("puzzle_")

    def test_injected_store(self):
        store = DictSessionStore()
        service = PuzzleService(store)
        session = service.create_puzzle()

        assert store.get(session.session_id) is session


# ============================================================
# Validation Tests
# ============================================================

class TestValidateSolution:
    """Tests for PuzzleService.validate_solution."""

    def test_exact_sequence(self, puzzles):
        session = puzzles.create_puzzle()
        assert puzzles.validate_solution(session.session_id, list(range(9))) is True

    def test_shuffled_order_is_invalid(self, puzzles):
        """Same pieces in the wrong positions do not solve the puzzle."""
        session = puzzles.create_puzzle()
        assert puzzles.validate_solution(session.session_id, session.pieces) is False

    def test_missing_piece(self, puzzles):
        session = puzzles.create_puzzle()
        assert puzzles.validate_solution(session.session_id, list(range(8))) is False

    def test_unknown_session(self, puzzles):
        assert puzzles.validate_solution("puzzle_missing", list(range(9))) is False

    def test_non_list(self, puzzles):
        session = puzzles.create_puzzle()
        assert puzzles.validate_solution(session.session_id, "012345678") is False


# ============================================================
# Local Store Tests
# ============================================================

class TestLocalPuzzleSessionStore:
    """Tests for the in-process session store."""

    def _session(self, session_id, created_at=None):
        return PuzzleSession(
            session_id=session_id,
            pieces=[1, 0],
            solution=[0, 1],
            difficulty=2,
            created_at=created_at or time.time(),
        )

    def test_put_get_delete(self):
        store = LocalPuzzleSessionStore()
        store.put(self._session("a"))

        assert store.get("a").session_id == "a"
        assert store.delete("a") is True
        assert store.get("a") is None
        assert store.delete("a") is False

    def test_ttl_expiry(self):
        store = LocalPuzzleSessionStore(ttl=0.01)
        store.put(self._session("a"))
        time.sleep(0.05)

        assert store.get("a") is None

    def test_evicts_oldest_when_full(self):
        store = LocalPuzzleSessionStore(max_size=2)
        store.put(self._session("old", created_at=1.0))
        store.put(self._session("mid", created_at=2.0))
        store.put(self._session("new", created_at=3.0))

        assert len(store) == 2
        assert store.get("old") is None
        assert store.get("new") is not None
