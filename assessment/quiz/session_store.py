"""
Snapshot persistence for in-progress quiz sessions.

Enables resume after a process restart: the engine saves a snapshot after
every state change and deletes it once the session is submitted or
abandoned. Snapshots are JSON files named ``{session_id}.json`` under the
configured session directory.
"""

from __future__ import annotations

import json
from datetime import timedelta
from pathlib import Path
from typing import Any, Optional

from loguru import logger

from assessment.core.clock import Clock, parse_timestamp, utcnow
from assessment.quiz.session import QuizSession
from config import get_settings

_CORRUPT = (json.JSONDecodeError, KeyError, TypeError, ValueError)


class SessionStore:
    """
    Manages session snapshots on disk.

    Snapshots older than ``expiry_hours`` (by last save) are stale and are
    neither listed nor resumed.
    """

    def __init__(
        self,
        session_dir: Optional[Path] = None,
        expiry_hours: Optional[int] = None,
        clock: Clock = utcnow,
    ):
        settings = get_settings()
        self.session_dir = Path(session_dir or settings.session_dir)
        self.expiry_hours = expiry_hours if expiry_hours is not None else settings.session_expiry_hours
        self.clock = clock
        self.session_dir.mkdir(parents=True, exist_ok=True)

    def _path(self, session_id: str) -> Path:
        return self.session_dir / f"{session_id}.json"

    def _read(self, filepath: Path) -> dict[str, Any]:
        with open(filepath, "r", encoding="utf-8") as f:
            return json.load(f)

    def _is_expired(self, envelope: dict[str, Any]) -> bool:
        saved_at = parse_timestamp(envelope["saved_at"])
        return self.clock() - saved_at > timedelta(hours=self.expiry_hours)

    def save(self, session: QuizSession) -> Path:
        """Write a snapshot of the session."""
        filepath = self._path(session.id)
        envelope = {"saved_at": self.clock().isoformat(), "session": session.to_dict()}

        with open(filepath, "w", encoding="utf-8") as f:
            json.dump(envelope, f, indent=2)

        return filepath

    def load_snapshot(self, session_id: str) -> Optional[dict[str, Any]]:
        """Raw snapshot dict for a session, or None when missing, stale or corrupt."""
        filepath = self._path(session_id)
        if not filepath.exists():
            return None

        try:
            envelope = self._read(filepath)
            if self._is_expired(envelope):
                return None
            return envelope["session"]
        except _CORRUPT as e:
            logger.warning("Unreadable session snapshot {}: {}", filepath.name, e)
            return None

    def load(self, session_id: str) -> Optional[QuizSession]:
        snapshot = self.load_snapshot(session_id)
        if snapshot is None:
            return None
        try:
            return QuizSession.from_dict(snapshot)
        except _CORRUPT as e:
            logger.warning("Invalid session snapshot {}: {}", session_id, e)
            return None

    def list_sessions(self, learner_id: Optional[str] = None) -> list[QuizSession]:
        """List non-expired sessions, most recently saved first."""
        found: list[tuple[str, QuizSession]] = []
        for filepath in self.session_dir.glob("*.json"):
            try:
                envelope = self._read(filepath)
                if self._is_expired(envelope):
                    continue
                session = QuizSession.from_dict(envelope["session"])
            except _CORRUPT:
                continue
            if learner_id is None or session.learner_id == learner_id:
                found.append((envelope["saved_at"], session))

        found.sort(key=lambda x: x[0], reverse=True)
        return [session for _, session in found]

    def get_latest(self, learner_id: Optional[str] = None) -> Optional[QuizSession]:
        """Most recent non-expired session, optionally for one learner."""
        sessions = self.list_sessions(learner_id)
        return sessions[0] if sessions else None

    def delete(self, session_id: str) -> bool:
        filepath = self._path(session_id)
        if filepath.exists():
            filepath.unlink()
            return True
        return False

    def cleanup_expired(self) -> int:
        """Remove expired and corrupted snapshot files."""
        removed = 0
        for filepath in self.session_dir.glob("*.json"):
            try:
                if not self._is_expired(self._read(filepath)):
                    continue
            except _CORRUPT:
                pass
            filepath.unlink()
            removed += 1

        if removed:
            logger.info("Removed {} stale session snapshot(s)", removed)
        return removed
