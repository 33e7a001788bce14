"""
Session persistence for chat messages.

``SessionStore`` is the document-append contract the agent talks to at turn
boundaries; ``FileSessionStore`` implements it on the local filesystem.

Storage layout:
    <data_dir>/sessions/{user}/{session_id}/
        metadata.json     - id, user, kind, title, timestamps, message_count
        messages.json     - ordered message dicts (plain-text content only)
        images/
            {n}_{i}.png|jpg - display thumbnails of attached/generated images

Images are stored only as thumbnails and are never re-sent to the model.
Tool calls are stored as summaries (name, shortened args, result kind).
"""

import base64
import json
import re
import shutil
import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Optional

import config
from data_ops.image_tools import make_thumbnail

from .logging import get_logger

logger = get_logger()

# Characters unsafe for filenames on Windows
_UNSAFE_CHARS = re.compile(r'[/\\:*?"<>|\s]')


def _safe_filename(label: str) -> str:
    """Convert a user name or label to a safe directory name."""
    return _UNSAFE_CHARS.sub("_", label.strip()) or "default"


def _extension(mime_type: str) -> str:
    return "png" if mime_type == "image/png" else "jpg"


class SessionStore(ABC):
    """Document-append store for chat sessions."""

    @abstractmethod
    def list_sessions(self, user: str) -> list[dict]:
        """Metadata dicts for ``user``'s sessions, most recent first."""

    @abstractmethod
    def create_session(self, user: str, kind: str = "chat", title: str = "") -> str:
        """Create a session and return its id."""

    @abstractmethod
    def delete_session(self, session_id: str) -> bool:
        """Delete a session; False if it does not exist."""

    @abstractmethod
    def append_message(
        self,
        session_id: str,
        role: str,
        content: str,
        images: Optional[list] = None,
        charts: Optional[list] = None,
        tool_calls: Optional[list] = None,
        grounding: Optional[dict] = None,
        attachment: Optional[dict] = None,
    ) -> None:
        """Append one message to a session."""

    @abstractmethod
    def load_messages(self, session_id: str) -> list[dict]:
        """Ordered message dicts of a session."""


class FileSessionStore(SessionStore):
    """Session store backed by JSON files under the data directory."""

    def __init__(self, base_dir: Optional[Path] = None):
        if base_dir is None:
            base_dir = config.get_data_dir() / "sessions"
        self.base_dir = Path(base_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def _session_dir(self, session_id: str) -> Optional[Path]:
        for user_dir in self.base_dir.iterdir():
            candidate = user_dir / session_id
            if user_dir.is_dir() and candidate.is_dir():
                return candidate
        return None

    def _require_dir(self, session_id: str) -> Path:
        session_dir = self._session_dir(session_id)
        if session_dir is None:
            raise FileNotFoundError(f"Session not found: {session_id}")
        return session_dir

    def create_session(self, user: str, kind: str = "chat", title: str = "") -> str:
        """Create a new session directory with initial metadata.

        Returns:
            The session_id string.
        """
        session_id = datetime.now().strftime("%Y%m%d_%H%M%S") + "_" + uuid.uuid4().hex[:8]
        session_dir = self.base_dir / _safe_filename(user) / session_id
        session_dir.mkdir(parents=True, exist_ok=True)

        now = datetime.now().isoformat()
        metadata = {
            "id": session_id,
            "user": user,
            "kind": kind,
            "title": title or "New chat",
            "created_at": now,
            "updated_at": now,
            "message_count": 0,
        }
        self._write_json(session_dir / "metadata.json", metadata)
        self._write_json(session_dir / "messages.json", [])
        logger.debug(f"[Session] Created {session_id} for {user}")
        return session_id

    def list_sessions(self, user: str) -> list[dict]:
        """List a user's sessions, sorted by updated_at descending."""
        user_dir = self.base_dir / _safe_filename(user)
        if not user_dir.exists():
            return []
        sessions = []
        for d in user_dir.iterdir():
            if not d.is_dir():
                continue
            try:
                meta = self._read_json(d / "metadata.json")
            except (json.JSONDecodeError, OSError) as e:
                logger.warning(f"[Session] Skipping unreadable session {d.name}: {e}")
                continue
            if meta and "id" in meta:
                sessions.append(meta)
        sessions.sort(key=lambda m: m.get("updated_at", ""), reverse=True)
        return sessions

    def delete_session(self, session_id: str) -> bool:
        """Delete a session directory.

        Returns:
            True if deleted, False if not found.
        """
        session_dir = self._session_dir(session_id)
        if session_dir is None:
            return False
        shutil.rmtree(session_dir)
        return True

    def append_message(
        self,
        session_id: str,
        role: str,
        content: str,
        images: Optional[list] = None,
        charts: Optional[list] = None,
        tool_calls: Optional[list] = None,
        grounding: Optional[dict] = None,
        attachment: Optional[dict] = None,
    ) -> None:
        """Append a message; images are written as thumbnails next to it.

        Args:
            images: Objects with ``data`` and ``mime_type``.
            charts: ``{"chart_type", "payload"}`` dicts.
            tool_calls: Tool-call summary dicts.
        """
        session_dir = self._require_dir(session_id)
        messages = self._read_json(session_dir / "messages.json") or []
        index = len(messages)

        entry: dict = {
            "role": role,
            "content": content,
            "timestamp": datetime.now().isoformat(),
        }
        if images:
            entry["images"] = self._save_thumbnails(session_dir, index, images)
        if charts:
            entry["charts"] = charts
        if tool_calls:
            entry["tool_calls"] = tool_calls
        if grounding:
            entry["grounding"] = grounding
        if attachment:
            entry["attachment"] = attachment
        messages.append(entry)
        self._write_json(session_dir / "messages.json", messages)

        metadata = self._read_json(session_dir / "metadata.json") or {}
        metadata["updated_at"] = entry["timestamp"]
        metadata["message_count"] = len(messages)
        if role == "user" and metadata.get("title") in (None, "", "New chat"):
            metadata["title"] = content[:50]
        self._write_json(session_dir / "metadata.json", metadata)

    def load_messages(self, session_id: str) -> list[dict]:
        """Load a session's messages; thumbnail files come back as bytes.

        Raises:
            FileNotFoundError: If the session does not exist.
        """
        session_dir = self._require_dir(session_id)
        messages = self._read_json(session_dir / "messages.json") or []
        for entry in messages:
            loaded = []
            for img in entry.get("images", []):
                path = session_dir / "images" / img["file"]
                if path.exists():
                    loaded.append({"mime_type": img["mime_type"], "data": path.read_bytes()})
            if "images" in entry:
                entry["images"] = loaded
        return messages

    # ---- Internal helpers ----

    @staticmethod
    def _save_thumbnails(session_dir: Path, index: int, images: list) -> list[dict]:
        image_dir = session_dir / "images"
        image_dir.mkdir(exist_ok=True)
        saved = []
        for i, img in enumerate(images):
            try:
                data, mime_type = make_thumbnail(img.data, img.mime_type or "image/png")
            except OSError as e:
                logger.warning(f"[Session] Could not thumbnail image {i} of message {index}: {e}")
                continue
            filename = f"{index}_{i}.{_extension(mime_type)}"
            (image_dir / filename).write_bytes(data)
            saved.append({"file": filename, "mime_type": mime_type})
        return saved

    @staticmethod
    def _write_json(path: Path, data) -> None:
        with open(path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, default=_json_default)

    @staticmethod
    def _read_json(path: Path):
        if not path.exists():
            return None
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)


def _json_default(value):
    if isinstance(value, (bytes, bytearray)):
        return base64.b64encode(value).decode("ascii")
    return str(value)
