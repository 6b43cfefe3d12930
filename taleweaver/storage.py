"""JSON file storage.

All state is stored in flat JSON files under a configurable base directory.
There is no database or ORM; reads and writes go through plain helper
methods that load and dump JSON, validated through the pydantic models.

Directory layout:

    {base}/
      config.json             ← app settings (see taleweaver.config)
      story-types/
        {id}.json             ← StoryType templates
      characters/
        {id}.json             ← Character documents
      sessions/
        {id}.json             ← Session document
        {id}/
          messages.json       ← append-only Message log, ordered by seq
          events.json         ← append-only SessionEvent log

Each write is a single document update. Multi-document sequences are ordered
by the caller but never atomic.
"""

from __future__ import annotations

import json
import uuid
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from taleweaver.models import (
    Character,
    Choice,
    Message,
    Session,
    SessionEvent,
    StoryType,
    utcnow,
)


def new_id() -> str:
    return uuid.uuid4().hex


class Storage:
    def __init__(self, base_path: Path) -> None:
        self._base = base_path
        self._sessions_root = base_path / "sessions"
        self._characters_root = base_path / "characters"
        self._story_types_root = base_path / "story-types"
        for root in (self._sessions_root, self._characters_root, self._story_types_root):
            root.mkdir(parents=True, exist_ok=True)

    @property
    def base_path(self) -> Path:
        return self._base

    # ------------------------------------------------------------------
    # Internal path helpers
    # ------------------------------------------------------------------

    def _session_file(self, session_id: str) -> Path:
        return self._sessions_root / f"{session_id}.json"

    def _session_dir(self, session_id: str) -> Path:
        return self._sessions_root / session_id

    def _read_json(self, path: Path) -> Any:
        return json.loads(path.read_text())

    def _write_json(self, path: Path, data: Any) -> None:
        path.write_text(json.dumps(data, indent=2))

    # ------------------------------------------------------------------
    # Story types
    # ------------------------------------------------------------------

    def save_story_type(self, story_type: StoryType) -> StoryType:
        path = self._story_types_root / f"{story_type.id}.json"
        path.write_text(story_type.model_dump_json(indent=2))
        return story_type

    def get_story_type(self, story_type_id: str) -> StoryType | None:
        path = self._story_types_root / f"{story_type_id}.json"
        if not path.is_file():
            return None
        return StoryType.model_validate_json(path.read_text())

    def list_story_types(self) -> list[StoryType]:
        return [
            StoryType.model_validate_json(p.read_text())
            for p in sorted(self._story_types_root.glob("*.json"))
        ]

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def create_session(self, child_id: str, session_id: str | None = None) -> Session:
        session = Session(id=session_id or new_id(), child_id=child_id)
        if self._session_file(session.id).exists():
            raise FileExistsError(f"Session {session.id} already exists")
        self._session_file(session.id).write_text(session.model_dump_json(indent=2))
        self._session_dir(session.id).mkdir(exist_ok=True)
        return session

    def get_session(self, session_id: str) -> Session | None:
        path = self._session_file(session_id)
        if not path.is_file():
            return None
        return Session.model_validate_json(path.read_text())

    def update_session(self, session_id: str, **fields: Any) -> Session:
        """Merge named fields into a session. A None value clears the field."""
        path = self._session_file(session_id)
        if not path.is_file():
            raise KeyError(f"Session {session_id} not found")
        data = self._read_json(path)
        for key, value in fields.items():
            data[key] = value.model_dump(mode="json") if hasattr(value, "model_dump") else value
        data["updated_at"] = utcnow().isoformat()
        session = Session.model_validate(data)
        path.write_text(session.model_dump_json(indent=2))
        return session

    def add_supporting_character(self, session_id: str, character_id: str) -> Session:
        """Set-union a character id into supporting_character_ids."""
        session = self.get_session(session_id)
        if session is None:
            raise KeyError(f"Session {session_id} not found")
        if character_id in session.supporting_character_ids:
            return session
        return self.update_session(
            session_id,
            supporting_character_ids=[*session.supporting_character_ids, character_id],
        )

    # ------------------------------------------------------------------
    # Messages (append-only)
    # ------------------------------------------------------------------

    def _messages_path(self, session_id: str) -> Path:
        return self._session_dir(session_id) / "messages.json"

    def get_messages(self, session_id: str) -> list[Message]:
        path = self._messages_path(session_id)
        if not path.exists():
            return []
        return [Message.model_validate(m) for m in self._read_json(path)]

    def _write_messages(self, session_id: str, messages: list[Message]) -> None:
        self._session_dir(session_id).mkdir(exist_ok=True)
        self._write_json(
            self._messages_path(session_id),
            [m.model_dump(mode="json", exclude_none=True) for m in messages],
        )

    def append_message(
        self,
        session_id: str,
        *,
        sender: str,
        text: str,
        kind: str = "plain",
        options: list[Choice] | None = None,
        selected_option_id: str | None = None,
        options_message_id: str | None = None,
    ) -> Message:
        existing = self.get_messages(session_id)
        msg = Message(
            id=new_id(),
            session_id=session_id,
            seq=max((m.seq for m in existing), default=0) + 1,
            sender=sender,
            kind=kind,
            text=text,
            options=options,
            selected_option_id=selected_option_id,
            options_message_id=options_message_id,
        )
        existing.append(msg)
        self._write_messages(session_id, existing)
        return msg

    def get_message(self, session_id: str, message_id: str) -> Message | None:
        for m in self.get_messages(session_id):
            if m.id == message_id:
                return m
        return None

    def latest_message(self, session_id: str, kinds: Iterable[str]) -> Message | None:
        """Most recent message whose kind is in `kinds`, or None."""
        wanted = set(kinds)
        for m in reversed(self.get_messages(session_id)):
            if m.kind in wanted:
                return m
        return None

    def replace_message_options(
        self, session_id: str, message_id: str, options: list[Choice]
    ) -> Message:
        """Overwrite the options of an options message in place."""
        messages = self.get_messages(session_id)
        for i, m in enumerate(messages):
            if m.id == message_id:
                messages[i] = m.model_copy(update={"options": list(options)})
                self._write_messages(session_id, messages)
                return messages[i]
        raise KeyError(f"Message {message_id} not found in session {session_id}")

    # ------------------------------------------------------------------
    # Characters
    # ------------------------------------------------------------------

    def _character_file(self, character_id: str) -> Path:
        return self._characters_root / f"{character_id}.json"

    def create_character(self, **fields: Any) -> Character:
        character = Character(id=new_id(), **fields)
        self._character_file(character.id).write_text(character.model_dump_json(indent=2))
        return character

    def get_character(self, character_id: str) -> Character | None:
        path = self._character_file(character_id)
        if not path.is_file():
            return None
        return Character.model_validate_json(path.read_text())

    def get_characters(self, character_ids: Iterable[str]) -> list[Character]:
        found = (self.get_character(cid) for cid in character_ids)
        return [c for c in found if c is not None]

    def update_character(self, character_id: str, **fields: Any) -> Character:
        path = self._character_file(character_id)
        if not path.is_file():
            raise KeyError(f"Character {character_id} not found")
        data = self._read_json(path)
        data.update(fields)
        data["updated_at"] = utcnow().isoformat()
        character = Character.model_validate(data)
        path.write_text(character.model_dump_json(indent=2))
        return character

    def append_character_trait(self, character_id: str, trait: str) -> Character:
        """Append a trait unless already present (array-union semantics)."""
        character = self.get_character(character_id)
        if character is None:
            raise KeyError(f"Character {character_id} not found")
        traits = list(character.traits)
        if trait not in traits:
            traits.append(trait)
        return self.update_character(
            character_id, traits=traits, traits_last_updated_at=utcnow().isoformat()
        )

    # ------------------------------------------------------------------
    # Session events (append-only)
    # ------------------------------------------------------------------

    def _events_path(self, session_id: str) -> Path:
        return self._session_dir(session_id) / "events.json"

    def get_events(self, session_id: str) -> list[SessionEvent]:
        path = self._events_path(session_id)
        if not path.exists():
            return []
        return [SessionEvent.model_validate(e) for e in self._read_json(path)]

    def append_event(self, session_id: str, event: SessionEvent) -> None:
        existing = self.get_events(session_id)
        existing.append(event)
        self._session_dir(session_id).mkdir(exist_ok=True)
        self._write_json(
            self._events_path(session_id),
            [e.model_dump(mode="json") for e in existing],
        )
