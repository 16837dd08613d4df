"""
Persisted client-side stores: the active session, the bookshelf library and
the paper-story project.

All three sit on one PersistedStore that serializes a JSON blob under a fixed
key, with a redaction policy applied before every write. A missing or failing
storage backend turns every accessor into a no-op.
"""

import json
import time
import logging
from pathlib import Path
from typing import Callable, Dict, List, Optional, Protocol

from .config import LIBRARY_CAP, LIBRARY_STORAGE_KEY, PROJECT_STORAGE_KEY, SESSION_STORAGE_KEY
from .schemas import LibraryEntry, LibraryKind, MemeState, ProjectState, SessionState, StoryPage

logger = logging.getLogger(__name__)


class KeyValueStorage(Protocol):
    def get_item(self, name: str) -> Optional[str]:
        ...

    def set_item(self, name: str, value: str) -> None:
        ...

    def remove_item(self, name: str) -> None:
        ...


class MemoryStorage:
    """Process-local storage, mainly for tests and ephemeral sessions."""

    def __init__(self):
        self.items: Dict[str, str] = {}

    def get_item(self, name):
        return self.items.get(name)

    def set_item(self, name, value):
        self.items[name] = value

    def remove_item(self, name):
        self.items.pop(name, None)


class JsonFileStorage:
    """One JSON file per key inside a directory."""

    def __init__(self, directory):
        self.directory = Path(directory)

    def _path(self, name):
        return self.directory / f"{name}.json"

    def get_item(self, name):
        path = self._path(name)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def set_item(self, name, value):
        self.directory.mkdir(parents=True, exist_ok=True)
        tmp = self._path(name).with_suffix(".tmp")
        tmp.write_text(value, encoding="utf-8")
        tmp.replace(self._path(name))

    def remove_item(self, name):
        self._path(name).unlink(missing_ok=True)


def default_storage(data_dir: str) -> Optional[JsonFileStorage]:
    """File storage under `data_dir`, or None (persistence disabled) when empty."""
    return JsonFileStorage(data_dir) if data_dir else None


# ─── Redaction policies ───

def full_fidelity(state: dict) -> dict:
    return state


def strip_images(state: dict) -> dict:
    """Drop page image fields from every library entry before writing."""
    return {
        **state,
        "bookshelf": [
            {
                **book,
                "storybook": [
                    {k: v for k, v in page.items() if k not in ("imageUrl", "imageLoading")}
                    for page in book.get("storybook", [])
                ],
            }
            for book in state.get("bookshelf", [])
        ],
    }


class PersistedStore:
    """A JSON blob under a fixed storage key."""

    def __init__(self, name: str, storage: Optional[KeyValueStorage],
                 redact: Callable[[dict], dict] = full_fidelity):
        self.name = name
        self.storage = storage
        self.redact = redact

    def load(self) -> Optional[dict]:
        if self.storage is None:
            return None
        try:
            raw = self.storage.get_item(self.name)
            return json.loads(raw) if raw else None
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to read {self.name} from storage: {e}")
            return None

    def save(self, state: dict):
        if self.storage is None:
            return
        try:
            self.storage.set_item(self.name, json.dumps(self.redact(state)))
        except (OSError, TypeError, ValueError) as e:
            logger.warning(f"Failed to write {self.name} to storage: {e}")

    def clear(self):
        if self.storage is None:
            return
        try:
            self.storage.remove_item(self.name)
        except OSError as e:
            logger.warning(f"Failed to remove {self.name} from storage: {e}")


# ─── Session ───

class SessionStore:
    """The single active session, persisted with full fidelity."""

    def __init__(self, storage: Optional[KeyValueStorage] = None):
        self._store = PersistedStore(SESSION_STORAGE_KEY, storage)
        self.state = self._restore()

    def _restore(self) -> SessionState:
        data = self._store.load()
        if data:
            try:
                return SessionState.model_validate(data)
            except ValueError as e:
                logger.warning(f"Discarding unreadable session: {e}")
        return SessionState()

    def persist(self):
        self._store.save(self.state.to_json_dict())

    def update(self, **fields):
        self.state = self.state.model_copy(update=fields)
        self.persist()

    def set_storybook(self, pages: List[StoryPage]):
        self.update(current_storybook=list(pages), generation=self.state.generation + 1)

    def set_pages(self, pages: List[StoryPage]):
        """Replace page objects without starting a new generation."""
        self.update(current_storybook=list(pages))

    def get_page(self, page_id: int) -> Optional[StoryPage]:
        return next((p for p in self.state.current_storybook if p.id == page_id), None)

    def update_page_image(self, page_id: int, image_url: str) -> bool:
        """Resolve one page's image. Returns False when the page is gone."""
        if self.get_page(page_id) is None:
            return False
        self.update(current_storybook=[
            p.resolve_image(image_url) if p.id == page_id else p
            for p in self.state.current_storybook
        ])
        return True

    def set_meme(self, meme: MemeState):
        self.update(current_meme_data=meme)

    def clear(self):
        self.state = SessionState(generation=self.state.generation + 1)
        self.persist()


# ─── Library ───

class LibraryStore:
    """Saved works, newest last, capped at `cap` entries.

    The live list keeps image URLs; the persisted copy never does.
    """

    def __init__(self, storage: Optional[KeyValueStorage] = None, cap: int = LIBRARY_CAP,
                 clock: Callable[[], float] = time.time):
        self._store = PersistedStore(LIBRARY_STORAGE_KEY, storage, redact=strip_images)
        self.cap = cap
        self._clock = clock
        self.entries: List[LibraryEntry] = self._restore()

    def _restore(self) -> List[LibraryEntry]:
        data = self._store.load() or {}
        try:
            return [LibraryEntry.model_validate(b) for b in data.get("bookshelf", [])]
        except ValueError as e:
            logger.warning(f"Discarding unreadable bookshelf: {e}")
            self._store.clear()
            return []

    def persist(self):
        self._store.save({"bookshelf": [b.to_json_dict() for b in self.entries]})

    def _next_id(self) -> int:
        new_id = int(self._clock() * 1000)
        taken = {b.id for b in self.entries}
        while new_id in taken:
            new_id += 1
        return new_id

    def add(self, topic: str, summary: str, storybook: List[StoryPage],
            kind: LibraryKind = "storybook") -> LibraryEntry:
        entry = LibraryEntry(id=self._next_id(), topic=topic, summary=summary, storybook=list(storybook),
                             kind=kind)
        self.entries = (self.entries + [entry])[-self.cap:]
        self.persist()
        logger.info(f"Saved '{topic}' to bookshelf ({len(self.entries)}/{self.cap})")
        return entry

    def get(self, book_id: int) -> Optional[LibraryEntry]:
        return next((b for b in self.entries if b.id == book_id), None)

    def remove(self, book_id: int):
        self.entries = [b for b in self.entries if b.id != book_id]
        self.persist()

    def clear(self):
        self.entries = []
        self._store.clear()

    def replace_storybook(self, book_id: int, storybook: List[StoryPage]) -> bool:
        if self.get(book_id) is None:
            return False
        self.entries = [
            b.model_copy(update={"storybook": list(storybook)}) if b.id == book_id else b
            for b in self.entries
        ]
        self.persist()
        return True

    def update_page(self, book_id: int, page_id: int, **fields) -> bool:
        """Update one page of one entry. Returns False if either is gone."""
        book = self.get(book_id)
        if book is None or not any(p.id == page_id for p in book.storybook):
            return False
        return self.replace_storybook(book_id, [
            p.model_copy(update=fields) if p.id == page_id else p for p in book.storybook
        ])


# ─── Paper project ───

class ProjectStore:
    """State of the paper-story flow, persisted with full fidelity."""

    def __init__(self, storage: Optional[KeyValueStorage] = None):
        self._store = PersistedStore(PROJECT_STORAGE_KEY, storage)
        data = self._store.load()
        self.state = ProjectState()
        if data:
            try:
                self.state = ProjectState.model_validate(data)
            except ValueError as e:
                logger.warning(f"Discarding unreadable project: {e}")

    def update(self, **fields):
        self.state = self.state.model_copy(update=fields)
        self._store.save(self.state.to_json_dict())

    def reset(self):
        self.state = ProjectState()
        self._store.save(self.state.to_json_dict())
