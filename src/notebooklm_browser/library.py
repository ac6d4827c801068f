"""Local notebook library: named NotebookLM URLs plus the active selection.

Stored as ``library.json`` in the data directory::

    {"active_notebook_id": "research", "notebooks": [{"id": "research", ...}]}
"""

import logging
import re
import time
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Callable

from .errors import NotebookNotFound
from .storage import read_json, write_json_atomic

logger = logging.getLogger("notebooklm_browser.library")

NOTEBOOK_URL_PREFIX = "https://notebooklm.google.com/notebook/"


def is_notebook_url(ref: str) -> bool:
    return ref.startswith(NOTEBOOK_URL_PREFIX) and len(ref) > len(NOTEBOOK_URL_PREFIX)


def slugify(name: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")
    return slug[:40].rstrip("-") or "notebook"


@dataclass
class NotebookEntry:
    id: str
    name: str
    url: str
    description: str = ""
    topics: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    use_count: int = 0
    last_used: float | None = None
    added_at: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "NotebookEntry":
        return cls(
            id=data["id"],
            name=data.get("name", data["id"]),
            url=data["url"],
            description=data.get("description", ""),
            topics=list(data.get("topics", [])),
            tags=list(data.get("tags", [])),
            use_count=int(data.get("use_count", 0)),
            last_used=data.get("last_used"),
            added_at=float(data.get("added_at", 0.0)),
        )

    def matches(self, query: str) -> bool:
        query = query.lower()
        haystack = [self.id, self.name, self.description, *self.topics, *self.tags]
        return any(query in text.lower() for text in haystack)


class NotebookLibrary:
    """JSON-backed notebook registry with a persisted active notebook."""

    UPDATABLE_FIELDS = ("name", "url", "description", "topics", "tags")

    def __init__(self, path: Path, clock: Callable[[], float] = time.time):
        self.path = path
        self._clock = clock
        self._notebooks: dict[str, NotebookEntry] = {}
        self._active_id: str | None = None
        self._load()

    def _load(self) -> None:
        data = read_json(self.path) or {}
        self._notebooks = {}
        for item in data.get("notebooks", []):
            entry = NotebookEntry.from_dict(item)
            self._notebooks[entry.id] = entry
        active = data.get("active_notebook_id")
        self._active_id = active if active in self._notebooks else None

    def _save(self) -> None:
        write_json_atomic(
            self.path,
            {
                "active_notebook_id": self._active_id,
                "notebooks": [n.to_dict() for n in self._notebooks.values()],
            },
        )

    def add(
        self,
        url: str,
        name: str,
        description: str = "",
        topics: list[str] | None = None,
        tags: list[str] | None = None,
        notebook_id: str | None = None,
    ) -> NotebookEntry:
        if not is_notebook_url(url):
            raise ValueError(f"Not a NotebookLM notebook URL: {url}")
        base = notebook_id or slugify(name)
        new_id = base
        suffix = 2
        while new_id in self._notebooks:
            new_id = f"{base}-{suffix}"
            suffix += 1
        entry = NotebookEntry(
            id=new_id,
            name=name,
            url=url,
            description=description,
            topics=list(topics or []),
            tags=list(tags or []),
            added_at=self._clock(),
        )
        self._notebooks[new_id] = entry
        if self._active_id is None:
            self._active_id = new_id
        self._save()
        logger.info("Added notebook %s (%s)", new_id, url)
        return entry

    def get(self, notebook_id: str) -> NotebookEntry:
        try:
            return self._notebooks[notebook_id]
        except KeyError:
            raise NotebookNotFound(
                f"Notebook '{notebook_id}' is not in the library",
                hint="List notebooks with `notebook list` or add one with `notebook add`.",
            ) from None

    def list_notebooks(self) -> list[NotebookEntry]:
        return list(self._notebooks.values())

    def update(self, notebook_id: str, **fields: Any) -> NotebookEntry:
        entry = self.get(notebook_id)
        unknown = set(fields) - set(self.UPDATABLE_FIELDS)
        if unknown:
            raise ValueError(f"Cannot update field(s): {', '.join(sorted(unknown))}")
        if fields.get("url") is not None and not is_notebook_url(fields["url"]):
            raise ValueError(f"Not a NotebookLM notebook URL: {fields['url']}")
        for name, value in fields.items():
            if value is not None:
                setattr(entry, name, list(value) if name in ("topics", "tags") else value)
        self._save()
        return entry

    def remove(self, notebook_id: str) -> NotebookEntry:
        entry = self.get(notebook_id)
        del self._notebooks[notebook_id]
        if self._active_id == notebook_id:
            self._active_id = None
        self._save()
        logger.info("Removed notebook %s", notebook_id)
        return entry

    def search(self, query: str) -> list[NotebookEntry]:
        return [n for n in self._notebooks.values() if n.matches(query)]

    def select(self, notebook_id: str) -> NotebookEntry:
        entry = self.get(notebook_id)
        self._active_id = entry.id
        self._save()
        return entry

    def get_active(self) -> NotebookEntry | None:
        if self._active_id is None:
            return None
        return self._notebooks.get(self._active_id)

    def clear_active(self) -> None:
        self._active_id = None
        self._save()

    def record_use(self, notebook_id: str) -> None:
        entry = self._notebooks.get(notebook_id)
        if entry is None:
            return
        entry.use_count += 1
        entry.last_used = self._clock()
        self._save()

    def find_by_url(self, url: str) -> NotebookEntry | None:
        for entry in self._notebooks.values():
            if entry.url == url:
                return entry
        return None

    def resolve(self, ref: str) -> tuple[str | None, str]:
        """Map a library ID or a notebook URL to ``(notebook_id, url)``."""
        if is_notebook_url(ref):
            entry = self.find_by_url(ref)
            return (entry.id if entry else None), ref
        entry = self.get(ref)
        return entry.id, entry.url

    def stats(self) -> dict[str, Any]:
        notebooks = self.list_notebooks()
        most_used = max(notebooks, key=lambda n: n.use_count, default=None)
        topics = sorted({t for n in notebooks for t in n.topics})
        return {
            "total_notebooks": len(notebooks),
            "active_notebook_id": self._active_id,
            "total_uses": sum(n.use_count for n in notebooks),
            "most_used": most_used.id if most_used and most_used.use_count else None,
            "topics": topics,
        }
