"""Versioned DOM selector table for the NotebookLM chat UI.

The product UI changes without notice, so selectors are data: a built-in
default table plus an optional JSON override file with the same shape::

    {
      "version": "2025-11",
      "query_input": ["textarea.query-box-input", ...],
      "thinking_indicator": ["div.thinking-message"],
      "answer_region": [".to-user-container .message-text-content"]
    }

Each key holds candidates tried in order; the first one present wins.
"""

import json
import logging
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger("notebooklm_browser.extract")

KNOWN_KEYS = {"version", "query_input", "thinking_indicator", "answer_region"}


@dataclass(frozen=True)
class SelectorTable:
    version: str
    query_input: tuple[str, ...]
    thinking_indicator: tuple[str, ...]
    answer_region: tuple[str, ...]

    @classmethod
    def from_dict(cls, data: dict, base: "SelectorTable | None" = None) -> "SelectorTable":
        """Build a table from a dict, falling back to ``base`` for missing keys."""
        base = base or DEFAULT_SELECTORS

        def _candidates(key: str) -> tuple[str, ...]:
            value = data.get(key)
            if value is None:
                return getattr(base, key)
            if isinstance(value, str):
                return (value,)
            if not value or not all(isinstance(v, str) for v in value):
                raise ValueError(f"Selector '{key}' must be a string or a non-empty list of strings")
            return tuple(value)

        unknown = sorted(set(data) - KNOWN_KEYS)
        if unknown:
            logger.warning("Ignoring unknown selector key(s): %s", ", ".join(unknown))
        return cls(
            version=str(data.get("version", base.version)),
            query_input=_candidates("query_input"),
            thinking_indicator=_candidates("thinking_indicator"),
            answer_region=_candidates("answer_region"),
        )

    def to_dict(self) -> dict:
        return {
            "version": self.version,
            "query_input": list(self.query_input),
            "thinking_indicator": list(self.thinking_indicator),
            "answer_region": list(self.answer_region),
        }


DEFAULT_SELECTORS = SelectorTable(
    version="2025-10",
    query_input=(
        "textarea.query-box-input",
        'textarea[aria-label="Query box"]',
        'textarea[placeholder*="Start typing"]',
    ),
    thinking_indicator=(
        "div.thinking-message",
        ".thinking-message",
    ),
    answer_region=(
        ".to-user-container .message-text-content",
        "[data-message-author='bot'] .message-content",
    ),
)


def load_selectors(path: Path | None) -> SelectorTable:
    """Return the selector table, applying the override file if one is given."""
    if path is None:
        return DEFAULT_SELECTORS
    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    table = SelectorTable.from_dict(data)
    logger.info("Loaded selector table version %s from %s", table.version, path)
    return table
