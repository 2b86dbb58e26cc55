"""Tag sets and the tag-item grammar.

Tags attached to every metric are kept as a mapping from tag name to the set
of values seen for that name. A tag declared without a value is stored with
the empty string as its only value, so the name is still rendered.

Usage:
    from buildmetrics.tags import TagSet, parse_tag_item

    tags = TagSet.from_items(["team:infra", "canary"])
    tags.add("job", "ParentFullName/JobName")
    tags.to_list()  # ["team:infra", "canary", "job:ParentFullName/JobName"]
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Iterator

logger = logging.getLogger(__name__)

_ITEM_SPLIT = re.compile(",")
_LINE_SPLIT = re.compile(r"\r?\n")
_PATTERN_SPLIT = re.compile(r"[\r\n,]+")


def _split(text: str | None, pattern: re.Pattern[str]) -> list[str]:
    if not text:
        return []
    items = []
    for item in pattern.split(text.strip()):
        item = item.strip()
        if item:
            items.append(item)
    return items


def split_items(text: str | None) -> list[str]:
    """Split a comma-separated list, trimming items and dropping empty ones."""
    return _split(text, _ITEM_SPLIT)


def split_lines(text: str | None) -> list[str]:
    """Split text into trimmed, non-empty lines."""
    return _split(text, _LINE_SPLIT)


def split_patterns(text: str | None) -> list[str]:
    """Split a pattern list that may use newlines, commas or both."""
    return _split(text, _PATTERN_SPLIT)


def parse_tag_item(
    item: str, separator: str = ":", lower: bool = True
) -> tuple[str, str] | None:
    """Parse a single ``name:value`` tag item.

    All spaces are removed before splitting once on ``separator``. The value
    is lower-cased unless ``lower`` is False. A bare name yields an empty
    value.

    Args:
        item: The raw tag item.
        separator: The name/value separator.
        lower: Whether to lower-case the value.

    Returns:
        A ``(name, value)`` tuple, or None if the item is empty.
    """
    cleaned = item.replace(" ", "")
    if not cleaned:
        logger.debug(f"Ignoring the tag {item!r}. It is empty.")
        return None

    parts = cleaned.split(separator, 1)
    name = parts[0]
    if not name:
        logger.debug(f"Ignoring the tag {item!r}. It has no name.")
        return None
    if len(parts) == 2:
        return name, parts[1].lower() if lower else parts[1]
    return name, ""


class TagSet:
    """Multi-valued tag mapping.

    Names are case-sensitive and kept in insertion order; each name maps to
    an insertion-ordered set of values. Merging only ever adds values.

    Once ``freeze`` is called the set rejects ``add`` and ``merge`` with
    TypeError. ``copy`` returns a mutable copy.
    """

    def __init__(self, tags: dict[str, Iterable[str]] | None = None):
        self._tags: dict[str, dict[str, None]] = {}
        self._frozen = False
        if tags:
            for name, values in tags.items():
                for value in values:
                    self.add(name, value)

    @classmethod
    def from_items(cls, items: Iterable[str], separator: str = ":") -> TagSet:
        """Build a TagSet from raw tag items, skipping malformed ones."""
        tags = cls()
        for item in items:
            parsed = parse_tag_item(item, separator)
            if parsed is not None:
                tags.add(*parsed)
        return tags

    def add(self, name: str, value: str = "") -> None:
        """Add a value for a tag name. The value is stored verbatim."""
        self._check_mutable()
        values = self._tags.setdefault(name, {})
        values[value if value is not None else ""] = None

    def merge(self, other: TagSet | None) -> TagSet:
        """Merge another TagSet into this one, returning self.

        Values from ``other`` are added; existing values are never removed.
        """
        self._check_mutable()
        if other is None or other is self:
            return self
        for name, values in other._tags.items():
            for value in values:
                self.add(name, value)
        return self

    def freeze(self) -> TagSet:
        """Make this set read-only, returning self."""
        self._frozen = True
        return self

    @property
    def frozen(self) -> bool:
        return self._frozen

    def _check_mutable(self) -> None:
        if self._frozen:
            raise TypeError("Cannot modify a frozen TagSet")

    def copy(self) -> TagSet:
        """Return an independent copy."""
        return TagSet().merge(self)

    def get(self, name: str) -> set[str]:
        """Return the values for a name (empty set if the name is absent)."""
        return set(self._tags.get(name, ()))

    def names(self) -> list[str]:
        return list(self._tags)

    def to_list(self) -> list[str]:
        """Render as the flat ``name:value`` list sent to the transport.

        Valueless tags render as the bare name.
        """
        rendered = []
        for name, values in self._tags.items():
            for value in values:
                rendered.append(f"{name}:{value}" if value else name)
        return rendered

    def to_dict(self) -> dict[str, set[str]]:
        return {name: set(values) for name, values in self._tags.items()}

    def __contains__(self, name: object) -> bool:
        return name in self._tags

    def __iter__(self) -> Iterator[str]:
        return iter(self._tags)

    def __len__(self) -> int:
        return len(self._tags)

    def __bool__(self) -> bool:
        return bool(self._tags)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, TagSet):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def __repr__(self) -> str:
        return f"TagSet({self.to_dict()!r})"
