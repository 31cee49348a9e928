"""
Tag String Normalization

Turns the raw, comma-separated text a user typed into the ordered list of
tag names that should be linked to a record.

Pure (no I/O) and idempotent:
normalizing the joined output yields the same list again.

Rules, applied in order:
1. Split on commas
2. Trim surrounding whitespace and lowercase
3. Drop empty names and names longer than the length limit
4. Drop repeats (first occurrence wins, order is kept)
5. Keep the first N unique names

Dropped names are not errors. Over-long or blank entries are ordinary
input trimming and are never reported back to the user.
"""

from typing import Optional

from tagsync.config import TagSettings

DEFAULT_MAX_TAGS = 10
DEFAULT_MAX_LENGTH = 50


def normalize_tag_name(raw: str) -> str:
    """Canonical form of a single tag name."""
    return raw.strip().lower()


def parse_tag_string(
    raw_tag_string: Optional[str],
    max_tags: int = DEFAULT_MAX_TAGS,
    max_length: int = DEFAULT_MAX_LENGTH,
) -> list[str]:
    """
    Normalize a comma-separated tag string.

    >>> parse_tag_string("Work, work , WORK,travel")
    ['work', 'travel']
    """
    if not raw_tag_string:
        return []

    names: list[str] = []
    seen: set[str] = set()
    for piece in raw_tag_string.split(","):
        name = normalize_tag_name(piece)
        if not name or len(name) > max_length:
            continue
        if name in seen:
            continue
        seen.add(name)
        names.append(name)
        if len(names) == max_tags:
            break
    return names


class TagNormalizer:
    """parse_tag_string bound to configured limits."""

    def __init__(self, settings: Optional[TagSettings] = None):
        settings = settings or TagSettings()
        self.max_tags = settings.max_tags_per_record
        self.max_length = settings.max_tag_length

    def parse(self, raw_tag_string: Optional[str]) -> list[str]:
        return parse_tag_string(raw_tag_string, self.max_tags, self.max_length)

    def format(self, names: list[str]) -> str:
        """Join names back into the form an edit field shows."""
        return ", ".join(names)
