"""
Record file format.

Records are Markdown files with YAML frontmatter:

    ---
    created_at: '2025-01-07T10:30:00Z'
    id: is-01hx5zzkbkactav9wevgemmvrz
    kind: bug
    ...
    ---
    Description body here.

    ## Notes

    Working notes here.

Every field except ``description`` and ``notes`` lives in the frontmatter,
with keys sorted for stable diffs.
"""

import logging
import re
from typing import Any

import frontmatter
import yaml
from pydantic import ValidationError

from tbd.core.records.models import Record
from tbd.utils.yaml_io import load_yaml_tolerant

logger = logging.getLogger(__name__)

_NOTES_HEADING = "## Notes"
_NOTES_RE = re.compile(r"\n## Notes\n", re.IGNORECASE)
_BODY_FIELDS = {"description", "notes"}


class RecordFormatError(ValueError):
    """Raised when record file content cannot be parsed."""


def split_body(body: str) -> tuple[str | None, str | None]:
    """Split a record body into (description, notes)."""
    # Leading newline so a body that is only a notes section still matches
    text = "\n" + body.strip()
    match = _NOTES_RE.search(text)
    if match is None:
        return text.strip() or None, None

    description = text[: match.start()].strip()
    notes = text[match.end() :].strip()
    return description or None, notes or None


def parse_record(text: str, source: str = "<record>") -> Record:
    """
    Parse record file content.

    Args:
        text: File content
        source: Label used in error and log messages

    Returns:
        Validated Record

    Raises:
        RecordFormatError: If the frontmatter is missing or invalid, or the
            fields fail validation
    """
    text = text.replace("\r\n", "\n")
    handler = frontmatter.YAMLHandler()
    if not handler.detect(text):
        raise RecordFormatError(f"{source}: missing frontmatter")

    try:
        fm_text, body = handler.split(text)
    except ValueError as e:
        raise RecordFormatError(f"{source}: unterminated frontmatter") from e

    try:
        metadata, duplicates = load_yaml_tolerant(fm_text)
    except yaml.YAMLError as e:
        raise RecordFormatError(f"{source}: invalid frontmatter: {e}") from e

    if duplicates:
        logger.warning(
            "Record %s repeats keys %s (last occurrence wins); rewrite the file",
            source,
            ", ".join(sorted(set(duplicates))),
        )
    if not isinstance(metadata, dict):
        raise RecordFormatError(f"{source}: frontmatter is not a mapping")

    description, notes = split_body(body)
    data: dict[str, Any] = {
        key: value for key, value in metadata.items() if key not in _BODY_FIELDS
    }
    data["description"] = description
    data["notes"] = notes

    try:
        return Record.model_validate(data)
    except ValidationError as e:
        raise RecordFormatError(f"{source}: {e}") from e


def serialize_record(record: Record) -> str:
    """
    Serialize a record to file content.

    Output is deterministic: the same record always yields the same text.
    """
    metadata = record.model_dump(mode="json", exclude=_BODY_FIELDS)

    parts: list[str] = []
    if record.description:
        parts.append(record.description.strip())
    if record.notes:
        if parts:
            parts.append("")
        parts.append(_NOTES_HEADING)
        parts.append("")
        parts.append(record.notes.strip())

    post = frontmatter.Post("\n".join(parts), **metadata)
    return frontmatter.dumps(post, sort_keys=True, width=10_000) + "\n"
