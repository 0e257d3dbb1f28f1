"""
Content import: reads item files (YAML or JSON) into `Item` models.
"""

import logging
from pathlib import Path
from typing import Any

import yaml

from hifz.domain.exceptions import ImportFormatError
from hifz.domain.models import Item

logger = logging.getLogger(__name__)


def parse_items(raw: str) -> list[Item]:
    """
    Parse a content document.

    JSON is a subset of YAML, so both go through the safe loader.
    Accepts either `sections: [{id, name, items: [...]}]` or a flat `items: [...]`.
    """
    try:
        data = yaml.safe_load(raw) or {}
    except yaml.YAMLError as e:
        raise ImportFormatError(f"Could not parse content file: {e}") from e

    if not isinstance(data, dict):
        raise ImportFormatError("Content file must be a mapping with 'sections' or 'items'")

    items: list[Item] = []
    if "sections" in data:
        for section in data["sections"] or []:
            if not isinstance(section, dict) or "id" not in section:
                raise ImportFormatError(f"Section is missing an id: {section!r}")
            for entry in section.get("items") or []:
                items.append(_to_item(entry, section["id"], section.get("name")))
    elif "items" in data:
        for entry in data["items"] or []:
            items.append(_to_item(entry, None, None))
    else:
        raise ImportFormatError("Content file must contain 'sections' or 'items'")

    return sorted(items, key=lambda item: item.id)


def _to_item(entry: Any, section_id: int | None, section_name: str | None) -> Item:
    if not isinstance(entry, dict):
        raise ImportFormatError(f"Item must be a mapping: {entry!r}")
    missing = [key for key in ("id", "group", "text") if key not in entry]
    if missing:
        raise ImportFormatError(f"Item {entry!r} is missing {', '.join(missing)}")

    try:
        return Item(
            id=int(entry["id"]),
            group_id=int(entry["group"]),
            text=str(entry["text"]),
            is_end_of_group=bool(entry.get("end_of_group", False)),
            is_boundary=bool(entry.get("boundary", False)),
            section_id=int(entry.get("section", section_id))
            if entry.get("section", section_id) is not None
            else None,
            section_name=entry.get("section_name", section_name),
            page_id=int(entry["page"]) if entry.get("page") is not None else None,
        )
    except (TypeError, ValueError) as e:
        raise ImportFormatError(f"Item {entry!r} has an invalid field: {e}") from e


def load_items(path: Path) -> list[Item]:
    if not path.exists():
        raise ImportFormatError(f"File not found: {path}")
    try:
        raw = path.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise ImportFormatError(f"{path} is not valid UTF-8: {e}") from e
    except OSError as e:
        raise ImportFormatError(f"Could not read {path}: {e}") from e

    items = parse_items(raw)
    logger.info(f"Parsed {len(items)} items from {path}")
    return items
