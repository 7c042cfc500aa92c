"""
Small string, hashing and serialization helpers shared by ingestion and retrieval.
"""

import hashlib
import json
import logging
import re
from typing import Any, Dict, List

logger = logging.getLogger(__name__)

# Separator used when several descriptions / keywords / source ids are stored
# in a single graph property.
GRAPH_FIELD_SEP = "<SEP>"


def compute_mdhash_id(content: str, prefix: str = "") -> str:
    """Content-addressed id: prefix + md5 hex digest."""
    return prefix + hashlib.md5(content.encode("utf-8")).hexdigest()


def compute_args_hash(*args: Any) -> str:
    """Stable cache key for an arbitrary set of JSON-serializable arguments."""
    payload = json.dumps(args, sort_keys=True, ensure_ascii=False, default=str)
    return hashlib.md5(payload.encode("utf-8")).hexdigest()


def clean_str(value: Any) -> str:
    """Trim whitespace and strip surrounding quote characters."""
    if not isinstance(value, str):
        return value
    return value.strip().strip('"').strip("'").strip()


def normalize_entity_name(name: str) -> str:
    """
    Canonical entity key.

    The name is trimmed, quote-stripped, whitespace-collapsed, upper-cased and
    then wrapped in double quotes, so `Tim Cook`, `"tim cook"` and
    `  TIM   COOK ` all map to `"TIM COOK"`. Returns an empty string for names
    that are blank after cleaning.
    """
    cleaned = clean_str(name or "")
    cleaned = re.sub(r"\s+", " ", cleaned).upper()
    if not cleaned:
        return ""
    return f'"{cleaned}"'


def split_string_by_multi_markers(content: str, markers: List[str]) -> List[str]:
    """Split on any of the markers, trimming parts and dropping empties."""
    if not content:
        return []
    if not markers:
        return [content.strip()] if content.strip() else []
    pattern = "|".join(re.escape(marker) for marker in markers)
    return [part.strip() for part in re.split(pattern, content) if part.strip()]


def is_float_regex(value: str) -> bool:
    return bool(re.match(r"^-?\d*\.?\d+$", value or ""))


def list_of_list_to_csv(data: List[List[Any]]) -> str:
    """Render rows as comma-separated lines, quoting cells that contain a comma."""
    lines = []
    for row in data:
        cells = []
        for cell in row:
            text = str(cell)
            if isinstance(cell, str) and "," in cell:
                text = f'"{cell}"'
            cells.append(text)
        lines.append(",".join(cells))
    return "\n".join(lines)


def locate_json_string_body_from_string(content: str) -> str:
    """Return the outermost `{...}` span of the text, or `{}` when absent."""
    match = re.search(r"\{.*\}", content or "", re.DOTALL)
    return match.group(0) if match else "{}"


def process_combine_contexts(first: str, second: str) -> str:
    """Ordered union of distinct lines, lines of `first` before lines of `second`."""
    seen: Dict[str, None] = {}
    for block in (first, second):
        if not block:
            continue
        for line in block.split("\n"):
            if line not in seen:
                seen[line] = None
    return "\n".join(seen.keys())


def safe_float(value: Any, default: float = 0.0) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default
