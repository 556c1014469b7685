"""Storage and persistence utilities for publish runs."""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from .config import ensure_directories, get_run_paths
from .libraries import LibraryMap, load_library_map
from .models import Outline, ProgressState, PublishedStructure

logger = logging.getLogger(__name__)


def append_log_entry(run_id: str, entry: dict[str, Any]) -> Path:
    """Append log entry to publish_log.jsonl."""
    paths = get_run_paths(run_id)
    ensure_directories(run_id)

    log_file = paths["log"]

    # Add timestamp
    record = {**entry, "timestamp": datetime.now(timezone.utc).isoformat()}

    with open(log_file, "a", encoding="utf-8") as f:
        f.write(json.dumps(record, ensure_ascii=False, default=str) + "\n")

    return log_file


def load_log_entries(run_id: str) -> list[dict[str, Any]]:
    """Load every audit entry for a run (empty if none)."""
    log_file = get_run_paths(run_id)["log"]
    if not log_file.exists():
        return []

    with open(log_file, encoding="utf-8") as f:
        return [json.loads(line) for line in f if line.strip()]


def save_progress(run_id: str, state: ProgressState) -> Path:
    """Save the latest progress snapshot."""
    paths = get_run_paths(run_id)
    ensure_directories(run_id)

    output_file = paths["progress"]
    with open(output_file, "w", encoding="utf-8") as f:
        f.write(state.model_dump_json(indent=2))

    return output_file


def load_progress(run_id: str) -> ProgressState | None:
    """Load the saved progress snapshot for a run."""
    input_file = get_run_paths(run_id)["progress"]
    if not input_file.exists():
        return None

    try:
        return ProgressState.model_validate_json(input_file.read_text(encoding="utf-8"))
    except ValueError as e:
        logger.error(f"Error loading progress for run {run_id}: {e}")
        return None


def save_published_structure(run_id: str, structure: PublishedStructure) -> Path:
    """Save the published structure of a completed run."""
    paths = get_run_paths(run_id)
    ensure_directories(run_id)

    output_file = paths["structure"]
    with open(output_file, "w", encoding="utf-8") as f:
        f.write(structure.model_dump_json(indent=2))

    return output_file


def load_outline(path: str | Path) -> Outline:
    """Load an outline JSON file (snake_case or the editor's camelCase export).

    Raises:
        FileNotFoundError: If the file does not exist
        pydantic.ValidationError: If the document is not a valid outline
    """
    with open(path, encoding="utf-8") as f:
        data = json.load(f)

    # Project exports wrap the outline.
    if isinstance(data, dict) and "outline" in data and "chapters" not in data:
        data = data["outline"]

    return Outline.model_validate(data)


def load_library_map_file(path: str | Path | None) -> LibraryMap:
    """Load knowledge library assignments from a JSON object of key -> id."""
    if path is None:
        return {}

    with open(path, encoding="utf-8") as f:
        data = json.load(f)

    if not isinstance(data, dict):
        raise ValueError(f"Library map must be a JSON object, got {type(data).__name__}")

    return load_library_map(data)
