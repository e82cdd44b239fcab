"""JSON import and export for snapshots, requests and results."""

import json
from pathlib import Path
from typing import Any

from .exceptions import InvalidInputError
from .models import SchedulingRequest
from .store import InMemoryRecordStore


def _read_json(input_path: Path | str) -> Any:
    try:
        with open(input_path, encoding="utf-8") as f:
            return json.load(f)
    except json.JSONDecodeError as exc:
        raise InvalidInputError(f"{input_path} is not valid JSON ({exc})", field="file") from exc


def load_snapshot(input_path: Path | str) -> InMemoryRecordStore:
    """Load a snapshot file into an in-memory record store.

    Args:
        input_path: JSON file with ``therapists``, ``rooms``, ``equipment``,
                    ``windows``, ``templates``, ``exceptions`` and
                    ``sessions`` lists (all optional)

    Returns:
        Populated InMemoryRecordStore
    """
    data = _read_json(input_path)
    try:
        return InMemoryRecordStore.from_dict(data)
    except (KeyError, ValueError, TypeError) as exc:
        raise InvalidInputError(f"malformed record in {input_path}: {exc}", field="snapshot") from exc


def save_snapshot(store: InMemoryRecordStore, output_path: Path | str) -> None:
    """Write every record of a store to a snapshot file."""
    output = Path(output_path)
    output.parent.mkdir(parents=True, exist_ok=True)

    with open(output, "w", encoding="utf-8") as f:
        json.dump(store.to_dict(), f, ensure_ascii=False, indent=2)


def load_request(input_path: Path | str) -> SchedulingRequest:
    """Load a scheduling request from JSON."""
    data = _read_json(input_path)
    try:
        return SchedulingRequest.from_dict(data)
    except (KeyError, ValueError, TypeError) as exc:
        raise InvalidInputError(f"malformed request in {input_path}: {exc}", field="request") from exc


def export_result_json(result: Any, output_path: Path | str) -> None:
    """Export any result object with ``to_dict`` (or a list of them) to JSON.

    Args:
        result: SchedulingResult, OptimizationResult, BulkOperationResult, ...
        output_path: Path to output JSON file
    """
    output = Path(output_path)
    output.parent.mkdir(parents=True, exist_ok=True)

    if isinstance(result, list):
        payload = [item.to_dict() for item in result]
    else:
        payload = result.to_dict()

    with open(output, "w", encoding="utf-8") as f:
        json.dump(payload, f, ensure_ascii=False, indent=2)
