"""
Payload field extraction and type coercion.
"""
import json
import math
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

from webhook_pipeline.core.exceptions import FormulaError
from webhook_pipeline.core.logging import get_logger
from webhook_pipeline.models.database.datasets import DatasetField, FieldType
from webhook_pipeline.services.formulas import parse_row_formula, evaluate_row

logger = get_logger(__name__)

_SEGMENT = re.compile(r"^([^\[\]]*)((?:\[\d+\])*)$")
_INDEX = re.compile(r"\[(\d+)\]")

_MISSING = object()


@dataclass
class ExtractionResult:
    data: Dict[str, Any] = field(default_factory=dict)
    failures: List[str] = field(default_factory=list)

    @property
    def extracted_count(self) -> int:
        """Fields that ended up with a value."""
        return sum(1 for value in self.data.values() if value is not None)

    @property
    def is_partial(self) -> bool:
        return bool(self.failures)


def _split_path(path: str) -> Optional[List[Tuple[str, List[int]]]]:
    path = path.strip()
    if path.startswith("$"):
        path = path[1:]
    path = path.lstrip(".")
    if not path:
        return []

    segments = []
    for part in path.split("."):
        match = _SEGMENT.match(part)
        if match is None:
            return None
        name, indexes = match.groups()
        segments.append((name, [int(i) for i in _INDEX.findall(indexes)]))
    return segments


def _resolve(payload: Any, path: str) -> Any:
    segments = _split_path(path)
    if segments is None:
        return _MISSING

    current = payload
    for name, indexes in segments:
        if name:
            if not isinstance(current, dict) or name not in current:
                return _MISSING
            current = current[name]
        for index in indexes:
            if not isinstance(current, list) or index >= len(current):
                return _MISSING
            current = current[index]
    return current


def resolve_path(payload: Any, path: str) -> Any:
    """
    Resolve a dot/bracket path (e.g. "$.order.items[0].sku") in a payload.

    Missing keys, non-container intermediates and out-of-range indexes
    resolve to None.
    """
    value = _resolve(payload, path)
    return None if value is _MISSING else value


def coerce(value: Any, field_type: FieldType) -> Tuple[Any, Optional[str]]:
    """
    Coerce a raw payload value to a field type.

    Returns:
        (coerced value, error); on error the value is None
    """
    if value is None:
        return None, None

    field_type = FieldType(field_type)

    if field_type == FieldType.NUMBER:
        return _to_number(value)
    if field_type == FieldType.BOOLEAN:
        return _to_boolean(value)
    if field_type == FieldType.DATE:
        return _to_date(value)
    if field_type == FieldType.TEXT:
        return _to_text(value), None
    return value, None


def _to_number(value: Any) -> Tuple[Any, Optional[str]]:
    if isinstance(value, bool):
        return None, f"expected number, got boolean {value!r}"
    if isinstance(value, int):
        return _finite_int(value)
    if isinstance(value, float):
        if math.isfinite(value):
            return value, None
        return None, f"expected finite number, got {value!r}"
    if isinstance(value, str):
        text = value.strip()
        try:
            return _finite_int(int(text))
        except ValueError:
            pass
        try:
            number = float(text)
        except ValueError:
            return None, f"expected number, got {value!r}"
        if math.isfinite(number):
            return number, None
        return None, f"expected finite number, got {value!r}"
    return None, f"expected number, got {type(value).__name__}"


def _finite_int(value: int) -> Tuple[Any, Optional[str]]:
    try:
        float(value)
    except OverflowError:
        return None, "expected finite number, got an integer out of range"
    return value, None


def _to_boolean(value: Any) -> Tuple[Any, Optional[str]]:
    if isinstance(value, bool):
        return value, None
    if isinstance(value, (int, float)) and value in (0, 1):
        return bool(value), None
    if isinstance(value, str):
        text = value.strip().lower()
        if text in ("true", "1"):
            return True, None
        if text in ("false", "0"):
            return False, None
    return None, f"expected boolean, got {value!r}"


def _to_date(value: Any) -> Tuple[Any, Optional[str]]:
    if not isinstance(value, str):
        return None, f"expected ISO-8601 date string, got {type(value).__name__}"
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None, f"expected ISO-8601 date, got {value!r}"
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc).isoformat(), None


def _to_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value, sort_keys=True)
    return str(value)


def extract(payload: Any, fields: Sequence[DatasetField]) -> ExtractionResult:
    """
    Extract typed values from a payload per a dataset's field schema.

    Path fields are resolved first; computed fields are then evaluated over
    the extracted values. A failing field never affects the others.

    Args:
        payload: Parsed JSON payload
        fields: Dataset fields

    Returns:
        ExtractionResult with {slug: value} and per-field failures
    """
    result = ExtractionResult()
    ordered = sorted(fields, key=lambda f: (f.sort_order or 0, f.slug))

    for dataset_field in ordered:
        if not dataset_field.source_path:
            continue
        raw = resolve_path(payload, dataset_field.source_path)
        value, error = coerce(raw, dataset_field.field_type)
        result.data[dataset_field.slug] = value
        if error:
            result.failures.append(f"{dataset_field.slug}: {error}")

    for dataset_field in ordered:
        if dataset_field.source_path or not dataset_field.formula:
            continue
        try:
            computed = evaluate_row(parse_row_formula(dataset_field.formula), result.data)
        except FormulaError as e:
            result.data[dataset_field.slug] = None
            result.failures.append(f"{dataset_field.slug}: {e.message}")
            continue
        value, error = coerce(_whole(computed), dataset_field.field_type)
        result.data[dataset_field.slug] = value
        if error:
            result.failures.append(f"{dataset_field.slug}: {error}")

    if result.failures:
        logger.debug(f"Extraction finished with {len(result.failures)} field failures")
    return result


def _whole(value: Optional[float]) -> Any:
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value
