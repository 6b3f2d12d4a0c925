"""
Timestamp generation and update normalization.

createdAt / updatedAt are naive UTC datetimes truncated to whole
milliseconds, the resolution BSON dates store. MonotonicClock guarantees
each instant it issues is at least one millisecond after the previous one,
so two writes in the same millisecond still get strictly increasing
updatedAt values.
"""

import copy
import threading
import time
from datetime import datetime, timedelta
from typing import Any, Dict, List, Mapping, Sequence, Union

from docrepo.core.exceptions import ValidationError
from docrepo.models.base import ID_FIELD

CREATED_AT = "createdAt"
UPDATED_AT = "updatedAt"
TIMESTAMP_FIELDS = (CREATED_AT, UPDATED_AT)

_EPOCH = datetime(1970, 1, 1)

Update = Union[Mapping[str, Any], Sequence[Mapping[str, Any]]]


def _wall_clock_ms() -> int:
    return time.time_ns() // 1_000_000


class MonotonicClock:
    """
    Issues strictly increasing instants.

    The last issued instant is process state shared by every repository
    using this clock. Reading and advancing it happens under one lock, so
    concurrent callers (tasks or threads) never observe the same value.
    """

    def __init__(self, source=_wall_clock_ms):
        self._source = source
        self._last_ms = 0
        self._lock = threading.Lock()

    def now(self) -> datetime:
        with self._lock:
            ms = max(self._source(), self._last_ms + 1)
            self._last_ms = ms
        return _EPOCH + timedelta(milliseconds=ms)


# Shared by all repositories that are not given their own clock
default_clock = MonotonicClock()


def stamp(doc: Mapping[str, Any], now: datetime) -> Dict[str, Any]:
    """Return a copy of doc with createdAt == updatedAt == now."""
    stamped = dict(doc)
    stamped[CREATED_AT] = now
    stamped[UPDATED_AT] = now
    return stamped


# Pipeline stages that add or overwrite fields by name
_FIELD_STAGES = ("$set", "$addFields")
# Pipeline stages that swap the whole document out
_REPLACE_STAGES = ("$replaceRoot", "$replaceWith")


def _strip_pipeline_stage(stage: Mapping[str, Any]) -> Dict[str, Any]:
    """Copy of one pipeline stage that cannot touch createdAt/updatedAt."""
    normalized: Dict[str, Any] = {}
    for operator, spec in stage.items():
        if operator in _REPLACE_STAGES:
            raise ValidationError(
                f"{operator} stages would discard {CREATED_AT}; use an operator update instead"
            )

        if operator in _FIELD_STAGES and isinstance(spec, Mapping):
            spec = {k: copy.deepcopy(v) for k, v in spec.items() if k not in TIMESTAMP_FIELDS}
        elif operator == "$unset":
            names = [spec] if isinstance(spec, str) else list(spec)
            spec = [name for name in names if name not in TIMESTAMP_FIELDS]
        elif operator == "$project" and isinstance(spec, Mapping):
            spec = {k: copy.deepcopy(v) for k, v in spec.items() if k not in TIMESTAMP_FIELDS}
            inclusive = any(
                v not in (0, False) for k, v in spec.items() if k != ID_FIELD
            )
            if inclusive:
                # An inclusion projection drops every field it does not name
                spec[CREATED_AT] = 1
        else:
            spec = copy.deepcopy(spec)

        if spec:
            normalized[operator] = spec
    return normalized


def _normalize_pipeline(
    stages: Sequence[Mapping[str, Any]],
    now: datetime,
    upsert: bool,
) -> List[Dict[str, Any]]:
    normalized = [s for s in (_strip_pipeline_stage(stage) for stage in stages) if s]

    final: Dict[str, Any] = {}
    if upsert:
        # Only a document the upsert just created lacks createdAt
        final[CREATED_AT] = {"$ifNull": ["$" + CREATED_AT, now]}
    final[UPDATED_AT] = now
    normalized.append({"$set": final})
    return normalized


def normalize_update(
    update: Update,
    now: datetime,
    upsert: bool = False,
) -> Union[Dict[str, Any], List[Dict[str, Any]]]:
    """
    Return a new update that also sets updatedAt to now.

    The caller's update is never mutated.

    - Operator document: updatedAt is forced into $set (created if
      missing). Caller-supplied createdAt/updatedAt keys are dropped from
      every operator, so neither field can be overridden or unset.
    - Aggregation pipeline (list of stages): createdAt/updatedAt are
      removed from $set, $addFields, $unset and $project stages, and a
      trailing $set stage stamps updatedAt. $replaceRoot/$replaceWith
      stages are rejected since they would drop createdAt.
    - upsert=True: $setOnInsert.createdAt = now (for pipelines, the
      trailing stage sets createdAt when the document has none), so a
      document created by the upsert also has createdAt == updatedAt.

    Args:
        update: Update document or pipeline
        now: Instant to stamp
        upsert: Whether the operation may insert

    Returns:
        The normalized update

    Raises:
        ValidationError: If a pipeline stage would replace the whole document
    """
    if isinstance(update, (list, tuple)):
        return _normalize_pipeline(update, now, upsert)

    normalized: Dict[str, Any] = {}
    for operator, fields in update.items():
        if isinstance(fields, Mapping):
            fields = {
                k: copy.deepcopy(v) for k, v in fields.items() if k not in TIMESTAMP_FIELDS
            }
            if not fields and operator != "$set":
                continue
        normalized[operator] = fields

    set_clause = dict(normalized.get("$set") or {})
    set_clause[UPDATED_AT] = now
    normalized["$set"] = set_clause

    if upsert:
        set_on_insert = dict(normalized.get("$setOnInsert") or {})
        set_on_insert[CREATED_AT] = now
        normalized["$setOnInsert"] = set_on_insert

    return normalized
