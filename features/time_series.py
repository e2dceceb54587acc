"""
CCAS — Time-Series Extractor

Normalizes heterogeneous lab-result records into per-parameter chronological
value sequences:
  • Reconciles value-map field names (normalizedValues / extractedData / …)
  • Parses timestamps from datetimes, ISO strings, epochs, Firestore objects
  • Canonicalizes parameter names (lowercase, non-alphanumerics → "_")
  • Drops records with no parseable timestamp or no numeric fields

Later stages only ever see LabObservation / TimeSeries, never raw field names.
"""

import logging
import math
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import numpy as np
import pandas as pd

from config import EPOCH_MILLIS_CUTOFF, TIMESTAMP_FIELD_VARIANTS, VALUE_FIELD_VARIANTS

logger = logging.getLogger(__name__)

_LEADING_NUMBER = re.compile(r"^\s*([+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)")
_NON_ALNUM = re.compile(r"[^a-z0-9]")


def canonical_name(name: str) -> str:
    """Lowercase and replace every non [a-z0-9] character with '_'."""
    return _NON_ALNUM.sub("_", str(name).lower())


def parse_numeric(value: Any) -> Optional[float]:
    """
    Parse a raw field value the way lab sources write them.

    Accepts ints/floats and strings with a leading number ("105 mg/dL").
    Booleans, NaN and infinities are rejected.
    """
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        match = _LEADING_NUMBER.match(value)
        if not match:
            return None
        number = float(match.group(1))
    else:
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Convert any supported timestamp representation to a naive UTC datetime."""
    if value is None or isinstance(value, (bool, list, tuple, set, np.ndarray)):
        return None

    # Firestore / JS-style timestamp objects
    for attr in ("to_datetime", "toDate"):
        converter = getattr(value, attr, None)
        if callable(converter):
            return parse_timestamp(converter())

    try:
        if isinstance(value, dict):
            seconds = value.get("_seconds", value.get("seconds"))
            if seconds is None:
                return None
            return parse_timestamp(float(seconds))

        if isinstance(value, (int, float)):
            if math.isnan(value) or math.isinf(value):
                return None
            unit = "ms" if abs(value) > EPOCH_MILLIS_CUTOFF else "s"
            ts = pd.to_datetime(value, unit=unit, errors="coerce", utc=True)
        else:
            ts = pd.to_datetime(value, errors="coerce", utc=True)
    except (ValueError, TypeError, OverflowError, pd.errors.OutOfBoundsDatetime):
        return None

    if not isinstance(ts, pd.Timestamp) or pd.isna(ts):
        return None
    return ts.tz_convert(timezone.utc).tz_localize(None).to_pydatetime()


@dataclass(frozen=True)
class LabObservation:
    """One parameter measurement, canonical shape."""

    parameter: str
    value: float
    timestamp: datetime
    source_lab_type: str

    def to_dict(self) -> dict:
        return {
            "parameter": self.parameter,
            "value": self.value,
            "timestamp": self.timestamp.isoformat(),
            "sourceLabType": self.source_lab_type,
        }


@dataclass(frozen=True)
class TimeSeries:
    """Chronological (timestamp, value) points for one parameter."""

    parameter: str
    points: Tuple[Tuple[datetime, float], ...] = field(default_factory=tuple)

    def __post_init__(self):
        if not self.points:
            raise ValueError(f"TimeSeries '{self.parameter}' requires at least one point")

    def __len__(self) -> int:
        return len(self.points)

    @property
    def values(self) -> List[float]:
        return [value for _, value in self.points]

    @property
    def timestamps(self) -> List[datetime]:
        return [ts for ts, _ in self.points]

    @property
    def latest(self) -> float:
        return self.points[-1][1]

    @property
    def span_days(self) -> float:
        if len(self.points) < 2:
            return 0.0
        return (self.points[-1][0] - self.points[0][0]).total_seconds() / 86400.0

    def to_dict(self) -> dict:
        return {
            "parameter": self.parameter,
            "points": [{"date": ts.isoformat(), "value": value} for ts, value in self.points],
        }


@dataclass(frozen=True)
class LabRecord:
    """A single raw record after normalization: one timestamp, many numeric fields."""

    timestamp: datetime
    values: Dict[str, float]
    lab_type: str


class TimeSeriesExtractor:
    """
    Stateless normalization adapter between raw store records and the
    analysis pipeline.  All methods are pure functions of their input.
    """

    def __init__(self):
        logger.info("TimeSeriesExtractor initialized")

    # ── public API ────────────────────────────────────────────

    def extract(self, lab_results: Dict[str, List[dict]]) -> Dict[str, TimeSeries]:
        """
        Build one TimeSeries per parameter across every lab type.

        Parameters
        ----------
        lab_results : dict
            Mapping of lab-type name → unordered list of raw records.

        Returns
        -------
        dict : parameter → TimeSeries (ascending by timestamp).
        """
        grouped: Dict[str, List[Tuple[datetime, float]]] = {}
        for obs in self.extract_observations(lab_results):
            grouped.setdefault(obs.parameter, []).append((obs.timestamp, obs.value))

        series = {
            param: TimeSeries(param, tuple(sorted(points, key=lambda p: p[0])))
            for param, points in grouped.items()
        }
        logger.debug("Extracted %d parameter series", len(series))
        return series

    def extract_observations(self, lab_results: Dict[str, List[dict]]) -> List[LabObservation]:
        """Flatten all records into canonical observations."""
        observations = []
        for lab_type, results in (lab_results or {}).items():
            for record in self.extract_records(results, lab_type):
                for param, value in record.values.items():
                    observations.append(LabObservation(param, value, record.timestamp, lab_type))
        return observations

    def extract_records(self, results: List[dict], lab_type: str = "Unknown") -> List[LabRecord]:
        """
        Normalize one lab type's raw records, keeping fields grouped per record.
        Output is sorted ascending by timestamp (stable for duplicates).
        """
        records = []
        for raw in results or []:
            try:
                record = self.normalize_record(raw, lab_type)
            except (ValueError, TypeError) as e:
                logger.warning("Dropping malformed %s record: %s", lab_type, e)
                continue
            if record is not None:
                records.append(record)
        records.sort(key=lambda r: r.timestamp)
        return records

    def normalize_record(self, raw: Any, lab_type: str = "Unknown") -> Optional[LabRecord]:
        """Map one raw record onto the canonical shape, or None if unusable."""
        if not isinstance(raw, dict):
            logger.debug("Dropping non-mapping record in %s", lab_type)
            return None

        timestamp = None
        for key in TIMESTAMP_FIELD_VARIANTS:
            if raw.get(key) is not None:
                timestamp = parse_timestamp(raw[key])
                break
        if timestamp is None:
            logger.debug("Dropping %s record %s: no parseable timestamp", lab_type, raw.get("id"))
            return None

        values = {}
        for param, value in self._value_map(raw).items():
            number = parse_numeric(value)
            if number is not None:
                values[canonical_name(param)] = number
        if not values:
            logger.debug("Dropping %s record %s: no numeric fields", lab_type, raw.get("id"))
            return None

        return LabRecord(timestamp=timestamp, values=values, lab_type=lab_type)

    # ── helpers ───────────────────────────────────────────────

    @staticmethod
    def _value_map(raw: dict) -> dict:
        for key in VALUE_FIELD_VARIANTS:
            candidate = raw.get(key)
            if isinstance(candidate, dict) and candidate:
                return candidate
        return {}
