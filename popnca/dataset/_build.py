"""Normalization of NONMEM-style rows into per-subject records.

Input follows the NONMEM event-record layout: one row per event with
``EVID=1`` for doses and ``EVID=0`` for concentration observations.
``RATE=-1`` marks a bolus, ``RATE=-2`` an oral dose and ``RATE>0`` a
zero-order infusion lasting ``AMT/RATE``.

The below-quantification-limit policy is applied here, once, so every
downstream stage sees the same concentrations.  A subject whose rows are
malformed is excluded with a :class:`SubjectFailure`; the rest of the
dataset is still returned.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable, Mapping
from dataclasses import replace
from typing import Any

import pandas as pd

from popnca._config import NCAConfig
from popnca._errors import DataError
from popnca.dataset._common import (
    ConcentrationObservation,
    Covariates,
    DatasetResult,
    DoseEvent,
    SubjectFailure,
    SubjectRecord,
)

logger = logging.getLogger(__name__)


REQUIRED_COLUMNS = ("ID", "TIME", "DV", "AMT", "EVID", "CMT", "RATE")
OPTIONAL_COLUMNS = ("BLQ", "LLOQ", "AGE", "WT", "HT", "SEX", "RACE")
OCCASION_COLUMNS = ("OCC", "PERIOD")

# NONMEM bookkeeping columns that never describe the subject
_RESERVED_COLUMNS = frozenset(
    REQUIRED_COLUMNS + OPTIONAL_COLUMNS + ("OCC", "MDV", "SS", "II", "ADDL")
)

_TRUE_FLAGS = ("1", "true", "yes", "y", "t")
_FALSE_FLAGS = ("0", "false", "no", "n", "f", "")


# ---------------------------------------------------------------------------
# Cell parsing
# ---------------------------------------------------------------------------

def _is_missing(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() in ("", ".", "NA", "NaN", "nan")
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


def _to_float(value: Any, column: str, subject_id: str) -> float:
    """Parse a required numeric cell."""
    if _is_missing(value):
        raise DataError(f"Missing {column} value", subject_id)
    try:
        result = float(value)
    except (TypeError, ValueError):
        raise DataError(f"Invalid {column} value {value!r}", subject_id) from None
    if not math.isfinite(result):
        raise DataError(f"Non-finite {column} value {value!r}", subject_id)
    return result


def _to_optional_float(value: Any) -> float | None:
    if _is_missing(value):
        return None
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    return result if math.isfinite(result) else None


def _to_flag(value: Any, subject_id: str) -> bool:
    if _is_missing(value):
        return False
    text = str(value).strip().lower()
    if text in _TRUE_FLAGS:
        return True
    if text in _FALSE_FLAGS:
        return False
    number = _to_optional_float(value)
    if number is None:
        raise DataError(f"Invalid BLQ flag {value!r}", subject_id)
    return number != 0


def _to_label(value: Any) -> str | None:
    """Render a categorical cell; integer-valued floats lose their '.0'."""
    if _is_missing(value):
        return None
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


# ---------------------------------------------------------------------------
# Row conversion
# ---------------------------------------------------------------------------

def _dose_route(rate: float | None) -> str:
    if rate is not None and rate > 0:
        return "iv-infusion"
    if rate == -2:
        return "oral"
    # RATE=-1, RATE=0 and missing RATE are all treated as a bolus
    return "iv-bolus"


def _parse_dose(row: Mapping[str, Any], subject_id: str) -> DoseEvent:
    time = _to_float(row["TIME"], "TIME", subject_id)
    amount = _to_float(row["AMT"], "AMT", subject_id)
    if time < 0:
        raise DataError(f"Negative dose time {time}", subject_id)
    if amount < 0:
        raise DataError(f"Negative dose amount {amount}", subject_id)

    rate = _to_optional_float(row["RATE"])
    route = _dose_route(rate)
    duration = amount / rate if route == "iv-infusion" else None
    cmt = _to_optional_float(row["CMT"])
    return DoseEvent(
        time=time,
        amount=amount,
        route=route,
        rate=rate,
        duration=duration,
        cmt=int(cmt) if cmt is not None else None,
    )


def _parse_observation(
    row: Mapping[str, Any],
    subject_id: str,
    lloq_handling: str,
) -> ConcentrationObservation | None:
    """Convert an observation row; ``None`` means the row is dropped."""
    time = _to_float(row["TIME"], "TIME", subject_id)
    if time < 0:
        raise DataError(f"Negative observation time {time}", subject_id)

    lloq = _to_optional_float(row.get("LLOQ"))
    blq = _to_flag(row.get("BLQ"), subject_id)

    if _is_missing(row["DV"]):
        # A censored sample is often recorded without a DV
        if not blq:
            raise DataError(f"Missing DV value at TIME={time}", subject_id)
        value = 0.0
    else:
        value = _to_float(row["DV"], "DV", subject_id)
        if value < 0:
            raise DataError(f"Negative concentration {value} at TIME={time}", subject_id)

    if lloq is not None and value < lloq:
        blq = True

    if not blq:
        concentration = value
    elif lloq_handling == "drop":
        return None
    elif lloq_handling == "zero":
        concentration = 0.0
    else:  # half-lloq
        concentration = lloq / 2.0 if lloq is not None else 0.0

    return ConcentrationObservation(
        time=time, value=value, concentration=concentration, blq=blq, lloq=lloq,
    )


def _parse_covariates(rows: pd.DataFrame) -> Covariates:
    """First non-missing value of each covariate column."""

    def first(column: str) -> Any:
        if column not in rows.columns:
            return None
        for value in rows[column]:
            if not _is_missing(value):
                return value
        return None

    extra = {}
    for column in rows.columns:
        if column in _RESERVED_COLUMNS:
            continue
        label = _to_label(first(column))
        if label is not None:
            extra[column] = label

    return Covariates(
        age=_to_optional_float(first("AGE")),
        weight=_to_optional_float(first("WT")),
        height=_to_optional_float(first("HT")),
        sex=_to_label(first("SEX")),
        race=_to_label(first("RACE")),
        extra=extra,
    )


def _build_record(
    subject_id: str,
    occasion: str | None,
    rows: pd.DataFrame,
    config: NCAConfig,
) -> SubjectRecord:
    doses: list[DoseEvent] = []
    observations: list[ConcentrationObservation] = []

    for row in rows.to_dict("records"):
        if _is_missing(row["EVID"]):
            raise DataError("Missing EVID value", subject_id)
        try:
            evid = int(float(row["EVID"]))
        except (TypeError, ValueError):
            raise DataError(f"Invalid EVID value {row['EVID']!r}", subject_id) from None

        if evid == 1:
            doses.append(_parse_dose(row, subject_id))
        elif evid == 0:
            obs = _parse_observation(row, subject_id, config.lloq_handling)
            if obs is not None:
                observations.append(obs)
        # Other EVIDs (resets, other events) carry no concentration data

    if not observations:
        raise DataError("No concentration observations after BLQ handling", subject_id)

    for prev, cur in zip(observations, observations[1:]):
        if cur.time == prev.time:
            raise DataError(f"Duplicate observation time {cur.time}", subject_id)
        if cur.time < prev.time:
            raise DataError(
                f"Observation times are not strictly increasing "
                f"({prev.time} followed by {cur.time})",
                subject_id,
            )

    return SubjectRecord(
        subject_id=subject_id,
        occasion=occasion,
        doses=tuple(doses),
        observations=tuple(observations),
        route=doses[0].route if doses else None,
        covariates=_parse_covariates(rows),
    )


def _link_references(records: list[SubjectRecord]) -> list[SubjectRecord]:
    """Attach each subject's intravascular occasion to its extravascular ones."""
    by_subject: dict[str, list[SubjectRecord]] = {}
    for record in records:
        by_subject.setdefault(record.subject_id, []).append(record)

    linked = []
    for record in records:
        reference = None
        if record.route == "oral":
            for other in by_subject[record.subject_id]:
                if other is not record and other.is_intravascular:
                    reference = other
                    break
        linked.append(replace(record, reference=reference) if reference else record)
    return linked


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def _as_frame(data: pd.DataFrame | Iterable[Mapping[str, Any]]) -> pd.DataFrame:
    frame = data.copy() if isinstance(data, pd.DataFrame) else pd.DataFrame(list(data))
    frame.columns = [str(c).strip().upper() for c in frame.columns]
    return frame


def build_subjects(
    data: pd.DataFrame | Iterable[Mapping[str, Any]],
    config: NCAConfig | None = None,
) -> DatasetResult:
    """Group NONMEM-style rows into ordered per-subject records.

    Parameters
    ----------
    data : DataFrame or iterable of mappings
        Rows with at least ``ID, TIME, DV, AMT, EVID, CMT, RATE``.
        Optional: ``BLQ, LLOQ, AGE, WT, HT, SEX, RACE``, an occasion
        column (``OCC`` or ``PERIOD``), and any categorical columns to
        stratify by.  Column names are case-insensitive.
    config : NCAConfig or None
        Supplies the BLQ policy (``lloq_handling``).

    Returns
    -------
    DatasetResult
        Records in canonical ``(subject_id, occasion)`` order, and the
        subjects excluded because of a :class:`DataError`.

    Raises
    ------
    DataError
        If a required column is missing from the whole table.
    """
    if config is None:
        config = NCAConfig()

    frame = _as_frame(data)
    missing = [c for c in REQUIRED_COLUMNS if c not in frame.columns]
    if missing:
        raise DataError(f"Missing required column(s): {', '.join(missing)}")

    occasion_column = next((c for c in OCCASION_COLUMNS if c in frame.columns), None)
    frame["_SUBJECT"] = [_to_label(v) for v in frame["ID"]]
    if frame["_SUBJECT"].isna().any():
        raise DataError("ID column contains missing values")
    group_columns = ["_SUBJECT"]
    if occasion_column is not None:
        frame["_OCCASION"] = [_to_label(v) or "" for v in frame[occasion_column]]
        group_columns.append("_OCCASION")

    records: list[SubjectRecord] = []
    failures: list[SubjectFailure] = []

    for key, rows in frame.groupby(group_columns, sort=False):
        key = key if isinstance(key, tuple) else (key,)
        subject_id = key[0]
        occasion = (key[1] or None) if len(key) > 1 else None
        rows = rows.drop(columns=[c for c in ("_SUBJECT", "_OCCASION") if c in rows])
        try:
            records.append(_build_record(subject_id, occasion, rows, config))
        except DataError as exc:
            logger.warning("Excluding subject %s: %s", subject_id, exc)
            failures.append(
                SubjectFailure(
                    subject_id=subject_id,
                    occasion=occasion,
                    reason=str(exc),
                    stage="dataset",
                )
            )

    records = _link_references(records)
    records.sort(key=lambda r: r.key)
    failures.sort(key=lambda f: f.key)
    logger.info(
        "Built %d subject record(s); %d excluded", len(records), len(failures)
    )
    return DatasetResult(subjects=tuple(records), failures=tuple(failures))
