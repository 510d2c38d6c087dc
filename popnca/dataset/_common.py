"""Shared record types for the dataset model."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field

import numpy as np
from numpy.typing import NDArray


ROUTES = ("iv-bolus", "iv-infusion", "oral")
INTRAVASCULAR_ROUTES = ("iv-bolus", "iv-infusion")


@dataclass(frozen=True)
class DoseEvent:
    """A single administration.

    ``rate`` follows the NONMEM convention: ``-1`` bolus, ``-2`` oral,
    ``> 0`` zero-order infusion with ``duration = amount / rate``.
    """

    time: float
    amount: float
    route: str  # 'iv-bolus', 'iv-infusion', 'oral'
    rate: float | None = None
    duration: float | None = None  # infusions only
    cmt: int | None = None

    @property
    def end_time(self) -> float:
        """Time at which the administration is complete."""
        return self.time + (self.duration or 0.0)


@dataclass(frozen=True)
class ConcentrationObservation:
    """One concentration sample.

    ``value`` is the raw DV as recorded; ``concentration`` is the value
    after the below-quantification-limit policy has been applied and is
    what every downstream calculation uses.
    """

    time: float
    value: float
    concentration: float
    blq: bool = False
    lloq: float | None = None


@dataclass(frozen=True)
class Covariates:
    """Demographic covariates.  Every field is optional."""

    age: float | None = None
    weight: float | None = None
    height: float | None = None
    sex: str | None = None
    race: str | None = None
    extra: Mapping[str, str] = field(default_factory=dict)

    def numeric(self, name: str) -> float | None:
        """Look up a numeric covariate by name (``age``, ``weight``, ``height``)."""
        return {"age": self.age, "weight": self.weight, "height": self.height}.get(
            name.lower()
        )


@dataclass(frozen=True)
class SubjectRecord:
    """Ordered time series for one subject (and occasion).

    Records are built by :func:`popnca.dataset.build_subjects` and are
    read-only afterwards.  ``reference`` holds the same subject's
    intravascular occasion when one exists, which enables absolute
    bioavailability for extravascular records.
    """

    subject_id: str
    doses: tuple[DoseEvent, ...]
    observations: tuple[ConcentrationObservation, ...]
    route: str | None
    covariates: Covariates = field(default_factory=Covariates)
    occasion: str | None = None
    reference: SubjectRecord | None = None

    @property
    def key(self) -> tuple[str, str]:
        """Canonical sort key."""
        return (self.subject_id, self.occasion or "")

    @property
    def label(self) -> str:
        if self.occasion is None:
            return self.subject_id
        return f"{self.subject_id}/{self.occasion}"

    @property
    def time(self) -> NDArray[np.float64]:
        return np.array([o.time for o in self.observations], dtype=np.float64)

    @property
    def concentration(self) -> NDArray[np.float64]:
        return np.array([o.concentration for o in self.observations], dtype=np.float64)

    @property
    def total_dose(self) -> float:
        return float(sum(d.amount for d in self.doses))

    @property
    def is_intravascular(self) -> bool:
        return self.route in INTRAVASCULAR_ROUTES

    @property
    def infusion_duration(self) -> float | None:
        """Duration of the first infusion, if the subject was infused."""
        for dose in self.doses:
            if dose.route == "iv-infusion":
                return dose.duration
        return None


@dataclass(frozen=True)
class SubjectFailure:
    """A subject excluded from analysis, with the reason."""

    subject_id: str
    reason: str
    stage: str  # 'dataset' or 'pipeline'
    occasion: str | None = None

    @property
    def key(self) -> tuple[str, str]:
        return (self.subject_id, self.occasion or "")


@dataclass(frozen=True)
class DatasetResult:
    """Normalized records plus the subjects that failed normalization."""

    subjects: tuple[SubjectRecord, ...]
    failures: tuple[SubjectFailure, ...]

    @property
    def n_subjects(self) -> int:
        return len(self.subjects)
