"""Shared result types for per-subject non-compartmental analysis."""

from __future__ import annotations

import math
from collections.abc import Mapping
from dataclasses import asdict, dataclass, field

from popnca.dataset._common import DoseEvent


@dataclass(frozen=True)
class LambdaZResult:
    """Terminal elimination rate constant fit.

    An unestimable fit is a normal outcome: ``lambda_z`` and every fit
    statistic are ``None`` and ``reason`` says why.
    """

    method: str  # 'auto', 'best-fit', 'manual'
    lambda_z: float | None = None  # -slope of ln(C) vs t
    slope: float | None = None
    intercept: float | None = None
    r_squared: float | None = None
    adj_r_squared: float | None = None
    half_life: float | None = None  # ln(2) / lambda_z
    times: tuple[float, ...] = ()  # time points in the terminal window
    reason: str | None = None  # set when not estimable

    @property
    def estimable(self) -> bool:
        return self.lambda_z is not None

    @property
    def n_points(self) -> int:
        return len(self.times)

    @classmethod
    def unestimable(cls, method: str, reason: str, **fit) -> LambdaZResult:
        """Absent result; ``fit`` may carry the statistics of a rejected window."""
        return cls(method=method, reason=reason, **fit)


@dataclass(frozen=True)
class AUCResult:
    """Area under the concentration and first-moment curves for one method."""

    method: str
    auc_last: float  # 0 -> Tlast
    auc_extrap: float | None  # Clast / lambda_z
    auc_inf: float | None  # auc_last + auc_extrap
    auc_pct_extrap: float | None
    aumc_last: float
    aumc_extrap: float | None  # Tlast*Clast/lambda_z + Clast/lambda_z^2
    aumc_inf: float | None
    aumc_pct_extrap: float | None


@dataclass(frozen=True)
class QCWarning:
    """Non-fatal quality-control finding attached to a subject."""

    code: str
    message: str

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"


# Scalar parameters available for population summaries, in report order
PARAMETER_NAMES = (
    "cmax",
    "tmax",
    "tlast",
    "clast",
    "auc_last",
    "auc_inf",
    "auc_pct_extrap",
    "aumc_last",
    "aumc_inf",
    "lambda_z",
    "half_life",
    "clearance",
    "vz",
    "vss",
    "mrt",
    "bioavailability",
)


@dataclass(frozen=True)
class SubjectParameters:
    """Full NCA parameter set for one subject.

    Built once by :func:`~popnca.nca.derive_parameters`; quality control
    returns a new value with ``warnings`` filled in rather than mutating.
    Every parameter whose prerequisites are missing is ``None``.
    """

    subject_id: str
    route: str | None
    dose: float | None
    cmax: float
    tmax: float
    tlast: float | None
    clast: float | None
    auc: Mapping[str, AUCResult]
    primary_method: str
    lambda_z_fit: LambdaZResult
    clearance: float | None  # CL, or CL/F when clearance_is_apparent
    clearance_is_apparent: bool
    vz: float | None
    vss: float | None
    mrt: float | None
    bioavailability: float | None
    occasion: str | None = None
    infusion_duration: float | None = None
    doses: tuple[DoseEvent, ...] = ()
    n_observations: int = 0
    warnings: tuple[QCWarning, ...] = field(default_factory=tuple)

    # ----- identity -----

    @property
    def key(self) -> tuple[str, str]:
        return (self.subject_id, self.occasion or "")

    @property
    def label(self) -> str:
        if self.occasion is None:
            return self.subject_id
        return f"{self.subject_id}/{self.occasion}"

    @property
    def has_warnings(self) -> bool:
        return len(self.warnings) > 0

    @property
    def warning_codes(self) -> tuple[str, ...]:
        return tuple(w.code for w in self.warnings)

    # ----- primary-method shortcuts -----

    @property
    def primary(self) -> AUCResult:
        return self.auc[self.primary_method]

    @property
    def auc_last(self) -> float:
        return self.primary.auc_last

    @property
    def auc_inf(self) -> float | None:
        return self.primary.auc_inf

    @property
    def auc_pct_extrap(self) -> float | None:
        return self.primary.auc_pct_extrap

    @property
    def aumc_last(self) -> float:
        return self.primary.aumc_last

    @property
    def aumc_inf(self) -> float | None:
        return self.primary.aumc_inf

    @property
    def lambda_z(self) -> float | None:
        return self.lambda_z_fit.lambda_z

    @property
    def half_life(self) -> float | None:
        return self.lambda_z_fit.half_life

    def value(self, name: str, method: str | None = None) -> float | None:
        """Scalar parameter by name; AUC fields may be taken from *method*."""
        if method is not None and name in _AUC_FIELDS:
            return getattr(self.auc[method], name) if method in self.auc else None
        if name not in PARAMETER_NAMES:
            raise ValueError(f"Unknown parameter {name!r}")
        value = getattr(self, name)
        if value is not None and not math.isfinite(value):
            return None
        return value

    # ----- export -----

    def as_row(self) -> dict:
        """Flat record for the per-subject parameter table."""
        row = {
            "subject_id": self.subject_id,
            "occasion": self.occasion,
            "route": self.route,
            "dose": self.dose,
        }
        for name in PARAMETER_NAMES:
            row[name] = getattr(self, name)
        row["lambda_z_r_squared"] = self.lambda_z_fit.r_squared
        row["lambda_z_adj_r_squared"] = self.lambda_z_fit.adj_r_squared
        row["lambda_z_n_points"] = self.lambda_z_fit.n_points
        row["clearance_is_apparent"] = self.clearance_is_apparent
        for method, res in self.auc.items():
            row[f"auc_last[{method}]"] = res.auc_last
            row[f"auc_inf[{method}]"] = res.auc_inf
        row["n_warnings"] = len(self.warnings)
        row["warnings"] = "; ".join(self.warning_codes)
        return row

    def to_dict(self) -> dict:
        return {
            "subject_id": self.subject_id,
            "occasion": self.occasion,
            "route": self.route,
            "dose": self.dose,
            "cmax": self.cmax,
            "tmax": self.tmax,
            "tlast": self.tlast,
            "clast": self.clast,
            "primary_method": self.primary_method,
            "auc": {m: asdict(r) for m, r in self.auc.items()},
            "lambda_z": {
                **asdict(self.lambda_z_fit),
                "times": list(self.lambda_z_fit.times),
            },
            "clearance": self.clearance,
            "clearance_is_apparent": self.clearance_is_apparent,
            "vz": self.vz,
            "vss": self.vss,
            "mrt": self.mrt,
            "bioavailability": self.bioavailability,
            "warnings": [asdict(w) for w in self.warnings],
        }

    def summary(self) -> str:
        """Human-readable PK summary."""
        apparent = self.clearance_is_apparent
        lines = [f"Non-Compartmental Analysis: subject {self.label}", ""]
        lines.append(f"  Route: {self.route or 'unknown'}")
        lines.append(f"  AUC method: {self.primary_method}")
        if self.dose is not None:
            lines.append(f"  Dose: {self.dose}")
        lines.append("")
        lines.append(f"  Cmax          = {self.cmax:.4g}")
        lines.append(f"  Tmax          = {self.tmax:.4g}")
        lines.append(f"  AUC(0-last)   = {self.auc_last:.4g}")
        if self.auc_inf is not None:
            lines.append(f"  AUC(0-inf)    = {self.auc_inf:.4g}")
            lines.append(f"  %AUC extrap   = {self.auc_pct_extrap:.1f}%")
        if self.half_life is not None:
            lines.append(f"  t1/2          = {self.half_life:.4g}")
            lines.append(f"  lambda_z      = {self.lambda_z:.4g}")
            lines.append(f"  r-squared     = {self.lambda_z_fit.r_squared:.4f}")
        if self.clearance is not None:
            label = "CL/F" if apparent else "CL"
            lines.append(f"  {label:<14s}= {self.clearance:.4g}")
        if self.vz is not None:
            label = "Vz/F" if apparent else "Vz"
            lines.append(f"  {label:<14s}= {self.vz:.4g}")
        if self.mrt is not None:
            lines.append(f"  MRT           = {self.mrt:.4g}")
        if self.bioavailability is not None:
            lines.append(f"  F             = {self.bioavailability:.4g}")
        if self.warnings:
            lines.append("")
            for w in self.warnings:
                lines.append(f"  WARNING: {w}")
        return "\n".join(lines)


_AUC_FIELDS = frozenset(
    ("auc_last", "auc_inf", "auc_pct_extrap", "aumc_last", "aumc_inf")
)
