"""Immutable analysis configuration.

A single :class:`NCAConfig` value is threaded through every stage of the
engine.  It is frozen and validated on construction, so worker processes
can share it without copying concerns.
"""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass

from popnca._errors import ConfigurationError


LLOQ_POLICIES = ("zero", "drop", "half-lloq")
LAMBDA_Z_METHODS = ("auto", "best-fit", "manual")
AUC_METHODS = ("linear", "log", "linear-log", "linear-up-log-down")


@dataclass(frozen=True)
class NCAConfig:
    """Options honoured by the NCA engine.

    Parameters
    ----------
    lloq_handling : str
        ``'zero'``, ``'drop'`` or ``'half-lloq'`` -- treatment of
        below-quantification-limit observations.
    lambda_z_method : str
        ``'auto'`` (maximum R²), ``'best-fit'`` (most points within
        tolerance of the best qualifying R²) or ``'manual'``.
    lambda_z_range : tuple of float or None
        Inclusive ``(start, end)`` time window; required for ``'manual'``.
    lambda_z_min_points : int
        Minimum number of terminal points (>= 3).
    r2_threshold : float
        Minimum R² for best-fit windows and the QC fit-quality flag.
    r2_tolerance : float
        Best-fit tolerance below the maximum R².
    extrapolation_threshold : float
        %AUC extrapolated above which QC flags the subject.
    auc_methods : tuple of str
        AUC rules to compute.  The first one is the primary method used
        for CL, Vz, MRT and the population summary.
    stratify : tuple of str
        Ordered covariate names to stratify by.
    min_stratum_size : int
        Strata smaller than this are merged into the pooled bucket.
    n_jobs : int
        Worker count for the per-subject fan-out (``-1`` = all cores).
    """

    lloq_handling: str = "half-lloq"
    lambda_z_method: str = "auto"
    lambda_z_range: tuple[float, float] | None = None
    lambda_z_min_points: int = 3
    r2_threshold: float = 0.80
    r2_tolerance: float = 1e-4
    extrapolation_threshold: float = 20.0
    auc_methods: tuple[str, ...] = (
        "linear-up-log-down",
        "linear",
        "log",
        "linear-log",
    )
    stratify: tuple[str, ...] = ()
    min_stratum_size: int = 3
    include_interactions: bool = False
    covariate_analysis: bool = False
    dose_normalization: bool = False
    exclude_flagged: bool = False
    n_jobs: int = -1
    time_unit: str = "h"
    concentration_unit: str = "ng/mL"
    dose_unit: str = "mg"

    def __post_init__(self) -> None:
        # Accept lists from callers but store tuples so the value stays hashable
        object.__setattr__(self, "auc_methods", tuple(self.auc_methods))
        object.__setattr__(self, "stratify", tuple(self.stratify))
        if self.lambda_z_range is not None:
            object.__setattr__(self, "lambda_z_range", tuple(self.lambda_z_range))
        self._validate()

    def _validate(self) -> None:
        if self.lloq_handling not in LLOQ_POLICIES:
            raise ConfigurationError(
                f"lloq_handling must be one of {LLOQ_POLICIES}, "
                f"got {self.lloq_handling!r}"
            )
        if self.lambda_z_method not in LAMBDA_Z_METHODS:
            raise ConfigurationError(
                f"lambda_z_method must be one of {LAMBDA_Z_METHODS}, "
                f"got {self.lambda_z_method!r}"
            )
        if self.lambda_z_method == "manual":
            if self.lambda_z_range is None or len(self.lambda_z_range) != 2:
                raise ConfigurationError(
                    "lambda_z_method='manual' requires lambda_z_range=(start, end)"
                )
            start, end = self.lambda_z_range
            if not (math.isfinite(start) and math.isfinite(end)) or start >= end:
                raise ConfigurationError(
                    f"lambda_z_range must satisfy start < end, got {self.lambda_z_range}"
                )
        if self.lambda_z_min_points < 3:
            raise ConfigurationError(
                f"lambda_z_min_points must be >= 3, got {self.lambda_z_min_points}"
            )
        if not (0.0 <= self.r2_threshold <= 1.0):
            raise ConfigurationError(
                f"r2_threshold must be in [0, 1], got {self.r2_threshold}"
            )
        if self.r2_tolerance < 0:
            raise ConfigurationError(
                f"r2_tolerance must be non-negative, got {self.r2_tolerance}"
            )
        if not (0.0 < self.extrapolation_threshold <= 100.0):
            raise ConfigurationError(
                f"extrapolation_threshold must be in (0, 100], "
                f"got {self.extrapolation_threshold}"
            )

        if len(self.auc_methods) == 0:
            raise ConfigurationError("auc_methods must name at least one method")
        for method in self.auc_methods:
            if method not in AUC_METHODS:
                raise ConfigurationError(
                    f"auc_methods entries must be in {AUC_METHODS}, got {method!r}"
                )
        if len(set(self.auc_methods)) != len(self.auc_methods):
            raise ConfigurationError(f"Duplicate auc_methods: {self.auc_methods}")

        if len(set(self.stratify)) != len(self.stratify):
            raise ConfigurationError(f"Duplicate stratify variables: {self.stratify}")
        if self.min_stratum_size < 1:
            raise ConfigurationError(
                f"min_stratum_size must be >= 1, got {self.min_stratum_size}"
            )
        if self.n_jobs == 0:
            raise ConfigurationError("n_jobs must be non-zero")

    @property
    def primary_auc_method(self) -> str:
        """AUC rule used for derived parameters and the population summary."""
        return self.auc_methods[0]

    def to_dict(self) -> dict:
        d = asdict(self)
        d["auc_methods"] = list(self.auc_methods)
        d["stratify"] = list(self.stratify)
        if self.lambda_z_range is not None:
            d["lambda_z_range"] = list(self.lambda_z_range)
        return d
