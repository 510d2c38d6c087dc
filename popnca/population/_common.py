"""Shared result types for population-level NCA."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import asdict, dataclass, field

import pandas as pd

from popnca._config import NCAConfig
from popnca._errors import AggregationError
from popnca.dataset._common import SubjectFailure
from popnca.nca._common import SubjectParameters


@dataclass(frozen=True)
class ParameterSummary:
    """Descriptive statistics for one parameter across subjects."""

    parameter: str
    n: int
    mean: float
    median: float
    sd: float | None  # sample SD (ddof=1); None when n < 2
    cv_percent: float | None
    min: float
    max: float
    q25: float
    q75: float
    geometric_mean: float | None  # only when every value is positive
    geometric_cv_percent: float | None


@dataclass(frozen=True)
class PopulationSummary:
    """Per-parameter statistics for a set of subjects."""

    parameters: Mapping[str, ParameterSummary]
    n_subjects: int
    method: str  # AUC method the AUC-derived rows come from

    def __getitem__(self, name: str) -> ParameterSummary:
        return self.parameters[name]

    def __contains__(self, name: object) -> bool:
        return name in self.parameters

    def as_rows(self) -> list[dict]:
        return [asdict(s) for s in self.parameters.values()]


@dataclass(frozen=True)
class MethodPairComparison:
    """Agreement of AUClast between two AUC methods.

    Percentage differences are taken relative to the pair mean.
    Limits of agreement are Bland-Altman (mean ± 1.96 SD of differences).
    """

    method_a: str
    method_b: str
    n: int
    mean_abs_pct_difference: float | None
    correlation: float | None  # Pearson r; None for n < 2 or constant input
    mean_difference: float | None
    loa_lower: float | None
    loa_upper: float | None


@dataclass(frozen=True)
class MethodComparison:
    """Cross-method comparison of AUClast."""

    mean_auc: Mapping[str, float]
    pairs: tuple[MethodPairComparison, ...]

    def as_rows(self) -> list[dict]:
        return [asdict(p) for p in self.pairs]


@dataclass(frozen=True)
class Stratum:
    """Subjects sharing one combination of covariate values.

    ``values`` is ``None`` for the pooled bucket, which collects subjects
    with a missing covariate value and strata below the minimum size.
    """

    variables: tuple[str, ...]
    values: tuple[str, ...] | None
    subject_ids: tuple[str, ...]
    summary: PopulationSummary
    method_comparison: MethodComparison
    results: tuple[SubjectParameters, ...] = field(default=(), repr=False)

    @property
    def is_pooled(self) -> bool:
        return self.values is None

    @property
    def n(self) -> int:
        return len(self.subject_ids)

    @property
    def label(self) -> str:
        if self.values is None:
            return "pooled"
        return ", ".join(f"{var}={val}" for var, val in zip(self.variables, self.values))


@dataclass(frozen=True)
class StratificationResult:
    """Full cross-classification plus optional one-way margins.

    Each partition (``strata`` and every entry of ``margins``) assigns
    every analysed subject to exactly one stratum.
    """

    variables: tuple[str, ...]
    strata: tuple[Stratum, ...]
    margins: Mapping[str, tuple[Stratum, ...]] = field(default_factory=dict)
    issues: tuple[AggregationError, ...] = ()

    @property
    def warnings(self) -> tuple[str, ...]:
        return tuple(str(e) for e in self.issues)

    def partitions(self) -> dict[str, tuple[Stratum, ...]]:
        """All partitions keyed by name (``'cross'`` and ``'margin:<VAR>'``)."""
        out = {"cross": self.strata}
        for var, strata in self.margins.items():
            out[f"margin:{var}"] = strata
        return out


@dataclass(frozen=True)
class PairwiseComparison:
    """Welch t-test of one parameter between two strata."""

    stratum_a: str
    stratum_b: str
    n_a: int
    n_b: int
    mean_a: float | None
    mean_b: float | None
    t_statistic: float | None
    p_value: float | None
    effect_size: float | None  # Cohen's d with pooled SD
    significant: bool


@dataclass(frozen=True)
class StrataComparison:
    parameter: str
    comparisons: tuple[PairwiseComparison, ...]


@dataclass(frozen=True)
class CovariateCorrelation:
    """Pearson correlation between a covariate and a PK parameter."""

    covariate: str
    parameter: str
    n: int
    r: float
    p_value: float


@dataclass(frozen=True)
class RegressionResult:
    """OLS fit ``y = intercept + slope * x``.

    ``p_value`` is the two-sided t-test of ``slope == 0`` with ``n - 2``
    degrees of freedom; ``ci_lower``/``ci_upper`` bound the slope at 95%.
    """

    x: str
    y: str
    n: int
    slope: float
    intercept: float
    r_squared: float
    slope_se: float
    p_value: float
    ci_lower: float
    ci_upper: float


@dataclass(frozen=True)
class CovariateAnalysis:
    correlations: tuple[CovariateCorrelation, ...]
    regressions: tuple[RegressionResult, ...]


@dataclass(frozen=True)
class DoseLinearity:
    """Dose-normalized exposure and its regression on dose.

    A slope not significantly different from zero indicates
    dose-proportional kinetics.
    """

    parameter: str
    n: int
    normalized: ParameterSummary | None
    regression: RegressionResult | None
    conclusion: str  # 'dose-proportional', 'non-proportional', 'insufficient data'
    group: str = "all"  # treatment group, or 'all' for the whole population


def _frame(rows: list[dict]) -> pd.DataFrame:
    return pd.DataFrame(rows)


@dataclass(frozen=True)
class PopulationResult:
    """Everything produced by one population analysis run."""

    config: NCAConfig
    subjects: tuple[SubjectParameters, ...]
    failures: tuple[SubjectFailure, ...]
    summary: PopulationSummary
    method_comparison: MethodComparison
    stratification: StratificationResult | None = None
    covariates: CovariateAnalysis | None = None
    dose_linearity: tuple[DoseLinearity, ...] | None = None

    @property
    def n_subjects(self) -> int:
        return len(self.subjects)

    # ----- tables -----

    def parameter_table(self) -> pd.DataFrame:
        return _frame([s.as_row() for s in self.subjects])

    def summary_table(self) -> pd.DataFrame:
        return _frame(self.summary.as_rows())

    def method_comparison_table(self) -> pd.DataFrame:
        return _frame(self.method_comparison.as_rows())

    def stratified_table(self) -> pd.DataFrame:
        rows = []
        if self.stratification is not None:
            for partition, strata in self.stratification.partitions().items():
                for stratum in strata:
                    base = {"partition": partition, "stratum": stratum.label, "n_subjects": stratum.n}
                    if not stratum.summary.parameters:
                        rows.append(base)
                    for stats in stratum.summary.parameters.values():
                        rows.append({**base, **asdict(stats)})
        return _frame(rows)

    def correlation_table(self) -> pd.DataFrame:
        if self.covariates is None:
            return _frame([])
        return _frame([asdict(c) for c in self.covariates.correlations])

    def regression_table(self) -> pd.DataFrame:
        if self.covariates is None:
            return _frame([])
        return _frame([asdict(r) for r in self.covariates.regressions])

    def dose_linearity_table(self) -> pd.DataFrame:
        rows = []
        for d in self.dose_linearity or ():
            row = {
                "group": d.group,
                "parameter": d.parameter,
                "n": d.n,
                "conclusion": d.conclusion,
            }
            if d.normalized is not None:
                row.update(
                    normalized_mean=d.normalized.mean,
                    normalized_cv_percent=d.normalized.cv_percent,
                )
            if d.regression is not None:
                row.update(
                    slope=d.regression.slope,
                    slope_p_value=d.regression.p_value,
                    r_squared=d.regression.r_squared,
                )
            rows.append(row)
        return _frame(rows)

    def failure_table(self) -> pd.DataFrame:
        return _frame([asdict(f) for f in self.failures])

    # ----- structured export -----

    def to_dict(self) -> dict:
        """Single JSON-serialisable export of every result."""
        out: dict = {
            "config": self.config.to_dict(),
            "units": {
                "time": self.config.time_unit,
                "concentration": self.config.concentration_unit,
                "dose": self.config.dose_unit,
            },
            "subjects": [s.to_dict() for s in self.subjects],
            "failures": [asdict(f) for f in self.failures],
            "summary": {
                "method": self.summary.method,
                "n_subjects": self.summary.n_subjects,
                "parameters": self.summary.as_rows(),
            },
            "method_comparison": {
                "mean_auc": dict(self.method_comparison.mean_auc),
                "pairs": self.method_comparison.as_rows(),
            },
            "stratification": None,
            "covariates": None,
            "dose_linearity": None,
        }
        if self.stratification is not None:
            out["stratification"] = {
                "variables": list(self.stratification.variables),
                "warnings": list(self.stratification.warnings),
                "partitions": {
                    name: [
                        {
                            "label": s.label,
                            "values": list(s.values) if s.values is not None else None,
                            "subject_ids": list(s.subject_ids),
                            "summary": s.summary.as_rows(),
                            "method_comparison": s.method_comparison.as_rows(),
                        }
                        for s in strata
                    ]
                    for name, strata in self.stratification.partitions().items()
                },
            }
        if self.covariates is not None:
            out["covariates"] = {
                "correlations": [asdict(c) for c in self.covariates.correlations],
                "regressions": [asdict(r) for r in self.covariates.regressions],
            }
        if self.dose_linearity is not None:
            out["dose_linearity"] = [asdict(d) for d in self.dose_linearity]
        return out

    def summary_text(self) -> str:
        """Short human-readable overview."""
        lines = ["Population NCA", "=" * 40]
        lines.append(f"Subjects analysed : {self.n_subjects}")
        lines.append(f"Subjects excluded : {len(self.failures)}")
        flagged = sum(1 for s in self.subjects if s.has_warnings)
        lines.append(f"Subjects flagged  : {flagged}")
        lines.append(f"AUC method        : {self.summary.method}")
        lines.append("")
        for name, s in self.summary.parameters.items():
            cv = f"{s.cv_percent:.1f}%" if s.cv_percent is not None else "n/a"
            lines.append(f"  {name:<16s} n={s.n:<4d} mean={s.mean:<12.4g} CV={cv}")
        if self.stratification is not None:
            lines.append("")
            lines.append("Strata:")
            for stratum in self.stratification.strata:
                lines.append(f"  {stratum.label}: n = {stratum.n}")
        return "\n".join(lines)
