"""Covariate correlation, simple linear regression and dose linearity."""

from __future__ import annotations

import logging
from collections.abc import Iterable

import numpy as np
from scipy import stats

from popnca._config import NCAConfig
from popnca.dataset._common import SubjectRecord
from popnca.nca._common import SubjectParameters
from popnca.population._common import (
    CovariateAnalysis,
    CovariateCorrelation,
    DoseLinearity,
    RegressionResult,
)
from popnca.population._stratify import stratum_value
from popnca.population._summary import _included, describe

logger = logging.getLogger(__name__)


COVARIATES = ("age", "weight", "height")
COVARIATE_PARAMETERS = ("auc_inf", "cmax", "clearance", "half_life", "vz")
DOSE_DEPENDENT_PARAMETERS = ("auc_last", "auc_inf", "cmax")

_MIN_SUBJECTS = 3

ALL_SUBJECTS = "all"
UNKNOWN_TREATMENT = "Unknown"


def linear_regression(
    x: Iterable[float], y: Iterable[float], *, x_name: str = "x", y_name: str = "y"
) -> RegressionResult | None:
    """OLS fit of *y* on *x* with a 95% CI for the slope.

    Returns ``None`` for fewer than three points or a constant *x*.
    """
    x = np.asarray(list(x), dtype=np.float64)
    y = np.asarray(list(y), dtype=np.float64)
    n = len(x)
    if n < _MIN_SUBJECTS or np.ptp(x) == 0:
        return None

    fit = stats.linregress(x, y)
    t_crit = stats.t.ppf(0.975, n - 2)
    slope_se = float(fit.stderr)
    return RegressionResult(
        x=x_name,
        y=y_name,
        n=n,
        slope=float(fit.slope),
        intercept=float(fit.intercept),
        r_squared=float(fit.rvalue**2),
        slope_se=slope_se,
        p_value=float(fit.pvalue),
        ci_lower=float(fit.slope - t_crit * slope_se),
        ci_upper=float(fit.slope + t_crit * slope_se),
    )


def _paired(
    records: dict[tuple[str, str], SubjectRecord],
    results: list[SubjectParameters],
    covariate: str,
    parameter: str,
) -> tuple[list[float], list[float]]:
    xs, ys = [], []
    for result in results:
        record = records.get(result.key)
        if record is None:
            continue
        x = record.covariates.numeric(covariate)
        y = result.value(parameter)
        if x is None or y is None or not np.isfinite(x):
            continue
        xs.append(float(x))
        ys.append(float(y))
    return xs, ys


def analyze_covariates(
    records: Iterable[SubjectRecord],
    results: Iterable[SubjectParameters],
    config: NCAConfig | None = None,
) -> CovariateAnalysis:
    """Correlate each numeric covariate with each key PK parameter.

    Parameters
    ----------
    records : iterable of SubjectRecord
        Source of the covariate values.
    results : iterable of SubjectParameters
    config : NCAConfig or None
        ``exclude_flagged`` drops subjects carrying QC warnings.

    Returns
    -------
    CovariateAnalysis
        Pearson correlations and OLS regressions for every
        (covariate, parameter) pair with at least three subjects and a
        non-constant covariate.
    """
    if config is None:
        config = NCAConfig()
    by_key = {r.key: r for r in records}
    included = _included(results, config)

    correlations = []
    regressions = []
    for covariate in COVARIATES:
        for parameter in COVARIATE_PARAMETERS:
            xs, ys = _paired(by_key, included, covariate, parameter)
            regression = linear_regression(xs, ys, x_name=covariate, y_name=parameter)
            if regression is None:
                continue
            regressions.append(regression)
            if np.ptp(ys) > 0:
                r, p = stats.pearsonr(xs, ys)
                correlations.append(
                    CovariateCorrelation(
                        covariate=covariate,
                        parameter=parameter,
                        n=len(xs),
                        r=float(r),
                        p_value=float(p),
                    )
                )

    logger.info(
        "Covariate analysis: %d correlation(s), %d regression(s)",
        len(correlations),
        len(regressions),
    )
    return CovariateAnalysis(correlations=tuple(correlations), regressions=tuple(regressions))


def _linearity(
    parameter: str,
    results: list[SubjectParameters],
    group: str,
    alpha: float,
) -> DoseLinearity:
    doses, normalized = [], []
    for result in results:
        value = result.value(parameter)
        if value is None or result.dose is None or result.dose <= 0:
            continue
        doses.append(result.dose)
        normalized.append(value / result.dose)

    summary = describe(f"{parameter}/dose", normalized)
    regression = None
    if len(doses) >= _MIN_SUBJECTS and len(set(doses)) >= 2:
        regression = linear_regression(
            doses, normalized, x_name="dose", y_name=f"{parameter}/dose"
        )

    if regression is None:
        conclusion = "insufficient data"
    elif regression.p_value >= alpha:
        conclusion = "dose-proportional"
    else:
        conclusion = "non-proportional"

    return DoseLinearity(
        parameter=parameter,
        n=len(doses),
        normalized=summary,
        regression=regression,
        conclusion=conclusion,
        group=group,
    )


def _treatment_groups(
    records: Iterable[SubjectRecord], results: list[SubjectParameters]
) -> dict[str, list[SubjectParameters]]:
    """Results keyed by treatment, or empty when no record names one."""
    treatment = {r.key: stratum_value(r, "TRT") for r in records}
    if all(value is None for value in treatment.values()):
        return {}
    groups: dict[str, list[SubjectParameters]] = {}
    for result in results:
        value = treatment.get(result.key)
        group = UNKNOWN_TREATMENT if value is None else str(value)
        groups.setdefault(group, []).append(result)
    return {group: groups[group] for group in sorted(groups)}


def dose_normalize(
    results: Iterable[SubjectParameters],
    config: NCAConfig | None = None,
    *,
    records: Iterable[SubjectRecord] | None = None,
    alpha: float = 0.05,
) -> tuple[DoseLinearity, ...]:
    """Dose-normalized exposure and a linearity test against dose.

    Each dose-dependent parameter (AUClast, AUCinf, Cmax) is divided by
    the subject's administered dose and regressed on dose.  A slope
    p-value >= *alpha* concludes ``'dose-proportional'``.

    Parameters
    ----------
    results : iterable of SubjectParameters
    config : NCAConfig or None
        ``exclude_flagged`` drops subjects carrying QC warnings.
    records : iterable of SubjectRecord or None
        When given and the subjects carry a treatment (``TRT`` or an
        alias), the assessment is repeated within each treatment group of
        at least three subjects.  Subjects without one fall in
        ``'Unknown'``.
    alpha : float

    Returns
    -------
    tuple of DoseLinearity
        The whole population (``group='all'``) first, then each
        treatment group in sorted order.
    """
    if config is None:
        config = NCAConfig()
    included = _included(results, config)

    out = [
        _linearity(parameter, included, ALL_SUBJECTS, alpha)
        for parameter in DOSE_DEPENDENT_PARAMETERS
    ]

    groups = _treatment_groups(records, included) if records is not None else {}
    if len(groups) < 2:
        return tuple(out)
    for group, members in groups.items():
        if len(members) < _MIN_SUBJECTS:
            logger.info(
                "Dose linearity: treatment %s skipped (%d subject(s))", group, len(members)
            )
            continue
        out.extend(
            _linearity(parameter, members, group, alpha)
            for parameter in DOSE_DEPENDENT_PARAMETERS
        )
    return tuple(out)
