"""Population descriptive statistics and cross-method AUC comparison."""

from __future__ import annotations

import itertools
import math
from collections.abc import Iterable, Sequence

import numpy as np
from scipy import stats

from popnca._config import NCAConfig
from popnca.nca._common import PARAMETER_NAMES, SubjectParameters
from popnca.population._common import (
    MethodComparison,
    MethodPairComparison,
    ParameterSummary,
    PopulationSummary,
)


def _canonical(results: Iterable[SubjectParameters]) -> list[SubjectParameters]:
    # Every reduction walks subjects in key order so results do not depend
    # on completion order of the workers.
    return sorted(results, key=lambda r: r.key)


def _included(
    results: Iterable[SubjectParameters], config: NCAConfig
) -> list[SubjectParameters]:
    ordered = _canonical(results)
    if config.exclude_flagged:
        return [r for r in ordered if not r.has_warnings]
    return ordered


def describe(name: str, values: Sequence[float]) -> ParameterSummary | None:
    """Descriptive statistics for one parameter; ``None`` for no values."""
    x = np.asarray(values, dtype=np.float64)
    x = x[np.isfinite(x)]
    n = len(x)
    if n == 0:
        return None

    mean = float(np.mean(x))
    sd = float(np.std(x, ddof=1)) if n >= 2 else None
    cv = sd / mean * 100.0 if sd is not None and mean != 0 else None

    geo_mean = geo_cv = None
    if np.all(x > 0):
        logs = np.log(x)
        geo_mean = float(np.exp(np.mean(logs)))
        if n >= 2:
            sd_log = float(np.std(logs, ddof=1))
            geo_cv = math.sqrt(math.exp(sd_log**2) - 1.0) * 100.0

    q25, median, q75 = (float(q) for q in np.percentile(x, [25.0, 50.0, 75.0]))
    return ParameterSummary(
        parameter=name,
        n=n,
        mean=mean,
        median=median,
        sd=sd,
        cv_percent=cv,
        min=float(np.min(x)),
        max=float(np.max(x)),
        q25=q25,
        q75=q75,
        geometric_mean=geo_mean,
        geometric_cv_percent=geo_cv,
    )


def summarize(
    results: Iterable[SubjectParameters],
    config: NCAConfig | None = None,
    *,
    method: str | None = None,
) -> PopulationSummary:
    """Summary statistics for every parameter across subjects.

    Parameters
    ----------
    results : iterable of SubjectParameters
    config : NCAConfig or None
        ``exclude_flagged`` drops subjects carrying QC warnings.
    method : str or None
        AUC method for AUC-derived rows (default: each subject's primary).

    Returns
    -------
    PopulationSummary
        One :class:`ParameterSummary` per parameter with at least one
        value.  Absent values are skipped, never counted as zero.
    """
    if config is None:
        config = NCAConfig()
    included = _included(results, config)
    if method is None:
        method = config.primary_auc_method

    parameters = {}
    for name in PARAMETER_NAMES:
        values = [r.value(name, method) for r in included]
        summary = describe(name, [v for v in values if v is not None])
        if summary is not None:
            parameters[name] = summary

    return PopulationSummary(parameters=parameters, n_subjects=len(included), method=method)


def _compare_pair(a: str, b: str, pairs: list[tuple[float, float]]) -> MethodPairComparison:
    n = len(pairs)
    if n == 0:
        return MethodPairComparison(a, b, 0, None, None, None, None, None)

    x = np.array([p[0] for p in pairs], dtype=np.float64)
    y = np.array([p[1] for p in pairs], dtype=np.float64)

    pair_mean = (x + y) / 2.0
    nonzero = pair_mean != 0
    mapd = (
        float(np.mean(np.abs(x[nonzero] - y[nonzero]) / pair_mean[nonzero]) * 100.0)
        if np.any(nonzero)
        else None
    )

    r = None
    if n >= 2 and np.ptp(x) > 0 and np.ptp(y) > 0:
        r = float(stats.pearsonr(x, y)[0])

    diff = x - y
    mean_diff = float(np.mean(diff))
    loa_lower = loa_upper = None
    if n >= 2:
        sd_diff = float(np.std(diff, ddof=1))
        loa_lower = mean_diff - 1.96 * sd_diff
        loa_upper = mean_diff + 1.96 * sd_diff

    return MethodPairComparison(
        method_a=a,
        method_b=b,
        n=n,
        mean_abs_pct_difference=mapd,
        correlation=r,
        mean_difference=mean_diff,
        loa_lower=loa_lower,
        loa_upper=loa_upper,
    )


def compare_methods(
    results: Iterable[SubjectParameters],
    methods: Sequence[str] | None = None,
) -> MethodComparison:
    """Compare AUClast across AUC methods over the same subjects.

    Parameters
    ----------
    results : iterable of SubjectParameters
    methods : sequence of str or None
        Methods to compare (default: every method present on the first
        subject, in the order computed).

    Returns
    -------
    MethodComparison
        Mean AUClast per method and one :class:`MethodPairComparison`
        per unordered pair.
    """
    ordered = _canonical(results)
    if methods is None:
        methods = tuple(ordered[0].auc) if ordered else ()

    mean_auc = {}
    for m in methods:
        values = [r.auc[m].auc_last for r in ordered if m in r.auc]
        if values:
            mean_auc[m] = float(np.mean(values))

    pairs = []
    for a, b in itertools.combinations(methods, 2):
        paired = [
            (r.auc[a].auc_last, r.auc[b].auc_last)
            for r in ordered
            if a in r.auc and b in r.auc
        ]
        pairs.append(_compare_pair(a, b, paired))

    return MethodComparison(mean_auc=mean_auc, pairs=tuple(pairs))
