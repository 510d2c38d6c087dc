"""Partition subjects into covariate strata.

Every stratification request yields a complete partition: each analysed
subject lands in exactly one stratum, with the pooled bucket catching
subjects that have a missing value and strata below ``min_stratum_size``.
"""

from __future__ import annotations

import itertools
import logging
import math
from collections.abc import Iterable, Sequence

import numpy as np
from scipy import stats

from popnca._config import NCAConfig
from popnca._errors import AggregationError, ConfigurationError
from popnca.dataset._common import SubjectRecord
from popnca.nca._common import PARAMETER_NAMES, SubjectParameters
from popnca.population._common import (
    PairwiseComparison,
    StrataComparison,
    Stratum,
    StratificationResult,
)
from popnca.population._summary import _canonical, compare_methods, summarize

logger = logging.getLogger(__name__)


# Upper bounds (exclusive) of each band
AGE_BANDS = ((18.0, "Pediatric"), (65.0, "Adult"), (math.inf, "Elderly"))
WEIGHT_BANDS = ((60.0, "Low"), (90.0, "Normal"), (math.inf, "High"))
DOSE_BANDS = ((100.0, "Low"), (500.0, "Medium"), (math.inf, "High"))

# Interchangeable column spellings for common design variables
_ALIASES = (
    ("TRT", "TREAT", "TREATMENT"),
    ("FORM", "FORMULATION"),
    ("SEQ", "SEQUENCE"),
)


def _band(value: float | None, bands: tuple[tuple[float, str], ...]) -> str | None:
    if value is None or not math.isfinite(value):
        return None
    for upper, label in bands:
        if value < upper:
            return label
    return None


def stratum_value(record: SubjectRecord, variable: str) -> str | None:
    """Value of a stratification variable for one record, or ``None``.

    Recognised names (case-insensitive): ``SEX``, ``RACE``, ``AGE_GROUP``,
    ``WEIGHT_GROUP``, ``DOSE_GROUP``, ``OCC``, and any extra categorical
    column captured on the record.
    """
    name = variable.upper()
    cov = record.covariates
    if name == "SEX":
        return cov.sex
    if name == "RACE":
        return cov.race
    if name == "AGE_GROUP":
        return _band(cov.age, AGE_BANDS)
    if name == "WEIGHT_GROUP":
        return _band(cov.weight, WEIGHT_BANDS)
    if name == "DOSE_GROUP":
        return _band(record.total_dose if record.doses else None, DOSE_BANDS)
    if name in ("OCC", "OCCASION"):
        return record.occasion
    for group in _ALIASES:
        if name in group:
            for alias in group:
                if alias in cov.extra:
                    return cov.extra[alias]
            return None
    return cov.extra.get(name)


def check_stratify_variables(
    records: Sequence[SubjectRecord], variables: Sequence[str]
) -> None:
    """Raise if a requested variable has no value on any record.

    Raises
    ------
    ConfigurationError
    """
    if not records:
        return
    absent = [
        var
        for var in variables
        if all(stratum_value(r, var) is None for r in records)
    ]
    if absent:
        raise ConfigurationError(
            f"Stratification variable(s) absent from every record: {', '.join(absent)}"
        )


def _make_stratum(
    variables: tuple[str, ...],
    values: tuple[str, ...] | None,
    members: list[SubjectParameters],
    config: NCAConfig,
) -> Stratum:
    members = _canonical(members)
    return Stratum(
        variables=variables,
        values=values,
        subject_ids=tuple(r.label for r in members),
        summary=summarize(members, config),
        method_comparison=compare_methods(members, config.auc_methods),
        results=tuple(members),
    )


def _partition(
    variables: tuple[str, ...],
    assignments: list[tuple[SubjectParameters, tuple[str | None, ...]]],
    config: NCAConfig,
) -> tuple[tuple[Stratum, ...], list[AggregationError]]:
    groups: dict[tuple[str, ...], list[SubjectParameters]] = {}
    pooled: list[SubjectParameters] = []
    for result, values in assignments:
        if any(v is None for v in values):
            pooled.append(result)
        else:
            groups.setdefault(values, []).append(result)

    levels = [sorted({values[i] for values in groups}) for i in range(len(variables))]

    strata = []
    issues = []
    for combo in itertools.product(*levels):
        members = groups.get(combo)
        if not members:
            continue
        if len(members) < config.min_stratum_size:
            label = ", ".join(f"{v}={x}" for v, x in zip(variables, combo))
            issue = AggregationError(
                f"Stratum {label} has {len(members)} subject(s), fewer than "
                f"min_stratum_size={config.min_stratum_size}; merged into pooled"
            )
            logger.warning("%s", issue)
            issues.append(issue)
            pooled.extend(members)
            continue
        strata.append(_make_stratum(variables, combo, members, config))

    strata.append(_make_stratum(variables, None, pooled, config))
    return tuple(strata), issues


def stratify(
    records: Iterable[SubjectRecord],
    results: Iterable[SubjectParameters],
    config: NCAConfig,
) -> StratificationResult:
    """Group analysed subjects by ``config.stratify``.

    Parameters
    ----------
    records : iterable of SubjectRecord
        Source records; covariates are read from these.
    results : iterable of SubjectParameters
        Analysed subjects; only these are assigned to strata.
    config : NCAConfig
        ``stratify``, ``min_stratum_size`` and ``include_interactions``.

    Returns
    -------
    StratificationResult
        The full cross-classification (plus one-way margins when
        ``include_interactions`` is set).  The pooled bucket is always
        the last stratum of every partition.
    """
    variables = tuple(v.upper() for v in config.stratify)
    if not variables:
        raise ConfigurationError("stratify requires at least one variable")

    by_key = {r.key: r for r in records}
    ordered = _canonical(results)

    values_for = {}
    for result in ordered:
        record = by_key.get(result.key)
        values_for[result.key] = tuple(
            stratum_value(record, var) if record is not None else None
            for var in variables
        )

    strata, issues = _partition(
        variables, [(r, values_for[r.key]) for r in ordered], config
    )

    margins = {}
    if config.include_interactions:
        for i, var in enumerate(variables):
            margin, margin_issues = _partition(
                (var,), [(r, (values_for[r.key][i],)) for r in ordered], config
            )
            margins[var] = margin
            issues.extend(margin_issues)

    logger.info(
        "Stratified %d subject(s) by %s into %d stratum/strata",
        len(ordered),
        ", ".join(variables),
        len(strata),
    )
    return StratificationResult(
        variables=variables, strata=strata, margins=margins, issues=tuple(issues)
    )


def _cohens_d(a: np.ndarray, b: np.ndarray) -> float | None:
    na, nb = len(a), len(b)
    pooled_var = ((na - 1) * np.var(a, ddof=1) + (nb - 1) * np.var(b, ddof=1)) / (na + nb - 2)
    if pooled_var <= 0:
        return None
    return float((np.mean(a) - np.mean(b)) / np.sqrt(pooled_var))


def compare_strata(
    strata: Sequence[Stratum],
    parameter: str,
    *,
    method: str | None = None,
    alpha: float = 0.05,
) -> StrataComparison:
    """Pairwise Welch t-tests of *parameter* between non-pooled strata.

    Parameters
    ----------
    strata : sequence of Stratum
        Usually ``StratificationResult.strata``.
    parameter : str
        One of :data:`popnca.nca.PARAMETER_NAMES`.
    method : str or None
        AUC method for AUC-derived parameters.
    alpha : float
        Significance level for the ``significant`` flag.

    Returns
    -------
    StrataComparison
        Pairs with fewer than two values on either side carry ``None``
        statistics.
    """
    if parameter not in PARAMETER_NAMES:
        raise ValueError(f"Unknown parameter {parameter!r}")

    groups = []
    for stratum in strata:
        if stratum.is_pooled:
            continue
        values = [r.value(parameter, method) for r in stratum.results]
        groups.append(
            (stratum.label, np.array([v for v in values if v is not None], dtype=np.float64))
        )

    comparisons = []
    for (label_a, a), (label_b, b) in itertools.combinations(groups, 2):
        mean_a = float(np.mean(a)) if len(a) else None
        mean_b = float(np.mean(b)) if len(b) else None
        t_stat = p_value = effect = None
        if len(a) >= 2 and len(b) >= 2:
            res = stats.ttest_ind(a, b, equal_var=False)
            if np.isfinite(res.statistic):
                t_stat = float(res.statistic)
                p_value = float(res.pvalue)
            effect = _cohens_d(a, b)
        comparisons.append(
            PairwiseComparison(
                stratum_a=label_a,
                stratum_b=label_b,
                n_a=len(a),
                n_b=len(b),
                mean_a=mean_a,
                mean_b=mean_b,
                t_statistic=t_stat,
                p_value=p_value,
                effect_size=effect,
                significant=p_value is not None and p_value < alpha,
            )
        )
    return StrataComparison(parameter=parameter, comparisons=tuple(comparisons))
