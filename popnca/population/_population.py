"""End-to-end population analysis."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Any

import pandas as pd

from popnca._config import NCAConfig
from popnca.dataset._build import build_subjects
from popnca.dataset._common import DatasetResult
from popnca.population._batch import run_subjects
from popnca.population._common import PopulationResult
from popnca.population._covariate import analyze_covariates, dose_normalize
from popnca.population._stratify import check_stratify_variables, stratify
from popnca.population._summary import _included, compare_methods, summarize

logger = logging.getLogger(__name__)


def analyze_population(
    data: pd.DataFrame | Iterable[Mapping[str, Any]] | DatasetResult,
    config: NCAConfig | None = None,
) -> PopulationResult:
    """Run the complete NCA workflow over a dataset.

    Builds subject records, analyses every subject in parallel, then
    reduces the results in canonical subject order into the population
    summary, method comparison and, when configured, stratified,
    covariate and dose-linearity results.

    Parameters
    ----------
    data : DataFrame, iterable of mappings, or DatasetResult
        Long-format NONMEM-style rows, or records already built by
        :func:`popnca.dataset.build_subjects`.
    config : NCAConfig or None

    Returns
    -------
    PopulationResult

    Raises
    ------
    DataError
        If a required column is missing from the table.
    ConfigurationError
        If a stratification variable is absent from every record.  This is
        raised before any subject is analysed.
    """
    if config is None:
        config = NCAConfig()

    dataset = data if isinstance(data, DatasetResult) else build_subjects(data, config)
    records = dataset.subjects
    if config.stratify:
        check_stratify_variables(records, config.stratify)

    batch = run_subjects(records, config)
    failures = tuple(sorted(dataset.failures + batch.failures, key=lambda f: f.key))

    summary = summarize(batch.results, config)
    method_comparison = compare_methods(_included(batch.results, config), config.auc_methods)

    stratification = None
    if config.stratify:
        stratification = stratify(records, batch.results, config)

    covariates = None
    if config.covariate_analysis:
        covariates = analyze_covariates(records, batch.results, config)

    dose_linearity = None
    if config.dose_normalization:
        dose_linearity = dose_normalize(batch.results, config, records=records)

    logger.info(
        "Population analysis complete: %d subject(s), %d failure(s)",
        len(batch.results),
        len(failures),
    )
    return PopulationResult(
        config=config,
        subjects=batch.results,
        failures=failures,
        summary=summary,
        method_comparison=method_comparison,
        stratification=stratification,
        covariates=covariates,
        dose_linearity=dose_linearity,
    )
