"""
Population-level NCA.

Parallel per-subject fan-out, then a deterministic reduction in canonical
subject order: summary statistics, AUC method comparison, covariate
stratification, covariate regression and dose linearity.
"""

from popnca.population._common import (
    CovariateAnalysis,
    CovariateCorrelation,
    DoseLinearity,
    MethodComparison,
    MethodPairComparison,
    PairwiseComparison,
    ParameterSummary,
    PopulationResult,
    PopulationSummary,
    RegressionResult,
    StrataComparison,
    Stratum,
    StratificationResult,
)
from popnca.population._batch import BatchResult, run_subjects
from popnca.population._summary import compare_methods, describe, summarize
from popnca.population._stratify import compare_strata, stratify, stratum_value
from popnca.population._covariate import (
    analyze_covariates,
    dose_normalize,
    linear_regression,
)
from popnca.population._population import analyze_population

__all__ = [
    "BatchResult",
    "CovariateAnalysis",
    "CovariateCorrelation",
    "DoseLinearity",
    "MethodComparison",
    "MethodPairComparison",
    "PairwiseComparison",
    "ParameterSummary",
    "PopulationResult",
    "PopulationSummary",
    "RegressionResult",
    "StrataComparison",
    "Stratum",
    "StratificationResult",
    "analyze_covariates",
    "analyze_population",
    "compare_methods",
    "compare_strata",
    "describe",
    "dose_normalize",
    "linear_regression",
    "run_subjects",
    "stratify",
    "stratum_value",
    "summarize",
]
