"""
PopNCA: population non-compartmental pharmacokinetic analysis for Python.

Per-subject NCA (terminal elimination, multi-method AUC/AUMC, clearance,
volumes, MRT, bioavailability, quality control) fanned out across a
population, with summary statistics, stratification and covariate analysis.

Usage:
    from popnca import dataset, nca, population
    result = population.analyze_population(frame, NCAConfig())
"""

__version__ = "0.1.0"
__author__ = "Hai-Shuo"
__email__ = "contact@sgcx.org"

from popnca._config import NCAConfig
from popnca._errors import (
    AggregationError,
    ComputationError,
    ConfigurationError,
    DataError,
    NCAError,
)
from popnca import dataset
from popnca import nca
from popnca import population

__all__ = [
    "__version__",
    "NCAConfig",
    "NCAError",
    "DataError",
    "ComputationError",
    "ConfigurationError",
    "AggregationError",
    "dataset",
    "nca",
    "population",
]
