"""
Dataset model: NONMEM-style rows to per-subject records.

Groups event rows by subject (and occasion), separates doses from
concentration observations, and applies the below-quantification-limit
policy before any PK calculation sees the data.
"""

from popnca.dataset._common import (
    ConcentrationObservation,
    Covariates,
    DatasetResult,
    DoseEvent,
    SubjectFailure,
    SubjectRecord,
)
from popnca.dataset._build import build_subjects, REQUIRED_COLUMNS, OPTIONAL_COLUMNS

__all__ = [
    "ConcentrationObservation",
    "Covariates",
    "DatasetResult",
    "DoseEvent",
    "SubjectFailure",
    "SubjectRecord",
    "build_subjects",
    "REQUIRED_COLUMNS",
    "OPTIONAL_COLUMNS",
]
