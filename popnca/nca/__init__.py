"""
Per-subject non-compartmental pharmacokinetic analysis (NCA).

Terminal elimination rate constant, AUC/AUMC by four interpolation rules,
Cmax/Tmax, clearance, volumes of distribution, MRT and bioavailability,
plus quality-control flags.

Validates against: R packages PKNCA, NonCompart.
"""

from popnca.nca._common import (
    AUCResult,
    LambdaZResult,
    PARAMETER_NAMES,
    QCWarning,
    SubjectParameters,
)
from popnca.nca._lambda_z import estimate_lambda_z, require_lambda_z
from popnca.nca._auc import compute_auc, trapezoidal_auc, trapezoidal_aumc
from popnca.nca._parameters import ReferenceExposure, derive_parameters
from popnca.nca._qc import validate_parameters
from popnca.nca._nca import analyze_subject

__all__ = [
    "AUCResult",
    "LambdaZResult",
    "PARAMETER_NAMES",
    "QCWarning",
    "ReferenceExposure",
    "SubjectParameters",
    "analyze_subject",
    "compute_auc",
    "derive_parameters",
    "estimate_lambda_z",
    "require_lambda_z",
    "trapezoidal_auc",
    "trapezoidal_aumc",
    "validate_parameters",
]
