"""Per-subject NCA pipeline.

terminal fit -> AUC/AUMC for every configured method -> derived
parameters -> quality control.  This is the unit of work the population
runner fans out across workers; it reads only its own record and the
shared, immutable configuration.
"""

from __future__ import annotations

from dataclasses import replace

import numpy as np
from numpy.typing import NDArray

from popnca._config import NCAConfig
from popnca._errors import ComputationError, DataError
from popnca.dataset._common import SubjectRecord
from popnca.nca._auc import compute_auc
from popnca.nca._common import LambdaZResult, QCWarning, SubjectParameters
from popnca.nca._lambda_z import estimate_lambda_z, require_lambda_z
from popnca.nca._parameters import ReferenceExposure, derive_parameters
from popnca.nca._qc import validate_parameters


def _fit_terminal(
    time: NDArray[np.float64],
    concentration: NDArray[np.float64],
    config: NCAConfig,
) -> LambdaZResult:
    return estimate_lambda_z(
        time,
        concentration,
        method=config.lambda_z_method,
        r2_threshold=config.r2_threshold,
        min_points=config.lambda_z_min_points,
        time_range=config.lambda_z_range,
        r2_tolerance=config.r2_tolerance,
    )


def _reference_exposure(reference: SubjectRecord, config: NCAConfig) -> ReferenceExposure:
    """Dose and AUCinf of an intravascular reference occasion.

    Raises
    ------
    ComputationError
        If the reference is malformed, has no dose or no estimable AUCinf.
    """
    try:
        _check_record(reference)
    except DataError as exc:
        raise ComputationError(
            f"reference occasion {reference.label} is unusable: {exc}"
        ) from exc
    dose = reference.total_dose
    if dose <= 0:
        raise ComputationError(f"reference occasion {reference.label} has no dose")
    time, concentration = reference.time, reference.concentration
    lambda_z = require_lambda_z(_fit_terminal(time, concentration, config))
    auc = compute_auc(time, concentration, config.primary_auc_method, lambda_z)
    if auc.auc_inf is None or auc.auc_inf <= 0:
        raise ComputationError(f"reference occasion {reference.label} has no AUCinf")
    return ReferenceExposure(auc_inf=auc.auc_inf, dose=dose)


def _check_record(record: SubjectRecord) -> None:
    if not record.observations:
        raise DataError("no concentration observations", subject_id=record.subject_id)
    time = record.time
    if np.any(~np.isfinite(time)) or np.any(time < 0):
        raise DataError(
            "observation times must be finite and non-negative",
            subject_id=record.subject_id,
        )
    if np.any(np.diff(time) <= 0):
        raise DataError(
            "observation times must be strictly increasing",
            subject_id=record.subject_id,
        )
    if np.any(~np.isfinite(record.concentration)):
        raise DataError("concentrations must be finite", subject_id=record.subject_id)


def analyze_subject(
    record: SubjectRecord,
    config: NCAConfig | None = None,
) -> SubjectParameters:
    """Run the full NCA pipeline for one subject.

    Parameters
    ----------
    record : SubjectRecord
        Normalized subject data (see :func:`popnca.dataset.build_subjects`).
    config : NCAConfig or None
        Analysis options; defaults to ``NCAConfig()``.

    Returns
    -------
    SubjectParameters
        Parameters for every configured AUC method, with QC warnings.
        Unestimable quantities are ``None``.

    Raises
    ------
    DataError
        If the record has no observations or its times are not strictly
        increasing and non-negative.
    """
    if config is None:
        config = NCAConfig()
    _check_record(record)

    time, concentration = record.time, record.concentration
    fit = _fit_terminal(time, concentration, config)
    auc = {
        method: compute_auc(time, concentration, method, fit.lambda_z)
        for method in config.auc_methods
    }

    notes: tuple[QCWarning, ...] = ()
    reference = None
    if record.reference is not None:
        try:
            reference = _reference_exposure(record.reference, config)
        except ComputationError as exc:
            notes = (QCWarning("bioavailability-unavailable", str(exc)),)

    params = derive_parameters(record, fit, auc, config, reference)
    if notes:
        params = replace(params, warnings=notes)
    return validate_parameters(params, config)
