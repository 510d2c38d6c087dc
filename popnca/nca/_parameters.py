"""Derived PK parameters: Cmax/Tmax, CL, Vz, Vss, MRT, bioavailability.

Formulas (Gabrielsson & Weiner 2000, ch. 3):

- ``CL = Dose / AUCinf`` (intravascular).  For oral dosing this is the
  apparent clearance ``CL/F`` unless F is known from a reference
  intravascular occasion, in which case ``CL = F * Dose / AUCinf``.
- ``Vz = CL / lambda_z``
- ``MRT = AUMCinf / AUCinf``, minus half the infusion duration for a
  zero-order infusion.
- ``Vss = MRT * CL``
- ``F = (AUCinf_ev / Dose_ev) / (AUCinf_iv / Dose_iv)``

Every parameter whose prerequisites are missing is ``None``.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import NamedTuple

import numpy as np
from numpy.typing import NDArray

from popnca._config import NCAConfig
from popnca.dataset._common import SubjectRecord
from popnca.nca._common import AUCResult, LambdaZResult, SubjectParameters
from popnca.nca._lambda_z import _find_last_measurable


class ReferenceExposure(NamedTuple):
    """Dose-normalisation inputs from an intravascular reference occasion."""

    auc_inf: float
    dose: float


def _find_cmax_tmax(
    time: NDArray[np.float64],
    concentration: NDArray[np.float64],
) -> tuple[float, float]:
    """Peak concentration and its time; ties resolve to the earliest time."""
    idx = int(np.argmax(concentration))
    return float(concentration[idx]), float(time[idx])


def _bioavailability(
    auc_inf: float | None,
    dose: float | None,
    reference: ReferenceExposure | None,
) -> float | None:
    if reference is None or auc_inf is None or dose is None:
        return None
    if dose <= 0 or reference.dose <= 0 or reference.auc_inf <= 0:
        return None
    return (auc_inf / dose) / (reference.auc_inf / reference.dose)


def derive_parameters(
    record: SubjectRecord,
    lambda_z: LambdaZResult,
    auc: Mapping[str, AUCResult],
    config: NCAConfig,
    reference: ReferenceExposure | None = None,
) -> SubjectParameters:
    """Combine terminal fit, AUC results and dosing into the parameter set.

    Parameters
    ----------
    record : SubjectRecord
        Subject data after BLQ handling.
    lambda_z : LambdaZResult
        Terminal fit (may be unestimable).
    auc : mapping of str to AUCResult
        One entry per configured method; must contain the primary method.
    config : NCAConfig
    reference : ReferenceExposure or None
        Intravascular exposure of the same subject, for bioavailability.

    Returns
    -------
    SubjectParameters
        With an empty ``warnings`` tuple; QC fills it in.
    """
    primary_method = config.primary_auc_method
    if primary_method not in auc:
        raise ValueError(f"auc results are missing the primary method {primary_method!r}")
    primary = auc[primary_method]

    time = record.time
    concentration = record.concentration
    cmax, tmax = _find_cmax_tmax(time, concentration)

    idx_last = _find_last_measurable(concentration)
    if idx_last >= 0:
        tlast: float | None = float(time[idx_last])
        clast: float | None = float(concentration[idx_last])
    else:
        tlast = clast = None

    dose = record.total_dose if record.doses else None
    oral = record.route == "oral"
    auc_inf = primary.auc_inf
    lz = lambda_z.lambda_z

    bioavailability = _bioavailability(auc_inf, dose, reference) if oral else None

    # ----- clearance -----
    clearance: float | None = None
    apparent = oral
    if dose is not None and auc_inf is not None and auc_inf > 0:
        if oral and bioavailability is not None:
            clearance = dose * bioavailability / auc_inf
            apparent = False
        else:
            clearance = dose / auc_inf

    # ----- volumes and MRT -----
    vz = clearance / lz if clearance is not None and lz is not None else None

    mrt: float | None = None
    if primary.aumc_inf is not None and auc_inf is not None and auc_inf > 0:
        mrt = primary.aumc_inf / auc_inf
        duration = record.infusion_duration
        if record.route == "iv-infusion" and duration is not None:
            mrt -= duration / 2.0

    vss = mrt * clearance if mrt is not None and clearance is not None else None

    return SubjectParameters(
        subject_id=record.subject_id,
        occasion=record.occasion,
        route=record.route,
        dose=dose,
        cmax=cmax,
        tmax=tmax,
        tlast=tlast,
        clast=clast,
        auc=dict(auc),
        primary_method=primary_method,
        lambda_z_fit=lambda_z,
        clearance=clearance,
        clearance_is_apparent=apparent and clearance is not None,
        vz=vz,
        vss=vss,
        mrt=mrt,
        bioavailability=bioavailability,
        infusion_duration=record.infusion_duration,
        doses=record.doses,
        n_observations=len(record.observations),
    )
