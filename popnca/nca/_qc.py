"""Quality-control checks on computed subject parameters.

Checks never remove a subject; they attach :class:`QCWarning` entries so
population consumers can filter on them.
"""

from __future__ import annotations

import logging
from dataclasses import replace

from popnca._config import NCAConfig
from popnca.nca._common import QCWarning, SubjectParameters

logger = logging.getLogger(__name__)


# Plausible terminal half-life range, in the dataset's time units
HALF_LIFE_RANGE = (0.1, 1000.0)


def _terminal_phase(params: SubjectParameters, config: NCAConfig) -> list[QCWarning]:
    fit = params.lambda_z_fit
    if params.tlast is None:
        return [QCWarning("no-quantifiable", "No quantifiable concentrations")]
    if not fit.estimable:
        return [QCWarning("lambda-z-unestimable", f"lambda_z not estimable: {fit.reason}")]

    found = []
    if fit.r_squared is not None and fit.r_squared < config.r2_threshold:
        found.append(
            QCWarning(
                "lambda-z-r2-low",
                f"Poor terminal phase fit (R² = {fit.r_squared:.3f} "
                f"< {config.r2_threshold})",
            )
        )
    if fit.n_points < config.lambda_z_min_points:
        found.append(
            QCWarning(
                "lambda-z-few-points",
                f"Terminal phase uses {fit.n_points} point(s), "
                f"minimum is {config.lambda_z_min_points}",
            )
        )
    low, high = HALF_LIFE_RANGE
    if fit.half_life is not None and not (low <= fit.half_life <= high):
        found.append(
            QCWarning("half-life-unusual", f"Unusual half-life ({fit.half_life:.3g})")
        )
    return found


def _extrapolation(params: SubjectParameters, config: NCAConfig) -> list[QCWarning]:
    pct = params.auc_pct_extrap
    if pct is not None and pct > config.extrapolation_threshold:
        return [
            QCWarning(
                "auc-extrap-high",
                f"High AUC extrapolation ({pct:.1f}% > "
                f"{config.extrapolation_threshold}%)",
            )
        ]
    return []


def _dosing(params: SubjectParameters) -> list[QCWarning]:
    found = []
    doses = params.doses
    for prev, cur in zip(doses, doses[1:]):
        if cur.time < prev.time:
            found.append(
                QCWarning(
                    "dosing-non-monotonic",
                    f"Dose at t={cur.time} recorded after dose at t={prev.time}",
                )
            )
        elif cur.time == prev.time or cur.time < prev.end_time:
            found.append(
                QCWarning(
                    "dosing-overlap",
                    f"Dose at t={cur.time} overlaps dose starting at t={prev.time}",
                )
            )
    return found


def _plausibility(params: SubjectParameters) -> list[QCWarning]:
    found = []
    if params.clearance is not None and params.clearance <= 0:
        found.append(
            QCWarning("clearance-implausible", f"Non-positive clearance ({params.clearance:.4g})")
        )
    for name in ("vz", "vss"):
        value = getattr(params, name)
        if value is not None and value <= 0:
            found.append(
                QCWarning("volume-implausible", f"Non-positive {name} ({value:.4g})")
            )
    return found


def validate_parameters(
    params: SubjectParameters, config: NCAConfig | None = None
) -> SubjectParameters:
    """Return a copy of *params* with quality-control warnings appended.

    Flags: unestimable or poorly fitted terminal phase, too few terminal
    points, excessive AUC extrapolation, non-monotonic or overlapping
    dosing, non-positive clearance or volume, and implausible half-life.
    """
    if config is None:
        config = NCAConfig()

    found = (
        _terminal_phase(params, config)
        + _extrapolation(params, config)
        + _dosing(params)
        + _plausibility(params)
    )
    if found:
        logger.debug(
            "Subject %s: %s", params.label, ", ".join(w.code for w in found)
        )
    return replace(params, warnings=params.warnings + tuple(found))
