"""Area under the concentration-time and first-moment curves.

Four interpolation rules are supported.  Each is a per-segment choice
between the linear and the log-linear trapezoid:

``linear``
    Linear trapezoid everywhere.
``log``
    Log-linear trapezoid everywhere.
``linear-up-log-down``
    Linear when the concentration rises or stays flat (C2 >= C1), log
    when it falls.  FDA-recommended default; PKNCA ``"lin up/log down"``.
``linear-log``
    Linear up to Tmax, log after Tmax regardless of direction.  This is
    the Phoenix WinNonlin "Linear Log Trapezoidal" rule, kept for
    comparison with legacy analyses.

Whenever the log-linear preconditions fail (a zero concentration or equal
endpoints) the segment falls back to the linear trapezoid.

Extrapolation to infinity uses the terminal rate constant:
``AUC_extrap = Clast / lambda_z`` and
``AUMC_extrap = Tlast * Clast / lambda_z + Clast / lambda_z**2``.

References
----------
Gibaldi & Perrier (1982). *Pharmacokinetics*, 2nd ed., appendix D.

Purves (1992). Optimum numerical integration methods for estimation of
area-under-the-curve (AUC) and area-under-the-moment-curve (AUMC).
*J Pharmacokinet Biopharm* 20(3):211-226.
"""

from __future__ import annotations

from typing import Callable

import numpy as np
from numpy.typing import NDArray

from popnca._config import AUC_METHODS
from popnca.nca._common import AUCResult
from popnca.nca._lambda_z import _find_last_measurable


# ---------------------------------------------------------------------------
# Segment formulas
# ---------------------------------------------------------------------------

def _log_applicable(c1: float, c2: float) -> bool:
    return c1 > 0 and c2 > 0 and c1 != c2


def _auc_linear_segment(t1: float, t2: float, c1: float, c2: float) -> float:
    """Linear trapezoidal AUC for a single interval."""
    return 0.5 * (c1 + c2) * (t2 - t1)


def _auc_log_segment(t1: float, t2: float, c1: float, c2: float) -> float:
    """Log-linear trapezoidal AUC: (C1 - C2) * (t2 - t1) / ln(C1/C2).

    Falls back to linear if C1 == C2 or either is zero.
    """
    if not _log_applicable(c1, c2):
        return _auc_linear_segment(t1, t2, c1, c2)
    return (c1 - c2) * (t2 - t1) / np.log(c1 / c2)


def _aumc_linear_segment(t1: float, t2: float, c1: float, c2: float) -> float:
    """Linear trapezoidal AUMC: 0.5 * (t1*C1 + t2*C2) * (t2 - t1)."""
    return 0.5 * (t1 * c1 + t2 * c2) * (t2 - t1)


def _aumc_log_segment(t1: float, t2: float, c1: float, c2: float) -> float:
    """Log-linear trapezoidal AUMC.

    For C(t) = C1 * exp(-k*(t-t1)) with k = ln(C1/C2)/(t2-t1):
    AUMC = (t1*C1 - t2*C2)/k + (C1 - C2)/k^2
    """
    if not _log_applicable(c1, c2):
        return _aumc_linear_segment(t1, t2, c1, c2)
    k = np.log(c1 / c2) / (t2 - t1)
    return (t1 * c1 - t2 * c2) / k + (c1 - c2) / (k * k)


# ---------------------------------------------------------------------------
# Per-method segment selection
# ---------------------------------------------------------------------------

# (segment index, C1, C2, index of Tmax) -> use the log trapezoid?
_SegmentRule = Callable[[int, float, float, int], bool]

_SEGMENT_RULES: dict[str, _SegmentRule] = {
    "linear": lambda i, c1, c2, idx_tmax: False,
    "log": lambda i, c1, c2, idx_tmax: True,
    "linear-up-log-down": lambda i, c1, c2, idx_tmax: c2 < c1,
    # Segment i spans [i, i+1] and lies after Tmax once i >= idx_tmax. Unlike
    # linear-up-log-down, a rise after Tmax still takes the log trapezoid.
    "linear-log": lambda i, c1, c2, idx_tmax: i >= idx_tmax,
}


def _check_method(method: str) -> None:
    if method not in AUC_METHODS:
        raise ValueError(f"method must be one of {AUC_METHODS}, got {method!r}")


def _segments(
    time: NDArray[np.float64],
    concentration: NDArray[np.float64],
    method: str,
    moment: bool,
) -> NDArray[np.float64]:
    use_log = _SEGMENT_RULES[method]
    linear = _aumc_linear_segment if moment else _auc_linear_segment
    log = _aumc_log_segment if moment else _auc_log_segment

    n = len(time)
    idx_tmax = int(np.argmax(concentration)) if n > 0 else 0
    segments = np.empty(max(n - 1, 0), dtype=np.float64)
    for i in range(n - 1):
        t1, t2 = time[i], time[i + 1]
        c1, c2 = concentration[i], concentration[i + 1]
        if use_log(i, c1, c2, idx_tmax):
            segments[i] = log(t1, t2, c1, c2)
        else:
            segments[i] = linear(t1, t2, c1, c2)
    return segments


def _as_arrays(
    time: NDArray[np.floating], concentration: NDArray[np.floating]
) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
    time = np.asarray(time, dtype=np.float64).ravel()
    concentration = np.asarray(concentration, dtype=np.float64).ravel()
    if time.shape[0] != concentration.shape[0]:
        raise ValueError(
            f"time and concentration must have equal length, "
            f"got {time.shape[0]} and {concentration.shape[0]}"
        )
    if np.any(np.diff(time) <= 0):
        raise ValueError("time must be strictly increasing")
    return time, concentration


def trapezoidal_auc(
    time: NDArray[np.floating],
    concentration: NDArray[np.floating],
    method: str = "linear",
) -> float:
    """Area under the curve across all supplied points with one rule."""
    _check_method(method)
    time, concentration = _as_arrays(time, concentration)
    return float(np.sum(_segments(time, concentration, method, moment=False)))


def trapezoidal_aumc(
    time: NDArray[np.floating],
    concentration: NDArray[np.floating],
    method: str = "linear",
) -> float:
    """Area under the first-moment curve across all supplied points."""
    _check_method(method)
    time, concentration = _as_arrays(time, concentration)
    return float(np.sum(_segments(time, concentration, method, moment=True)))


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def compute_auc(
    time: NDArray[np.floating],
    concentration: NDArray[np.floating],
    method: str,
    lambda_z: float | None = None,
) -> AUCResult:
    """AUC and AUMC to Tlast and extrapolated to infinity.

    Parameters
    ----------
    time, concentration : array
        Time-ordered observations after BLQ handling.
    method : str
        ``'linear'``, ``'log'``, ``'linear-log'`` or ``'linear-up-log-down'``.
    lambda_z : float or None
        Terminal rate constant.  Without a positive value the
        extrapolated quantities are ``None``.

    Returns
    -------
    AUCResult
        ``auc_inf >= auc_last`` always holds when both are present.
    """
    _check_method(method)
    time, concentration = _as_arrays(time, concentration)

    idx_last = _find_last_measurable(concentration)
    if idx_last < 0:
        # Nothing quantifiable -- there is no curve to integrate
        return AUCResult(
            method=method,
            auc_last=0.0,
            auc_extrap=None,
            auc_inf=None,
            auc_pct_extrap=None,
            aumc_last=0.0,
            aumc_extrap=None,
            aumc_inf=None,
            aumc_pct_extrap=None,
        )

    t_auc = time[: idx_last + 1]
    c_auc = concentration[: idx_last + 1]
    auc_last = float(np.sum(_segments(t_auc, c_auc, method, moment=False)))
    aumc_last = float(np.sum(_segments(t_auc, c_auc, method, moment=True)))

    if lambda_z is None or lambda_z <= 0:
        return AUCResult(
            method=method,
            auc_last=auc_last,
            auc_extrap=None,
            auc_inf=None,
            auc_pct_extrap=None,
            aumc_last=aumc_last,
            aumc_extrap=None,
            aumc_inf=None,
            aumc_pct_extrap=None,
        )

    c_last = float(concentration[idx_last])
    t_last = float(time[idx_last])

    auc_extrap = c_last / lambda_z
    auc_inf = auc_last + auc_extrap
    auc_pct_extrap = 100.0 * auc_extrap / auc_inf if auc_inf > 0 else 0.0

    aumc_extrap = t_last * c_last / lambda_z + c_last / (lambda_z * lambda_z)
    aumc_inf = aumc_last + aumc_extrap
    aumc_pct_extrap = 100.0 * aumc_extrap / aumc_inf if aumc_inf > 0 else 0.0

    return AUCResult(
        method=method,
        auc_last=auc_last,
        auc_extrap=auc_extrap,
        auc_inf=auc_inf,
        auc_pct_extrap=auc_pct_extrap,
        aumc_last=aumc_last,
        aumc_extrap=aumc_extrap,
        aumc_inf=aumc_inf,
        aumc_pct_extrap=aumc_pct_extrap,
    )
