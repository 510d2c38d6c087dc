"""Terminal elimination rate constant (lambda_z).

The terminal phase is fitted as ``ln(C) = intercept + slope * t`` by
ordinary least squares over a contiguous run of the last quantifiable
points.  ``lambda_z = -slope``.

Three selection strategies are supported:

``auto``
    Try every terminal suffix of 3..N points and keep the one with the
    highest R².  Ties go to the window with more points.
``best-fit``
    Only windows with at least ``min_points`` points and R² above
    ``r2_threshold`` qualify.  Among them the longest window whose R² is
    within ``r2_tolerance`` of the best is chosen (the Phoenix
    WinNonlin "best fit" rule).
``manual``
    The caller names the time range; no search is done.

An unestimable fit is returned as a :class:`LambdaZResult` with
``lambda_z=None``, never raised.

References
----------
Gabrielsson & Weiner (2000). *Pharmacokinetic and Pharmacodynamic
Data Analysis*, 3rd ed., ch. 3.

Validates against: R ``PKNCA::pk.calc.half.life()``.
"""

from __future__ import annotations

from typing import NamedTuple

import numpy as np
from numpy.typing import NDArray
from scipy import stats

from popnca._config import LAMBDA_Z_METHODS
from popnca._errors import ComputationError
from popnca.nca._common import LambdaZResult


# R² values closer than this are treated as equal by the auto rule
_R2_TIE = 1e-12


class _Fit(NamedTuple):
    slope: float
    intercept: float
    r_squared: float
    adj_r_squared: float
    times: NDArray[np.float64]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _find_last_measurable(concentration: NDArray[np.float64]) -> int:
    """Index of last positive concentration (Clast), or -1."""
    nonzero = np.where(concentration > 0)[0]
    if len(nonzero) == 0:
        return -1
    return int(nonzero[-1])


def _terminal_candidates(concentration: NDArray[np.float64]) -> NDArray[np.intp]:
    """Indices eligible for the terminal fit.

    Positive concentrations from Cmax through Clast.  For a bolus this
    keeps C0; for an extravascular dose the rising absorption points are
    left out.
    """
    idx_last = _find_last_measurable(concentration)
    if idx_last < 0:
        return np.array([], dtype=np.intp)
    idx_cmax = int(np.argmax(concentration))
    candidates = [
        i for i in range(idx_cmax, idx_last + 1) if concentration[i] > 0
    ]
    return np.array(candidates, dtype=np.intp)


def _fit_window(time: NDArray[np.float64], concentration: NDArray[np.float64]) -> _Fit:
    """Log-linear OLS fit of one window (at least 3 points)."""
    res = stats.linregress(time, np.log(concentration))
    n = len(time)
    r_sq = float(res.rvalue) ** 2
    r_sq_adj = 1.0 - (1.0 - r_sq) * (n - 1) / (n - 2)
    return _Fit(
        slope=float(res.slope),
        intercept=float(res.intercept),
        r_squared=r_sq,
        adj_r_squared=r_sq_adj,
        times=time,
    )


def _result_from_fit(method: str, fit: _Fit) -> LambdaZResult:
    lambda_z = -fit.slope
    return LambdaZResult(
        method=method,
        lambda_z=lambda_z,
        slope=fit.slope,
        intercept=fit.intercept,
        r_squared=fit.r_squared,
        adj_r_squared=fit.adj_r_squared,
        half_life=float(np.log(2) / lambda_z),
        times=tuple(float(t) for t in fit.times),
    )


def _rejected(method: str, reason: str, fit: _Fit | None = None) -> LambdaZResult:
    if fit is None:
        return LambdaZResult.unestimable(method, reason)
    return LambdaZResult.unestimable(
        method,
        reason,
        slope=fit.slope,
        intercept=fit.intercept,
        r_squared=fit.r_squared,
        adj_r_squared=fit.adj_r_squared,
        times=tuple(float(t) for t in fit.times),
    )


# ---------------------------------------------------------------------------
# Selection strategies
# ---------------------------------------------------------------------------

def _select_auto(
    time: NDArray[np.float64],
    concentration: NDArray[np.float64],
    candidates: NDArray[np.intp],
) -> LambdaZResult:
    best: _Fit | None = None
    for n_try in range(3, len(candidates) + 1):
        idx = candidates[-n_try:]
        fit = _fit_window(time[idx], concentration[idx])
        if fit.slope >= 0:
            continue
        # Windows grow with n_try, so accepting ties keeps the longer one
        if best is None or fit.r_squared > best.r_squared - _R2_TIE:
            best = fit

    if best is None:
        return _rejected("auto", "no terminal window with a negative slope")
    return _result_from_fit("auto", best)


def _select_best_fit(
    time: NDArray[np.float64],
    concentration: NDArray[np.float64],
    candidates: NDArray[np.intp],
    r2_threshold: float,
    min_points: int,
    r2_tolerance: float,
) -> LambdaZResult:
    if len(candidates) < min_points:
        return _rejected(
            "best-fit",
            f"{len(candidates)} terminal point(s) available, "
            f"at least {min_points} required",
        )

    qualifying: list[_Fit] = []
    best_rejected: _Fit | None = None
    for n_try in range(min_points, len(candidates) + 1):
        idx = candidates[-n_try:]
        fit = _fit_window(time[idx], concentration[idx])
        if fit.slope >= 0:
            continue
        if fit.r_squared >= r2_threshold:
            qualifying.append(fit)
        elif best_rejected is None or fit.r_squared > best_rejected.r_squared:
            best_rejected = fit

    if not qualifying:
        return _rejected(
            "best-fit",
            f"no terminal window with R² >= {r2_threshold}",
            best_rejected,
        )

    max_r2 = max(f.r_squared for f in qualifying)
    near_best = [f for f in qualifying if f.r_squared >= max_r2 - r2_tolerance]
    chosen = max(near_best, key=lambda f: len(f.times))
    return _result_from_fit("best-fit", chosen)


def _select_manual(
    time: NDArray[np.float64],
    concentration: NDArray[np.float64],
    time_range: tuple[float, float],
) -> LambdaZResult:
    start, end = time_range
    mask = (time >= start) & (time <= end) & (concentration > 0)
    if int(mask.sum()) < 3:
        return _rejected(
            "manual",
            f"{int(mask.sum())} positive concentration(s) in "
            f"[{start}, {end}], at least 3 required",
        )
    fit = _fit_window(time[mask], concentration[mask])
    if fit.slope >= 0:
        return _rejected("manual", "terminal slope is not negative", fit)
    return _result_from_fit("manual", fit)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def estimate_lambda_z(
    time: NDArray[np.floating],
    concentration: NDArray[np.floating],
    *,
    method: str = "auto",
    r2_threshold: float = 0.80,
    min_points: int = 3,
    time_range: tuple[float, float] | None = None,
    r2_tolerance: float = 1e-4,
) -> LambdaZResult:
    """Estimate the terminal elimination rate constant.

    Parameters
    ----------
    time, concentration : array
        Time-ordered observations after BLQ handling.
    method : str
        ``'auto'``, ``'best-fit'`` or ``'manual'``.
    r2_threshold : float
        Minimum R² for a best-fit window.
    min_points : int
        Minimum window size for best-fit (>= 3).
    time_range : tuple of float
        Inclusive ``(start, end)`` window for manual selection.
    r2_tolerance : float
        Best-fit preference tolerance below the maximum R².

    Returns
    -------
    LambdaZResult
        ``lambda_z`` is ``None`` when no valid terminal phase exists.
    """
    time = np.asarray(time, dtype=np.float64).ravel()
    concentration = np.asarray(concentration, dtype=np.float64).ravel()

    if time.shape[0] != concentration.shape[0]:
        raise ValueError(
            f"time and concentration must have equal length, "
            f"got {time.shape[0]} and {concentration.shape[0]}"
        )
    if method not in LAMBDA_Z_METHODS:
        raise ValueError(f"method must be one of {LAMBDA_Z_METHODS}, got {method!r}")
    if min_points < 3:
        raise ValueError(f"min_points must be >= 3, got {min_points}")

    if method == "manual":
        if time_range is None:
            raise ValueError("method='manual' requires time_range")
        return _select_manual(time, concentration, time_range)

    candidates = _terminal_candidates(concentration)
    if len(candidates) < 3:
        return _rejected(
            method,
            f"{len(candidates)} positive terminal concentration(s), at least 3 required",
        )

    if method == "auto":
        return _select_auto(time, concentration, candidates)
    return _select_best_fit(
        time, concentration, candidates, r2_threshold, min_points, r2_tolerance
    )


def require_lambda_z(fit: LambdaZResult) -> float:
    """Return ``lambda_z`` or raise :class:`ComputationError` if unestimable."""
    if fit.lambda_z is None or fit.lambda_z <= 0:
        raise ComputationError(f"lambda_z not estimable: {fit.reason}")
    return fit.lambda_z
