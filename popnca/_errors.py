"""Exception hierarchy for population NCA.

Per-subject problems (``DataError``) are isolated by the batch runner:
the subject is excluded and the error is recorded.  ``ComputationError``
and ``AggregationError`` describe non-fatal conditions; the engine records
them as warnings rather than raising.  ``ConfigurationError`` is fatal and
is raised before any per-subject work starts.
"""

from __future__ import annotations


class NCAError(Exception):
    """Base class for all popnca errors."""


class DataError(NCAError, ValueError):
    """Malformed input row, non-monotonic time, or missing required column."""

    def __init__(self, message: str, subject_id: str | None = None) -> None:
        super().__init__(message)
        self.subject_id = subject_id


class ComputationError(NCAError):
    """A parameter cannot be computed from the available data."""


class ConfigurationError(NCAError, ValueError):
    """Invalid analysis configuration."""


class AggregationError(NCAError):
    """A population-level reduction could not be applied as requested."""
