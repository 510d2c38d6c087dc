"""Per-subject fan-out over a worker pool."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import NamedTuple

from joblib import Parallel, delayed

from popnca._config import NCAConfig
from popnca._errors import NCAError
from popnca.dataset._common import SubjectFailure, SubjectRecord
from popnca.nca._common import SubjectParameters
from popnca.nca._nca import analyze_subject

logger = logging.getLogger(__name__)


class BatchResult(NamedTuple):
    """Successful subjects and failed subjects, each in canonical key order."""

    results: tuple[SubjectParameters, ...]
    failures: tuple[SubjectFailure, ...]


def _run_one(
    record: SubjectRecord, config: NCAConfig
) -> SubjectParameters | SubjectFailure:
    try:
        return analyze_subject(record, config)
    except NCAError as exc:
        return SubjectFailure(
            subject_id=record.subject_id,
            occasion=record.occasion,
            reason=str(exc),
            stage="pipeline",
        )


def run_subjects(
    records: Iterable[SubjectRecord],
    config: NCAConfig | None = None,
    *,
    n_jobs: int | None = None,
) -> BatchResult:
    """Analyse every subject, in parallel when more than one worker is allowed.

    Each worker sees only its own record and the shared immutable
    configuration.  A subject that fails is recorded and the rest of the
    batch proceeds.  Output order is the canonical ``(subject, occasion)``
    order regardless of worker count or input order.

    Parameters
    ----------
    records : iterable of SubjectRecord
    config : NCAConfig or None
    n_jobs : int or None
        Overrides ``config.n_jobs``.  ``1`` runs in-process.
    """
    if config is None:
        config = NCAConfig()
    if n_jobs is None:
        n_jobs = config.n_jobs
    records = list(records)
    logger.info("Analysing %d subject(s), n_jobs=%d", len(records), n_jobs)

    if n_jobs == 1 or len(records) <= 1:
        outcomes = [_run_one(record, config) for record in records]
    else:
        outcomes = Parallel(n_jobs=n_jobs)(
            delayed(_run_one)(record, config) for record in records
        )

    results = sorted(
        (o for o in outcomes if isinstance(o, SubjectParameters)), key=lambda r: r.key
    )
    failures = sorted(
        (o for o in outcomes if isinstance(o, SubjectFailure)), key=lambda f: f.key
    )
    for failure in failures:
        logger.warning("Subject %s failed: %s", failure.subject_id, failure.reason)
    logger.info("Analysed %d subject(s), %d failure(s)", len(results), len(failures))
    return BatchResult(tuple(results), tuple(failures))
