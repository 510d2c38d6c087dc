"""Tests for the parallel per-subject fan-out."""

import random
from dataclasses import replace

import numpy as np
import pytest

from popnca import NCAConfig
from popnca.dataset import ConcentrationObservation, DoseEvent, SubjectRecord
from popnca.population import BatchResult, run_subjects, summarize


TIMES = np.array([0.5, 1, 2, 4, 6, 8, 12, 24])


def _record(subject_id, ke, volume, dose=100.0, times=TIMES):
    conc = dose / volume * np.exp(-ke * times)
    return SubjectRecord(
        subject_id=subject_id,
        doses=(DoseEvent(time=0.0, amount=dose, route="iv-bolus"),),
        observations=tuple(
            ConcentrationObservation(time=float(t), value=float(c), concentration=float(c))
            for t, c in zip(times, conc)
        ),
        route="iv-bolus",
    )


@pytest.fixture
def records():
    rng = np.random.default_rng(7)
    return [
        _record(f"S{i:02d}", ke=rng.uniform(0.05, 0.3), volume=rng.uniform(5, 20))
        for i in range(12)
    ]


@pytest.fixture
def malformed():
    """Observation times out of order: fails inside the pipeline."""
    return _record("BAD", 0.1, 10.0, times=np.array([0.5, 2, 1, 4]))


# ---------------------------------------------------------------------------
# Basic behaviour
# ---------------------------------------------------------------------------

class TestRunSubjects:

    def test_returns_batch_result(self, records):
        out = run_subjects(records, n_jobs=1)
        assert isinstance(out, BatchResult)
        assert len(out.results) == len(records)
        assert out.failures == ()

    def test_canonical_order(self, records):
        out = run_subjects(list(reversed(records)), n_jobs=1)
        ids = [r.subject_id for r in out.results]
        assert ids == sorted(ids)

    def test_failure_isolated(self, records, malformed):
        out = run_subjects(records + [malformed], n_jobs=1)
        assert len(out.results) == len(records)
        assert len(out.failures) == 1
        failure = out.failures[0]
        assert failure.subject_id == "BAD"
        assert failure.stage == "pipeline"
        assert "strictly increasing" in failure.reason

    def test_malformed_reference_does_not_abort(self, records, malformed):
        oral = replace(
            _record("ORAL", 0.1, 10.0),
            occasion="2",
            route="oral",
            doses=(DoseEvent(time=0.0, amount=100.0, route="oral"),),
            reference=replace(malformed, occasion="1"),
        )
        out = run_subjects(records + [oral], n_jobs=1)
        assert len(out.results) == len(records) + 1
        assert out.failures == ()
        (result,) = [r for r in out.results if r.subject_id == "ORAL"]
        assert "bioavailability-unavailable" in result.warning_codes

    def test_empty(self):
        out = run_subjects([], n_jobs=1)
        assert out.results == ()
        assert out.failures == ()

    def test_config_n_jobs_used(self, records):
        out = run_subjects(records, NCAConfig(n_jobs=1))
        assert len(out.results) == len(records)


# ---------------------------------------------------------------------------
# Determinism
# ---------------------------------------------------------------------------

class TestDeterminism:

    def test_input_order_invariant(self, records):
        shuffled = list(records)
        random.Random(3).shuffle(shuffled)
        a = run_subjects(records, n_jobs=1)
        b = run_subjects(shuffled, n_jobs=1)
        assert a == b

    def test_worker_count_invariant(self, records, malformed):
        sequential = run_subjects(records + [malformed], n_jobs=1)
        parallel = run_subjects([malformed] + records[::-1], n_jobs=2)
        assert sequential == parallel

    def test_summary_bit_identical(self, records):
        shuffled = list(records)
        random.Random(11).shuffle(shuffled)
        a = summarize(run_subjects(records, n_jobs=1).results)
        b = summarize(run_subjects(shuffled, n_jobs=2).results)
        for name in a.parameters:
            assert a[name].mean == b[name].mean
            assert a[name].sd == b[name].sd
