"""Tests for population summary statistics and AUC method comparison."""

from dataclasses import replace

import numpy as np
import pytest

from popnca import NCAConfig
from popnca.dataset import ConcentrationObservation, DoseEvent, SubjectRecord
from popnca.nca import QCWarning, analyze_subject
from popnca.population import (
    MethodComparison,
    PopulationSummary,
    compare_methods,
    describe,
    summarize,
)


TIMES = np.array([0.0, 0.5, 1, 2, 4, 6, 8, 12, 24])


def _subject(subject_id, ke, volume, config=None):
    conc = 100.0 / volume * np.exp(-ke * TIMES)
    record = SubjectRecord(
        subject_id=subject_id,
        doses=(DoseEvent(time=0.0, amount=100.0, route="iv-bolus"),),
        observations=tuple(
            ConcentrationObservation(time=float(t), value=float(c), concentration=float(c))
            for t, c in zip(TIMES, conc)
        ),
        route="iv-bolus",
    )
    return analyze_subject(record, config)


@pytest.fixture
def results():
    params = [(0.10, 8.0), (0.15, 10.0), (0.20, 12.0), (0.12, 9.0), (0.25, 15.0)]
    return [_subject(f"S{i}", ke, v) for i, (ke, v) in enumerate(params)]


# ---------------------------------------------------------------------------
# describe
# ---------------------------------------------------------------------------

class TestDescribe:

    def test_hand_values(self):
        s = describe("x", [1.0, 2.0, 3.0, 4.0])
        assert s.n == 4
        assert s.mean == pytest.approx(2.5)
        assert s.median == pytest.approx(2.5)
        assert s.sd == pytest.approx(np.std([1, 2, 3, 4], ddof=1))
        assert s.cv_percent == pytest.approx(s.sd / 2.5 * 100)
        assert s.min == 1.0 and s.max == 4.0
        assert s.q25 == pytest.approx(1.75)
        assert s.q75 == pytest.approx(3.25)

    def test_geometric(self):
        s = describe("x", [1.0, 2.0, 3.0, 4.0])
        assert s.geometric_mean == pytest.approx(24.0 ** 0.25)
        sd_log = np.std(np.log([1, 2, 3, 4]), ddof=1)
        assert s.geometric_cv_percent == pytest.approx(np.sqrt(np.exp(sd_log**2) - 1) * 100)

    def test_single_value(self):
        s = describe("x", [5.0])
        assert s.sd is None
        assert s.cv_percent is None
        assert s.geometric_mean == pytest.approx(5.0)
        assert s.geometric_cv_percent is None

    def test_empty(self):
        assert describe("x", []) is None

    def test_non_positive_has_no_geometric(self):
        s = describe("x", [0.0, 1.0, 2.0])
        assert s.geometric_mean is None
        assert s.geometric_cv_percent is None


# ---------------------------------------------------------------------------
# summarize
# ---------------------------------------------------------------------------

class TestSummarize:

    def test_returns_summary(self, results):
        s = summarize(results)
        assert isinstance(s, PopulationSummary)
        assert s.n_subjects == 5
        assert s.method == "linear-up-log-down"

    def test_matches_numpy(self, results):
        s = summarize(results)
        cl = [r.clearance for r in results]
        assert s["clearance"].mean == pytest.approx(np.mean(cl))
        assert s["clearance"].sd == pytest.approx(np.std(cl, ddof=1))

    def test_absent_values_skipped(self, results):
        """Bioavailability is absent for IV subjects, so it has no row."""
        s = summarize(results)
        assert "bioavailability" not in s
        assert "clearance" in s

    def test_unestimable_not_counted_as_zero(self, results):
        rising = SubjectRecord(
            subject_id="RISE",
            doses=(DoseEvent(time=0.0, amount=100.0, route="iv-bolus"),),
            observations=tuple(
                ConcentrationObservation(time=t, value=c, concentration=c)
                for t, c in [(0.0, 1.0), (1.0, 2.0), (2.0, 3.0), (3.0, 4.0)]
            ),
            route="iv-bolus",
        )
        s = summarize(results + [analyze_subject(rising)])
        assert s.n_subjects == 6
        assert s["half_life"].n == 5
        assert s["cmax"].n == 6

    def test_exclude_flagged(self, results):
        flagged = replace(results[0], warnings=(QCWarning("custom", "flag"),))
        population = [flagged] + results[1:]
        assert summarize(population).n_subjects == 5
        assert summarize(population, NCAConfig(exclude_flagged=True)).n_subjects == 4

    def test_method_override(self, results):
        s_lin = summarize(results, method="linear")
        s_log = summarize(results, method="log")
        assert s_lin.method == "linear"
        assert s_lin["auc_last"].mean > s_log["auc_last"].mean

    def test_order_invariant(self, results):
        a = summarize(results)
        b = summarize(results[::-1])
        assert a == b

    def test_rows(self, results):
        rows = summarize(results).as_rows()
        assert rows[0]["parameter"] == "cmax"
        assert {"mean", "sd", "geometric_mean"} <= set(rows[0])


# ---------------------------------------------------------------------------
# compare_methods
# ---------------------------------------------------------------------------

class TestCompareMethods:

    def test_all_pairs(self, results):
        c = compare_methods(results)
        assert isinstance(c, MethodComparison)
        assert len(c.pairs) == 6
        assert set(c.mean_auc) == set(NCAConfig().auc_methods)

    def test_linear_above_log(self, results):
        c = compare_methods(results, ["linear", "log"])
        (pair,) = c.pairs
        assert pair.method_a == "linear" and pair.method_b == "log"
        assert pair.n == 5
        assert pair.mean_difference > 0
        assert pair.mean_abs_pct_difference > 0
        assert c.mean_auc["linear"] > c.mean_auc["log"]

    def test_correlation_and_agreement(self, results):
        (pair,) = compare_methods(results, ["linear", "log"]).pairs
        assert pair.correlation > 0.99
        assert pair.loa_lower <= pair.mean_difference <= pair.loa_upper

    def test_identical_methods_agree(self, results):
        """On a monotone decline, lin-up/log-down and log coincide."""
        (pair,) = compare_methods(results, ["linear-up-log-down", "log"]).pairs
        assert pair.mean_abs_pct_difference == pytest.approx(0.0, abs=1e-10)

    def test_single_subject(self, results):
        (pair,) = compare_methods(results[:1], ["linear", "log"]).pairs
        assert pair.n == 1
        assert pair.correlation is None
        assert pair.loa_lower is None

    def test_empty(self):
        c = compare_methods([], ["linear", "log"])
        assert c.mean_auc == {}
        assert c.pairs[0].n == 0
