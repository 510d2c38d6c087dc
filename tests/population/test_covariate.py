"""Tests for covariate regression and dose linearity."""

from dataclasses import replace

import numpy as np
import pytest
from scipy import stats

from popnca import NCAConfig
from popnca.dataset import (
    ConcentrationObservation,
    Covariates,
    DoseEvent,
    SubjectRecord,
)
from popnca.population import (
    CovariateAnalysis,
    analyze_covariates,
    dose_normalize,
    linear_regression,
    run_subjects,
)


TIMES = np.array([0.5, 1, 2, 4, 6, 8, 12, 24])


def _record(subject_id, conc, *, dose=100.0, weight=None, age=None, treatment=None):
    return SubjectRecord(
        subject_id=subject_id,
        doses=(DoseEvent(time=0.0, amount=dose, route="iv-bolus"),),
        observations=tuple(
            ConcentrationObservation(time=float(t), value=float(c), concentration=float(c))
            for t, c in zip(TIMES, conc)
        ),
        route="iv-bolus",
        covariates=Covariates(
            weight=weight, age=age, extra={"TRT": treatment} if treatment else {}
        ),
    )


@pytest.fixture(scope="module")
def weight_population():
    """Clearance rises with body weight; age is unrelated."""
    records = []
    ages = [40, 25, 61, 33, 58, 47, 29, 52, 36, 44]
    for i, age in enumerate(ages):
        weight = 50.0 + 6.0 * i
        ke = 0.05 + 0.002 * weight
        volume = 0.4 * weight
        records.append(
            _record(f"S{i:02d}", 100.0 / volume * np.exp(-ke * TIMES), weight=weight, age=age)
        )
    return records, run_subjects(records, n_jobs=1).results


def _dose_population(power):
    """Three subjects per dose level; exposure scales with dose**power."""
    records = []
    for dose in (100.0, 200.0, 400.0):
        for j, vmult in enumerate((0.9, 1.0, 1.1)):
            conc = dose**power / (10.0 * vmult) * np.exp(-0.2 * TIMES)
            records.append(_record(f"D{int(dose)}-{j}", conc, dose=dose))
    return run_subjects(records, n_jobs=1).results


def _formulation_population():
    """Treatment A (F = 1) at low doses, treatment B (F = 0.5) at high doses."""
    records = []
    for treatment, f, doses in (("A", 1.0, (100.0, 200.0)), ("B", 0.5, (400.0, 800.0))):
        for dose in doses:
            for j, vmult in enumerate((0.9, 1.0, 1.1)):
                conc = f * dose / (10.0 * vmult) * np.exp(-0.2 * TIMES)
                records.append(
                    _record(f"{treatment}{int(dose)}-{j}", conc, dose=dose, treatment=treatment)
                )
    return records, run_subjects(records, n_jobs=1).results


# ---------------------------------------------------------------------------
# Linear regression
# ---------------------------------------------------------------------------

class TestLinearRegression:

    def test_exact_line(self):
        x = np.array([1.0, 2.0, 3.0, 4.0, 5.0])
        r = linear_regression(x, 2.0 * x + 1.0)
        assert r.slope == pytest.approx(2.0)
        assert r.intercept == pytest.approx(1.0)
        assert r.r_squared == pytest.approx(1.0)
        assert r.p_value < 1e-6

    def test_matches_polyfit(self):
        x = np.array([1.0, 2.0, 3.0, 4.0, 5.0, 6.0])
        y = np.array([2.1, 3.9, 6.2, 7.8, 10.1, 12.3])
        r = linear_regression(x, y)
        slope, intercept = np.polyfit(x, y, 1)
        assert r.slope == pytest.approx(slope)
        assert r.intercept == pytest.approx(intercept)
        assert r.n == 6

    def test_slope_confidence_interval(self):
        x = np.array([1.0, 2.0, 3.0, 4.0, 5.0, 6.0])
        y = np.array([2.1, 3.9, 6.2, 7.8, 10.1, 12.3])
        r = linear_regression(x, y)
        half_width = stats.t.ppf(0.975, 4) * r.slope_se
        assert r.ci_lower == pytest.approx(r.slope - half_width)
        assert r.ci_upper == pytest.approx(r.slope + half_width)
        assert r.ci_lower < r.slope < r.ci_upper

    def test_too_few_points(self):
        assert linear_regression([1.0, 2.0], [1.0, 2.0]) is None

    def test_constant_x(self):
        assert linear_regression([3.0, 3.0, 3.0], [1.0, 2.0, 3.0]) is None

    def test_names(self):
        r = linear_regression([1, 2, 3], [2, 4, 7], x_name="weight", y_name="clearance")
        assert (r.x, r.y) == ("weight", "clearance")


# ---------------------------------------------------------------------------
# Covariate analysis
# ---------------------------------------------------------------------------

class TestAnalyzeCovariates:

    def test_returns_analysis(self, weight_population):
        records, results = weight_population
        out = analyze_covariates(records, results)
        assert isinstance(out, CovariateAnalysis)

    def test_weight_clearance(self, weight_population):
        records, results = weight_population
        out = analyze_covariates(records, results)
        corr = next(
            c for c in out.correlations if (c.covariate, c.parameter) == ("weight", "clearance")
        )
        assert corr.r > 0.95
        assert corr.p_value < 0.001
        assert corr.n == 10
        reg = next(r for r in out.regressions if (r.x, r.y) == ("weight", "clearance"))
        assert reg.slope > 0

    def test_height_missing_is_skipped(self, weight_population):
        records, results = weight_population
        out = analyze_covariates(records, results)
        assert all(c.covariate != "height" for c in out.correlations)
        assert all(r.x != "height" for r in out.regressions)

    def test_pairs_covered(self, weight_population):
        records, results = weight_population
        out = analyze_covariates(records, results)
        pairs = {(r.x, r.y) for r in out.regressions}
        assert ("age", "half_life") in pairs
        assert ("weight", "vz") in pairs

    def test_too_few_subjects(self, weight_population):
        records, results = weight_population
        out = analyze_covariates(records[:2], results[:2])
        assert out.correlations == ()
        assert out.regressions == ()

    def test_order_invariant(self, weight_population):
        records, results = weight_population
        a = analyze_covariates(records, results)
        b = analyze_covariates(records[::-1], results[::-1])
        assert a == b


# ---------------------------------------------------------------------------
# Dose normalization
# ---------------------------------------------------------------------------

class TestDoseNormalize:

    def test_proportional(self):
        out = {d.parameter: d for d in dose_normalize(_dose_population(1.0))}
        assert set(out) == {"auc_last", "auc_inf", "cmax"}
        for d in out.values():
            assert d.n == 9
            assert d.conclusion == "dose-proportional"

    def test_normalized_summary(self):
        results = _dose_population(1.0)
        (cmax,) = [d for d in dose_normalize(results) if d.parameter == "cmax"]
        expected = np.mean([r.cmax / r.dose for r in results])
        assert cmax.normalized.mean == pytest.approx(expected)

    def test_non_proportional(self):
        out = {d.parameter: d for d in dose_normalize(_dose_population(2.0))}
        for d in out.values():
            assert d.conclusion == "non-proportional"
            assert d.regression.slope > 0

    def test_single_dose_level(self):
        results = [r for r in _dose_population(1.0) if r.dose == 100.0]
        out = dose_normalize(results)
        assert all(d.conclusion == "insufficient data" for d in out)
        assert all(d.regression is None for d in out)

    def test_exclude_flagged_honoured(self):
        results = _dose_population(1.0)
        out = dose_normalize(results, NCAConfig(exclude_flagged=True))
        assert out[0].n == 9


# ---------------------------------------------------------------------------
# Dose normalization by treatment
# ---------------------------------------------------------------------------

class TestDoseNormalizeByTreatment:

    def test_pooled_only_without_records(self):
        _, results = _formulation_population()
        out = dose_normalize(results)
        assert {d.group for d in out} == {"all"}
        assert len(out) == 3

    def test_groups_reported_after_pooled(self):
        records, results = _formulation_population()
        out = dose_normalize(results, records=records)
        assert [d.group for d in out] == ["all"] * 3 + ["A"] * 3 + ["B"] * 3
        assert all(d.n == 6 for d in out if d.group != "all")

    def test_formulations_proportional_within_group(self):
        records, results = _formulation_population()
        out = dose_normalize(results, records=records)
        pooled = {d.parameter: d for d in out if d.group == "all"}
        for d in out:
            if d.group == "all":
                continue
            assert d.conclusion == "dose-proportional"
        # Mixing formulations makes exposure per unit dose fall with dose
        assert pooled["auc_inf"].conclusion == "non-proportional"
        assert pooled["auc_inf"].regression.slope < 0

    def test_group_normalized_mean(self):
        records, results = _formulation_population()
        out = dose_normalize(results, records=records)
        (a,) = [d for d in out if d.group == "A" and d.parameter == "cmax"]
        (b,) = [d for d in out if d.group == "B" and d.parameter == "cmax"]
        assert b.normalized.mean == pytest.approx(0.5 * a.normalized.mean)

    def test_unknown_treatment_and_small_groups(self):
        records, results = _formulation_population()
        # Two B subjects lose their treatment; B keeps four, Unknown has two
        relabelled = [
            replace(r, covariates=Covariates()) if r.subject_id in ("B400-0", "B800-0") else r
            for r in records
        ]
        out = dose_normalize(results, records=relabelled)
        groups = {d.group for d in out}
        assert groups == {"all", "A", "B"}
        assert all(d.n == 4 for d in out if d.group == "B")

    def test_single_treatment_not_repeated(self):
        records, results = _formulation_population()
        a_records = [r for r in records if r.subject_id.startswith("A")]
        a_results = [r for r in results if r.subject_id.startswith("A")]
        out = dose_normalize(a_results, records=a_records)
        assert {d.group for d in out} == {"all"}
