"""Tests for derived PK parameters (CL, Vz, Vss, MRT, F)."""

import numpy as np
import pytest

from popnca import NCAConfig
from popnca.dataset import ConcentrationObservation, DoseEvent, SubjectRecord
from popnca.nca import (
    ReferenceExposure,
    SubjectParameters,
    compute_auc,
    derive_parameters,
    estimate_lambda_z,
)


CONFIG = NCAConfig(auc_methods=("log",))


def _record(times, concs, *, dose=100.0, route="iv-bolus", duration=None):
    observations = tuple(
        ConcentrationObservation(time=float(t), value=float(c), concentration=float(c))
        for t, c in zip(times, concs)
    )
    doses = ()
    if dose is not None:
        rate = dose / duration if duration else None
        doses = (DoseEvent(time=0.0, amount=dose, route=route, rate=rate, duration=duration),)
    return SubjectRecord(
        subject_id="1",
        doses=doses,
        observations=observations,
        route=route if dose is not None else None,
    )


def _derive(record, config=CONFIG, reference=None):
    fit = estimate_lambda_z(record.time, record.concentration)
    auc = {
        m: compute_auc(record.time, record.concentration, m, fit.lambda_z)
        for m in config.auc_methods
    }
    return derive_parameters(record, fit, auc, config, reference)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def iv_profile():
    """One-compartment IV bolus: Dose=100, V=10, ke=0.2, so CL=2."""
    time = np.array([0.0, 0.5, 1, 2, 4, 6, 8, 12, 24])
    return time, 10.0 * np.exp(-0.2 * time)


@pytest.fixture
def oral_profile():
    """One-compartment oral: ka=1.0, ke=0.1, V=10, F=1, Dose=100."""
    time = np.array([0, 0.25, 0.5, 1, 2, 4, 6, 8, 12, 16, 24, 36, 48])
    a = 100.0 * 1.0 / (10.0 * (1.0 - 0.1))
    return time, a * (np.exp(-0.1 * time) - np.exp(-1.0 * time))


# ---------------------------------------------------------------------------
# Intravascular
# ---------------------------------------------------------------------------

class TestIntravascular:

    def test_returns_parameters(self, iv_profile):
        p = _derive(_record(*iv_profile))
        assert isinstance(p, SubjectParameters)
        assert p.warnings == ()

    def test_cmax_tmax(self, iv_profile):
        p = _derive(_record(*iv_profile))
        assert p.cmax == pytest.approx(10.0)
        assert p.tmax == 0.0

    def test_tlast_clast(self, iv_profile):
        time, conc = iv_profile
        p = _derive(_record(time, conc))
        assert p.tlast == 24.0
        assert p.clast == pytest.approx(conc[-1])

    def test_clearance(self, iv_profile):
        """Log trapezoid is exact for a mono-exponential, so CL = Dose/AUC = 2."""
        p = _derive(_record(*iv_profile))
        assert p.clearance == pytest.approx(2.0, rel=1e-8)
        assert not p.clearance_is_apparent

    def test_vz(self, iv_profile):
        p = _derive(_record(*iv_profile))
        assert p.vz == pytest.approx(10.0, rel=1e-8)
        assert p.vz == pytest.approx(p.clearance / p.lambda_z)

    def test_mrt_and_vss(self, iv_profile):
        p = _derive(_record(*iv_profile))
        assert p.mrt == pytest.approx(5.0, rel=1e-8)
        assert p.vss == pytest.approx(p.mrt * p.clearance)

    def test_infusion_mrt_correction(self, iv_profile):
        time, conc = iv_profile
        bolus = _derive(_record(time, conc))
        infused = _derive(_record(time, conc, route="iv-infusion", duration=2.0))
        assert infused.mrt == pytest.approx(bolus.mrt - 1.0)
        assert infused.infusion_duration == 2.0

    def test_no_bioavailability_for_iv(self, iv_profile):
        p = _derive(_record(*iv_profile), reference=ReferenceExposure(50.0, 100.0))
        assert p.bioavailability is None


# ---------------------------------------------------------------------------
# Extravascular
# ---------------------------------------------------------------------------

class TestExtravascular:

    def test_apparent_clearance(self, oral_profile):
        p = _derive(_record(*oral_profile, route="oral"))
        assert p.clearance_is_apparent
        assert p.clearance == pytest.approx(1.0, rel=0.05)

    def test_bioavailability_from_reference(self, oral_profile):
        oral = _derive(_record(*oral_profile, route="oral"))
        reference = ReferenceExposure(auc_inf=2.0 * oral.auc_inf, dose=100.0)
        p = _derive(_record(*oral_profile, route="oral"), reference=reference)
        assert p.bioavailability == pytest.approx(0.5)

    def test_clearance_uses_known_f(self, oral_profile):
        oral = _derive(_record(*oral_profile, route="oral"))
        reference = ReferenceExposure(auc_inf=2.0 * oral.auc_inf, dose=100.0)
        p = _derive(_record(*oral_profile, route="oral"), reference=reference)
        assert not p.clearance_is_apparent
        assert p.clearance == pytest.approx(0.5 * oral.clearance)

    def test_summary_labels_apparent(self, oral_profile):
        p = _derive(_record(*oral_profile, route="oral"))
        assert "CL/F" in p.summary()


# ---------------------------------------------------------------------------
# Missing prerequisites
# ---------------------------------------------------------------------------

class TestMissing:

    def test_no_dose(self, iv_profile):
        p = _derive(_record(*iv_profile, dose=None))
        assert p.dose is None
        assert p.clearance is None
        assert p.vz is None
        assert p.vss is None
        assert p.mrt is not None

    def test_unestimable_lambda_z(self):
        p = _derive(_record([0, 1, 2, 3], [1.0, 2.0, 3.0, 4.0]))
        assert p.lambda_z is None
        assert p.auc_inf is None
        assert p.clearance is None
        assert p.vz is None
        assert p.mrt is None
        assert p.auc_last > 0

    def test_primary_method_required(self, iv_profile):
        record = _record(*iv_profile)
        fit = estimate_lambda_z(record.time, record.concentration)
        auc = {"linear": compute_auc(record.time, record.concentration, "linear")}
        with pytest.raises(ValueError, match="primary method"):
            derive_parameters(record, fit, auc, CONFIG)


# ---------------------------------------------------------------------------
# Accessors and export
# ---------------------------------------------------------------------------

class TestAccessors:

    def test_value_by_name(self, iv_profile):
        p = _derive(_record(*iv_profile))
        assert p.value("cmax") == p.cmax
        assert p.value("half_life") == p.half_life

    def test_value_per_method(self, iv_profile):
        config = NCAConfig(auc_methods=("log", "linear"))
        p = _derive(_record(*iv_profile), config)
        assert p.value("auc_last", "linear") == p.auc["linear"].auc_last
        assert p.value("auc_last", "linear") > p.value("auc_last")

    def test_value_unknown(self, iv_profile):
        p = _derive(_record(*iv_profile))
        with pytest.raises(ValueError, match="Unknown parameter"):
            p.value("foo")

    def test_row_has_every_method(self, iv_profile):
        config = NCAConfig(auc_methods=("log", "linear"))
        row = _derive(_record(*iv_profile), config).as_row()
        assert "auc_last[log]" in row
        assert "auc_last[linear]" in row
        assert row["subject_id"] == "1"
