"""Tests for samplers and convergence diagnostics."""

import arviz as az
import numpy as np
import pytest
from pymc.exceptions import SamplingError as PyMCSamplingError

from bayesiangrowthcurve.exceptions import ConvergenceWarning, SamplingError
from bayesiangrowthcurve.models import GrowthCurveModel
from bayesiangrowthcurve.sampling import (
    ConvergenceDiagnostics,
    FixedDrawSampler,
    PyMCSampler,
    SamplerConfig,
    get_posterior,
    iter_parameter_sets,
    posterior_from_parameter_sets,
)


def _posterior(n_chains, n_draws, n_cohorts=2, seed=0, shift=None):
    """Random posterior in the layout a sampler produces."""
    rng = np.random.default_rng(seed)
    size = (n_chains, n_draws)
    posterior = {
        "omega": rng.lognormal(0.3, 0.05, size=size),
        "theta": rng.lognormal(0.7, 0.05, size=size),
        "LR": rng.lognormal(-0.5, 0.05, size=size + (n_cohorts,)),
        "mu_LR": rng.normal(-0.5, 0.05, size=size),
        "sd_LR": rng.lognormal(-2.0, 0.1, size=size),
        "sigma": rng.lognormal(-3.0, 0.1, size=size),
    }
    if shift is not None:
        posterior["omega"] = posterior["omega"] + shift[:, None]
    return az.from_dict(
        posterior=posterior,
        coords={"cohort": [f"c{i}" for i in range(n_cohorts)]},
        dims={"LR": ["cohort"]},
    )


class TestSamplerConfig:
    """Tests for SamplerConfig."""

    def test_defaults(self):
        """Test default settings."""
        config = SamplerConfig()
        assert config.iterations == 2000
        assert config.warmup == 1000
        assert config.chains == 4
        assert config.draws == 1000
        assert config.total_draws == 4000
        assert config.target_accept == 0.9

    def test_explicit_warmup(self):
        """Test retained draws with an explicit warmup."""
        config = SamplerConfig(iterations=500, warmup=100, chains=2)
        assert config.draws == 400
        assert config.total_draws == 800

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"iterations": 0},
            {"iterations": 100, "warmup": 100},
            {"warmup": -1},
            {"chains": 0},
            {"target_accept": 1.0},
            {"rhat_threshold": 1.0},
            {"min_ess_fraction": 1.5},
        ],
    )
    def test_invalid_settings_raise(self, kwargs):
        """Test that invalid settings raise ValueError."""
        with pytest.raises(ValueError):
            SamplerConfig(**kwargs)

    def test_chain_seeds_reproducible_and_distinct(self):
        """Test per-chain seeds derived from the run seed."""
        seeds = SamplerConfig(chains=4, seed=42).chain_seeds()
        assert seeds == SamplerConfig(chains=4, seed=42).chain_seeds()
        assert len(set(seeds)) == 4
        assert seeds != SamplerConfig(chains=4, seed=43).chain_seeds()

    def test_frozen(self):
        """Test that the configuration is immutable."""
        config = SamplerConfig()
        with pytest.raises(AttributeError):
            config.chains = 2


class TestPosteriorConversion:
    """Tests for moving between ParameterSets and InferenceData."""

    def test_single_chain(self, toy_triangle, toy_params):
        """Test a flat list of draws becomes one chain."""
        idata = posterior_from_parameter_sets([toy_params, toy_params, toy_params], toy_triangle)
        posterior = idata.posterior
        assert posterior.sizes["chain"] == 1
        assert posterior.sizes["draw"] == 3
        assert posterior["LR"].dims == ("chain", "draw", "cohort")
        assert list(posterior.coords["cohort"].values) == ["A", "B"]

    def test_multiple_chains(self, staircase_triangle, parameter_draws):
        """Test nested lists become several chains."""
        idata = posterior_from_parameter_sets(parameter_draws, staircase_triangle)
        assert idata.posterior.sizes["chain"] == 2
        assert idata.posterior.sizes["draw"] == 5

    def test_round_trip(self, staircase_triangle, parameter_draws):
        """Test that iterating the posterior gives back the draws, chain-major."""
        idata = posterior_from_parameter_sets(parameter_draws, staircase_triangle)
        recovered = list(iter_parameter_sets(idata))
        flat = [p for chain in parameter_draws for p in chain]

        assert len(recovered) == len(flat)
        for got, expected in zip(recovered, flat):
            assert got.omega == pytest.approx(expected.omega)
            np.testing.assert_allclose(got.LR, expected.LR)

    def test_ragged_chains_raise(self, toy_triangle, toy_params):
        """Test that chains of different length raise ValueError."""
        with pytest.raises(ValueError):
            posterior_from_parameter_sets([[toy_params], [toy_params, toy_params]], toy_triangle)

    def test_wrong_cohort_count_raises(self, staircase_triangle, toy_params):
        """Test that LR of the wrong length raises ValueError."""
        with pytest.raises(ValueError, match="cohorts"):
            posterior_from_parameter_sets([toy_params], staircase_triangle)

    def test_empty_raises(self, toy_triangle):
        """Test that no draws raise ValueError."""
        with pytest.raises(ValueError):
            posterior_from_parameter_sets([], toy_triangle)

    def test_get_posterior(self, toy_triangle, toy_params):
        """Test posterior extraction from InferenceData and Dataset."""
        idata = posterior_from_parameter_sets([toy_params], toy_triangle)
        assert get_posterior(idata) is idata.posterior
        assert get_posterior(idata.posterior) is idata.posterior
        with pytest.raises(TypeError):
            get_posterior({"omega": 1.0})


class TestFixedDrawSampler:
    """Tests for FixedDrawSampler."""

    def test_returns_given_draws(self, staircase_triangle, parameter_draws):
        """Test that the draws come back unchanged."""
        model = GrowthCurveModel(staircase_triangle)
        output = FixedDrawSampler(parameter_draws).sample(model, SamplerConfig())

        assert output.chains_requested == 2
        assert output.chains_completed == 2
        omega = output.idata.posterior["omega"].values
        assert omega[1, 4] == pytest.approx(parameter_draws[1][4].omega)

    def test_inference_data_passthrough(self, staircase_triangle):
        """Test that InferenceData draws are returned as is."""
        idata = _posterior(3, 10, n_cohorts=4)
        output = FixedDrawSampler(idata).sample(GrowthCurveModel(staircase_triangle))
        assert output.idata is idata
        assert output.chains_completed == 3

    def test_simulated_chain_failure(self, staircase_triangle, parameter_draws):
        """Test reporting fewer completed chains than requested."""
        model = GrowthCurveModel(staircase_triangle)
        output = FixedDrawSampler(parameter_draws, chains_requested=4).sample(model)
        assert output.chains_requested == 4
        assert output.chains_completed == 2


class TestPyMCSamplerChainFailures:
    """Tests for chain isolation in PyMCSampler, with sampling stubbed out."""

    @pytest.fixture
    def model(self, toy_triangle):
        return GrowthCurveModel(toy_triangle)

    def test_failed_chain_is_dropped(self, model, monkeypatch):
        """Test that one failing chain is dropped and the rest renumbered."""
        config = SamplerConfig(iterations=20, chains=3, seed=1)
        failing_seed = config.chain_seeds()[1]

        def fake_run(self, pm_model, config, seeds, initvals, cores):
            if len(seeds) > 1 or seeds[0] == failing_seed:
                raise PyMCSamplingError("bad initial energy")
            return _posterior(1, config.draws, seed=seeds[0] % 1000)

        monkeypatch.setattr(PyMCSampler, "_run", fake_run)
        output = PyMCSampler().sample(model, config)

        assert output.chains_requested == 3
        assert output.chains_completed == 2
        np.testing.assert_array_equal(output.idata.posterior.coords["chain"].values, [0, 1])

    def test_non_finite_chain_is_dropped(self, model, monkeypatch):
        """Test that a chain with non-finite draws is dropped."""
        config = SamplerConfig(iterations=20, chains=2, seed=1)

        def fake_run(self, pm_model, config, seeds, initvals, cores):
            idata = _posterior(len(seeds), config.draws)
            idata.posterior["sigma"][1, 3] = np.nan
            return idata

        monkeypatch.setattr(PyMCSampler, "_run", fake_run)
        output = PyMCSampler().sample(model, config)

        assert output.chains_completed == 1
        assert np.isfinite(output.idata.posterior["sigma"].values).all()

    def test_all_chains_failing_raises(self, model, monkeypatch):
        """Test that SamplingError is raised when no chain survives."""

        def fake_run(self, pm_model, config, seeds, initvals, cores):
            raise PyMCSamplingError("bad initial energy")

        monkeypatch.setattr(PyMCSampler, "_run", fake_run)
        with pytest.raises(SamplingError):
            PyMCSampler().sample(model, SamplerConfig(iterations=20, chains=2))


class TestConvergenceDiagnostics:
    """Tests for ConvergenceDiagnostics."""

    def test_well_mixed_chains(self):
        """Test that independent draws from one distribution pass."""
        diag = ConvergenceDiagnostics.from_idata(_posterior(4, 500))

        assert diag.converged
        assert diag.flagged == []
        assert diag.max_rhat < 1.1
        assert diag.min_ess_bulk > 200
        assert diag.n_chains == 4
        assert diag.n_draws == 500
        assert diag.min_ess == pytest.approx(200.0)
        assert {"r_hat", "ess_bulk", "ess_tail"} <= set(diag.table.columns)
        assert "LR[c0]" in diag.table.index

    def test_check_passes_silently(self, recwarn):
        """Test that check() issues no warning when converged."""
        diag = ConvergenceDiagnostics.from_idata(_posterior(4, 500))
        assert diag.check()
        assert not [w for w in recwarn if issubclass(w.category, ConvergenceWarning)]

    def test_separated_chains_flag_rhat(self):
        """Test that chains stuck in different places are flagged."""
        idata = _posterior(4, 200, shift=np.array([0.0, 0.0, 5.0, 5.0]))
        diag = ConvergenceDiagnostics.from_idata(idata)

        assert not diag.converged
        assert "omega" in diag.rhat_flagged
        with pytest.warns(ConvergenceWarning, match="omega"):
            assert not diag.check()

    def test_absolute_ess_floor(self):
        """Test that an unreachable ESS floor flags every parameter."""
        diag = ConvergenceDiagnostics.from_idata(_posterior(2, 100), min_ess=1e6)
        assert set(diag.ess_flagged) == set(diag.table.index)
