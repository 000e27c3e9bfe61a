"""Tests for plotting functions."""

import arviz as az
import matplotlib
import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import pytest

# Use non-interactive backend for testing
matplotlib.use("Agg")

from bayesiangrowthcurve.estimators import BayesianGrowthCurve
from bayesiangrowthcurve.plots import (
    plot_forecast_cone,
    plot_forest,
    plot_growth_curve,
    plot_ppc_statistics,
    plot_trace,
)
from bayesiangrowthcurve.sampling import FixedDrawSampler


@pytest.fixture
def fitted_result(staircase_triangle):
    """A fit result backed by fixed, well-mixed draws."""
    rng = np.random.default_rng(1)
    size = (2, 100)
    idata = az.from_dict(
        posterior={
            "omega": rng.lognormal(np.log(1.5), 0.05, size=size),
            "theta": rng.lognormal(np.log(1.5), 0.05, size=size),
            "LR": rng.lognormal(np.log(0.75), 0.05, size=size + (4,)),
            "mu_LR": rng.normal(np.log(0.75), 0.05, size=size),
            "sd_LR": rng.lognormal(np.log(0.1), 0.1, size=size),
            "sigma": rng.lognormal(np.log(0.02), 0.1, size=size),
        },
        coords={"cohort": staircase_triangle.cohort_labels},
        dims={"LR": ["cohort"]},
    )
    return BayesianGrowthCurve(sampler=FixedDrawSampler(idata)).fit(staircase_triangle)


@pytest.fixture(autouse=True)
def close_figures():
    yield
    plt.close("all")


class TestDiagnosticPlots:
    """Tests for ArviZ-based plots."""

    def test_plot_trace(self, fitted_result):
        """Test that function returns figure and axes."""
        fig, axes = plot_trace(fitted_result)

        assert isinstance(fig, plt.Figure)
        assert np.asarray(axes).shape[0] == 5

    def test_plot_forest(self, fitted_result):
        """Test the loss ratio forest plot."""
        fig, axes = plot_forest(fitted_result)
        assert isinstance(fig, plt.Figure)


class TestPlotGrowthCurve:
    """Tests for plot_growth_curve."""

    def test_returns_figure_axes(self, fitted_result):
        """Test that function returns figure and axes."""
        fig, ax = plot_growth_curve(fitted_result)

        assert isinstance(fig, plt.Figure)
        assert ax.get_xlabel() == "Development Lag"
        assert "Weibull" in ax.get_title()


class TestPlotForecastCone:
    """Tests for plot_forecast_cone."""

    def test_all_cohorts(self, fitted_result):
        """Test one panel per cohort, extra panels hidden."""
        fig, axes = plot_forecast_cone(fitted_result.forecast())

        assert axes.shape == (2, 3)
        assert axes[0, 0].get_title() == "Cohort 2001"
        assert not axes[1, 2].get_visible()

    def test_selected_cohorts(self, fitted_result):
        """Test plotting a subset of cohorts."""
        fig, axes = plot_forecast_cone(fitted_result.forecast(), cohorts=[2003])
        assert axes.shape == (1, 1)
        assert axes[0, 0].get_title() == "Cohort 2003"


class TestPlotPPCStatistics:
    """Tests for plot_ppc_statistics."""

    def test_with_actual(self, fitted_result, staircase_triangle):
        """Test panels with realised values."""
        actual = pd.Series(staircase_triangle.latest_loss * 1.05, index=staircase_triangle.cohort_labels)
        fig, axes = plot_ppc_statistics(fitted_result.ppc(actual))

        assert len(axes) == 3
        assert axes[2].get_title().startswith("EFC")
        assert axes[2].get_legend() is not None

    def test_without_actual(self, fitted_result):
        """Test panels when no realised claims are available."""
        fig, axes = plot_ppc_statistics(fitted_result.ppc())
        assert axes[2].get_title() == "EFC"
