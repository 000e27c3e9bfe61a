"""
Plotting utilities for fitted growth curve models.

ArviZ-based diagnostic plots plus matplotlib views of the growth curve,
the forecast cone and the posterior predictive checks.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import arviz as az
import matplotlib.pyplot as plt
import numpy as np

if TYPE_CHECKING:
    from matplotlib.axes import Axes
    from matplotlib.figure import Figure

    from .estimators import FitResult
    from .forecast import ForecastCone
    from .ppc import PPCResult

_DEFAULT_VARS = ["omega", "theta", "mu_LR", "sd_LR", "sigma"]


def plot_trace(
    result: FitResult,
    var_names: list[str] | None = None,
    compact: bool = True,
    figsize: tuple[float, float] | None = None,
    **kwargs: Any,
) -> tuple[Figure, Axes]:
    """
    Create trace plots for model parameters.

    Parameters
    ----------
    result : FitResult
        A fitted growth curve model.
    var_names : list[str], optional
        Parameter names to plot. Defaults to the scalar parameters.
    compact : bool, optional
        If True, combines chains into a single distribution. Default is True.
    figsize : tuple[float, float], optional
        Figure size as (width, height).
    **kwargs
        Additional arguments passed to az.plot_trace.

    Returns
    -------
    tuple[Figure, Axes]
        Matplotlib Figure and Axes objects.

    Examples
    --------
    >>> result = BayesianGrowthCurve().fit(triangle)
    >>> fig, ax = plot_trace(result)
    >>> plt.show()
    """
    axes = az.plot_trace(
        result.idata,
        var_names=var_names or _DEFAULT_VARS,
        compact=compact,
        figsize=figsize,
        **kwargs,
    )

    fig = plt.gcf()
    fig.tight_layout()

    return fig, axes


def plot_forest(
    result: FitResult,
    var_names: list[str] | None = None,
    combined: bool = True,
    hdi_prob: float = 0.94,
    figsize: tuple[float, float] | None = None,
    **kwargs: Any,
) -> tuple[Figure, Axes]:
    """
    Forest plot of the cohort loss ratios (or other parameters).

    Parameters
    ----------
    result : FitResult
        A fitted growth curve model.
    var_names : list[str], optional
        Parameter names to plot. Default is ``["LR"]``.
    combined : bool, optional
        If True, combines chains. Default is True.
    hdi_prob : float, optional
        Probability mass for HDI. Default is 0.94.
    figsize : tuple[float, float], optional
        Figure size.
    **kwargs
        Additional arguments passed to az.plot_forest.

    Returns
    -------
    tuple[Figure, Axes]
    """
    axes = az.plot_forest(
        result.idata,
        var_names=var_names or ["LR"],
        combined=combined,
        hdi_prob=hdi_prob,
        figsize=figsize,
        **kwargs,
    )
    fig = plt.gcf()

    return fig, axes


def plot_growth_curve(
    result: FitResult,
    n_points: int = 100,
    hdi_prob: float = 0.9,
    figsize: tuple[float, float] | None = None,
    **kwargs: Any,
) -> tuple[Figure, Axes]:
    """
    Plot the posterior growth curve against the observed loss development.

    Observed losses are shown as a fraction of each cohort's posterior mean
    ultimate (``premium * LR``).

    Parameters
    ----------
    result : FitResult
        A fitted growth curve model.
    n_points : int, optional
        Number of points on the time axis. Default is 100.
    hdi_prob : float, optional
        Width of the shaded central interval. Default is 0.9.
    figsize : tuple[float, float], optional
        Figure size.
    **kwargs
        Additional arguments passed to ``ax.plot`` for the median curve.

    Returns
    -------
    tuple[Figure, Axes]
    """
    tri = result.triangle
    g = result.model.growth_function
    posterior = result.idata.posterior

    omega = posterior["omega"].values.ravel()
    theta = posterior["theta"].values.ravel()

    t = np.linspace(0.0, tri.terminal_lag, n_points)
    curves = g(t[None, :], omega[:, None], theta[:, None])

    tail = (1 - hdi_prob) / 2
    lower, upper = np.quantile(curves, [tail, 1 - tail], axis=0)

    if figsize is None:
        figsize = (10, 6)

    fig, ax = plt.subplots(figsize=figsize)

    ax.fill_between(t, lower, upper, alpha=0.3, label=f"{hdi_prob:.0%} interval")
    ax.plot(t, np.median(curves, axis=0), "-", label="Posterior Median", **kwargs)

    lr_mean = posterior["LR"].mean(dim=["chain", "draw"]).values
    ultimate = tri.premium * lr_mean
    ax.scatter(
        tri.obs_lag,
        tri.obs_loss / ultimate[tri.obs_cohort_idx],
        s=12,
        alpha=0.6,
        color="black",
        label="Observed",
    )

    ax.set_xlabel("Development Lag")
    ax.set_ylabel("Fraction of Ultimate")
    ax.set_title(f"Growth Curve ({result.growth.name.title()})")
    ax.legend()

    return fig, ax


def plot_forecast_cone(
    cone: ForecastCone,
    cohorts: list | None = None,
    quantiles: tuple[float, float] = (0.05, 0.95),
    figsize: tuple[float, float] | None = None,
) -> tuple[Figure, Axes]:
    """
    Plot the forecast cone of cumulative losses, one panel per cohort.

    Parameters
    ----------
    cone : ForecastCone
        Output of :func:`~.forecast.forecast_losses`.
    cohorts : list, optional
        Cohort labels to plot. Default is all cohorts.
    quantiles : tuple[float, float], optional
        Lower and upper band. Default is (0.05, 0.95).
    figsize : tuple[float, float], optional
        Figure size.

    Returns
    -------
    tuple[Figure, Axes]
    """
    tri = cone.triangle
    labels = list(cohorts) if cohorts is not None else tri.cohort_labels
    lags = tri.dev_lags

    q = cone.quantiles([quantiles[0], 0.5, quantiles[1]])

    n_cohorts = len(labels)
    ncols = min(3, n_cohorts)
    nrows = (n_cohorts + ncols - 1) // ncols

    if figsize is None:
        figsize = (4 * ncols, 3 * nrows)

    fig, axes = plt.subplots(nrows, ncols, figsize=figsize, squeeze=False)

    for i, label in enumerate(labels):
        ax = axes[i // ncols, i % ncols]
        band = q.sel(cohort=label).values
        ax.fill_between(lags, band[0], band[2], alpha=0.3)
        ax.plot(lags, band[1], "-", label="Median")

        k = tri.cohort_index[label]
        n_obs = tri.latest_lag_index[k] + 1
        ax.plot(lags[:n_obs], tri.observed[k, :n_obs], "o", color="black", label="Observed")

        ax.set_title(f"Cohort {label}")
        ax.set_xlabel("Development Lag")

    for i in range(n_cohorts, nrows * ncols):
        axes[i // ncols, i % ncols].set_visible(False)

    fig.tight_layout()

    return fig, axes


def plot_ppc_statistics(
    ppc: PPCResult,
    bins: int = 40,
    figsize: tuple[float, float] | None = None,
) -> tuple[Figure, Axes]:
    """
    Histogram of each posterior predictive statistic with the realised value.

    Parameters
    ----------
    ppc : PPCResult
        Output of :func:`~.ppc.posterior_predictive_statistics`.
    bins : int, optional
        Histogram bins. Default is 40.
    figsize : tuple[float, float], optional
        Figure size.

    Returns
    -------
    tuple[Figure, Axes]
    """
    panels = [
        ("min_LR", ppc.min_lr, ppc.observed_min_lr),
        ("max_LR", ppc.max_lr, ppc.observed_max_lr),
        ("EFC", ppc.efc, ppc.future_claims_actual),
    ]
    percentiles = ppc.percentile_of_actual()

    if figsize is None:
        figsize = (12, 4)

    fig, axes = plt.subplots(1, len(panels), figsize=figsize)

    for ax, (name, samples, actual) in zip(axes, panels):
        if samples.size:
            ax.hist(samples, bins=bins, density=True, alpha=0.7)
        if actual is not None:
            ax.axvline(actual, color="red", linestyle="--", label="Actual")
            ax.set_title(f"{name} (actual at {percentiles[name]:.0f}th pct)")
            ax.legend()
        else:
            ax.set_title(name)
        ax.set_xlabel(name)

    fig.tight_layout()

    return fig, axes
