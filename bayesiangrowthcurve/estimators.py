"""
High-level estimator for Bayesian growth curve reserving.

:class:`BayesianGrowthCurve` holds configuration only. Calling
:meth:`BayesianGrowthCurve.fit` returns a new, immutable :class:`FitResult`
carrying the model, the posterior draws and their convergence diagnostics,
from which forecasts and posterior predictive checks are derived.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

import arviz as az
import numpy as np
import pandas as pd

from .forecast import DEFAULT_GROWTH_FLOOR, ForecastCone, forecast_losses
from .growth import GrowthCurve
from .models import (
    GrowthCurveModel,
    ParameterSet,
    PriorConfig,
    compute_loo,
    compute_waic,
    extract_parameter_summary,
)
from .ppc import PPCResult, posterior_predictive_statistics
from .sampling import (
    ConvergenceDiagnostics,
    PosteriorSampler,
    PyMCSampler,
    SamplerConfig,
    iter_parameter_sets,
)
from .utils import Triangle

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FitResult:
    """
    Outcome of fitting a growth curve model.

    Attributes
    ----------
    model : GrowthCurveModel
        The model that was sampled.
    idata : az.InferenceData
        Posterior draws from the chains that completed.
    diagnostics : ConvergenceDiagnostics
        R-hat and ESS computed from all completed chains.
    config : SamplerConfig
        Sampling configuration used.
    chains_requested, chains_completed : int
        Chains asked for, and chains present in ``idata``.
    """

    model: GrowthCurveModel
    idata: az.InferenceData
    diagnostics: ConvergenceDiagnostics
    config: SamplerConfig
    chains_requested: int
    chains_completed: int

    @property
    def triangle(self) -> Triangle:
        return self.model.triangle

    @property
    def growth(self) -> GrowthCurve:
        return self.model.growth

    @property
    def converged(self) -> bool:
        return self.diagnostics.converged

    def forecast(self, growth_floor: float = DEFAULT_GROWTH_FLOOR) -> ForecastCone:
        """
        Forecast cumulative losses for every cohort and lag, per draw.

        See :func:`~.forecast.forecast_losses`.
        """
        return forecast_losses(
            self.triangle, self.idata, self.model.growth_function, growth_floor=growth_floor
        )

    def ppc(
        self,
        actual_final: pd.Series | Mapping | Sequence | np.ndarray | None = None,
        basis: str = "forecast",
        growth_floor: float = DEFAULT_GROWTH_FLOOR,
        predictive: bool = True,
        random_seed: int | np.random.Generator | None = None,
    ) -> PPCResult:
        """
        Posterior predictive check statistics.

        The predictive noise is seeded from the sampling seed unless
        ``random_seed`` is given. See
        :func:`~.ppc.posterior_predictive_statistics`.
        """
        return posterior_predictive_statistics(
            self.triangle,
            self.idata,
            self.model.growth_function,
            actual_final=actual_final,
            basis=basis,
            growth_floor=growth_floor,
            predictive=predictive,
            random_seed=self.config.seed if random_seed is None else random_seed,
        )

    def parameter_summary(
        self,
        var_names: list[str] | None = None,
        hdi_prob: float = 0.94,
    ) -> pd.DataFrame:
        """
        Posterior summary of the model parameters.

        Parameters
        ----------
        var_names : list[str], optional
            Parameter names to include. If None, includes all.
        hdi_prob : float, optional
            Probability mass for HDI. Default is 0.94.

        Returns
        -------
        pd.DataFrame
        """
        return extract_parameter_summary(self.idata, var_names=var_names, hdi_prob=hdi_prob)

    def loss_ratios(self) -> pd.DataFrame:
        """
        Posterior summary of the ultimate loss ratio by cohort.

        Returns
        -------
        pd.DataFrame
            mean, std, median, 5% and 95% per cohort.
        """
        lr = self.idata.posterior["LR"].stack(sample=("chain", "draw")).transpose("cohort", "sample")
        values = lr.values

        return pd.DataFrame(
            {
                "mean": values.mean(axis=1),
                "std": values.std(axis=1),
                "median": np.median(values, axis=1),
                "5%": np.percentile(values, 5, axis=1),
                "95%": np.percentile(values, 95, axis=1),
            },
            index=pd.Index(self.triangle.cohort_labels, name="cohort"),
        )

    def summary(
        self,
        quantiles: Sequence[float] = (0.05, 0.25, 0.5, 0.75, 0.95),
        include_totals: bool = True,
        growth_floor: float = DEFAULT_GROWTH_FLOOR,
    ) -> pd.DataFrame:
        """
        Reserve summary by cohort.

        See :meth:`~.forecast.ForecastCone.summary`.
        """
        cone = self.forecast(growth_floor=growth_floor)
        return cone.summary(quantiles=quantiles, include_totals=include_totals)

    def parameter_sets(self) -> list[ParameterSet]:
        """All posterior draws as parameter sets, chain-major."""
        return list(iter_parameter_sets(self.idata))

    def loo(self) -> az.ELPDData:
        return compute_loo(self.idata)

    def waic(self) -> az.ELPDData:
        return compute_waic(self.idata)


class BayesianGrowthCurve:
    """
    Bayesian hierarchical growth curve model for loss reserving.

    Each cohort's cumulative loss develops towards ``premium * LR`` along a
    growth curve shared by all cohorts:

        cum_loss(y, t) ~ Normal(premium(y) * LR(y) * g(t; omega, theta), premium(y) * sigma)

    The loss ratios ``LR`` are partially pooled through a log-normal
    hierarchy. The curve ``g`` is either the Weibull or the log-logistic
    form, see :mod:`~.growth`.

    Parameters
    ----------
    growth : GrowthCurve, int or str, optional
        Growth curve family. Default is ``GrowthCurve.WEIBULL``.
    priors : PriorConfig or dict, optional
        Prior hyperparameters, e.g. ``{"omega": {"mu": 0, "sigma": 1}}``.
    iterations : int, optional
        Total iterations per chain, including warmup. Default is 2000.
    warmup : int, optional
        Warmup iterations per chain. Default is ``iterations // 2``.
    chains : int, optional
        Number of MCMC chains. Default is 4.
    random_seed : int, optional
        Random seed for reproducibility.
    target_accept : float, optional
        Target acceptance probability for NUTS sampler. Default is 0.9.
    cores : int, optional
        Number of chains sampled in parallel.
    rhat_threshold : float, optional
        R-hat at or above this is flagged. Default is 1.1.
    min_ess_fraction : float, optional
        Bulk ESS below this fraction of total draws is flagged. Default is 0.1.
    sampler : PosteriorSampler, optional
        Sampling engine. Default is :class:`~.sampling.PyMCSampler`.

    Examples
    --------
    >>> from bayesiangrowthcurve import BayesianGrowthCurve, Triangle
    >>>
    >>> tri = Triangle.from_records(records)
    >>> estimator = BayesianGrowthCurve(growth="weibull", iterations=1000, random_seed=1)
    >>> result = estimator.fit(tri)
    >>>
    >>> # Get reserve summary
    >>> print(result.summary())
    >>>
    >>> # Compare with the realised outcome
    >>> print(result.ppc(actual_final).summary())

    References
    ----------
    Clark, D. R. (2003). LDF Curve-Fitting and Stochastic Reserving: A Maximum
    Likelihood Approach. CAS Forum.
    """

    def __init__(
        self,
        growth: GrowthCurve | int | str = GrowthCurve.WEIBULL,
        priors: PriorConfig | Mapping[str, Any] | None = None,
        iterations: int = 2000,
        warmup: int | None = None,
        chains: int = 4,
        random_seed: int | None = None,
        target_accept: float = 0.9,
        cores: int | None = None,
        rhat_threshold: float = 1.1,
        min_ess_fraction: float = 0.1,
        sampler: PosteriorSampler | None = None,
    ):
        self.growth = GrowthCurve.parse(growth)
        self.priors = priors if isinstance(priors, PriorConfig) else PriorConfig.from_dict(priors)
        self.iterations = iterations
        self.warmup = warmup
        self.chains = chains
        self.random_seed = random_seed
        self.target_accept = target_accept
        self.cores = cores
        self.rhat_threshold = rhat_threshold
        self.min_ess_fraction = min_ess_fraction
        self.sampler = sampler if sampler is not None else PyMCSampler()

    @property
    def config(self) -> SamplerConfig:
        """Sampling configuration built from the estimator's settings."""
        return SamplerConfig(
            iterations=self.iterations,
            warmup=self.warmup,
            chains=self.chains,
            seed=self.random_seed,
            target_accept=self.target_accept,
            cores=self.cores,
            rhat_threshold=self.rhat_threshold,
            min_ess_fraction=self.min_ess_fraction,
        )

    def build_model(self, triangle: Triangle | pd.DataFrame) -> GrowthCurveModel:
        """
        Build the model for a triangle without sampling.

        Parameters
        ----------
        triangle : Triangle or pd.DataFrame
            A triangle, or long-format records accepted by
            :meth:`Triangle.from_records`.

        Returns
        -------
        GrowthCurveModel
        """
        if isinstance(triangle, pd.DataFrame):
            triangle = Triangle.from_records(triangle)
        return GrowthCurveModel(triangle, growth=self.growth, priors=self.priors)

    def fit(self, triangle: Triangle | pd.DataFrame) -> FitResult:
        """
        Fit the model to a triangle.

        Parameters
        ----------
        triangle : Triangle or pd.DataFrame
            A triangle, or long-format records accepted by
            :meth:`Triangle.from_records`.

        Returns
        -------
        FitResult
            A new result; the estimator itself is not modified.

        Raises
        ------
        DataError
            If the records do not form a valid triangle.
        SamplingError
            If no chain completes.

        Warns
        -----
        ConvergenceWarning
            If any parameter has a high R-hat or a low bulk ESS.
        """
        config = self.config
        model = self.build_model(triangle)

        logger.info("Fitting %r", model)
        output = self.sampler.sample(model, config)

        if output.chains_completed < output.chains_requested:
            logger.warning(
                "%d of %d chains failed and were dropped",
                output.chains_requested - output.chains_completed,
                output.chains_requested,
            )

        diagnostics = ConvergenceDiagnostics.from_idata(
            output.idata,
            rhat_threshold=config.rhat_threshold,
            min_ess_fraction=config.min_ess_fraction,
        )
        diagnostics.check(stacklevel=2)

        return FitResult(
            model=model,
            idata=output.idata,
            diagnostics=diagnostics,
            config=config,
            chains_requested=output.chains_requested,
            chains_completed=output.chains_completed,
        )

    def __repr__(self) -> str:
        return (
            f"BayesianGrowthCurve(\n"
            f"    growth={self.growth.name},\n"
            f"    iterations={self.iterations},\n"
            f"    warmup={self.warmup},\n"
            f"    chains={self.chains},\n"
            f"    random_seed={self.random_seed}\n"
            f")"
        )
