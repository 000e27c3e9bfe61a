"""
Hierarchical growth curve model for loss development triangles.

This module defines the joint probability model relating premium, a
cohort-level ultimate loss ratio and a parametric growth curve to the
observed cumulative losses, and exposes it both as a PyMC model (for NUTS
sampling) and as a plain log-density function of a :class:`ParameterSet`.

Model Structure
---------------
For cohort ``y`` observed at development lag ``t``:

    mu(y, t)       = premium(y) * LR(y) * g(t; omega, theta)
    cum_loss(y, t) ~ Normal(mu(y, t), premium(y) * sigma)

with priors

    LR(y)  ~ LogNormal(mu_LR, sd_LR)
    mu_LR  ~ Normal(0, 0.5)
    sd_LR  ~ LogNormal(0, 0.5)
    omega  ~ LogNormal(0, 1)
    theta  ~ LogNormal(0, 1)
    sigma  ~ LogNormal(0, 0.7)

The noise scale is proportional to premium, so residual variance is
comparable in loss-ratio terms across cohorts of different size. PyMC
samples the positive parameters on the log scale.

References
----------
Gesmann, M. and Morris, J. (2020). Hierarchical Compartmental Reserving
Models. CAS Research Paper.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, fields, replace
from functools import cached_property
from typing import TYPE_CHECKING, Any, Callable

import arviz as az
import numpy as np
import pandas as pd
import pymc as pm

from .exceptions import DomainError
from .growth import GrowthCurve, get_growth_function
from .utils import Triangle

if TYPE_CHECKING:
    from .estimators import FitResult

PARAMETER_NAMES = ("omega", "theta", "LR", "mu_LR", "sd_LR", "sigma")
POSITIVE_SCALARS = ("omega", "theta", "sd_LR", "sigma")


@dataclass(frozen=True, eq=False)
class ParameterSet:
    """
    One realisation of the model parameters.

    Attributes
    ----------
    omega : float
        Growth curve shape, shared by all cohorts.
    theta : float
        Growth curve scale, shared by all cohorts.
    LR : np.ndarray
        Ultimate loss ratio per cohort, in triangle index order.
    mu_LR : float
        Location of the log-normal prior over ``LR``.
    sd_LR : float
        Scale of the log-normal prior over ``LR``.
    sigma : float
        Residual noise scale; loss standard deviation is ``premium * sigma``.

    Raises
    ------
    DomainError
        If any positivity constraint is violated or a value is not finite.
    """

    omega: float
    theta: float
    LR: np.ndarray
    mu_LR: float
    sd_LR: float
    sigma: float

    def __post_init__(self) -> None:
        for name in POSITIVE_SCALARS:
            value = float(getattr(self, name))
            if not np.isfinite(value) or value <= 0:
                raise DomainError(f"{name} must be finite and > 0, got {value!r}")
            object.__setattr__(self, name, value)

        mu_LR = float(self.mu_LR)
        if not np.isfinite(mu_LR):
            raise DomainError(f"mu_LR must be finite, got {mu_LR!r}")
        object.__setattr__(self, "mu_LR", mu_LR)

        lr = np.array(self.LR, dtype=np.float64, ndmin=1)
        if lr.ndim != 1:
            raise DomainError(f"LR must be one-dimensional, got shape {lr.shape}")
        if not np.isfinite(lr).all() or (lr <= 0).any():
            raise DomainError(f"LR must be finite and > 0, got {lr!r}")
        lr.setflags(write=False)
        object.__setattr__(self, "LR", lr)

    def as_dict(self) -> dict[str, Any]:
        """Parameter values keyed by name (``LR`` as an array copy)."""
        return {
            "omega": self.omega,
            "theta": self.theta,
            "LR": np.array(self.LR),
            "mu_LR": self.mu_LR,
            "sd_LR": self.sd_LR,
            "sigma": self.sigma,
        }


@dataclass(frozen=True)
class PriorConfig:
    """
    Hyperparameters of the priors.

    ``mu_LR`` is ``(mu, sigma)`` of a Normal prior; all other entries are
    ``(mu, sigma)`` of a LogNormal prior, i.e. of a Normal on the log scale.
    """

    mu_LR: tuple[float, float] = (0.0, 0.5)
    sd_LR: tuple[float, float] = (0.0, 0.5)
    omega: tuple[float, float] = (0.0, 1.0)
    theta: tuple[float, float] = (0.0, 1.0)
    sigma: tuple[float, float] = (0.0, 0.7)

    def __post_init__(self) -> None:
        for f in fields(self):
            mu, sigma = getattr(self, f.name)
            if not np.isfinite(mu) or not np.isfinite(sigma) or sigma <= 0:
                raise ValueError(
                    f"Prior for '{f.name}' needs a finite mu and sigma > 0, got {(mu, sigma)}"
                )

    @classmethod
    def from_dict(cls, priors: Mapping[str, Any] | None) -> "PriorConfig":
        """
        Build from a nested dict, e.g. ``{"omega": {"mu": 0.3, "sigma": 0.5}}``.

        Missing keys keep their defaults.
        """
        config = cls()
        if not priors:
            return config

        known = {f.name for f in fields(cls)}
        unknown = set(priors) - known
        if unknown:
            raise ValueError(f"Unknown prior names {sorted(unknown)}. Supported: {sorted(known)}")

        updates = {}
        for name, hyper in priors.items():
            default_mu, default_sigma = getattr(config, name)
            if isinstance(hyper, Mapping):
                updates[name] = (
                    float(hyper.get("mu", default_mu)),
                    float(hyper.get("sigma", default_sigma)),
                )
            else:
                mu, sigma = hyper
                updates[name] = (float(mu), float(sigma))
        return replace(config, **updates)


class GrowthCurveModel:
    """
    Joint probability model of a triangle under a growth curve.

    Parameters
    ----------
    triangle : Triangle
        The observed loss triangle.
    growth : GrowthCurve, int or str, optional
        Growth curve family. Default is ``GrowthCurve.WEIBULL``.
    priors : PriorConfig or dict, optional
        Prior hyperparameters. See :class:`PriorConfig`.

    Examples
    --------
    >>> model = GrowthCurveModel(triangle, growth=GrowthCurve.LOGLOGISTIC)
    >>> params = model.initial_parameters()
    >>> model.log_density(params)
    """

    def __init__(
        self,
        triangle: Triangle,
        growth: GrowthCurve | int | str = GrowthCurve.WEIBULL,
        priors: PriorConfig | Mapping[str, Any] | None = None,
    ):
        if not isinstance(triangle, Triangle):
            raise ValueError("triangle must be a bayesiangrowthcurve Triangle")

        self.triangle = triangle
        self.growth = GrowthCurve.parse(growth)
        self.growth_function = get_growth_function(self.growth)
        self.priors = priors if isinstance(priors, PriorConfig) else PriorConfig.from_dict(priors)
        self._compiled: dict[tuple[str, bool], Callable] = {}

    def build_pymc_model(self) -> pm.Model:
        """
        Build the PyMC model.

        Returns
        -------
        pm.Model
            Model with coords ``cohort``, ``dev_lag`` and ``obs``; free
            variables ``mu_LR``, ``sd_LR``, ``LR``, ``omega``, ``theta`` and
            ``sigma``; observed variable ``loss``.
        """
        tri = self.triangle
        p = self.priors

        coords = {
            "cohort": tri.cohort_labels,
            "dev_lag": list(tri.dev_lags),
            "obs": np.arange(len(tri.obs_cohort_idx)),
        }

        with pm.Model(coords=coords) as model:
            # Data containers
            cohort_idx = pm.Data("cohort_idx", tri.obs_cohort_idx, dims="obs")
            t = pm.Data("t", tri.obs_lag, dims="obs")
            premium = pm.Data("premium", tri.obs_premium, dims="obs")

            # Loss ratio hierarchy
            mu_LR = pm.Normal("mu_LR", mu=p.mu_LR[0], sigma=p.mu_LR[1])
            sd_LR = pm.LogNormal("sd_LR", mu=p.sd_LR[0], sigma=p.sd_LR[1])
            LR = pm.LogNormal("LR", mu=mu_LR, sigma=sd_LR, dims="cohort")

            # Growth curve shared across cohorts
            omega = pm.LogNormal("omega", mu=p.omega[0], sigma=p.omega[1])
            theta = pm.LogNormal("theta", mu=p.theta[0], sigma=p.theta[1])

            sigma = pm.LogNormal("sigma", mu=p.sigma[0], sigma=p.sigma[1])

            growth = self.growth_function.symbolic(t, omega, theta)
            mu = premium * LR[cohort_idx] * growth

            pm.Normal("loss", mu=mu, sigma=premium * sigma, observed=tri.obs_loss, dims="obs")

        return model

    @cached_property
    def pymc_model(self) -> pm.Model:
        """The PyMC model, built once per instance."""
        return self.build_pymc_model()

    @property
    def value_var_names(self) -> list[str]:
        """Names of the unconstrained coordinates, in gradient order."""
        return [v.name for v in self.pymc_model.value_vars]

    def log_density(self, params: ParameterSet, jacobian: bool = False) -> float:
        """
        Joint log-density (priors plus likelihood) at ``params``.

        Parameters
        ----------
        params : ParameterSet
            Parameter values on the natural (constrained) scale.
        jacobian : bool, optional
            If True, include the log-Jacobian of the log transform, giving
            the density of the unconstrained coordinates a sampler moves in.
            Default is False.

        Returns
        -------
        float
        """
        fn = self._compile("logp", jacobian)
        return float(fn(self._to_point(params)))

    def log_density_gradient(
        self, params: ParameterSet, jacobian: bool = True
    ) -> dict[str, np.ndarray]:
        """
        Gradient of the log-density with respect to the unconstrained coordinates.

        Parameters
        ----------
        params : ParameterSet
            Parameter values on the natural (constrained) scale.
        jacobian : bool, optional
            Include the log-Jacobian term. Default is True, which is what a
            Hamiltonian sampler needs.

        Returns
        -------
        dict[str, np.ndarray]
            Gradient keyed by value variable name (e.g. ``"omega_log__"``).
        """
        point = self._to_point(params)
        flat = np.asarray(self._compile("dlogp", jacobian)(point))

        grads = {}
        offset = 0
        for name in self.value_var_names:
            shape = np.shape(point[name])
            size = int(np.prod(shape))
            grads[name] = flat[offset : offset + size].reshape(shape)
            offset += size
        return grads

    def initial_parameters(self) -> ParameterSet:
        """
        Data-driven starting point for the sampler.

        Loss ratios are the latest observed loss ratios grossed up by the
        growth curve at ``omega = 1.5`` and ``theta`` equal to the median lag.
        """
        tri = self.triangle
        g = self.growth_function

        omega = 1.5
        theta = float(np.median(tri.dev_lags))

        g_latest = np.maximum(g(tri.latest_lag, omega, theta), 0.05)
        lr = np.clip(tri.latest_loss / (tri.premium * g_latest), 0.05, 5.0)
        log_lr = np.log(lr)

        fitted = tri.obs_premium * lr[tri.obs_cohort_idx] * g(tri.obs_lag, omega, theta)
        resid = (tri.obs_loss - fitted) / tri.obs_premium

        return ParameterSet(
            omega=omega,
            theta=theta,
            LR=lr,
            mu_LR=float(log_lr.mean()),
            sd_LR=float(max(log_lr.std(), 0.1)),
            sigma=float(max(resid.std(), 0.01)),
        )

    def _compile(self, kind: str, jacobian: bool) -> Callable:
        key = (kind, jacobian)
        if key not in self._compiled:
            model = self.pymc_model
            if kind == "logp":
                self._compiled[key] = model.compile_logp(jacobian=jacobian)
            else:
                self._compiled[key] = model.compile_dlogp(jacobian=jacobian)
        return self._compiled[key]

    def _to_point(self, params: ParameterSet) -> dict[str, np.ndarray]:
        """Map constrained parameter values onto the model's value variables."""
        if not isinstance(params, ParameterSet):
            raise TypeError("params must be a ParameterSet")
        if len(params.LR) != self.triangle.n_cohorts:
            raise DomainError(
                f"LR has {len(params.LR)} entries but the triangle has "
                f"{self.triangle.n_cohorts} cohorts"
            )

        model = self.pymc_model
        point = {}
        for rv in model.free_RVs:
            value_var = model.rvs_to_values[rv]
            x = np.asarray(getattr(params, rv.name), dtype=value_var.dtype)
            transform = model.rvs_to_transforms.get(rv)
            if transform is not None:
                x = np.asarray(transform.forward(x, *rv.owner.inputs).eval())
            point[value_var.name] = x
        return point

    def __repr__(self) -> str:
        return (
            f"GrowthCurveModel(growth={self.growth.name}, "
            f"n_cohorts={self.triangle.n_cohorts}, n_lags={self.triangle.n_lags})"
        )


def extract_parameter_summary(
    idata: az.InferenceData,
    var_names: list[str] | None = None,
    filter_vars: str | None = None,
    hdi_prob: float = 0.94,
) -> pd.DataFrame:
    """
    Extract summary statistics for model parameters.

    Parameters
    ----------
    idata : az.InferenceData
        InferenceData object with posterior samples.
    var_names : list[str], optional
        Parameter names to include. If None, includes all.
    filter_vars : str, optional
        Passed to ``az.summary``.
    hdi_prob : float, optional
        Probability mass for HDI. Default is 0.94.

    Returns
    -------
    pd.DataFrame
        Summary statistics for parameters.
    """
    return az.summary(idata, var_names=var_names, filter_vars=filter_vars, hdi_prob=hdi_prob)


def compute_waic(idata: az.InferenceData) -> az.ELPDData:
    """
    Compute WAIC (Widely Applicable Information Criterion) for model comparison.

    Parameters
    ----------
    idata : az.InferenceData
        InferenceData object with log_likelihood group.

    Returns
    -------
    az.ELPDData
        WAIC computation results.
    """
    return az.waic(idata)


def compute_loo(idata: az.InferenceData) -> az.ELPDData:
    """
    Compute LOO-CV (Leave-One-Out Cross-Validation) for model comparison.

    Parameters
    ----------
    idata : az.InferenceData
        InferenceData object with log_likelihood group.

    Returns
    -------
    az.ELPDData
        LOO-CV computation results.
    """
    return az.loo(idata)


def compare_models(
    fits: Mapping[str, "FitResult | az.InferenceData"],
    ic: str = "loo",
) -> pd.DataFrame:
    """
    Rank fitted models, typically the Weibull and log-logistic curves.

    Parameters
    ----------
    fits : mapping
        Model name to ``FitResult`` or ``InferenceData``. Every entry needs a
        log_likelihood group, which :class:`~.sampling.PyMCSampler` stores.
    ic : str, optional
        "loo" (default) or "waic".

    Returns
    -------
    pd.DataFrame
        ``az.compare`` table, best model first.
    """
    compare_dict = {
        name: fit.idata if hasattr(fit, "idata") else fit for name, fit in fits.items()
    }
    for name, idata in compare_dict.items():
        if "log_likelihood" not in idata.groups():
            raise ValueError(f"Model '{name}' has no log_likelihood group")
    return az.compare(compare_dict, ic=ic)
