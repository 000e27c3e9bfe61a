"""
Posterior predictive checks against realised outcomes.

Three statistics are computed per posterior draw and compared with what
actually happened once the cohorts developed:

- ``min_LR`` and ``max_LR``: the smallest and largest cohort loss ratio.
- ``EFC``: expected future claims, the total still to emerge after the
  latest diagonal. By default it is predictive: the residual noise of
  future development is drawn on top of the anchored forecast.

The realised comparators are ``min``/``max`` of ``actual_final / premium``
and ``AFC - TCKC``, where ``TCKC`` is the total currently known claims and
``AFC`` the total actual final claims.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

import arviz as az
import numpy as np
import pandas as pd
import xarray as xr
from scipy import stats

from .exceptions import DataError
from .forecast import DEFAULT_GROWTH_FLOOR, ForecastCone, forecast_losses
from .growth import GrowthCurve, GrowthFunction, get_growth_function
from .sampling import get_posterior
from .utils import Triangle

EFC_BASES = ("forecast", "ultimate")

STATISTICS = ("min_LR", "max_LR", "EFC")


@dataclass(frozen=True)
class PPCResult:
    """
    Posterior predictive statistics and their realised counterparts.

    Attributes
    ----------
    min_lr, max_lr : np.ndarray
        Smallest and largest cohort loss ratio per posterior draw, over the
        same cohorts as the observed comparators.
    efc : np.ndarray
        Expected future claims per posterior draw. Draws excluded from the
        forecast for any cohort are not included.
    observed_min_lr, observed_max_lr : float or None
        Realised smallest and largest loss ratio.
    tckc : float
        Total currently known claims.
    afc : float or None
        Total actual final claims.
    future_claims_actual : float or None
        ``afc - tckc``.
    basis : str
        How EFC was computed, "forecast" or "ultimate".
    n_efc_excluded : int
        Number of draws dropped from ``efc``.
    predictive : bool
        Whether ``efc`` includes the residual noise of future development.
    """

    min_lr: np.ndarray
    max_lr: np.ndarray
    efc: np.ndarray
    observed_min_lr: float | None
    observed_max_lr: float | None
    tckc: float
    afc: float | None
    future_claims_actual: float | None
    basis: str = "forecast"
    n_efc_excluded: int = 0
    predictive: bool = False

    def _pairs(self) -> dict[str, tuple[np.ndarray, float | None]]:
        return {
            "min_LR": (self.min_lr, self.observed_min_lr),
            "max_LR": (self.max_lr, self.observed_max_lr),
            "EFC": (self.efc, self.future_claims_actual),
        }

    def percentile_of_actual(self) -> dict[str, float]:
        """
        Percentile rank (0-100) of each realised value within its posterior
        predictive distribution. NaN where no realised value is available.
        """
        result = {}
        for name, (samples, actual) in self._pairs().items():
            if actual is None or samples.size == 0:
                result[name] = np.nan
            else:
                result[name] = float(stats.percentileofscore(samples, actual, kind="mean"))
        return result

    def covers_actual(self, lower: float = 5, upper: float = 95) -> dict[str, bool | None]:
        """
        Whether each realised value lies within the ``[lower, upper]``
        percentile band of its distribution. None where no realised value is
        available.
        """
        if not 0 <= lower < upper <= 100:
            raise ValueError(f"Need 0 <= lower < upper <= 100, got {lower}, {upper}")

        result: dict[str, bool | None] = {}
        for name, (samples, actual) in self._pairs().items():
            if actual is None or samples.size == 0:
                result[name] = None
                continue
            lo, hi = np.percentile(samples, [lower, upper])
            result[name] = bool(lo <= actual <= hi)
        return result

    def summary(self, quantiles: Sequence[float] = (0.05, 0.5, 0.95)) -> pd.DataFrame:
        """
        Summary table with one row per statistic.

        Columns are the posterior predictive mean, sd and quantiles, the
        realised value and its percentile rank.
        """
        percentiles = self.percentile_of_actual()
        rows = []
        for name, (samples, actual) in self._pairs().items():
            row: dict[str, Any] = {"statistic": name}
            if samples.size:
                row["mean"] = float(samples.mean())
                row["sd"] = float(samples.std())
                for q in quantiles:
                    row[f"{q:.0%}"] = float(np.quantile(samples, q))
            else:
                row["mean"] = row["sd"] = np.nan
                for q in quantiles:
                    row[f"{q:.0%}"] = np.nan
            row["observed"] = np.nan if actual is None else actual
            row["percentile"] = percentiles[name]
            rows.append(row)
        return pd.DataFrame(rows).set_index("statistic")


def _align_actual_final(
    triangle: Triangle, actual_final: pd.Series | Mapping | Sequence | np.ndarray
) -> np.ndarray:
    """Return actual final losses as an array ordered like the triangle."""
    labels = triangle.cohort_labels

    if isinstance(actual_final, pd.Series):
        missing = [label for label in labels if label not in actual_final.index]
        if missing:
            raise DataError(f"actual_final has no value for cohorts {missing}")
        values = actual_final.reindex(labels).to_numpy(dtype=np.float64)
    elif isinstance(actual_final, Mapping):
        missing = [label for label in labels if label not in actual_final]
        if missing:
            raise DataError(f"actual_final has no value for cohorts {missing}")
        values = np.array([actual_final[label] for label in labels], dtype=np.float64)
    else:
        values = np.asarray(actual_final, dtype=np.float64).ravel()
        if values.size != triangle.n_cohorts:
            raise DataError(
                f"actual_final has {values.size} values but the triangle has "
                f"{triangle.n_cohorts} cohorts"
            )

    if not np.isfinite(values).all():
        raise DataError("actual_final values must be finite")
    return values


def _loss_ratio_samples(posterior: xr.Dataset) -> np.ndarray:
    """Posterior LR as a ``(sample, cohort)`` array."""
    lr = posterior["LR"]
    cohort_dim = [d for d in lr.dims if d not in ("chain", "draw")][0]
    return lr.stack(sample=("chain", "draw")).transpose("sample", cohort_dim).values


def _flat_draws(posterior: xr.Dataset, name: str) -> np.ndarray:
    return posterior[name].stack(sample=("chain", "draw")).values


def _development_noise(
    triangle: Triangle,
    posterior: xr.Dataset,
    growth: GrowthFunction | GrowthCurve | int | str,
    random_seed: int | np.random.Generator | None,
) -> np.ndarray:
    """
    Residual noise of the anchored forecast, ``(sample, cohort)``.

    The realised terminal loss carries its own residual and the anchor
    ``L_obs`` carries one that the forecast scales by
    ``r = g(T) / g(t_obs)``. Both have sd ``premium * sigma``, so the
    forecast error has sd ``premium * sigma * sqrt(1 + r**2)``. Fully
    developed cohorts get no noise.
    """
    if "sigma" not in posterior:
        raise ValueError("Predictive EFC needs sigma draws; pass predictive=False without them")

    g = get_growth_function(growth)
    omega = _flat_draws(posterior, "omega")[:, None]
    theta = _flat_draws(posterior, "theta")[:, None]
    sigma = _flat_draws(posterior, "sigma")[:, None]

    noise = np.zeros((omega.shape[0], triangle.n_cohorts))
    open_cohorts = ~triangle.fully_developed
    if not open_cohorts.any():
        return noise

    with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
        ratio = g(triangle.terminal_lag, omega, theta) / g(
            triangle.latest_lag[open_cohorts][None, :], omega, theta
        )
        scale = triangle.premium[open_cohorts][None, :] * sigma * np.sqrt(1.0 + ratio**2)
        rng = np.random.default_rng(random_seed)
        noise[:, open_cohorts] = rng.standard_normal(scale.shape) * scale
    return noise


def posterior_predictive_statistics(
    triangle: Triangle,
    posterior: az.InferenceData | xr.Dataset,
    growth: GrowthFunction | GrowthCurve | int | str,
    actual_final: pd.Series | Mapping | Sequence | np.ndarray | None = None,
    basis: str = "forecast",
    cone: ForecastCone | None = None,
    growth_floor: float = DEFAULT_GROWTH_FLOOR,
    predictive: bool = True,
    random_seed: int | np.random.Generator | None = None,
) -> PPCResult:
    """
    Compute the posterior predictive check statistics.

    Parameters
    ----------
    triangle : Triangle
        Triangle the model was fitted to.
    posterior : az.InferenceData or xr.Dataset
        Posterior draws.
    growth : GrowthFunction, GrowthCurve, int or str
        Growth curve the draws belong to.
    actual_final : pd.Series, mapping or array-like, optional
        Realised final cumulative loss per cohort. A Series or mapping is
        matched on cohort label; an array must follow the triangle's cohort
        order. Without it, the fully developed cohorts serve as the
        comparison set: both the observed and the per-draw min/max loss
        ratio are taken over those cohorts only, and the claims totals are
        None.
    basis : {"forecast", "ultimate"}, optional
        ``"forecast"`` sums the forecast cone at the terminal lag minus the
        known loss, so fully developed cohorts add exactly 0.
        ``"ultimate"`` uses ``premium * LR`` as the ultimate loss.
    cone : ForecastCone, optional
        A forecast already computed from the same posterior.
    growth_floor : float, optional
        Passed to :func:`forecast_losses` when ``cone`` is not given.
    predictive : bool, optional
        On the forecast basis, add the residual noise of the anchored
        forecast to each open cohort, so that EFC is a predictive
        distribution of the realised future claims rather than of their
        expectation. Default is True.
    random_seed : int or np.random.Generator, optional
        Seed for the predictive noise.

    Returns
    -------
    PPCResult
    """
    if basis not in EFC_BASES:
        raise ValueError(f"basis must be one of {EFC_BASES}, got {basis!r}")

    post = get_posterior(posterior)
    lr = _loss_ratio_samples(post)
    if lr.shape[1] != triangle.n_cohorts:
        raise DataError(
            f"Posterior LR has {lr.shape[1]} cohorts but the triangle has "
            f"{triangle.n_cohorts}"
        )

    latest = triangle.latest_loss
    n_excluded = 0
    if basis == "forecast":
        if cone is None:
            cone = forecast_losses(triangle, post, growth, growth_floor=growth_floor)
        ultimate = cone.ultimate().stack(sample=("chain", "draw")).transpose("sample", "cohort").values
        future = ultimate - latest[None, :]
        if predictive:
            future = future + _development_noise(triangle, post, growth, random_seed)
        keep = np.isfinite(future).all(axis=1)
        n_excluded = int((~keep).sum())
        efc = future[keep].sum(axis=1)
    else:
        efc = (triangle.premium[None, :] * lr - latest[None, :]).sum(axis=1)

    tckc = float(latest.sum())
    afc = None
    future_claims_actual = None
    lr_cohorts = np.ones(triangle.n_cohorts, dtype=bool)

    if actual_final is not None:
        actual = _align_actual_final(triangle, actual_final)
        actual_lr = actual / triangle.premium
        observed_min_lr = float(actual_lr.min())
        observed_max_lr = float(actual_lr.max())
        afc = float(actual.sum())
        future_claims_actual = afc - tckc
    else:
        developed = triangle.fully_developed
        if developed.any():
            lr_cohorts = developed
            developed_lr = latest[developed] / triangle.premium[developed]
            observed_min_lr = float(developed_lr.min())
            observed_max_lr = float(developed_lr.max())
        else:
            observed_min_lr = observed_max_lr = None

    return PPCResult(
        min_lr=lr[:, lr_cohorts].min(axis=1),
        max_lr=lr[:, lr_cohorts].max(axis=1),
        efc=efc,
        observed_min_lr=observed_min_lr,
        observed_max_lr=observed_max_lr,
        tckc=tckc,
        afc=afc,
        future_claims_actual=future_claims_actual,
        basis=basis,
        n_efc_excluded=n_excluded,
        predictive=predictive and basis == "forecast",
    )
