"""
Posterior forecasts of cumulative loss development.

Each cohort is projected beyond its last observed lag by scaling the
observed cumulative loss with the ratio of the sampled growth curve at the
future lag to the growth curve at the last observed lag:

    predicted(y, t, d) = L_obs(y) * g(t; omega_d, theta_d) / g(t_obs(y); omega_d, theta_d)

Observed cells are returned unchanged. The forecast is anchored on the
actual latest value rather than on the fitted mean, so only the shape of
the curve drives future development.
"""

from __future__ import annotations

import logging
import warnings
from collections.abc import Sequence
from dataclasses import dataclass

import arviz as az
import numpy as np
import pandas as pd
import xarray as xr

from .exceptions import NumericInstabilityWarning
from .growth import GrowthCurve, GrowthFunction, get_growth_function
from .sampling import get_posterior
from .utils import Triangle

logger = logging.getLogger(__name__)

DEFAULT_GROWTH_FLOOR = 1e-12


@dataclass(frozen=True)
class ForecastCone:
    """
    Forecast cumulative losses for every cohort, lag and posterior draw.

    Attributes
    ----------
    values : xr.DataArray
        Dims ``(chain, draw, cohort, dev_lag)``. Observed cells equal the
        data; cells beyond the last observed lag are extrapolated. Rows of
        excluded (draw, cohort) pairs are NaN.
    valid : xr.DataArray
        Dims ``(chain, draw, cohort)``; False where the pair was excluded.
    triangle : Triangle
        The triangle the forecast was made from.
    excluded : pd.Series
        Number of excluded draws per cohort.
    """

    values: xr.DataArray
    valid: xr.DataArray
    triangle: Triangle
    excluded: pd.Series

    @property
    def n_excluded(self) -> int:
        return int(self.excluded.sum())

    def extrapolated_mask(self) -> xr.DataArray:
        """Boolean ``(cohort, dev_lag)`` mask of extrapolated cells."""
        tri = self.triangle
        future = np.arange(tri.n_lags)[None, :] > tri.latest_lag_index[:, None]
        return xr.DataArray(
            future,
            dims=("cohort", "dev_lag"),
            coords={"cohort": self.values.coords["cohort"], "dev_lag": self.values.coords["dev_lag"]},
        )

    def quantiles(self, q: float | Sequence[float] = (0.05, 0.5, 0.95)) -> xr.DataArray:
        """
        Empirical quantiles across draws at each (cohort, dev_lag).

        Excluded draws are left out per cohort.
        """
        return self.values.quantile(q, dim=("chain", "draw"), skipna=True)

    def ultimate(self) -> xr.DataArray:
        """Forecast at the terminal lag, dims ``(chain, draw, cohort)``."""
        return self.values.isel(dev_lag=-1, drop=True)

    def reserves(self) -> xr.DataArray:
        """Ultimate minus the latest known loss, dims ``(chain, draw, cohort)``."""
        latest = xr.DataArray(
            self.triangle.latest_loss,
            dims=("cohort",),
            coords={"cohort": self.values.coords["cohort"]},
        )
        return self.ultimate() - latest

    def summary(
        self,
        quantiles: Sequence[float] = (0.05, 0.25, 0.5, 0.75, 0.95),
        include_totals: bool = True,
    ) -> pd.DataFrame:
        """
        Summary table of ultimate losses and reserves by cohort.

        Parameters
        ----------
        quantiles : sequence of float, optional
            Quantiles to include. Default is [0.05, 0.25, 0.5, 0.75, 0.95].
        include_totals : bool, optional
            Whether to include a total row. The total uses only draws that
            are valid for every cohort. Default is True.

        Returns
        -------
        pd.DataFrame
            Columns ``("Ultimate", ...)`` and ``("Reserve", ...)`` indexed by
            cohort, with the latest known loss as ``("Ultimate", "latest")``.
        """
        ultimate = self.ultimate().stack(sample=("chain", "draw")).transpose("cohort", "sample")
        latest = self.triangle.latest_loss

        rows = []
        for i, label in enumerate(self.triangle.cohort_labels):
            samples = ultimate.values[i]
            samples = samples[np.isfinite(samples)]
            rows.append(_summary_row(label, latest[i], samples, quantiles))

        if include_totals:
            all_valid = np.isfinite(ultimate.values).all(axis=0)
            total_samples = ultimate.values[:, all_valid].sum(axis=0)
            rows.append(_summary_row("Total", latest.sum(), total_samples, quantiles))

        summary_df = pd.DataFrame(rows).set_index("cohort")

        stat_cols = ["mean", "std"] + [f"{q:.0%}" for q in quantiles]
        ultimate_df = summary_df[["latest"] + [f"ultimate_{c}" for c in stat_cols]].copy()
        ultimate_df.columns = ["latest"] + stat_cols
        reserve_df = summary_df[[f"reserve_{c}" for c in stat_cols]].copy()
        reserve_df.columns = stat_cols

        return pd.concat([ultimate_df, reserve_df], axis=1, keys=["Ultimate", "Reserve"])


def _summary_row(
    label: object,
    latest: float,
    ultimate_samples: np.ndarray,
    quantiles: Sequence[float],
) -> dict:
    row = {"cohort": label, "latest": latest}
    reserve_samples = ultimate_samples - latest
    for prefix, samples in (("ultimate", ultimate_samples), ("reserve", reserve_samples)):
        if samples.size == 0:
            row[f"{prefix}_mean"] = np.nan
            row[f"{prefix}_std"] = np.nan
            for q in quantiles:
                row[f"{prefix}_{q:.0%}"] = np.nan
            continue
        row[f"{prefix}_mean"] = float(samples.mean())
        row[f"{prefix}_std"] = float(samples.std())
        for q in quantiles:
            row[f"{prefix}_{q:.0%}"] = float(np.quantile(samples, q))
    return row


def forecast_losses(
    triangle: Triangle,
    posterior: az.InferenceData | xr.Dataset,
    growth: GrowthFunction | GrowthCurve | int | str,
    growth_floor: float = DEFAULT_GROWTH_FLOOR,
) -> ForecastCone:
    """
    Project every cohort to the end of the development grid, per draw.

    Parameters
    ----------
    triangle : Triangle
        Observed triangle.
    posterior : az.InferenceData or xr.Dataset
        Posterior draws with ``omega`` and ``theta`` over ``(chain, draw)``.
    growth : GrowthFunction, GrowthCurve, int or str
        Growth curve the draws belong to.
    growth_floor : float, optional
        A (draw, cohort) pair whose growth factor at the last observed lag
        is below this value is excluded, as is any pair whose projection
        is not finite. Default is 1e-12.

    Returns
    -------
    ForecastCone

    Raises
    ------
    DomainError
        If a draw holds a non-positive ``omega`` or ``theta``.

    Warns
    -----
    NumericInstabilityWarning
        When any (draw, cohort) pair is excluded.
    """
    post = get_posterior(posterior)
    g = get_growth_function(growth)

    omega = post["omega"].transpose("chain", "draw").values
    theta = post["theta"].transpose("chain", "draw").values

    lags = triangle.dev_lags
    latest_idx = triangle.latest_lag_index

    # (chain, draw, dev_lag)
    curve = np.asarray(g(lags[None, None, :], omega[..., None], theta[..., None]))
    # (chain, draw, cohort)
    anchor = curve[..., latest_idx]

    future = np.arange(triangle.n_lags)[None, :] > latest_idx[:, None]
    needs_anchor = future.any(axis=1)

    with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
        ratio = curve[..., None, :] / anchor[..., :, None]
        projected = triangle.latest_loss[:, None] * ratio

    observed = np.where(future, 0.0, triangle.observed)
    values = np.where(future, projected, observed)

    anchor_ok = np.isfinite(anchor) & (anchor >= growth_floor)
    projection_ok = np.isfinite(np.where(future, projected, 0.0)).all(axis=-1)
    valid = (~needs_anchor | anchor_ok) & projection_ok

    values = np.where(valid[..., None], values, np.nan)

    cohort_coord = triangle.cohort_labels
    coords = {
        "chain": post.coords["chain"].values,
        "draw": post.coords["draw"].values,
        "cohort": cohort_coord,
        "dev_lag": lags,
    }

    excluded = pd.Series(
        (~valid).sum(axis=(0, 1)),
        index=pd.Index(cohort_coord, name="cohort"),
        name="excluded",
    )

    n_excluded = int(excluded.sum())
    if n_excluded:
        logger.debug("Excluded draws per cohort: %s", excluded[excluded > 0].to_dict())
        warnings.warn(
            f"{n_excluded} (draw, cohort) forecast pairs were excluded because the "
            f"growth factor at the last observed lag was below {growth_floor:g} or the "
            f"projection was not finite: {excluded[excluded > 0].to_dict()}",
            NumericInstabilityWarning,
            stacklevel=2,
        )

    return ForecastCone(
        values=xr.DataArray(
            values,
            dims=("chain", "draw", "cohort", "dev_lag"),
            coords=coords,
            name="cum_loss",
        ),
        valid=xr.DataArray(
            valid,
            dims=("chain", "draw", "cohort"),
            coords={k: coords[k] for k in ("chain", "draw", "cohort")},
            name="valid",
        ),
        triangle=triangle,
        excluded=excluded,
    )
