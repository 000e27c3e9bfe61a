"""
Synthetic triangles drawn from the growth curve model.

Used to check that the model recovers known parameters and that the
posterior predictive statistics are calibrated.
"""

from __future__ import annotations

from collections.abc import Sequence

import numpy as np
import pandas as pd

from .growth import GrowthCurve, get_growth_function
from .models import ParameterSet
from .utils import RECORD_COLUMNS


def simulate_triangle(
    n_cohorts: int = 10,
    n_lags: int = 10,
    growth: GrowthCurve | int | str = GrowthCurve.WEIBULL,
    omega: float = 1.5,
    theta: float = 3.0,
    loss_ratios: Sequence[float] | np.ndarray | None = None,
    mu_LR: float = np.log(0.7),
    sd_LR: float = 0.1,
    sigma: float = 0.02,
    premium: float | Sequence[float] | np.ndarray = 1000.0,
    first_cohort: int = 2000,
    seed: int | None = None,
) -> tuple[pd.DataFrame, ParameterSet]:
    """
    Simulate a fully developed (square) set of cumulative loss records.

    Parameters
    ----------
    n_cohorts, n_lags : int, optional
        Square size. Lags run ``1 .. n_lags``. Default is 10 by 10.
    growth : GrowthCurve, int or str, optional
        Growth curve family. Default is Weibull.
    omega, theta : float, optional
        Growth curve shape and scale.
    loss_ratios : array-like, optional
        Per-cohort loss ratios. Drawn from ``LogNormal(mu_LR, sd_LR)`` if
        not given.
    mu_LR, sd_LR : float, optional
        Loss ratio hierarchy.
    sigma : float, optional
        Noise scale relative to premium.
    premium : float or array-like, optional
        Premium for every cohort, or one per cohort.
    first_cohort : int, optional
        Label of the first cohort; later cohorts count up by one.
    seed : int, optional
        Random seed.

    Returns
    -------
    records : pd.DataFrame
        Columns ``cohort``, ``dev_lag``, ``premium`` and ``cum_loss``. Split
        with :func:`~.utils.split_at_snapshot` to get a triangle and the
        realised final losses.
    params : ParameterSet
        The parameters the data was drawn from.
    """
    if n_cohorts < 1 or n_lags < 1:
        raise ValueError("n_cohorts and n_lags must be >= 1")

    rng = np.random.default_rng(seed)
    g = get_growth_function(growth)

    premiums = np.broadcast_to(np.asarray(premium, dtype=np.float64), (n_cohorts,)).copy()
    if loss_ratios is None:
        lr = rng.lognormal(mean=mu_LR, sigma=sd_LR, size=n_cohorts)
    else:
        lr = np.asarray(loss_ratios, dtype=np.float64)
        if lr.shape != (n_cohorts,):
            raise ValueError(f"loss_ratios must have {n_cohorts} values, got {lr.shape}")

    params = ParameterSet(
        omega=omega, theta=theta, LR=lr, mu_LR=mu_LR, sd_LR=sd_LR, sigma=sigma
    )

    lags = np.arange(1, n_lags + 1, dtype=np.float64)
    mean = premiums[:, None] * lr[:, None] * g(lags, omega, theta)[None, :]
    losses = rng.normal(loc=mean, scale=premiums[:, None] * sigma)

    cohorts = first_cohort + np.arange(n_cohorts)
    records = pd.DataFrame(
        {
            RECORD_COLUMNS[0]: np.repeat(cohorts, n_lags),
            RECORD_COLUMNS[1]: np.tile(np.arange(1, n_lags + 1), n_cohorts),
            RECORD_COLUMNS[2]: np.repeat(premiums, n_lags),
            RECORD_COLUMNS[3]: losses.ravel(),
        }
    )
    return records, params
