"""
Posterior sampling behind an injectable interface.

The rest of the package only needs *some* engine that turns a
:class:`~.models.GrowthCurveModel` into posterior draws stored in an
``arviz.InferenceData``. :class:`PyMCSampler` does this with NUTS;
:class:`FixedDrawSampler` returns supplied draws unchanged, which keeps the
forecast and posterior predictive code testable without MCMC.

Convergence diagnostics are computed from the complete set of chains, after
sampling has finished.
"""

from __future__ import annotations

import logging
import warnings
from collections.abc import Iterator, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol

import arviz as az
import numpy as np
import pandas as pd
import pymc as pm
import xarray as xr
from pymc.exceptions import SamplingError as PyMCSamplingError
from pymc.sampling.parallel import ParallelSamplingError

from .exceptions import ConvergenceWarning, SamplingError
from .models import PARAMETER_NAMES, ParameterSet

if TYPE_CHECKING:
    from .models import GrowthCurveModel
    from .utils import Triangle

logger = logging.getLogger(__name__)

_CHAIN_ERRORS = (PyMCSamplingError, ParallelSamplingError, FloatingPointError)


@dataclass(frozen=True)
class SamplerConfig:
    """
    Sampling run configuration.

    Attributes
    ----------
    iterations : int
        Total iterations per chain, including warmup. Default is 2000.
    warmup : int, optional
        Warmup (tuning) iterations per chain. Default is ``iterations // 2``.
    chains : int
        Number of independent chains. Default is 4.
    seed : int, optional
        Random seed. Each chain receives its own seed derived from it.
    target_accept : float
        Target acceptance probability for NUTS. Default is 0.9.
    cores : int, optional
        Number of chains run in parallel. Default lets PyMC decide.
    rhat_threshold : float
        R-hat at or above this value is flagged. Default is 1.1.
    min_ess_fraction : float
        Bulk ESS below this fraction of the total draws is flagged.
        Default is 0.1.
    """

    iterations: int = 2000
    warmup: int | None = None
    chains: int = 4
    seed: int | None = None
    target_accept: float = 0.9
    cores: int | None = None
    rhat_threshold: float = 1.1
    min_ess_fraction: float = 0.1

    def __post_init__(self) -> None:
        warmup = self.iterations // 2 if self.warmup is None else self.warmup
        object.__setattr__(self, "warmup", int(warmup))

        if self.iterations < 1:
            raise ValueError(f"iterations must be >= 1, got {self.iterations}")
        if not 0 <= self.warmup < self.iterations:
            raise ValueError(
                f"warmup must be in [0, iterations), got warmup={self.warmup}, "
                f"iterations={self.iterations}"
            )
        if self.chains < 1:
            raise ValueError(f"chains must be >= 1, got {self.chains}")
        if not 0 < self.target_accept < 1:
            raise ValueError(f"target_accept must be in (0, 1), got {self.target_accept}")
        if self.rhat_threshold <= 1:
            raise ValueError(f"rhat_threshold must be > 1, got {self.rhat_threshold}")
        if not 0 <= self.min_ess_fraction <= 1:
            raise ValueError(f"min_ess_fraction must be in [0, 1], got {self.min_ess_fraction}")

    @property
    def draws(self) -> int:
        """Retained draws per chain."""
        return self.iterations - self.warmup

    @property
    def total_draws(self) -> int:
        return self.draws * self.chains

    def chain_seeds(self) -> list[int]:
        """One independent seed per chain, derived from ``seed``."""
        children = np.random.SeedSequence(self.seed).spawn(self.chains)
        return [int(child.generate_state(1)[0]) for child in children]


@dataclass(frozen=True)
class SamplerOutput:
    """
    Draws produced by a sampler.

    Attributes
    ----------
    idata : az.InferenceData
        Posterior draws with dims ``chain`` and ``draw``; ``LR`` also has
        ``cohort``.
    chains_requested : int
        Number of chains asked for.
    chains_completed : int
        Number of chains that finished and are present in ``idata``.
    """

    idata: az.InferenceData
    chains_requested: int
    chains_completed: int


class PosteriorSampler(Protocol):
    """Anything that can draw from the posterior of a growth curve model."""

    def sample(self, model: GrowthCurveModel, config: SamplerConfig) -> SamplerOutput:
        ...


class PyMCSampler:
    """
    NUTS sampling through PyMC.

    All chains are first sampled together. If that run fails, each chain is
    re-run on its own so that a failing chain is dropped rather than taking
    the others with it. Chains whose draws contain non-finite values are also
    dropped. Dropped chains are never padded; the surviving chains are
    renumbered from zero.

    Parameters
    ----------
    init : str, optional
        PyMC initialisation method. Default is "jitter+adapt_diag".
    progressbar : bool, optional
        Show PyMC's progress bar. Default is False.
    **sample_kwargs
        Additional arguments passed to ``pm.sample``.
    """

    def __init__(
        self,
        init: str = "jitter+adapt_diag",
        progressbar: bool = False,
        **sample_kwargs: Any,
    ):
        self.init = init
        self.progressbar = progressbar
        self.sample_kwargs = sample_kwargs

    def sample(self, model: GrowthCurveModel, config: SamplerConfig) -> SamplerOutput:
        pm_model = model.pymc_model
        initvals = model.initial_parameters().as_dict()
        seeds = config.chain_seeds()

        logger.info(
            "Sampling %d chains (%d warmup + %d draws each), seed=%s",
            config.chains,
            config.warmup,
            config.draws,
            config.seed,
        )

        try:
            idata = self._run(pm_model, config, seeds, initvals, cores=config.cores)
        except _CHAIN_ERRORS as exc:
            logger.warning("Joint sampling failed (%s); re-running chains one at a time", exc)
            idata = self._run_isolated(pm_model, config, seeds, initvals)

        idata = _drop_non_finite_chains(idata)
        completed = 0 if idata is None else idata.posterior.sizes["chain"]

        if completed == 0:
            raise SamplingError(f"All {config.chains} chains failed; no posterior draws")

        logger.info("Sampling finished with %d of %d chains", completed, config.chains)
        return SamplerOutput(idata=idata, chains_requested=config.chains, chains_completed=completed)

    def _run(
        self,
        pm_model: pm.Model,
        config: SamplerConfig,
        seeds: list[int],
        initvals: dict[str, Any],
        cores: int | None,
    ) -> az.InferenceData:
        kwargs = dict(self.sample_kwargs)
        idata_kwargs = kwargs.pop("idata_kwargs", {})
        if "log_likelihood" not in idata_kwargs:
            idata_kwargs["log_likelihood"] = True

        with pm_model:
            return pm.sample(
                draws=config.draws,
                tune=config.warmup,
                chains=len(seeds),
                cores=cores,
                target_accept=config.target_accept,
                random_seed=seeds,
                initvals=initvals,
                init=self.init,
                progressbar=self.progressbar,
                compute_convergence_checks=False,
                return_inferencedata=True,
                idata_kwargs=idata_kwargs,
                **kwargs,
            )

    def _run_isolated(
        self,
        pm_model: pm.Model,
        config: SamplerConfig,
        seeds: list[int],
        initvals: dict[str, Any],
    ) -> az.InferenceData | None:
        pieces = []
        for chain, seed in enumerate(seeds):
            try:
                pieces.append(self._run(pm_model, config, [seed], initvals, cores=1))
            except _CHAIN_ERRORS as exc:
                logger.warning("Chain %d failed and was dropped: %s", chain, exc)

        if not pieces:
            return None
        return _concat_chains(pieces)


class FixedDrawSampler:
    """
    Deterministic sampler returning the draws it was given.

    Parameters
    ----------
    draws : sequence of ParameterSet, sequence of sequences, or az.InferenceData
        A flat sequence is one chain; a nested sequence is one inner
        sequence per chain.
    chains_requested : int, optional
        Reported number of requested chains. Defaults to the number of
        chains supplied; a larger value simulates failed chains.
    """

    def __init__(
        self,
        draws: Sequence[ParameterSet] | Sequence[Sequence[ParameterSet]] | az.InferenceData,
        chains_requested: int | None = None,
    ):
        self.draws = draws
        self.chains_requested = chains_requested

    def sample(self, model: GrowthCurveModel, config: SamplerConfig | None = None) -> SamplerOutput:
        if isinstance(self.draws, az.InferenceData):
            idata = self.draws
        else:
            idata = posterior_from_parameter_sets(self.draws, model.triangle)

        completed = idata.posterior.sizes["chain"]
        requested = completed if self.chains_requested is None else self.chains_requested
        return SamplerOutput(idata=idata, chains_requested=requested, chains_completed=completed)


@dataclass(frozen=True)
class ConvergenceDiagnostics:
    """
    Per-parameter R-hat and effective sample size.

    Attributes
    ----------
    table : pd.DataFrame
        ``r_hat``, ``ess_bulk`` and ``ess_tail`` per parameter (``LR`` is
        expanded per cohort).
    rhat_threshold : float
        R-hat values at or above this are flagged.
    min_ess : float
        Bulk ESS values below this are flagged.
    n_chains, n_draws : int
        Shape of the posterior the diagnostics were computed from.
    """

    table: pd.DataFrame
    rhat_threshold: float
    min_ess: float
    n_chains: int
    n_draws: int

    @classmethod
    def from_idata(
        cls,
        idata: az.InferenceData,
        rhat_threshold: float = 1.1,
        min_ess: float | None = None,
        min_ess_fraction: float = 0.1,
    ) -> "ConvergenceDiagnostics":
        """
        Compute diagnostics from all chains.

        Parameters
        ----------
        idata : az.InferenceData
            Complete sampler output (every chain finished).
        rhat_threshold : float, optional
            Default is 1.1.
        min_ess : float, optional
            Absolute bulk-ESS floor. Defaults to
            ``min_ess_fraction * chains * draws``.
        min_ess_fraction : float, optional
            Default is 0.1.
        """
        posterior = get_posterior(idata)
        n_chains = posterior.sizes["chain"]
        n_draws = posterior.sizes["draw"]
        if min_ess is None:
            min_ess = min_ess_fraction * n_chains * n_draws

        var_names = [name for name in PARAMETER_NAMES if name in posterior]
        summary = az.summary(posterior, var_names=var_names, kind="diagnostics")
        table = summary[["r_hat", "ess_bulk", "ess_tail"]].copy()

        return cls(
            table=table,
            rhat_threshold=rhat_threshold,
            min_ess=float(min_ess),
            n_chains=n_chains,
            n_draws=n_draws,
        )

    @property
    def rhat_flagged(self) -> list[str]:
        return list(self.table.index[self.table["r_hat"] >= self.rhat_threshold])

    @property
    def ess_flagged(self) -> list[str]:
        return list(self.table.index[self.table["ess_bulk"] < self.min_ess])

    @property
    def flagged(self) -> list[str]:
        return list(dict.fromkeys(self.rhat_flagged + self.ess_flagged))

    @property
    def converged(self) -> bool:
        return not self.flagged

    @property
    def max_rhat(self) -> float:
        return float(self.table["r_hat"].max())

    @property
    def min_ess_bulk(self) -> float:
        return float(self.table["ess_bulk"].min())

    def check(self, stacklevel: int = 2) -> bool:
        """Issue a ConvergenceWarning if any parameter is flagged."""
        if self.converged:
            return True

        parts = []
        if self.rhat_flagged:
            parts.append(f"r_hat >= {self.rhat_threshold} for {self.rhat_flagged}")
        if self.ess_flagged:
            parts.append(f"ess_bulk < {self.min_ess:.0f} for {self.ess_flagged}")
        warnings.warn(
            "MCMC sampling may not have converged: "
            + "; ".join(parts)
            + ". Forecasts are still available but should be treated with caution.",
            ConvergenceWarning,
            stacklevel=stacklevel + 1,
        )
        return False


def get_posterior(posterior: az.InferenceData | xr.Dataset) -> xr.Dataset:
    """Return the posterior group as an ``xr.Dataset``."""
    if isinstance(posterior, az.InferenceData):
        if "posterior" not in posterior.groups():
            raise ValueError("InferenceData must contain a posterior group")
        return posterior.posterior
    if isinstance(posterior, xr.Dataset):
        return posterior
    raise TypeError(f"Expected InferenceData or xarray Dataset, got {type(posterior).__name__}")


def posterior_from_parameter_sets(
    parameter_sets: Sequence[ParameterSet] | Sequence[Sequence[ParameterSet]],
    triangle: Triangle,
) -> az.InferenceData:
    """
    Pack parameter sets into an ``InferenceData`` posterior.

    Parameters
    ----------
    parameter_sets : sequence of ParameterSet or sequence of sequences
        One chain, or one inner sequence per chain (all of equal length).
    triangle : Triangle
        Supplies the ``cohort`` coordinate.

    Returns
    -------
    az.InferenceData
    """
    if len(parameter_sets) == 0:
        raise ValueError("At least one parameter set is required")

    if isinstance(parameter_sets[0], ParameterSet):
        chains = [list(parameter_sets)]
    else:
        chains = [list(chain) for chain in parameter_sets]

    n_draws = {len(chain) for chain in chains}
    if len(n_draws) != 1 or 0 in n_draws:
        raise ValueError("Every chain must contain the same, non-zero number of draws")

    for chain in chains:
        for params in chain:
            if len(params.LR) != triangle.n_cohorts:
                raise ValueError(
                    f"Parameter set has {len(params.LR)} loss ratios but the triangle "
                    f"has {triangle.n_cohorts} cohorts"
                )

    posterior = {
        name: np.array([[getattr(p, name) for p in chain] for chain in chains])
        for name in PARAMETER_NAMES
    }

    return az.from_dict(
        posterior=posterior,
        coords={"cohort": triangle.cohort_labels},
        dims={"LR": ["cohort"]},
    )


def iter_parameter_sets(posterior: az.InferenceData | xr.Dataset) -> Iterator[ParameterSet]:
    """Yield one ParameterSet per (chain, draw), chain-major."""
    post = get_posterior(posterior)
    stacked = {
        name: post[name].stack(sample=("chain", "draw")).transpose("sample", ...).values
        for name in PARAMETER_NAMES
    }
    n_samples = post.sizes["chain"] * post.sizes["draw"]
    for i in range(n_samples):
        yield ParameterSet(**{name: values[i] for name, values in stacked.items()})


def _select_chains(idata: az.InferenceData, keep: np.ndarray) -> az.InferenceData:
    """Keep the given chain positions in every group with a chain dim, renumbered."""
    groups = {}
    for group in idata.groups():
        ds = idata[group]
        if "chain" in ds.dims:
            ds = ds.isel(chain=keep).assign_coords(chain=np.arange(len(keep)))
        groups[group] = ds
    return az.InferenceData(**groups)


def _concat_chains(pieces: list[az.InferenceData]) -> az.InferenceData:
    """Concatenate single-chain runs along ``chain``, renumbered."""
    groups = {}
    for group in pieces[0].groups():
        datasets = [p[group] for p in pieces]
        if "chain" in datasets[0].dims:
            ds = xr.concat(datasets, dim="chain")
            ds = ds.assign_coords(chain=np.arange(ds.sizes["chain"]))
        else:
            ds = datasets[0]
        groups[group] = ds
    return az.InferenceData(**groups)


def _drop_non_finite_chains(idata: az.InferenceData | None) -> az.InferenceData | None:
    if idata is None:
        return None

    posterior = idata.posterior
    n_chains = posterior.sizes["chain"]
    finite = np.ones(n_chains, dtype=bool)
    for name in PARAMETER_NAMES:
        if name in posterior:
            values = posterior[name].transpose("chain", ...).values.reshape(n_chains, -1)
            finite &= np.isfinite(values).all(axis=1)

    if finite.all():
        return idata

    for chain in np.flatnonzero(~finite):
        logger.warning("Chain %d produced non-finite draws and was dropped", chain)
    if not finite.any():
        return None
    return _select_chains(idata, np.flatnonzero(finite))
