"""
Loss triangle data model.

This module turns long-format claim records ``(cohort, dev_lag, premium,
cum_loss)`` into an immutable :class:`Triangle`. The triangle owns the
mapping between cohort / development-lag labels and dense array positions
used by the model, the forecast and the posterior predictive checks.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import numpy as np
import pandas as pd

from .exceptions import DataError

if TYPE_CHECKING:
    import chainladder as cl

logger = logging.getLogger(__name__)

RECORD_COLUMNS = ("cohort", "dev_lag", "premium", "cum_loss")


@dataclass(frozen=True)
class Cohort:
    """
    Observed development of one accounting period.

    Attributes
    ----------
    label : hashable
        Cohort identity (e.g. the accident year).
    premium : float
        Earned premium, fixed for the life of the cohort.
    dev_lags : tuple
        Observed development lags, strictly increasing.
    cum_losses : tuple
        Cumulative losses at ``dev_lags``.
    """

    label: Any
    premium: float
    dev_lags: tuple
    cum_losses: tuple

    @property
    def n_obs(self) -> int:
        return len(self.dev_lags)

    @property
    def max_observed_lag(self) -> float:
        return self.dev_lags[-1]

    @property
    def latest_loss(self) -> float:
        return self.cum_losses[-1]


def _readonly(values: Any, dtype: Any = np.float64) -> np.ndarray:
    arr = np.array(values, dtype=dtype)
    arr.setflags(write=False)
    return arr


class Triangle:
    """
    Upper-left filled loss development triangle.

    Cohorts are ordered by label and development lags ascending. Every
    cohort is observed on a prefix of the global lag grid (no gaps), and
    when ``require_staircase`` is set a later cohort never has more
    observations than an earlier one.

    Index mapping
    -------------
    ``cohort_index`` maps labels to ``0..n_cohorts-1`` and ``lag_index`` maps
    lags to ``0..n_lags-1``. Both are contiguous, built once, and stable for
    the lifetime of the triangle; model coordinates, forecast arrays and
    summaries all use these positions.

    Parameters
    ----------
    cohorts : iterable of Cohort
        Cohort observations.
    require_staircase : bool, optional
        Enforce that observation counts do not increase with cohort label.
        Default is True.

    Raises
    ------
    DataError
        If the cohorts do not form a valid triangle.
    """

    def __init__(self, cohorts: Iterable[Cohort], require_staircase: bool = True):
        try:
            ordered = tuple(sorted(cohorts, key=lambda c: c.label))
        except TypeError as exc:
            raise DataError(f"Cohort labels must be mutually comparable: {exc}") from exc

        _validate_cohorts(ordered, require_staircase=require_staircase)

        lags = sorted({lag for c in ordered for lag in c.dev_lags})

        self._cohorts = ordered
        self._lags = tuple(lags)
        self._cohort_index = {c.label: i for i, c in enumerate(ordered)}
        self._lag_index = {lag: j for j, lag in enumerate(lags)}

        n, m = len(ordered), len(lags)
        observed = np.full((n, m), np.nan)
        for i, c in enumerate(ordered):
            observed[i, : c.n_obs] = c.cum_losses

        self._dev_lags = _readonly(lags)
        self._premium = _readonly([c.premium for c in ordered])
        self._latest_loss = _readonly([c.latest_loss for c in ordered])
        self._latest_lag = _readonly([c.max_observed_lag for c in ordered])
        self._latest_lag_index = _readonly([c.n_obs - 1 for c in ordered], dtype=np.int64)
        self._observed = _readonly(observed)

        cohort_idx, lag_idx = np.nonzero(~np.isnan(observed))
        self._obs_cohort_idx = _readonly(cohort_idx, dtype=np.int64)
        self._obs_lag_idx = _readonly(lag_idx, dtype=np.int64)

        logger.debug("Built triangle with %d cohorts and %d development lags", n, m)

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def from_records(
        cls,
        records: pd.DataFrame | Iterable[Sequence[Any]],
        cohort_col: str = "cohort",
        lag_col: str = "dev_lag",
        premium_col: str = "premium",
        loss_col: str = "cum_loss",
        group_cols: Sequence[str] | None = None,
        require_staircase: bool = True,
    ) -> "Triangle":
        """
        Build a triangle from long-format claim records.

        Parameters
        ----------
        records : pd.DataFrame or iterable of tuples
            One row per observed cell. Tuples are read as
            ``(cohort, dev_lag, premium, cum_loss)``.
        cohort_col, lag_col, premium_col, loss_col : str, optional
            Column names when ``records`` is a DataFrame.
        group_cols : sequence of str, optional
            Columns identifying the insurer / line of business. The records
            must already be filtered to a single group.
        require_staircase : bool, optional
            See :class:`Triangle`.

        Returns
        -------
        Triangle

        Raises
        ------
        DataError
            On missing columns, missing values, duplicate cells, several
            groups, non-constant or non-positive premium, or a non-triangular
            pattern.

        Examples
        --------
        >>> tri = Triangle.from_records([
        ...     ("A", 1, 100.0, 10.0), ("A", 2, 100.0, 20.0),
        ...     ("B", 1, 100.0, 8.0),
        ... ])
        >>> tri.n_cohorts, tri.n_lags
        (2, 2)
        """
        columns = [cohort_col, lag_col, premium_col, loss_col]
        df = _records_to_frame(records, columns)

        if group_cols:
            missing = [col for col in group_cols if col not in df.columns]
            if missing:
                raise DataError(f"Group columns not found in records: {missing}")
            for col in group_cols:
                n_groups = df[col].nunique(dropna=False)
                if n_groups > 1:
                    raise DataError(
                        f"Records span {n_groups} values of '{col}'. Filter to a single "
                        "insurer / line of business before building a triangle."
                    )

        if df[columns].isna().any().any():
            raise DataError("Triangle records contain missing values")

        duplicated = df.duplicated(subset=[cohort_col, lag_col])
        if duplicated.any():
            dupes = df.loc[duplicated, [cohort_col, lag_col]].values.tolist()
            raise DataError(f"Duplicate (cohort, dev_lag) cells: {dupes}")

        cohorts = []
        for label, group in df.groupby(cohort_col, sort=True):
            if isinstance(label, np.generic):
                label = label.item()
            group = group.sort_values(lag_col)
            premiums = group[premium_col].unique().tolist()
            if len(premiums) > 1:
                raise DataError(
                    f"Cohort {label!r} has more than one premium value: {premiums}"
                )
            cohorts.append(
                Cohort(
                    label=label,
                    premium=premiums[0],
                    dev_lags=tuple(group[lag_col].tolist()),
                    cum_losses=tuple(group[loss_col].tolist()),
                )
            )

        return cls(cohorts, require_staircase=require_staircase)

    @classmethod
    def from_chainladder(
        cls,
        triangle: cl.Triangle,
        premium: float | Mapping[Any, float] | Sequence[float] | np.ndarray,
        dev_divisor: float = 12.0,
    ) -> "Triangle":
        """
        Convert a cumulative ``chainladder.Triangle``.

        Parameters
        ----------
        triangle : chainladder.Triangle
            A single loss triangle. Incremental triangles are accumulated.
        premium : float, mapping or array-like
            Earned premium, either a single value for every origin, a mapping
            from origin year to premium, or one value per origin in order.
        dev_divisor : float, optional
            Development ages are divided by this value, so that the default
            turns chainladder's months (12, 24, ...) into years (1, 2, ...).

        Returns
        -------
        Triangle
        """
        tri = triangle if triangle.is_cumulative else triangle.incr_to_cum()

        values = tri.values
        while values.ndim > 2:
            if values.shape[0] == 1:
                values = values[0]
            else:
                raise DataError("Triangle must contain a single index and column")

        origins = [_extract_period_value(o) for o in tri.origin]
        developments = [_extract_period_value(d) / dev_divisor for d in tri.development]

        if isinstance(premium, Mapping):
            premiums = [premium[o] for o in origins]
        elif np.ndim(premium) == 0:
            premiums = [float(premium)] * len(origins)
        else:
            premiums = list(np.asarray(premium, dtype=np.float64))
            if len(premiums) != len(origins):
                raise DataError("Premium length must match the number of origins")

        records = []
        for i, origin in enumerate(origins):
            for j, dev in enumerate(developments):
                val = values[i, j]
                if np.isnan(val):
                    continue
                records.append((origin, dev, premiums[i], float(val)))

        return cls.from_records(records)

    # ------------------------------------------------------------------
    # Index mapping
    # ------------------------------------------------------------------

    @property
    def cohorts(self) -> tuple[Cohort, ...]:
        return self._cohorts

    @property
    def cohort_labels(self) -> list:
        return [c.label for c in self._cohorts]

    @property
    def cohort_index(self) -> dict:
        return dict(self._cohort_index)

    @property
    def lag_index(self) -> dict:
        return dict(self._lag_index)

    @property
    def n_cohorts(self) -> int:
        return len(self._cohorts)

    @property
    def n_lags(self) -> int:
        return len(self._lags)

    @property
    def dev_lags(self) -> np.ndarray:
        """Global development lag grid, ascending."""
        return self._dev_lags

    @property
    def terminal_lag(self) -> float:
        return self._lags[-1]

    def cohort(self, label: Any) -> Cohort:
        return self._cohorts[self._cohort_index[label]]

    def lag_of(self, j: int) -> Any:
        return self._lags[j]

    # ------------------------------------------------------------------
    # Dense views (read-only)
    # ------------------------------------------------------------------

    @property
    def premium(self) -> np.ndarray:
        return self._premium

    @property
    def latest_loss(self) -> np.ndarray:
        """Cumulative loss known at the snapshot, per cohort."""
        return self._latest_loss

    @property
    def latest_lag(self) -> np.ndarray:
        return self._latest_lag

    @property
    def latest_lag_index(self) -> np.ndarray:
        return self._latest_lag_index

    @property
    def observed(self) -> np.ndarray:
        """Cumulative losses, shape (n_cohorts, n_lags), NaN where unobserved."""
        return self._observed

    @property
    def obs_cohort_idx(self) -> np.ndarray:
        return self._obs_cohort_idx

    @property
    def obs_lag_idx(self) -> np.ndarray:
        return self._obs_lag_idx

    @property
    def obs_lag(self) -> np.ndarray:
        return self._dev_lags[self._obs_lag_idx]

    @property
    def obs_loss(self) -> np.ndarray:
        return self._observed[self._obs_cohort_idx, self._obs_lag_idx]

    @property
    def obs_premium(self) -> np.ndarray:
        return self._premium[self._obs_cohort_idx]

    @property
    def fully_developed(self) -> np.ndarray:
        """Boolean mask of cohorts observed at the terminal lag."""
        return self._latest_lag_index == self.n_lags - 1

    # ------------------------------------------------------------------
    # Export
    # ------------------------------------------------------------------

    def to_records(self) -> pd.DataFrame:
        """Flatten back to long-format ``cohort, dev_lag, premium, cum_loss``."""
        rows = [
            (c.label, lag, c.premium, loss)
            for c in self._cohorts
            for lag, loss in zip(c.dev_lags, c.cum_losses)
        ]
        return pd.DataFrame(rows, columns=list(RECORD_COLUMNS))

    def to_frame(self) -> pd.DataFrame:
        """Wide cohort x dev_lag table of cumulative losses."""
        return pd.DataFrame(
            np.array(self._observed),
            index=pd.Index(self.cohort_labels, name="cohort"),
            columns=pd.Index(list(self._lags), name="dev_lag"),
        )

    def __len__(self) -> int:
        return len(self._cohorts)

    def __repr__(self) -> str:
        return (
            f"Triangle(n_cohorts={self.n_cohorts}, n_lags={self.n_lags}, "
            f"n_obs={len(self._obs_cohort_idx)})"
        )


def _records_to_frame(
    records: pd.DataFrame | Iterable[Sequence[Any]],
    columns: list[str],
) -> pd.DataFrame:
    """Normalise records to a DataFrame with the required columns."""
    if isinstance(records, pd.DataFrame):
        df = records.copy()
    else:
        rows = [tuple(r) for r in records]
        if rows and any(len(r) != len(columns) for r in rows):
            raise DataError(f"Record tuples must have {len(columns)} fields: {columns}")
        df = pd.DataFrame(rows, columns=columns)

    missing = [col for col in columns if col not in df.columns]
    if missing:
        raise DataError(f"Columns not found in records: {missing}")

    if len(df) == 0:
        raise DataError("No triangle records supplied")

    return df


def _validate_cohorts(cohorts: Sequence[Cohort], require_staircase: bool) -> None:
    """Check premium, ordering, prefix (no gap) and staircase invariants."""
    if not cohorts:
        raise DataError("Triangle must contain at least one cohort")

    for c in cohorts:
        if not isinstance(c.premium, (int, float, np.number)) or isinstance(c.premium, bool):
            raise DataError(f"Cohort {c.label!r} premium must be numeric, got {c.premium!r}")
        if not np.isfinite(c.premium) or c.premium <= 0:
            raise DataError(f"Cohort {c.label!r} has non-positive premium {c.premium!r}")
        if c.n_obs == 0:
            raise DataError(f"Cohort {c.label!r} has no observations")
        if len(c.cum_losses) != c.n_obs:
            raise DataError(f"Cohort {c.label!r} has mismatched lags and losses")

        lags = np.asarray(c.dev_lags, dtype=np.float64)
        losses = np.asarray(c.cum_losses, dtype=np.float64)
        if not np.isfinite(lags).all() or (lags <= 0).any():
            raise DataError(f"Cohort {c.label!r} has non-positive development lags")
        if (np.diff(lags) <= 0).any():
            raise DataError(f"Cohort {c.label!r} development lags are not increasing")
        if not np.isfinite(losses).all():
            raise DataError(f"Cohort {c.label!r} has non-finite cumulative losses")

    grid = sorted({lag for c in cohorts for lag in c.dev_lags})
    for c in cohorts:
        if list(c.dev_lags) != grid[: c.n_obs]:
            raise DataError(
                f"Cohort {c.label!r} is not observed on a prefix of the development "
                f"grid {grid}: observed lags {list(c.dev_lags)}"
            )

    if require_staircase:
        for prev, curr in zip(cohorts, cohorts[1:]):
            if curr.n_obs > prev.n_obs:
                raise DataError(
                    f"Cohort {curr.label!r} has more development than the earlier "
                    f"cohort {prev.label!r}; records do not form a triangle"
                )


def _extract_period_value(period: Any) -> Any:
    """Extract a plain value from a chainladder period (Timestamp, int, ...)."""
    if hasattr(period, "year"):
        return period.year
    return int(period)


def split_at_snapshot(
    records: pd.DataFrame,
    snapshot: int,
    cohort_col: str = "cohort",
    lag_col: str = "dev_lag",
    premium_col: str = "premium",
    loss_col: str = "cum_loss",
    lag_offset: int = 1,
    group_cols: Sequence[str] | None = None,
) -> tuple[Triangle, pd.Series]:
    """
    Split fully developed records into a snapshot triangle and outcomes.

    A cell is known at the snapshot when
    ``cohort + dev_lag - lag_offset <= snapshot``. The realised outcome of
    each cohort is its cumulative loss at the largest lag in ``records``.

    Parameters
    ----------
    records : pd.DataFrame
        Long-format records with integer cohort years, typically a full
        square taken from a later evaluation.
    snapshot : int
        Latest calendar period known when reserving.
    cohort_col, lag_col, premium_col, loss_col : str, optional
        Column names.
    lag_offset : int, optional
        Development lag of a cohort's own calendar period. Default is 1.
    group_cols : sequence of str, optional
        Passed to :meth:`Triangle.from_records`.

    Returns
    -------
    tuple[Triangle, pd.Series]
        The snapshot triangle and ``actual_final`` indexed by cohort label,
        aligned with the triangle's cohort order.
    """
    columns = [cohort_col, lag_col, premium_col, loss_col]
    df = _records_to_frame(records, columns)

    calendar = df[cohort_col] + df[lag_col] - lag_offset
    known = df[calendar <= snapshot]
    if len(known) == 0:
        raise DataError(f"No records are known at snapshot {snapshot}")

    triangle = Triangle.from_records(
        known,
        cohort_col=cohort_col,
        lag_col=lag_col,
        premium_col=premium_col,
        loss_col=loss_col,
        group_cols=group_cols,
    )

    final = df.sort_values(lag_col).groupby(cohort_col)[loss_col].last()
    actual_final = final.loc[triangle.cohort_labels].astype(np.float64)
    actual_final.index.name = "cohort"
    actual_final.name = "actual_final"

    return triangle, actual_final
