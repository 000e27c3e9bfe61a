"""
Parametric growth curves for loss development.

A growth curve maps development time ``t`` to the fraction of ultimate loss
that has emerged by then. Both families are indexed by a shape ``omega`` and
a scale ``theta`` and share the same call signature, so the model, the
forecast and the plots can be written against :class:`GrowthFunction` and
switched with a single :class:`GrowthCurve` value.

Both curves are evaluated through the log-ratio ``z = omega * log(t / theta)``:

- Weibull:       g = t^omega / (t^omega + theta^omega) = expit(z)
- Log-logistic:  g = 1 - exp(-(t / theta)^omega)       = -expm1(-exp(z))

which keeps them finite near ``t = 0`` and for very large ``t / theta``.

Examples
--------
>>> from bayesiangrowthcurve.growth import GrowthCurve, get_growth_function
>>> g = get_growth_function(GrowthCurve.WEIBULL)
>>> round(g(2.2, omega=1.5, theta=2.2), 6)
0.5
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from enum import IntEnum
from typing import Any

import numpy as np
import pytensor.tensor as pt
from pytensor.graph.basic import Variable
from scipy.special import expit

from .exceptions import DomainError


class GrowthCurve(IntEnum):
    """Growth curve family identifier."""

    LOGLOGISTIC = 0
    WEIBULL = 1

    @classmethod
    def parse(cls, value: GrowthCurve | int | str) -> GrowthCurve:
        """
        Resolve a growth curve identifier.

        Parameters
        ----------
        value : GrowthCurve, int or str
            An enum member, its integer code (0 or 1), or its name
            ("loglogistic", "log-logistic", "weibull"), case-insensitive.

        Returns
        -------
        GrowthCurve
        """
        if isinstance(value, cls):
            return value

        if isinstance(value, str):
            key = value.strip().lower().replace("-", "").replace("_", "")
            names = {"loglogistic": cls.LOGLOGISTIC, "weibull": cls.WEIBULL}
            if key in names:
                return names[key]
            raise ValueError(
                f"Unknown growth curve '{value}'. Supported: {list(names.keys())}"
            )

        if isinstance(value, (int, np.integer)) and not isinstance(value, bool):
            try:
                return cls(int(value))
            except ValueError:
                pass

        raise ValueError(
            f"Unknown growth curve {value!r}. Use GrowthCurve.LOGLOGISTIC (0) "
            "or GrowthCurve.WEIBULL (1)."
        )


def _check_domain(
    t: Any, omega: Any, theta: Any
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Convert inputs to float arrays and reject out-of-domain values."""
    t_arr = np.asarray(t, dtype=np.float64)
    omega_arr = np.asarray(omega, dtype=np.float64)
    theta_arr = np.asarray(theta, dtype=np.float64)

    if np.isnan(t_arr).any() or (t_arr < 0).any():
        raise DomainError(f"Development time must be >= 0, got {t!r}")
    if not np.isfinite(omega_arr).all() or (omega_arr <= 0).any():
        raise DomainError(f"Shape omega must be finite and > 0, got {omega!r}")
    if not np.isfinite(theta_arr).all() or (theta_arr <= 0).any():
        raise DomainError(f"Scale theta must be finite and > 0, got {theta!r}")

    return t_arr, omega_arr, theta_arr


def _as_float64_tensor(x: Any) -> Any:
    # Python floats would otherwise become float32 constants
    if isinstance(x, Variable):
        return x
    return pt.as_tensor_variable(np.asarray(x, dtype=np.float64))


class GrowthFunction(ABC):
    """
    Base class for growth curves ``g(t; omega, theta)``.

    Implementations are stateless. ``g(0) = 0``, ``g`` is strictly increasing
    in ``t`` and tends to 1 as ``t`` grows.
    """

    curve: GrowthCurve

    def __call__(self, t: Any, omega: Any, theta: Any) -> float | np.ndarray:
        """
        Evaluate the growth curve.

        Parameters
        ----------
        t : float or array-like
            Development time(s), ``t >= 0``.
        omega : float or array-like
            Shape parameter(s), ``omega > 0``.
        theta : float or array-like
            Scale parameter(s), ``theta > 0``.

        Returns
        -------
        float or np.ndarray
            Cumulative development fraction, broadcast over the inputs.

        Raises
        ------
        DomainError
            If any input lies outside the domain.
        """
        t_arr, omega_arr, theta_arr = _check_domain(t, omega, theta)

        with np.errstate(divide="ignore", over="ignore"):
            z = omega_arr * (np.log(t_arr) - np.log(theta_arr))
            g = self._from_log_ratio(z)

        if np.ndim(g) == 0:
            return float(g)
        return g

    def symbolic(self, t: Any, omega: Any, theta: Any) -> pt.TensorVariable:
        """
        Same curve as a PyTensor expression, for use inside a PyMC model.

        Plain numbers and arrays are taken as float64 constants, so the
        expression matches :meth:`__call__` to double precision.
        """
        t, omega, theta = (_as_float64_tensor(x) for x in (t, omega, theta))
        z = omega * (pt.log(t) - pt.log(theta))
        return self._symbolic_from_log_ratio(z)

    @abstractmethod
    def _from_log_ratio(self, z: np.ndarray) -> np.ndarray:
        ...

    @abstractmethod
    def _symbolic_from_log_ratio(self, z: pt.TensorVariable) -> pt.TensorVariable:
        ...

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class WeibullGrowth(GrowthFunction):
    """``g = t^omega / (t^omega + theta^omega)``."""

    curve = GrowthCurve.WEIBULL

    def _from_log_ratio(self, z: np.ndarray) -> np.ndarray:
        return expit(z)

    def _symbolic_from_log_ratio(self, z: pt.TensorVariable) -> pt.TensorVariable:
        return pt.sigmoid(z)


class LogLogisticGrowth(GrowthFunction):
    """``g = 1 - exp(-(t / theta)^omega)``."""

    curve = GrowthCurve.LOGLOGISTIC

    def _from_log_ratio(self, z: np.ndarray) -> np.ndarray:
        return -np.expm1(-np.exp(z))

    def _symbolic_from_log_ratio(self, z: pt.TensorVariable) -> pt.TensorVariable:
        return -pt.expm1(-pt.exp(z))


_GROWTH_FUNCTIONS: dict[GrowthCurve, GrowthFunction] = {
    GrowthCurve.WEIBULL: WeibullGrowth(),
    GrowthCurve.LOGLOGISTIC: LogLogisticGrowth(),
}


def get_growth_function(curve: GrowthFunction | GrowthCurve | int | str) -> GrowthFunction:
    """
    Return the growth function for a curve identifier.

    Parameters
    ----------
    curve : GrowthFunction, GrowthCurve, int or str
        A growth function (returned unchanged) or anything accepted by
        :meth:`GrowthCurve.parse`.

    Returns
    -------
    GrowthFunction
    """
    if isinstance(curve, GrowthFunction):
        return curve
    return _GROWTH_FUNCTIONS[GrowthCurve.parse(curve)]
