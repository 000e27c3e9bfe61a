"""
Exceptions and warning categories for Bayesian growth curve reserving.
"""

from __future__ import annotations


class DomainError(ValueError):
    """A growth curve or density was evaluated outside its domain.

    Raised for negative development times and non-positive (or non-finite)
    shape, scale, loss ratio or noise parameters. These always point at a
    parameterisation bug upstream and are never clamped.
    """


class DataError(ValueError):
    """Triangle records cannot be turned into a valid loss triangle."""


class SamplingError(RuntimeError):
    """Posterior sampling produced no usable chains."""


class ConvergenceWarning(UserWarning):
    """MCMC diagnostics (R-hat or effective sample size) look unhealthy."""


class NumericInstabilityWarning(UserWarning):
    """Forecast draws were excluded because the growth ratio was degenerate."""
