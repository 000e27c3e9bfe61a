"""
Bayesian Growth Curve - Stochastic Loss Reserving with Parametric Development.

This package fits a hierarchical Bayesian growth curve model to loss
development triangles with PyMC, forecasts each cohort's cumulative losses
to ultimate and checks the forecasts against realised outcomes with
posterior predictive statistics.

The main estimator class is `BayesianGrowthCurve`, whose `fit` method
returns an immutable `FitResult`.

Example
-------
>>> from bayesiangrowthcurve import BayesianGrowthCurve, Triangle, split_at_snapshot
>>>
>>> # Build the triangle known at the end of 1997
>>> triangle, actual_final = split_at_snapshot(records, snapshot=1997)
>>>
>>> # Fit the Weibull growth curve
>>> result = BayesianGrowthCurve(growth="weibull", iterations=2000, random_seed=42).fit(triangle)
>>>
>>> # Get reserve summary
>>> print(result.summary())
>>>
>>> # Compare with what actually happened
>>> print(result.ppc(actual_final).summary())

References
----------
Clark, D. R. (2003). LDF Curve-Fitting and Stochastic Reserving: A Maximum
Likelihood Approach. CAS Forum.
"""

from importlib.metadata import PackageNotFoundError, version

# Version
try:
    __version__ = version("bayesiangrowthcurve")
except PackageNotFoundError:
    __version__ = "0.1.0"

# Errors and warnings
from .exceptions import (
    ConvergenceWarning,
    DataError,
    DomainError,
    NumericInstabilityWarning,
    SamplingError,
)

# Main estimator
from .estimators import BayesianGrowthCurve, FitResult

# Forecasting and posterior predictive checks
from .forecast import ForecastCone, forecast_losses
from .ppc import PPCResult, posterior_predictive_statistics

# Growth curves
from .growth import (
    GrowthCurve,
    GrowthFunction,
    LogLogisticGrowth,
    WeibullGrowth,
    get_growth_function,
)

# Model
from .models import (
    GrowthCurveModel,
    ParameterSet,
    PriorConfig,
    compare_models,
    compute_loo,
    compute_waic,
    extract_parameter_summary,
)

# Plotting functions
from .plots import (
    plot_forecast_cone,
    plot_forest,
    plot_growth_curve,
    plot_ppc_statistics,
    plot_trace,
)

# Sampling
from .sampling import (
    ConvergenceDiagnostics,
    FixedDrawSampler,
    PosteriorSampler,
    PyMCSampler,
    SamplerConfig,
    SamplerOutput,
)

# Data
from .simulate import simulate_triangle
from .utils import Cohort, Triangle, split_at_snapshot

__all__ = [
    # Version
    "__version__",
    # Errors and warnings
    "DomainError",
    "DataError",
    "SamplingError",
    "ConvergenceWarning",
    "NumericInstabilityWarning",
    # Main estimator
    "BayesianGrowthCurve",
    "FitResult",
    # Forecasting and checks
    "ForecastCone",
    "forecast_losses",
    "PPCResult",
    "posterior_predictive_statistics",
    # Growth curves
    "GrowthCurve",
    "GrowthFunction",
    "WeibullGrowth",
    "LogLogisticGrowth",
    "get_growth_function",
    # Model
    "GrowthCurveModel",
    "ParameterSet",
    "PriorConfig",
    "compare_models",
    "compute_waic",
    "compute_loo",
    "extract_parameter_summary",
    # Sampling
    "PosteriorSampler",
    "PyMCSampler",
    "FixedDrawSampler",
    "SamplerConfig",
    "SamplerOutput",
    "ConvergenceDiagnostics",
    # Plotting functions
    "plot_trace",
    "plot_forest",
    "plot_growth_curve",
    "plot_forecast_cone",
    "plot_ppc_statistics",
    # Data
    "Cohort",
    "Triangle",
    "split_at_snapshot",
    "simulate_triangle",
]
