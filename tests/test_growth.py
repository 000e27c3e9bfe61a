"""Tests for growth curve functions."""

import numpy as np
import pytest

from bayesiangrowthcurve.exceptions import DomainError
from bayesiangrowthcurve.growth import (
    GrowthCurve,
    GrowthFunction,
    LogLogisticGrowth,
    WeibullGrowth,
    get_growth_function,
)

CURVES = [GrowthCurve.WEIBULL, GrowthCurve.LOGLOGISTIC]


class TestGrowthCurveParse:
    """Tests for GrowthCurve.parse."""

    def test_enum_values(self):
        """Test the integer codes of the two families."""
        assert GrowthCurve.LOGLOGISTIC == 0
        assert GrowthCurve.WEIBULL == 1

    @pytest.mark.parametrize(
        "value, expected",
        [
            (GrowthCurve.WEIBULL, GrowthCurve.WEIBULL),
            (1, GrowthCurve.WEIBULL),
            (0, GrowthCurve.LOGLOGISTIC),
            (np.int64(0), GrowthCurve.LOGLOGISTIC),
            ("weibull", GrowthCurve.WEIBULL),
            ("Log-Logistic", GrowthCurve.LOGLOGISTIC),
            ("LOGLOGISTIC", GrowthCurve.LOGLOGISTIC),
        ],
    )
    def test_accepted_identifiers(self, value, expected):
        """Test every supported identifier form."""
        assert GrowthCurve.parse(value) is expected

    @pytest.mark.parametrize("value", [2, -1, "gompertz", 1.0, True, None])
    def test_unknown_identifier_raises(self, value):
        """Test that unknown identifiers raise ValueError."""
        with pytest.raises(ValueError):
            GrowthCurve.parse(value)


class TestGetGrowthFunction:
    """Tests for get_growth_function."""

    def test_returns_singletons(self):
        """Test that the same stateless instance is returned."""
        assert get_growth_function("weibull") is get_growth_function(GrowthCurve.WEIBULL)
        assert isinstance(get_growth_function(1), WeibullGrowth)
        assert isinstance(get_growth_function(0), LogLogisticGrowth)

    def test_instance_passthrough(self):
        """Test that a GrowthFunction instance is returned unchanged."""
        g = LogLogisticGrowth()
        assert get_growth_function(g) is g


class TestGrowthValues:
    """Tests for the closed-form values of each curve."""

    def test_weibull_midpoint(self):
        """Test that the Weibull form is 1/2 at t = theta."""
        g = get_growth_function(GrowthCurve.WEIBULL)
        assert g(2.2, 1.5, 2.2) == pytest.approx(0.5)

    def test_loglogistic_at_scale(self):
        """Test that the log-logistic form is 1 - 1/e at t = theta."""
        g = get_growth_function(GrowthCurve.LOGLOGISTIC)
        assert g(3.0, 0.7, 3.0) == pytest.approx(1 - np.exp(-1))

    def test_weibull_formula(self):
        """Test against t^w / (t^w + theta^w)."""
        g = get_growth_function(GrowthCurve.WEIBULL)
        t = np.array([0.5, 1.0, 2.0, 5.0])
        omega, theta = 1.5, 2.2
        expected = t**omega / (t**omega + theta**omega)
        np.testing.assert_allclose(g(t, omega, theta), expected, rtol=1e-12)

    def test_loglogistic_formula(self):
        """Test against 1 - exp(-(t / theta)^w)."""
        g = get_growth_function(GrowthCurve.LOGLOGISTIC)
        t = np.array([0.5, 1.0, 2.0, 5.0])
        omega, theta = 1.5, 2.2
        expected = 1 - np.exp(-((t / theta) ** omega))
        np.testing.assert_allclose(g(t, omega, theta), expected, rtol=1e-12)

    def test_scalar_returns_float(self):
        """Test that scalar input gives a Python float."""
        g = get_growth_function(GrowthCurve.WEIBULL)
        assert isinstance(g(1.0, 1.0, 1.0), float)

    def test_broadcasting(self):
        """Test broadcasting over draws and lags."""
        g = get_growth_function(GrowthCurve.WEIBULL)
        t = np.arange(1.0, 6.0)
        omega = np.array([1.0, 2.0, 3.0])
        result = g(t[None, :], omega[:, None], 2.0)
        assert result.shape == (3, 5)


@pytest.mark.parametrize("curve", CURVES)
class TestGrowthProperties:
    """Shape properties shared by both curves."""

    def test_zero_at_origin(self, curve):
        """Test that g(0) is exactly 0."""
        g = get_growth_function(curve)
        assert g(0.0, 1.5, 2.0) == 0.0

    def test_strictly_increasing(self, curve):
        """Test monotonicity on a fine grid."""
        g = get_growth_function(curve)
        t = np.linspace(0.01, 20.0, 500)
        values = g(t, 1.3, 2.5)
        assert np.all(np.diff(values) > 0)

    def test_tends_to_one(self, curve):
        """Test the limit at large t."""
        g = get_growth_function(curve)
        assert g(1e6, 1.5, 2.0) == pytest.approx(1.0)
        assert g(np.inf, 1.5, 2.0) == 1.0

    def test_range(self, curve):
        """Test that values lie in [0, 1]."""
        g = get_growth_function(curve)
        values = g(np.linspace(0.0, 50.0, 200), 0.8, 4.0)
        assert np.all(values >= 0.0)
        assert np.all(values <= 1.0)

    def test_stable_near_zero(self, curve):
        """Test that tiny t gives a finite, non-negative value."""
        g = get_growth_function(curve)
        value = g(1e-300, 5.0, 10.0)
        assert np.isfinite(value)
        assert value >= 0.0

    def test_negative_time_raises(self, curve):
        """Test that t = -1 raises DomainError."""
        g = get_growth_function(curve)
        with pytest.raises(DomainError):
            g(-1.0, 1.5, 2.2)

    def test_nan_time_raises(self, curve):
        """Test that NaN time raises DomainError."""
        g = get_growth_function(curve)
        with pytest.raises(DomainError):
            g(np.array([1.0, np.nan]), 1.5, 2.2)

    @pytest.mark.parametrize("omega, theta", [(0.0, 1.0), (-1.0, 1.0), (1.0, 0.0), (np.nan, 1.0), (1.0, np.inf)])
    def test_invalid_parameters_raise(self, curve, omega, theta):
        """Test that non-positive or non-finite parameters raise DomainError."""
        g = get_growth_function(curve)
        with pytest.raises(DomainError):
            g(1.0, omega, theta)

    def test_symbolic_matches_numeric(self, curve):
        """Test that the PyTensor expression evaluates to the same values."""
        g = get_growth_function(curve)
        t = np.array([0.5, 1.0, 3.0, 8.0])
        symbolic = g.symbolic(t, 1.4, 2.5).eval()
        np.testing.assert_allclose(symbolic, g(t, 1.4, 2.5), rtol=1e-10)

    def test_symbolic_float_constants_are_double(self, curve):
        """Test that plain float parameters give a float64 expression."""
        g = get_growth_function(curve)
        expr = g.symbolic(3.0, 1.4, 2.5)

        assert expr.dtype == "float64"
        assert float(expr.eval()) == pytest.approx(g(3.0, 1.4, 2.5), rel=1e-12)


def test_growth_function_is_abstract():
    """Test that the base class cannot be instantiated."""
    with pytest.raises(TypeError):
        GrowthFunction()
