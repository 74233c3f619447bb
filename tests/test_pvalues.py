"""Tests for p-value calculators."""

import math

import numpy as np
import pytest

from aggcp.icp import PValueCalculator, SmoothedPValue, StandardPValue
from aggcp.icp.pvalues import p_value_calculator_from_properties


@pytest.fixture
def standard():
    return StandardPValue().build([4.0, 1.0, 3.0, 2.0])


@pytest.mark.parametrize("ncs, expected", [
    (-1.0, 1.0),
    (1.0, 1.0),
    (2.0, 0.8),
    (2.5, 0.6),
    (4.0, 0.4),
    (10.0, 0.2),
])
def test_standard_p_value(standard, ncs, expected):
    """p = (#{s >= ncs} + 1) / (n + 1)"""
    assert standard.get_p_value(ncs) == pytest.approx(expected)


@pytest.mark.parametrize("confidence, expected", [
    (0.0, 1.0),
    (0.5, 3.0),
    (0.8, 4.0),
    (0.81, math.inf),
    (1.0, math.inf),
])
def test_standard_ncs_at_confidence(standard, confidence, expected):
    assert standard.get_ncs(confidence) == expected


def test_not_built_raises():
    with pytest.raises(RuntimeError):
        StandardPValue().get_p_value(1.0)
    with pytest.raises(RuntimeError):
        SmoothedPValue().get_ncs(0.5)


def test_invalid_input(standard):
    with pytest.raises(ValueError):
        standard.get_ncs(1.5)
    with pytest.raises(ValueError):
        StandardPValue().build([])


def test_smoothed_within_bounds():
    """Smoothed p-value lies between the strict and inclusive counts."""
    calc = SmoothedPValue(seed=1).build([1.0, 2.0, 2.0, 2.0, 5.0])
    for _ in range(20):
        p = calc.get_p_value(2.0)
        assert 1 / 6 <= p <= 5 / 6


def test_smoothed_is_seeded():
    scores = np.linspace(0, 1, 11)
    a = SmoothedPValue(seed=5).build(scores)
    b = SmoothedPValue(seed=5).build(scores)
    assert [a.get_p_value(0.5) for _ in range(5)] == [b.get_p_value(0.5) for _ in range(5)]
    assert isinstance(a.clone(), SmoothedPValue)
    assert a.clone().seed == 5


def test_calculator_base_is_abstract():
    with pytest.raises(TypeError):
        PValueCalculator()


@pytest.mark.parametrize("calculator", [StandardPValue(), SmoothedPValue(seed=9)])
def test_calculator_from_properties(calculator):
    restored = p_value_calculator_from_properties(calculator.get_properties())
    assert type(restored) is type(calculator)
    assert getattr(restored, 'seed', None) == getattr(calculator, 'seed', None)
    assert isinstance(p_value_calculator_from_properties({}), StandardPValue)
    with pytest.raises(ValueError):
        p_value_calculator_from_properties({'pValueCalculator': 'exact'})
