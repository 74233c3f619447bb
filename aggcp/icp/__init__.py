"""Inductive conformal predictors, nonconformity measures and p-values"""

from .icp import ICPClassifier, ICPRegressor
from .nonconformity import (
    SolverLock,
    NonconformityMeasure,
    NegativeDistanceToHyperplaneNCM,
    ProbabilityMarginNCM,
    AbsDiffNCM,
    LogNormalizedNCM,
)
from .pvalues import PValueCalculator, StandardPValue, SmoothedPValue

__all__ = [
    'ICPClassifier',
    'ICPRegressor',
    'SolverLock',
    'NonconformityMeasure',
    'NegativeDistanceToHyperplaneNCM',
    'ProbabilityMarginNCM',
    'AbsDiffNCM',
    'LogNormalizedNCM',
    'PValueCalculator',
    'StandardPValue',
    'SmoothedPValue',
]
