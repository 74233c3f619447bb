"""Aggregated Conformal Predictors"""

from .aggregation import AggregationType, aggregate, aggregate_by_key, average_gradients
from .base import AggregatedPredictor, EnsembleState, IndexLoadResult, LoadStatus
from .classifier import ACPClassifier
from .regressor import ACPRegressor

__all__ = [
    'AggregationType',
    'aggregate',
    'aggregate_by_key',
    'average_gradients',
    'AggregatedPredictor',
    'EnsembleState',
    'IndexLoadResult',
    'LoadStatus',
    'ACPClassifier',
    'ACPRegressor',
]
