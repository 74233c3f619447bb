"""
aggcp: Aggregated Conformal Prediction

Train ensembles of inductive conformal predictors on resampled
proper-training/calibration splits and combine their p-values or
prediction intervals into one calibrated answer.
"""

from .version import __version__, __author__, __description__
from .data import DataRecord, Dataset, SparseVector
from .exceptions import InvalidKeyError, ModelLoadError, NoSuchSplitError, NotTrainedError
from .sampling import SamplingKind, SamplingStrategy, TrainSplit
from .icp import ICPClassifier, ICPRegressor
from .acp import ACPClassifier, ACPRegressor, AggregationType, EnsembleState
from .results import CPRegressionPrediction, PredictedInterval
from .logging import configure_logging

__all__ = [
    'ACPClassifier',
    'ACPRegressor',
    'AggregationType',
    'EnsembleState',
    'ICPClassifier',
    'ICPRegressor',
    'SamplingKind',
    'SamplingStrategy',
    'TrainSplit',
    'DataRecord',
    'Dataset',
    'SparseVector',
    'CPRegressionPrediction',
    'PredictedInterval',
    'InvalidKeyError',
    'ModelLoadError',
    'NoSuchSplitError',
    'NotTrainedError',
    'configure_logging',
    '__version__',
    '__author__',
    '__description__',
]
