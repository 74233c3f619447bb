"""Sampling strategies and train split generation"""

from .splits import (
    TrainSplit,
    TrainSplitGenerator,
    RandomSplitGenerator,
    FoldedSplitGenerator,
    PredefinedSplitGenerator,
)
from .strategies import SamplingKind, SamplingStrategy

__all__ = [
    'TrainSplit',
    'TrainSplitGenerator',
    'RandomSplitGenerator',
    'FoldedSplitGenerator',
    'PredefinedSplitGenerator',
    'SamplingKind',
    'SamplingStrategy',
]
