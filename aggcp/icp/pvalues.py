"""
P-value calculators.

A calculator is built from a list of calibration nonconformity scores and
answers two questions: the p-value of a new score, and the score at which a
given confidence is reached (used to size regression intervals).
"""

import math
import numpy as np
from abc import ABC, abstractmethod
from typing import Optional, Sequence


class PValueCalculator(ABC):
    """Base class holding the sorted calibration scores."""

    name = "base"

    def __init__(self):
        self.scores_ = None

    @property
    def is_ready(self) -> bool:
        return self.scores_ is not None

    @property
    def num_scores(self) -> int:
        self._check_ready()
        return len(self.scores_)

    def build(self, scores: Sequence[float]) -> "PValueCalculator":
        scores = np.sort(np.asarray(scores, dtype=float))
        if scores.size == 0:
            raise ValueError("Cannot build a p-value calculator from zero scores")
        if np.isnan(scores).any():
            raise ValueError("Calibration scores contain NaN")
        self.scores_ = scores
        return self

    @abstractmethod
    def get_p_value(self, ncs: float) -> float:
        ...

    def get_ncs(self, confidence: float) -> float:
        """
        Smallest calibration score reaching ``confidence``.

        Returns ``inf`` when the calibration set is too small for the
        requested confidence, i.e. ``confidence > n / (n + 1)``.
        """
        self._check_ready()
        if not 0 <= confidence <= 1:
            raise ValueError(f"confidence must be in [0,1], got {confidence}")
        n = len(self.scores_)
        if confidence > n / (n + 1):
            return math.inf
        k = int(math.ceil(confidence * (n + 1))) - 1
        return float(self.scores_[max(0, k)])

    def get_properties(self) -> dict:
        return {'pValueCalculator': self.name}

    def clone(self) -> "PValueCalculator":
        """Unbuilt copy with the same configuration."""
        return type(self)()

    def _check_ready(self):
        if self.scores_ is None:
            raise RuntimeError(
                "P-value calculator not built. Call .build() first."
            )

    def __repr__(self) -> str:
        n = len(self.scores_) if self.scores_ is not None else 0
        return f"{type(self).__name__}(n={n})"


class StandardPValue(PValueCalculator):
    """p = (#{scores >= ncs} + 1) / (n + 1)"""

    name = "standard"

    def get_p_value(self, ncs: float) -> float:
        self._check_ready()
        n = len(self.scores_)
        greater_or_equal = n - np.searchsorted(self.scores_, ncs, side="left")
        return float((greater_or_equal + 1) / (n + 1))


class SmoothedPValue(PValueCalculator):
    """
    Smoothed p-value with random tie breaking.

    p = (#{scores > ncs} + U * (#{scores == ncs} + 1)) / (n + 1), with U
    drawn uniformly from [0, 1) by a generator seeded with ``seed``.

    Parameters
    ----------
    seed : int, optional
        Seed for the tie-breaking generator.
    """

    name = "smoothed"

    def __init__(self, seed: Optional[int] = None):
        super().__init__()
        self.seed = seed
        self._rng = np.random.default_rng(seed)

    def get_p_value(self, ncs: float) -> float:
        self._check_ready()
        n = len(self.scores_)
        lo = np.searchsorted(self.scores_, ncs, side="left")
        hi = np.searchsorted(self.scores_, ncs, side="right")
        greater, equal = n - hi, hi - lo
        return float((greater + self._rng.random() * (equal + 1)) / (n + 1))

    def get_properties(self):
        props = super().get_properties()
        props['pValueSeed'] = self.seed
        return props

    def clone(self) -> "SmoothedPValue":
        return SmoothedPValue(self.seed)



def p_value_calculator_from_properties(properties: dict) -> PValueCalculator:
    """Unbuilt calculator described by :meth:`PValueCalculator.get_properties`."""
    name = properties.get('pValueCalculator', StandardPValue.name)
    if name == StandardPValue.name:
        return StandardPValue()
    if name == SmoothedPValue.name:
        return SmoothedPValue(properties.get('pValueSeed'))
    raise ValueError(f"Unknown p-value calculator '{name}'")
