"""
Regression prediction results.

A :class:`CPRegressionPrediction` bundles the predicted midpoint and interval
scaling with one :class:`PredictedInterval` per requested confidence level
and, for width-based queries, one per requested interval width.
"""

import pandas as pd
from typing import Dict, Iterable, List, Optional, Tuple, Union


class PredictedInterval:
    """
    Prediction interval ``y_hat ± half_width`` at a confidence level.

    Parameters
    ----------
    y_hat : float
        Interval midpoint.
    half_width : float
        Distance from the midpoint to either endpoint, may be ``inf``.
    confidence : float
        Confidence level of the interval.
    min_obs, max_obs : float, optional
        Smallest and largest label observed in training; used to cap the
        interval.
    """

    def __init__(
        self,
        y_hat: float,
        half_width: float,
        confidence: float,
        min_obs: Optional[float] = None,
        max_obs: Optional[float] = None
    ):
        self.y_hat = float(y_hat)
        self.half_width = float(half_width)
        self.confidence = float(confidence)
        self.min_obs = min_obs
        self.max_obs = max_obs

    @property
    def width(self) -> float:
        return 2 * self.half_width

    @property
    def interval(self) -> Tuple[float, float]:
        return self.y_hat - self.half_width, self.y_hat + self.half_width

    @property
    def capped_interval(self) -> Tuple[float, float]:
        """Interval clipped to the observed label range."""
        lower, upper = self.interval
        if self.min_obs is not None:
            lower, upper = max(lower, self.min_obs), max(upper, self.min_obs)
        if self.max_obs is not None:
            lower, upper = min(lower, self.max_obs), min(upper, self.max_obs)
        return lower, upper

    def __repr__(self) -> str:
        lower, upper = self.interval
        return (
            f"PredictedInterval(confidence={self.confidence:.3f}, "
            f"interval=[{lower:.4g}, {upper:.4g}])"
        )


class CPRegressionPrediction:
    """
    Regression output of an inductive or aggregated conformal predictor.

    Attributes
    ----------
    y_hat : float
        Predicted midpoint.
    interval_scaling : float
        Per-example scaling applied to calibration scores.
    min_obs, max_obs : float
        Observed label range of the training data.
    intervals : dict
        Confidence level -> PredictedInterval.
    width_based_intervals : dict
        Requested full width -> PredictedInterval, with the confidence that
        width corresponds to.
    """

    def __init__(
        self,
        y_hat: float,
        interval_scaling: float,
        min_obs: Optional[float],
        max_obs: Optional[float],
        intervals: Optional[Dict[float, PredictedInterval]] = None,
        width_based_intervals: Optional[Dict[float, PredictedInterval]] = None
    ):
        self.y_hat = float(y_hat)
        self.interval_scaling = float(interval_scaling)
        self.min_obs = min_obs
        self.max_obs = max_obs
        self.intervals = dict(intervals or {})
        self.width_based_intervals = dict(width_based_intervals or {})

    @property
    def confidences(self) -> List[float]:
        return sorted(self.intervals)

    @property
    def widths(self) -> List[float]:
        return sorted(self.width_based_intervals)

    def get_interval(self, confidence: float) -> PredictedInterval:
        try:
            return self.intervals[confidence]
        except KeyError:
            raise KeyError(f"No interval predicted for confidence {confidence}") from None

    def get_width_based_interval(self, width: float) -> PredictedInterval:
        try:
            return self.width_based_intervals[width]
        except KeyError:
            raise KeyError(f"No interval predicted for width {width}") from None

    def to_frame(self) -> pd.DataFrame:
        """One row per interval, confidence-based rows first."""
        rows = []
        for source, table in (("confidence", self.intervals), ("width", self.width_based_intervals)):
            for key in sorted(table):
                iv = table[key]
                lower, upper = iv.interval
                capped_lower, capped_upper = iv.capped_interval
                rows.append({
                    'query': source,
                    'confidence': iv.confidence,
                    'y_hat': iv.y_hat,
                    'half_width': iv.half_width,
                    'lower': lower,
                    'upper': upper,
                    'capped_lower': capped_lower,
                    'capped_upper': capped_upper,
                })
        return pd.DataFrame(rows, columns=[
            'query', 'confidence', 'y_hat', 'half_width',
            'lower', 'upper', 'capped_lower', 'capped_upper'
        ])

    def __repr__(self) -> str:
        return (
            f"CPRegressionPrediction(y_hat={self.y_hat:.4g}, "
            f"confidences={self.confidences}, widths={self.widths})"
        )


def as_confidence_list(confidences: Union[float, Iterable[float]]) -> List[float]:
    """Normalize one or several confidence levels, each in [0, 1]."""
    if isinstance(confidences, (int, float)):
        confidences = [confidences]
    confidences = [float(c) for c in confidences]
    for c in confidences:
        if not 0 <= c <= 1:
            raise ValueError(f"confidence must be in [0,1], got {c}")
    return confidences
