"""Aggregated conformal regression."""

import math
from typing import Dict, Iterable, List, Optional, Union

from .. import config
from ..data import SparseVector
from ..icp import ICPRegressor
from ..results import CPRegressionPrediction, PredictedInterval, as_confidence_list
from ..sampling import SamplingStrategy
from .aggregation import aggregate, average_gradients
from .base import AggregatedPredictor


def _ncs_for_width(width: float, scaling: float) -> float:
    """Unscaled nonconformity score giving an interval of full ``width``."""
    if scaling == 0:
        return math.inf if width > 0 else 0.0
    return width / (2 * scaling)


class ACPRegressor(AggregatedPredictor):
    """
    Aggregated conformal regressor.

    Midpoints, interval scalings and half-widths of the models are
    aggregated separately with the ensemble's aggregation type. Stratified
    sampling strategies are not supported for regression.

    Parameters
    ----------
    icp : ICPRegressor, optional
        Template, defaults to ``ICPRegressor()``.
    strategy : SamplingStrategy, optional
        Defaults to ``SamplingStrategy.random()``.
    random_seed : int, optional
    aggregation : {'median', 'mean'}, optional (default='median')
    n_jobs : int, optional (default=1)
    verbose : bool, optional (default=False)

    Examples
    --------
    >>> acp = ACPRegressor(ICPRegressor(AbsDiffNCM(Ridge())), SamplingStrategy.folded(5))
    >>> acp.train(dataset)
    >>> result = acp.predict(record.features, [0.8, 0.9])
    >>> result.get_interval(0.9).interval
    (1.92, 4.31)
    >>> acp.predict_confidence(record.features, 2.0).get_width_based_interval(2.0).confidence
    0.71
    """

    predictor_type = "ACP Regression"

    def __init__(
        self,
        icp: Optional[ICPRegressor] = None,
        strategy: Optional[SamplingStrategy] = None,
        random_seed: Optional[int] = None,
        aggregation="median",
        n_jobs: int = 1,
        verbose: bool = False
    ):
        super().__init__(
            icp if icp is not None else ICPRegressor(),
            strategy=strategy,
            random_seed=random_seed,
            aggregation=aggregation,
            n_jobs=n_jobs,
            verbose=verbose
        )

    def predict(
        self,
        features: SparseVector,
        confidences: Union[float, Iterable[float]]
    ) -> CPRegressionPrediction:
        """Aggregated prediction interval for each confidence level."""
        confidences = as_confidence_list(confidences)
        per_model = self._map_models(lambda model: model.predict(features, confidences))

        y_hat = aggregate([r.y_hat for r in per_model], self.aggregation)
        scaling = aggregate([r.interval_scaling for r in per_model], self.aggregation)
        min_obs = min(r.min_obs for r in per_model)
        max_obs = max(r.max_obs for r in per_model)

        intervals = {}
        for c in confidences:
            half_width = aggregate([r.intervals[c].half_width for r in per_model], self.aggregation)
            intervals[c] = PredictedInterval(y_hat, half_width, c, min_obs, max_obs)
        return CPRegressionPrediction(y_hat, scaling, min_obs, max_obs, intervals)

    def predict_confidence(
        self,
        features: SparseVector,
        widths: Union[float, Iterable[float]]
    ) -> CPRegressionPrediction:
        """
        Confidence reached by intervals of the given full widths.

        For each model the width is converted to an unscaled score
        ``width / (2 * scaling)`` and its confidence is ``1 - p-value`` of
        that score; the confidences are then aggregated per width.
        """
        widths = _as_widths(widths)

        def per_model(model):
            y_hat, scaling = model.predict_midpoint_and_scaling(features)
            calc = model.p_value_calculator
            confs = {w: 1 - calc.get_p_value(_ncs_for_width(w, scaling)) for w in widths}
            return y_hat, scaling, confs, model.min_obs_, model.max_obs_

        results = self._map_models(per_model)
        y_hat = aggregate([r[0] for r in results], self.aggregation)
        scaling = aggregate([r[1] for r in results], self.aggregation)
        min_obs = min(r[3] for r in results)
        max_obs = max(r[4] for r in results)

        width_based = {}
        for w in widths:
            confidence = aggregate([r[2][w] for r in results], self.aggregation)
            width_based[w] = PredictedInterval(y_hat, w / 2, confidence, min_obs, max_obs)
        return CPRegressionPrediction(
            y_hat, scaling, min_obs, max_obs, width_based_intervals=width_based
        )

    def predict_midpoint(self, features: SparseVector) -> float:
        midpoints = self._map_models(lambda model: model.predict_midpoint(features))
        return aggregate(midpoints, self.aggregation)

    def calculate_gradient(
        self,
        features: SparseVector,
        stepsize: float = config.DEFAULT_STEPSIZE
    ) -> Dict[int, float]:
        """Average per-model gradient of the predicted midpoint."""
        gradients = self._map_models(lambda model: model.calculate_gradient(features, stepsize))
        return average_gradients(gradients)

    def _validate_strategy(self, strategy):
        super()._validate_strategy(strategy)
        if strategy.is_stratified:
            raise ValueError(
                f"{strategy.name} sampling is only supported for classification"
            )


def _as_widths(widths: Union[float, Iterable[float]]) -> List[float]:
    if isinstance(widths, (int, float)):
        widths = [widths]
    widths = [float(w) for w in widths]
    for w in widths:
        if w < 0 or math.isnan(w):
            raise ValueError(f"interval width must be >= 0, got {w}")
    return widths
