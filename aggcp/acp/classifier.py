"""Aggregated conformal classification."""

import logging
import pandas as pd
from typing import Dict, List, Optional, Sequence

from .. import config
from ..data import SparseVector
from ..exceptions import NotTrainedError
from ..icp import ICPClassifier
from .aggregation import aggregate_by_key, average_gradients
from .base import AggregatedPredictor

logger = logging.getLogger(__name__)


class ACPClassifier(AggregatedPredictor):
    """
    Aggregated conformal classifier.

    Every model outputs one p-value per label; the ensemble p-value of a
    label is the median (or mean) of the models' p-values for it.

    Parameters
    ----------
    icp : ICPClassifier, optional
        Template, defaults to ``ICPClassifier()``.
    strategy : SamplingStrategy, optional
        Defaults to ``SamplingStrategy.random()``.
    random_seed : int, optional
    aggregation : {'median', 'mean'}, optional (default='median')
    n_jobs : int, optional (default=1)
    verbose : bool, optional (default=False)

    Examples
    --------
    >>> acp = ACPClassifier(
    ...     ICPClassifier(ProbabilityMarginNCM()),
    ...     SamplingStrategy.random_stratified(num_samples=5)
    ... )
    >>> acp.train(dataset)
    >>> acp.predict(record.features)
    {0: 0.08, 1: 0.61}
    >>> acp.predict_set(record.features, confidence=0.9)
    [1]
    """

    predictor_type = "ACP Classification"

    def __init__(
        self,
        icp: Optional[ICPClassifier] = None,
        strategy=None,
        random_seed: Optional[int] = None,
        aggregation="median",
        n_jobs: int = 1,
        verbose: bool = False
    ):
        super().__init__(
            icp if icp is not None else ICPClassifier(),
            strategy=strategy,
            random_seed=random_seed,
            aggregation=aggregation,
            n_jobs=n_jobs,
            verbose=verbose
        )

    @property
    def labels(self) -> List[int]:
        """Labels reported by the trained models."""
        if self.num_trained_predictors == 0:
            raise NotTrainedError("ACPClassifier has no trained models. Call .train() first.")
        labels = set()
        for model in self.predictors.values():
            labels.update(model.labels)
        return sorted(labels)

    @property
    def num_classes(self) -> int:
        return len(self.labels)

    def predict(self, features: SparseVector) -> Dict[int, float]:
        """Aggregated p-value of every label."""
        per_model = self._map_models(lambda model: model.predict(features))
        label_sets = {frozenset(p) for p in per_model}
        if len(label_sets) > 1:
            logger.debug("Models report different label sets: %s", [sorted(s) for s in label_sets])
        return aggregate_by_key(per_model, self.aggregation)

    def predict_label(self, features: SparseVector) -> int:
        """Label with the highest aggregated p-value (smallest label on ties)."""
        p_values = self.predict(features)
        return _best_label(p_values)

    def predict_set(self, features: SparseVector, confidence: float) -> List[int]:
        """Labels whose aggregated p-value exceeds ``1 - confidence``."""
        if not 0 <= confidence <= 1:
            raise ValueError(f"confidence must be in [0,1], got {confidence}")
        p_values = self.predict(features)
        return [label for label, p in p_values.items() if p > 1 - confidence]

    def predict_frame(self, examples: Sequence[SparseVector]) -> pd.DataFrame:
        """Aggregated p-values for several examples, one column per label."""
        rows = [self.predict(features) for features in examples]
        return pd.DataFrame(rows, columns=self.labels)

    def calculate_gradient(
        self,
        features: SparseVector,
        stepsize: float = config.DEFAULT_STEPSIZE,
        label: Optional[int] = None
    ) -> Dict[int, float]:
        """
        Average per-model gradient of the p-value of ``label``.

        ``label`` defaults to the label with the highest aggregated p-value.
        """
        if label is None:
            label = _best_label(self.predict(features))
        gradients = self._map_models(
            lambda model: model.calculate_gradient(features, stepsize, label)
        )
        return average_gradients(gradients)


def _best_label(p_values: Dict[int, float]) -> int:
    return max(p_values, key=lambda label: (p_values[label], -label))
