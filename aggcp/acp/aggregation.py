"""Aggregation of per-model outputs."""

import numpy as np
from enum import Enum
from typing import Dict, Iterable, List, Sequence, Union


class AggregationType(Enum):
    """How the outputs of the models in an ensemble are combined."""

    MEDIAN = "median"
    MEAN = "mean"

    @classmethod
    def parse(cls, value: Union[str, "AggregationType"]) -> "AggregationType":
        if isinstance(value, AggregationType):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(
                f"aggregation must be one of {[a.value for a in cls]}, got {value!r}"
            ) from None


def aggregate(values: Sequence[float], how: AggregationType = AggregationType.MEDIAN) -> float:
    """
    Median or arithmetic mean of ``values``.

    The median of an even number of values is the mean of the two middle
    values. All values must be collected before calling; there is no
    streaming form.
    """
    if len(values) == 0:
        raise ValueError("Cannot aggregate an empty list of values")
    arr = np.asarray(values, dtype=float)
    if how is AggregationType.MEDIAN:
        return float(np.median(arr))
    if how is AggregationType.MEAN:
        return float(np.mean(arr))
    raise ValueError(f"Unsupported aggregation: {how}")


def aggregate_by_key(
    per_model: Iterable[Dict],
    how: AggregationType = AggregationType.MEDIAN
) -> Dict:
    """Group values by key across models and aggregate each group."""
    grouped: Dict = {}
    for result in per_model:
        for key, value in result.items():
            grouped.setdefault(key, []).append(value)
    return {key: aggregate(grouped[key], how) for key in sorted(grouped)}


def average_gradients(gradients: List[Dict[int, float]]) -> Dict[int, float]:
    """
    Average sparse gradients index by index.

    Every index present in at least one gradient is kept; its value is the
    sum over the gradients that contain it divided by the number of
    gradients.
    """
    if not gradients:
        return {}
    totals: Dict[int, float] = {}
    for grad in gradients:
        for idx, value in grad.items():
            totals[idx] = totals.get(idx, 0.0) + value
    n = len(gradients)
    return {idx: totals[idx] / n for idx in sorted(totals)}
