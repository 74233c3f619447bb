"""
Train splits and the generators that produce them.

A generator is bound to one dataset and one seed. Every split it produces is
fully determined by ``(seed, index)``, so a split can be recomputed at any
time with :meth:`TrainSplitGenerator.get` and sequential iteration yields
exactly the same splits as indexed access.
"""

import logging
import math
import numpy as np
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Sequence, Tuple

from ..data import Dataset, DataRecord, shuffled
from ..exceptions import NoSuchSplitError

logger = logging.getLogger(__name__)


class TrainSplit:
    """
    Immutable pair of proper-training and calibration records.

    Parameters
    ----------
    proper_training_set : sequence of DataRecord
    calibration_set : sequence of DataRecord
    observed_label_range : (float, float), optional
        Smallest and largest label of the dataset the split was drawn from.
        Computed from the two sets when not given.
    """

    __slots__ = ("_proper", "_calibration", "_label_range")

    def __init__(
        self,
        proper_training_set: Sequence[DataRecord],
        calibration_set: Sequence[DataRecord],
        observed_label_range: Optional[Tuple[float, float]] = None
    ):
        self._proper = tuple(proper_training_set)
        self._calibration = tuple(calibration_set)
        if observed_label_range is None:
            labels = [r.label for r in self._proper + self._calibration]
            observed_label_range = (min(labels), max(labels)) if labels else None
        self._label_range = observed_label_range

    @property
    def proper_training_set(self) -> Tuple[DataRecord, ...]:
        return self._proper

    @property
    def calibration_set(self) -> Tuple[DataRecord, ...]:
        return self._calibration

    @property
    def total_num_records(self) -> int:
        return len(self._proper) + len(self._calibration)

    @property
    def observed_label_range(self) -> Optional[Tuple[float, float]]:
        return self._label_range

    def __repr__(self) -> str:
        return (
            f"TrainSplit(proper_training={len(self._proper)}, "
            f"calibration={len(self._calibration)})"
        )


class TrainSplitGenerator(ABC):
    """
    Lazy, index-addressable producer of :class:`TrainSplit` objects.

    Subclasses implement ``_build(index)`` returning the proper-training and
    calibration lists drawn from the main records; exclusive pools are added
    by the base class.

    Parameters
    ----------
    dataset : Dataset
    seed : int
    num_splits : int
    """

    def __init__(self, dataset: Dataset, seed: int, num_splits: int):
        if dataset.num_records == 0:
            raise ValueError("Cannot generate splits from an empty dataset")
        self.dataset = dataset
        self.seed = int(seed)
        self._num_splits = num_splits
        self._cursor = 0
        self._label_range = dataset.label_range()

    @property
    def min_split_index(self) -> int:
        return 0

    @property
    def max_split_index(self) -> int:
        return self._num_splits - 1

    @property
    def num_splits(self) -> int:
        return self._num_splits

    def has_next(self) -> bool:
        return self._cursor < self._num_splits

    def get(self, index: int) -> TrainSplit:
        """Split at ``index``; does not move the sequential cursor."""
        if not self.min_split_index <= index <= self.max_split_index:
            raise NoSuchSplitError(
                f"No such split: index {index} not in "
                f"[{self.min_split_index}, {self.max_split_index}]"
            )
        proper, calibration = self._build(index)
        return self._finalize(proper, calibration)

    def __iter__(self) -> "TrainSplitGenerator":
        return self

    def __next__(self) -> TrainSplit:
        if not self.has_next():
            raise StopIteration
        split = self.get(self._cursor)
        self._cursor += 1
        return split

    # ---- Private methods ----

    @abstractmethod
    def _build(self, index: int) -> Tuple[List[DataRecord], List[DataRecord]]:
        ...

    def _finalize(self, proper: List[DataRecord], calibration: List[DataRecord]) -> TrainSplit:
        proper = shuffled(proper + self.dataset.modeling_exclusive, self.seed)
        calibration = shuffled(calibration + self.dataset.calibration_exclusive, self.seed)
        if not proper:
            raise ValueError("Sampling produced an empty proper-training set")
        if not calibration:
            raise ValueError("Sampling produced an empty calibration set")
        return TrainSplit(proper, calibration, self._label_range)


def _round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))


def _require_binary(groups: Dict[float, List[DataRecord]], what: str) -> None:
    if len(groups) != 2:
        raise ValueError(
            f"{what} sampling is only supported for exactly 2 classes, "
            f"got {len(groups)}"
        )


def _draw(records: List[DataRecord], count: int, rng: np.random.Generator) -> Tuple[List[DataRecord], List[DataRecord]]:
    """Move ``count`` random records from ``records`` to a new list."""
    remaining = list(records)
    drawn = []
    for _ in range(count):
        drawn.append(remaining.pop(int(rng.integers(len(remaining)))))
    return remaining, drawn


def _fold_bounds(n: int, num_folds: int) -> List[Tuple[int, int]]:
    """Contiguous [start, end) ranges; the first ``n % num_folds`` get one extra."""
    size, extra = divmod(n, num_folds)
    bounds, start = [], 0
    for k in range(num_folds):
        end = start + size + (1 if k < extra else 0)
        bounds.append((start, end))
        start = end
    return bounds


class RandomSplitGenerator(TrainSplitGenerator):
    """
    Random (optionally stratified) calibration draws, one per sample index.

    For index ``i`` a generator seeded with ``seed + i`` moves randomly picked
    records from proper-training to calibration until the calibration quota
    is reached. With ``stratified=True`` the draw is done per class (binary
    problems only) so each calibration set keeps the class ratio.
    """

    def __init__(
        self,
        dataset: Dataset,
        seed: int,
        num_samples: int,
        calibration_ratio: Optional[float] = None,
        num_calibration_instances: Optional[int] = None,
        stratified: bool = False
    ):
        super().__init__(dataset, seed, num_samples)
        self.stratified = stratified
        n = len(dataset.records)
        if n < 2:
            raise ValueError(
                f"Random sampling requires at least 2 records, got {n}"
            )
        if num_calibration_instances is not None:
            if not 0 < num_calibration_instances < n:
                raise ValueError(
                    f"num_calibration_instances must be in [1, {n - 1}], "
                    f"got {num_calibration_instances}"
                )
            ratio = num_calibration_instances / n
        else:
            ratio = calibration_ratio

        if stratified:
            self._groups = dataset.records_per_label()
            _require_binary(self._groups, "Stratified random")
            self._quota = {
                label: _round_half_up(len(recs) * ratio)
                for label, recs in self._groups.items()
            }
        else:
            self._groups = {None: dataset.records}
            if num_calibration_instances is not None:
                self._quota = {None: num_calibration_instances}
            else:
                self._quota = {None: _round_half_up(n * ratio)}

        for label, recs in self._groups.items():
            if not 0 < self._quota[label] < len(recs):
                what = "dataset" if label is None else f"class {label:g}"
                raise ValueError(
                    f"Calibration quota {self._quota[label]} invalid for "
                    f"{what} with {len(recs)} records"
                )

    def _build(self, index):
        proper, calibration = [], []
        for label, recs in self._groups.items():
            rng = np.random.default_rng(self.seed + index)
            rest, drawn = _draw(recs, self._quota[label], rng)
            proper.extend(rest)
            calibration.extend(drawn)
        return proper, calibration


class FoldedSplitGenerator(TrainSplitGenerator):
    """
    K-fold splits; fold ``k`` is the calibration set of split ``k``.

    The dataset is shuffled once with the base seed. In stratified mode each
    class is shuffled and folded separately (binary problems only).
    """

    def __init__(self, dataset: Dataset, seed: int, num_folds: int, stratified: bool = False):
        super().__init__(dataset, seed, num_folds)
        self.stratified = stratified
        if stratified:
            groups = dataset.records_per_label()
            _require_binary(groups, "Stratified folded")
            self._groups = [shuffled(recs, self.seed) for recs in groups.values()]
            for label, recs in zip(groups, self._groups):
                if len(recs) // num_folds < 1:
                    raise ValueError(
                        f"Too few records of class {label:g} ({len(recs)}) "
                        f"for {num_folds} folds"
                    )
        else:
            self._groups = [shuffled(dataset.records, self.seed)]
            if len(dataset.records) // num_folds < 1:
                raise ValueError(
                    f"Too few records ({len(dataset.records)}) for {num_folds} folds"
                )
        self._bounds = [_fold_bounds(len(recs), num_folds) for recs in self._groups]

    def _build(self, index):
        proper, calibration = [], []
        for recs, bounds in zip(self._groups, self._bounds):
            start, end = bounds[index]
            calibration.extend(recs[start:end])
            proper.extend(recs[:start])
            proper.extend(recs[end:])
        return proper, calibration


class PredefinedSplitGenerator(TrainSplitGenerator):
    """Single split built from the two exclusive pools only."""

    def __init__(self, dataset: Dataset, seed: int):
        super().__init__(dataset, seed, 1)
        if not dataset.modeling_exclusive:
            raise ValueError("Predefined sampling requires a non-empty modeling-exclusive pool")
        if not dataset.calibration_exclusive:
            raise ValueError("Predefined sampling requires a non-empty calibration-exclusive pool")
        if dataset.records:
            logger.warning(
                "Predefined sampling ignores %d records outside the exclusive pools",
                len(dataset.records)
            )

    def _build(self, index):
        return [], []
