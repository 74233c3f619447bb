"""
Sampling strategies.

A :class:`SamplingStrategy` decides how a dataset is partitioned into
proper-training and calibration sets and how many models an aggregated
predictor holds. The set of strategies is closed (:class:`SamplingKind`);
each kind carries its own parameters and is persisted as a properties dict.
"""

from enum import Enum
from typing import Any, Dict, Optional, Union

from .. import config
from ..data import Dataset
from .splits import (
    FoldedSplitGenerator,
    PredefinedSplitGenerator,
    RandomSplitGenerator,
    TrainSplitGenerator,
)

# Keys of the properties dict
PROPERTY_ID = "samplingStrategy"
PROPERTY_NAME = "samplingStrategyName"
PROPERTY_NUM_SAMPLES = "numSamples"
PROPERTY_CALIB_RATIO = "calibRatio"
PROPERTY_NUM_CALIB = "nCalib"
PROPERTY_FOLDS = "folds"


class SamplingKind(Enum):
    """Closed set of sampling strategies; values are the persisted ids."""

    RANDOM = 1
    RANDOM_STRATIFIED = 2
    FOLDED = 3
    FOLDED_STRATIFIED = 4
    PREDEFINED = 5

    @property
    def display_name(self) -> str:
        return _DISPLAY_NAMES[self]

    @classmethod
    def parse(cls, value: Union[int, str, "SamplingKind"]) -> "SamplingKind":
        """Look a kind up by id, enum name or display name."""
        if isinstance(value, SamplingKind):
            return value
        if isinstance(value, str):
            key = value.strip().lower()
            for kind in cls:
                if key in (kind.name.lower(), kind.display_name.lower()):
                    return kind
            if key.isdigit():
                value = int(key)
            else:
                raise ValueError(f"Unknown sampling strategy: '{value}'")
        try:
            return cls(int(value))
        except ValueError:
            raise ValueError(f"Unknown sampling strategy id: {value}") from None


_DISPLAY_NAMES = {
    SamplingKind.RANDOM: "Random",
    SamplingKind.RANDOM_STRATIFIED: "RandomStratified",
    SamplingKind.FOLDED: "Folded",
    SamplingKind.FOLDED_STRATIFIED: "FoldedStratified",
    SamplingKind.PREDEFINED: "PreDefined",
}

_RANDOM_KINDS = (SamplingKind.RANDOM, SamplingKind.RANDOM_STRATIFIED)
_FOLDED_KINDS = (SamplingKind.FOLDED, SamplingKind.FOLDED_STRATIFIED)
_STRATIFIED_KINDS = (SamplingKind.RANDOM_STRATIFIED, SamplingKind.FOLDED_STRATIFIED)


class SamplingStrategy:
    """
    Policy for partitioning a dataset into train splits.

    Use the factory classmethods rather than the constructor.

    Parameters
    ----------
    kind : SamplingKind
    num_samples : int, optional
        Number of models (random kinds only, default=1).
    calibration_ratio : float, optional
        Fraction of records moved to calibration (random kinds, default=0.2).
    num_calibration_instances : int, optional
        Exact calibration size, replaces ``calibration_ratio`` (random kinds).
    num_folds : int, optional
        Number of folds, and thus models (folded kinds, default=10).

    Examples
    --------
    >>> strategy = SamplingStrategy.random(num_samples=5, calibration_ratio=0.25)
    >>> strategy.num_samples
    5
    >>> SamplingStrategy.from_properties(strategy.get_properties()) == strategy
    True
    """

    def __init__(
        self,
        kind: SamplingKind,
        num_samples: Optional[int] = None,
        calibration_ratio: Optional[float] = None,
        num_calibration_instances: Optional[int] = None,
        num_folds: Optional[int] = None
    ):
        self.kind = SamplingKind.parse(kind)
        self._num_samples = None
        self._calibration_ratio = None
        self._num_calibration_instances = None
        self._num_folds = None

        if self.kind in _RANDOM_KINDS:
            if num_folds is not None:
                self._not_applicable("num_folds")
            self.set_num_samples(config.DEFAULT_NUM_SAMPLES if num_samples is None else num_samples)
            if num_calibration_instances is not None:
                if calibration_ratio is not None:
                    raise ValueError(
                        "Give either calibration_ratio or num_calibration_instances, not both"
                    )
                self.set_num_calibration_instances(num_calibration_instances)
            else:
                self.set_calibration_ratio(
                    config.DEFAULT_CALIBRATION_RATIO if calibration_ratio is None else calibration_ratio
                )
        elif self.kind in _FOLDED_KINDS:
            for name, value in (("calibration_ratio", calibration_ratio),
                                ("num_calibration_instances", num_calibration_instances)):
                if value is not None:
                    self._not_applicable(name)
            self.set_num_folds(config.DEFAULT_NUM_FOLDS if num_folds is None else num_folds)
            if num_samples is not None and num_samples != self._num_folds:
                raise ValueError(
                    f"num_samples must equal num_folds ({self._num_folds}) for "
                    f"{self.name} sampling, got {num_samples}"
                )
        elif self.kind is SamplingKind.PREDEFINED:
            for name, value in (("num_folds", num_folds),
                                ("calibration_ratio", calibration_ratio),
                                ("num_calibration_instances", num_calibration_instances)):
                if value is not None:
                    self._not_applicable(name)
            if num_samples not in (None, 1):
                raise ValueError(f"num_samples must be 1 for PreDefined sampling, got {num_samples}")
        else:
            raise ValueError(f"Unsupported sampling kind: {self.kind}")

    # ---- Factories ----

    @classmethod
    def random(cls, num_samples: int = config.DEFAULT_NUM_SAMPLES,
               calibration_ratio: Optional[float] = None,
               num_calibration_instances: Optional[int] = None) -> "SamplingStrategy":
        return cls(SamplingKind.RANDOM, num_samples, calibration_ratio, num_calibration_instances)

    @classmethod
    def random_stratified(cls, num_samples: int = config.DEFAULT_NUM_SAMPLES,
                          calibration_ratio: Optional[float] = None,
                          num_calibration_instances: Optional[int] = None) -> "SamplingStrategy":
        return cls(SamplingKind.RANDOM_STRATIFIED, num_samples, calibration_ratio, num_calibration_instances)

    @classmethod
    def folded(cls, num_folds: int = config.DEFAULT_NUM_FOLDS) -> "SamplingStrategy":
        return cls(SamplingKind.FOLDED, num_folds=num_folds)

    @classmethod
    def folded_stratified(cls, num_folds: int = config.DEFAULT_NUM_FOLDS) -> "SamplingStrategy":
        return cls(SamplingKind.FOLDED_STRATIFIED, num_folds=num_folds)

    @classmethod
    def predefined(cls) -> "SamplingStrategy":
        return cls(SamplingKind.PREDEFINED)

    @classmethod
    def from_properties(cls, properties: Dict[str, Any]) -> "SamplingStrategy":
        """Rebuild a strategy from :meth:`get_properties` output."""
        if PROPERTY_ID not in properties:
            raise ValueError(f"Missing '{PROPERTY_ID}' in sampling strategy properties")
        kind = SamplingKind.parse(properties[PROPERTY_ID])
        if kind in _RANDOM_KINDS:
            n_calib = properties.get(PROPERTY_NUM_CALIB)
            return cls(
                kind,
                num_samples=int(properties.get(PROPERTY_NUM_SAMPLES, config.DEFAULT_NUM_SAMPLES)),
                calibration_ratio=None if n_calib is not None else float(
                    properties.get(PROPERTY_CALIB_RATIO, config.DEFAULT_CALIBRATION_RATIO)),
                num_calibration_instances=None if n_calib is None else int(n_calib)
            )
        if kind in _FOLDED_KINDS:
            return cls(kind, num_folds=int(properties.get(PROPERTY_FOLDS, config.DEFAULT_NUM_FOLDS)))
        return cls(kind)

    # ---- Properties ----

    @property
    def id(self) -> int:
        return self.kind.value

    @property
    def name(self) -> str:
        return self.kind.display_name

    @property
    def num_samples(self) -> int:
        if self.kind in _FOLDED_KINDS:
            return self._num_folds
        if self.kind is SamplingKind.PREDEFINED:
            return 1
        return self._num_samples

    @property
    def calibration_ratio(self) -> Optional[float]:
        return self._calibration_ratio

    @property
    def num_calibration_instances(self) -> Optional[int]:
        return self._num_calibration_instances

    @property
    def num_folds(self) -> Optional[int]:
        return self._num_folds

    @property
    def is_folded(self) -> bool:
        return self.kind in _FOLDED_KINDS

    @property
    def is_stratified(self) -> bool:
        return self.kind in _STRATIFIED_KINDS

    @property
    def can_grow(self) -> bool:
        """Whether models can be appended beyond ``num_samples``."""
        return self.kind in _RANDOM_KINDS

    # ---- Setters ----

    def set_num_samples(self, num_samples: int) -> "SamplingStrategy":
        if self.kind not in _RANDOM_KINDS:
            self._not_applicable("num_samples")
        if not isinstance(num_samples, int) or num_samples < 1:
            raise ValueError(f"num_samples must be >= 1, got {num_samples}")
        self._num_samples = num_samples
        return self

    def set_calibration_ratio(self, ratio: float) -> "SamplingStrategy":
        if self.kind not in _RANDOM_KINDS:
            self._not_applicable("calibration_ratio")
        if not 0 < ratio < 1:
            raise ValueError(f"calibration_ratio must be in (0,1), got {ratio}")
        self._calibration_ratio = float(ratio)
        self._num_calibration_instances = None
        return self

    def set_num_calibration_instances(self, num_instances: int) -> "SamplingStrategy":
        if self.kind not in _RANDOM_KINDS:
            self._not_applicable("num_calibration_instances")
        if not isinstance(num_instances, int) or num_instances < 1:
            raise ValueError(f"num_calibration_instances must be >= 1, got {num_instances}")
        self._num_calibration_instances = num_instances
        self._calibration_ratio = None
        return self

    def set_num_folds(self, num_folds: int) -> "SamplingStrategy":
        if self.kind not in _FOLDED_KINDS:
            self._not_applicable("num_folds")
        if not isinstance(num_folds, int) or num_folds < config.MIN_NUM_FOLDS:
            raise ValueError(f"num_folds must be >= {config.MIN_NUM_FOLDS}, got {num_folds}")
        self._num_folds = num_folds
        return self

    # ---- Split generation ----

    def get_iterator(self, dataset: Dataset, seed: int) -> TrainSplitGenerator:
        """Generator over the ``num_samples`` splits of ``dataset``."""
        if self.kind in _RANDOM_KINDS:
            return RandomSplitGenerator(
                dataset, seed, self._num_samples,
                calibration_ratio=self._calibration_ratio,
                num_calibration_instances=self._num_calibration_instances,
                stratified=self.kind is SamplingKind.RANDOM_STRATIFIED
            )
        if self.kind in _FOLDED_KINDS:
            return FoldedSplitGenerator(
                dataset, seed, self._num_folds,
                stratified=self.kind is SamplingKind.FOLDED_STRATIFIED
            )
        if self.kind is SamplingKind.PREDEFINED:
            return PredefinedSplitGenerator(dataset, seed)
        raise ValueError(f"Unsupported sampling kind: {self.kind}")

    # ---- Value semantics ----

    def get_properties(self) -> Dict[str, Any]:
        props = {
            PROPERTY_ID: self.id,
            PROPERTY_NAME: self.name,
            PROPERTY_NUM_SAMPLES: self.num_samples,
        }
        if self.kind in _RANDOM_KINDS:
            if self._num_calibration_instances is not None:
                props[PROPERTY_NUM_CALIB] = self._num_calibration_instances
            else:
                props[PROPERTY_CALIB_RATIO] = self._calibration_ratio
        elif self.kind in _FOLDED_KINDS:
            props[PROPERTY_FOLDS] = self._num_folds
        return props

    def clone(self) -> "SamplingStrategy":
        return SamplingStrategy.from_properties(self.get_properties())

    def _key(self):
        return (self.kind, self.num_samples, self._calibration_ratio,
                self._num_calibration_instances, self._num_folds)

    def __eq__(self, other) -> bool:
        if not isinstance(other, SamplingStrategy):
            return NotImplemented
        return self._key() == other._key()

    def __hash__(self) -> int:
        return hash(self._key())

    def __repr__(self) -> str:
        params = {k: v for k, v in self.get_properties().items()
                  if k not in (PROPERTY_ID, PROPERTY_NAME)}
        inner = ", ".join(f"{k}={v}" for k, v in params.items())
        return f"SamplingStrategy.{self.name}({inner})"

    # ---- Private methods ----

    def _not_applicable(self, parameter: str):
        raise ValueError(f"{parameter} does not apply to {self.name} sampling")
