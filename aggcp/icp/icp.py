"""
Inductive Conformal Predictors (ICPs).

An ICP trains a nonconformity measure on the proper-training part of a
:class:`~aggcp.sampling.TrainSplit` and calibrates p-values on the
calibration part. Aggregated predictors clone an ICP template once per
split, so every ICP here is cheap to clone and fully independent of its
clones (apart from a shared solver lock).
"""

import json
import logging
import pickle
import numpy as np
from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

from .. import config
from ..data import DataRecord, SparseVector, to_csr
from ..exceptions import InvalidKeyError, NotTrainedError
from ..io.encryption import EncryptionSpecification
from ..io.sinks import DataSink, DataSource, join_entry, read_bytes, write_bytes
from ..results import CPRegressionPrediction, PredictedInterval, as_confidence_list
from ..sampling.splits import TrainSplit
from .nonconformity import (
    AbsDiffNCM,
    ClassificationNCM,
    NegativeDistanceToHyperplaneNCM,
    NonconformityMeasure,
    RegressionNCM,
)
from .pvalues import PValueCalculator, StandardPValue, p_value_calculator_from_properties

logger = logging.getLogger(__name__)

META_FILE = "meta.json"
NCM_FILE = "ncm.pkl"
SCORES_FILE = "scores.json"


class _ICPBase(ABC):
    """Shared training state handling and persistence."""

    predictor_type = None

    def __init__(self, ncm, p_value_calculator: Optional[PValueCalculator] = None):
        self.ncm = ncm
        self.p_value_template = p_value_calculator if p_value_calculator is not None else StandardPValue()

        # Placeholders (set during training)
        self.num_features_ = None
        self.num_proper_training_ = None
        self.num_calibration_ = None

    @property
    def is_trained(self) -> bool:
        return self.num_features_ is not None

    def set_seed(self, seed: int) -> None:
        self.ncm.set_seed(seed)

    def clone(self):
        """Untrained copy with the same configuration."""
        return type(self)(self.ncm.clone(), self.p_value_template.clone())

    def release_resources(self) -> bool:
        """Drop the fitted measure and calibration; returns whether anything was dropped."""
        if not self.is_trained:
            return False
        self.ncm = self.ncm.clone()
        self._reset()
        return True

    @property
    def num_observations_used(self) -> int:
        self._check_trained()
        return self.num_proper_training_ + self.num_calibration_

    # ---- Persistence ----

    def save_to_sink(
        self,
        sink: DataSink,
        base_path: str,
        encryption: Optional[EncryptionSpecification] = None
    ) -> None:
        """
        Write the model below ``base_path``.

        ``meta.json`` is plain JSON; ``ncm.pkl`` (pickled measure) and
        ``scores.json`` (calibration scores) are encrypted when
        ``encryption`` is given.
        """
        self._check_trained()
        sink.create_directory(base_path)
        meta = {
            'predictorType': self.predictor_type,
            'ncm': self.ncm.name,
            'numFeatures': self.num_features_,
            'numProperTraining': self.num_proper_training_,
            'numCalibration': self.num_calibration_,
            'encrypted': encryption is not None,
        }
        meta.update(self.p_value_template.get_properties())
        meta.update(self._meta())
        write_bytes(sink, join_entry(base_path, META_FILE), json.dumps(meta, indent=2).encode("utf-8"))

        ncm_payload = pickle.dumps(self.ncm, protocol=pickle.HIGHEST_PROTOCOL)
        scores_payload = json.dumps(self._scores()).encode("utf-8")
        if encryption is not None:
            ncm_payload = encryption.encrypt(ncm_payload)
            scores_payload = encryption.encrypt(scores_payload)
        write_bytes(sink, join_entry(base_path, NCM_FILE), ncm_payload)
        write_bytes(sink, join_entry(base_path, SCORES_FILE), scores_payload)

    def load_from_source(
        self,
        source: DataSource,
        base_path: str,
        encryption: Optional[EncryptionSpecification] = None
    ):
        """
        Restore a trained ICP saved with :meth:`save_to_sink`.

        Raises
        ------
        FileNotFoundError
            If an entry is missing.
        InvalidKeyError
            If the payloads are encrypted and cannot be decrypted.
        ValueError
            If the entries describe another predictor type or measure.
        """
        entries = [join_entry(base_path, name) for name in (META_FILE, NCM_FILE, SCORES_FILE)]
        for entry in entries:
            if not source.has_entry(entry):
                raise FileNotFoundError(f"Missing entry '{entry}'")
        meta_entry, ncm_entry, scores_entry = entries

        meta = json.loads(read_bytes(source, meta_entry).decode("utf-8"))
        if meta.get('predictorType') != self.predictor_type:
            raise ValueError(
                f"Saved model is of type '{meta.get('predictorType')}', "
                f"expected '{self.predictor_type}'"
            )
        if meta.get('encrypted') and encryption is None:
            raise InvalidKeyError(f"Model at '{base_path}' is encrypted but no encryption was given")
        if not meta.get('encrypted') and encryption is not None:
            logger.debug("Model at '%s' is not encrypted, ignoring encryption", base_path)
            encryption = None

        ncm = pickle.loads(self._read_payload(source, ncm_entry, encryption))
        if not isinstance(ncm, NonconformityMeasure):
            raise ValueError(f"'{ncm_entry}' does not hold a nonconformity measure")
        scores = json.loads(self._read_payload(source, scores_entry, encryption).decode("utf-8"))
        template = p_value_calculator_from_properties(meta)

        self._restore(meta, scores, template)
        ncm.solver_lock = self.ncm.solver_lock
        self.ncm = ncm
        self.p_value_template = template
        self.num_features_ = int(meta['numFeatures'])
        self.num_proper_training_ = int(meta['numProperTraining'])
        self.num_calibration_ = int(meta['numCalibration'])
        return self

    @staticmethod
    def _read_payload(source: DataSource, entry: str, encryption: Optional[EncryptionSpecification]) -> bytes:
        payload = read_bytes(source, entry)
        return encryption.decrypt(payload) if encryption is not None else payload

    # ---- Private methods ----

    def _check_trained(self):
        if not self.is_trained:
            raise NotTrainedError(
                f"{type(self).__name__} not trained. Call .train() first."
            )

    def _matrix(self, vectors: Sequence[SparseVector]):
        return to_csr(vectors, self.num_features_)

    @staticmethod
    def _check_split(split: TrainSplit):
        if not split.proper_training_set:
            raise ValueError("Proper-training set is empty")
        if not split.calibration_set:
            raise ValueError("Calibration set is empty")

    def _fit_ncm(self, records: Sequence[DataRecord], y: np.ndarray):
        self.num_features_ = max(r.features.max_index for r in records) + 1
        X = self._matrix([r.features for r in records])
        self.ncm.fit(X, y)

    def _meta(self) -> dict:
        return {}

    @abstractmethod
    def _scores(self) -> dict:
        """JSON-serializable calibration scores."""

    @abstractmethod
    def _restore(self, meta: dict, scores: dict, template: PValueCalculator):
        """Rebuild the calibration from saved metadata and scores."""

    def _reset(self):
        self.num_features_ = None
        self.num_proper_training_ = None
        self.num_calibration_ = None


class ICPClassifier(_ICPBase):
    """
    Inductive conformal classifier.

    Parameters
    ----------
    ncm : ClassificationNCM, optional
        Nonconformity measure, defaults to
        ``NegativeDistanceToHyperplaneNCM()`` (linear SVM).
    p_value_calculator : PValueCalculator, optional
        Template cloned once per label, defaults to ``StandardPValue()``.

    Attributes
    ----------
    labels_ : list of int
        Labels seen in the proper-training set.
    calibrators_ : dict
        Label -> built p-value calculator.

    Examples
    --------
    >>> icp = ICPClassifier(ProbabilityMarginNCM())
    >>> icp.train(split)
    >>> icp.predict(record.features)
    {0: 0.12, 1: 0.73}
    """

    predictor_type = "ICP Classification"

    def __init__(
        self,
        ncm: Optional[ClassificationNCM] = None,
        p_value_calculator: Optional[PValueCalculator] = None
    ):
        super().__init__(ncm if ncm is not None else NegativeDistanceToHyperplaneNCM(), p_value_calculator)
        self.labels_ = None
        self.calibrators_ = None

    @property
    def labels(self) -> List[int]:
        self._check_trained()
        return list(self.labels_)

    def train(self, split: TrainSplit) -> "ICPClassifier":
        """Fit on the proper-training set and calibrate one calculator per label."""
        self._check_split(split)
        proper = split.proper_training_set
        y = np.array([_int_label(r.label) for r in proper])
        if len(np.unique(y)) < 2:
            raise ValueError("Classification requires at least 2 labels in the proper-training set")

        self._fit_ncm(proper, y)
        labels = list(self.ncm.labels_)

        calibration = split.calibration_set
        scores = self.ncm.scores(self._matrix([r.features for r in calibration]))
        y_cal = np.array([_int_label(r.label) for r in calibration])
        unknown = set(y_cal.tolist()) - set(labels)
        if unknown:
            logger.warning("Ignoring calibration records with labels unseen in training: %s", sorted(unknown))

        calibrators = {}
        for k, label in enumerate(labels):
            mask = y_cal == label
            if not mask.any():
                raise ValueError(
                    f"No calibration records of class {label}; the calibration set "
                    f"must contain every class present in training"
                )
            calibrators[label] = self.p_value_template.clone().build(scores[mask, k])

        self.labels_ = labels
        self.calibrators_ = calibrators
        self.num_proper_training_ = len(proper)
        self.num_calibration_ = len(calibration)
        logger.debug("Trained ICP classifier on %d + %d records", len(proper), len(calibration))
        return self

    def predict(self, features: SparseVector) -> Dict[int, float]:
        """P-value of every training label for one example."""
        self._check_trained()
        scores = self.ncm.scores(self._matrix([features]))[0]
        return {
            label: self.calibrators_[label].get_p_value(scores[k])
            for k, label in enumerate(self.labels_)
        }

    def calculate_gradient(
        self,
        features: SparseVector,
        stepsize: float = config.DEFAULT_STEPSIZE,
        label: Optional[int] = None
    ) -> Dict[int, float]:
        """
        Forward-difference gradient of the p-value of ``label``.

        Only features explicitly present in ``features`` are perturbed.
        ``label`` defaults to the label with the highest p-value.
        """
        self._check_trained()
        if stepsize == 0:
            raise ValueError("stepsize must be non-zero")
        p_values = self.predict(features)
        if label is None:
            label = max(p_values, key=lambda lab: (p_values[lab], -lab))
        if label not in self.calibrators_:
            raise ValueError(f"Unknown label {label}, expected one of {self.labels_}")

        indices = [idx for idx, _ in features]
        if not indices:
            return {}
        perturbed = [features.with_value(idx, val + stepsize) for idx, val in features]
        k = self.labels_.index(label)
        scores = self.ncm.scores(self._matrix(perturbed))[:, k]
        calc = self.calibrators_[label]
        base = p_values[label]
        return {
            idx: (calc.get_p_value(s) - base) / stepsize
            for idx, s in zip(indices, scores)
        }

    def _scores(self):
        return {str(label): calc.scores_.tolist() for label, calc in self.calibrators_.items()}

    def _restore(self, meta, scores, template):
        labels = [int(label) for label in meta['labels']]
        calibrators = {label: template.clone().build(scores[str(label)]) for label in labels}
        self.labels_ = labels
        self.calibrators_ = calibrators

    def _meta(self):
        return {'labels': self.labels_}

    def _reset(self):
        super()._reset()
        self.labels_ = None
        self.calibrators_ = None


class ICPRegressor(_ICPBase):
    """
    Inductive conformal regressor.

    Parameters
    ----------
    ncm : RegressionNCM, optional
        Nonconformity measure, defaults to ``AbsDiffNCM()``.
    p_value_calculator : PValueCalculator, optional
        Defaults to ``StandardPValue()``.

    Attributes
    ----------
    p_value_calculator : PValueCalculator
        Calculator built from the calibration scores.
    min_obs_, max_obs_ : float
        Label range observed in the training dataset.
    """

    predictor_type = "ICP Regression"

    def __init__(
        self,
        ncm: Optional[RegressionNCM] = None,
        p_value_calculator: Optional[PValueCalculator] = None
    ):
        super().__init__(ncm if ncm is not None else AbsDiffNCM(), p_value_calculator)
        self.p_value_calculator = None
        self.min_obs_ = None
        self.max_obs_ = None

    def train(self, split: TrainSplit) -> "ICPRegressor":
        """Fit on the proper-training set and calibrate on the calibration set."""
        self._check_split(split)
        proper = split.proper_training_set
        self._fit_ncm(proper, np.array([r.label for r in proper], dtype=float))

        calibration = split.calibration_set
        scores = self.ncm.scores(
            self._matrix([r.features for r in calibration]),
            np.array([r.label for r in calibration], dtype=float)
        )
        self.p_value_calculator = self.p_value_template.clone().build(scores)

        label_range = split.observed_label_range
        self.min_obs_, self.max_obs_ = label_range
        self.num_proper_training_ = len(proper)
        self.num_calibration_ = len(calibration)
        logger.debug("Trained ICP regressor on %d + %d records", len(proper), len(calibration))
        return self

    def predict_midpoint_and_scaling(self, features: SparseVector) -> Tuple[float, float]:
        self._check_trained()
        y_hat, scaling = self.ncm.predict(self._matrix([features]))
        return float(y_hat[0]), float(scaling[0])

    def predict_midpoint(self, features: SparseVector) -> float:
        return self.predict_midpoint_and_scaling(features)[0]

    def predict(
        self,
        features: SparseVector,
        confidences: Union[float, Iterable[float]]
    ) -> CPRegressionPrediction:
        """Prediction interval for each confidence level."""
        confidences = as_confidence_list(confidences)
        y_hat, scaling = self.predict_midpoint_and_scaling(features)
        intervals = {
            c: PredictedInterval(
                y_hat, scaling * self.p_value_calculator.get_ncs(c), c,
                self.min_obs_, self.max_obs_
            )
            for c in confidences
        }
        return CPRegressionPrediction(y_hat, scaling, self.min_obs_, self.max_obs_, intervals)

    def calculate_gradient(
        self,
        features: SparseVector,
        stepsize: float = config.DEFAULT_STEPSIZE
    ) -> Dict[int, float]:
        """Forward-difference gradient of the predicted midpoint."""
        self._check_trained()
        if stepsize == 0:
            raise ValueError("stepsize must be non-zero")
        indices = [idx for idx, _ in features]
        if not indices:
            return {}
        perturbed = [features.with_value(idx, val + stepsize) for idx, val in features]
        base = self.predict_midpoint(features)
        y_hat, _ = self.ncm.predict(self._matrix(perturbed))
        return {idx: (float(v) - base) / stepsize for idx, v in zip(indices, y_hat)}

    def _scores(self):
        return {'scores': self.p_value_calculator.scores_.tolist()}

    def _restore(self, meta, scores, template):
        self.p_value_calculator = template.clone().build(scores['scores'])
        self.min_obs_ = float(meta['minObservation'])
        self.max_obs_ = float(meta['maxObservation'])

    def _meta(self):
        return {'minObservation': self.min_obs_, 'maxObservation': self.max_obs_}

    def _reset(self):
        super()._reset()
        self.p_value_calculator = None
        self.min_obs_ = None
        self.max_obs_ = None


def _int_label(label: float) -> int:
    if label != int(label):
        raise ValueError(f"Classification labels must be integers, got {label}")
    return int(label)
