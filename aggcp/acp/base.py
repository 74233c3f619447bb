"""
Aggregated Conformal Predictor base class.

This module implements the ensemble container shared by
:class:`~aggcp.acp.ACPClassifier` and :class:`~aggcp.acp.ACPRegressor`:
one slot per sample of the sampling strategy, full or per-index training,
aggregation settings and persistence of a possibly partial ensemble.
"""

import json
import logging
from enum import Enum
from typing import Callable, Dict, List, Optional, Union

from joblib import Parallel, delayed

from .. import config
from ..data import Dataset
from ..exceptions import InvalidKeyError, ModelLoadError, NotTrainedError
from ..io.encryption import EncryptionSpecification
from ..io.sinks import (
    DataSink,
    DataSource,
    join_entry,
    open_sink,
    open_source,
    read_bytes,
    write_bytes,
)
from ..sampling import SamplingStrategy, TrainSplit, TrainSplitGenerator
from .aggregation import AggregationType

logger = logging.getLogger(__name__)

ACP_DIRECTORY = "acp"
META_FILE = "meta.json"
MODEL_DIRECTORY_PREFIX = "model."


class EnsembleState(Enum):
    EMPTY = "empty"
    PARTIALLY_TRAINED = "partially_trained"
    TRAINED = "trained"


class LoadStatus(Enum):
    LOADED = "loaded"
    MISSING = "missing"
    FAILED = "failed"
    FATAL = "fatal"


class IndexLoadResult:
    """Outcome of loading the model at one ensemble index."""

    __slots__ = ("index", "status", "model", "error")

    def __init__(self, index: int, status: LoadStatus, model=None, error: Optional[BaseException] = None):
        self.index = index
        self.status = status
        self.model = model
        self.error = error

    def __repr__(self) -> str:
        return f"IndexLoadResult(index={self.index}, status={self.status.value})"


class AggregatedPredictor:
    """
    Ensemble of inductive conformal predictors, one per train split.

    Parameters
    ----------
    icp : ICPClassifier or ICPRegressor
        Template cloned for every split.
    strategy : SamplingStrategy, optional
        Partitioning policy, defaults to ``SamplingStrategy.random()``.
    random_seed : int, optional
        Seed of the split generation, defaults to
        :func:`aggcp.config.get_default_seed`.
    aggregation : {'median', 'mean'} or AggregationType, optional (default='median')
        How per-model outputs are combined.
    n_jobs : int, optional (default=1)
        Number of threads used for training and prediction; -1 uses all
        cores.
    verbose : bool, optional (default=False)
        Print progress messages.

    Attributes
    ----------
    icp_implementation : ICP
        The template.
    status : EnsembleState
        ``EMPTY``, ``PARTIALLY_TRAINED`` or ``TRAINED``.
    """

    predictor_type = None

    def __init__(
        self,
        icp,
        strategy: Optional[SamplingStrategy] = None,
        random_seed: Optional[int] = None,
        aggregation: Union[str, AggregationType] = AggregationType.MEDIAN,
        n_jobs: int = 1,
        verbose: bool = False
    ):
        if icp is None:
            raise ValueError("An ICP template is required")
        if n_jobs == 0:
            raise ValueError("n_jobs must be a non-zero integer, got 0")

        self.icp_implementation = icp
        self.random_seed = config.get_default_seed() if random_seed is None else int(random_seed)
        self.aggregation = aggregation
        self.n_jobs = n_jobs
        self.verbose = verbose

        self._strategy = None
        self._slots: List = []
        self._num_filled = 0
        self._generator: Optional[TrainSplitGenerator] = None
        self.strategy = strategy if strategy is not None else SamplingStrategy.random()

    # ---- Configuration ----

    @property
    def strategy(self) -> SamplingStrategy:
        """Copy of the sampling strategy; assign a new one to change it."""
        return self._strategy.clone()

    @strategy.setter
    def strategy(self, strategy: SamplingStrategy):
        self._validate_strategy(strategy)
        if strategy != self._strategy:
            if self._num_filled:
                logger.info("Sampling strategy changed, dropping %d trained models", self._num_filled)
            self._strategy = strategy.clone()
            self._reset_slots()

    @property
    def aggregation(self) -> AggregationType:
        return self._aggregation

    @aggregation.setter
    def aggregation(self, value: Union[str, AggregationType]):
        self._aggregation = AggregationType.parse(value)

    @property
    def seed(self) -> int:
        return self.random_seed

    @property
    def num_samples(self) -> int:
        return self._strategy.num_samples

    # ---- State ----

    @property
    def status(self) -> EnsembleState:
        if self._num_filled == 0:
            return EnsembleState.EMPTY
        if self._num_filled < self.num_samples:
            return EnsembleState.PARTIALLY_TRAINED
        return EnsembleState.TRAINED

    @property
    def is_trained(self) -> bool:
        return self.status is EnsembleState.TRAINED

    @property
    def is_partially_trained(self) -> bool:
        return self.status is EnsembleState.PARTIALLY_TRAINED

    @property
    def num_trained_predictors(self) -> int:
        return self._num_filled

    @property
    def predictors(self) -> Dict[int, object]:
        """Trained models by ensemble index."""
        return {i: m for i, m in enumerate(self._slots) if m is not None}

    @property
    def num_observations_used(self) -> int:
        if self._num_filled == 0:
            return 0
        return max(m.num_observations_used for m in self.predictors.values())

    # ---- Training ----

    def train(self, dataset: Dataset, index: Optional[int] = None):
        """
        Train the whole ensemble, or only the model at ``index``.

        Full training drops every existing model first. Training one index
        keeps the other models and reuses the split generator while the same
        dataset object is passed.

        Parameters
        ----------
        dataset : Dataset
        index : int, optional
            Ensemble index in ``[0, num_samples)``.
        """
        if index is None:
            self._train_all(dataset)
        else:
            self._train_index(dataset, index)
        return self

    def add_predictor(self, icp, index: Optional[int] = None):
        """
        Store an externally trained ICP.

        Without ``index`` the first empty slot is used; a full ensemble with a
        random strategy grows by one sample, other strategies raise.
        """
        if not icp.is_trained:
            raise ValueError("Only trained predictors can be added to the ensemble")
        if not isinstance(icp, type(self.icp_implementation)):
            raise ValueError(
                f"Expected a {type(self.icp_implementation).__name__}, got {type(icp).__name__}"
            )
        if index is None:
            free = [i for i, m in enumerate(self._slots) if m is None]
            if free:
                index = free[0]
            elif self._strategy.can_grow:
                index = len(self._slots)
                self._strategy.set_num_samples(index + 1)
                self._slots.append(None)
                self._generator = None
            else:
                raise ValueError(
                    f"Ensemble is full and {self._strategy.name} sampling has a fixed "
                    f"number of samples; give an explicit index"
                )
        elif not 0 <= index < self.num_samples:
            raise ValueError(f"index must be in [0, {self.num_samples - 1}], got {index}")
        self._store(index, icp)
        return self

    def release_resources(self) -> bool:
        """Drop every trained model; configuration is kept."""
        released = self._num_filled > 0
        for model in self._slots:
            if model is not None:
                model.release_resources()
        self._reset_slots()
        return released

    def clear(self) -> None:
        """Forget every trained model without releasing it."""
        self._reset_slots()

    # ---- Persistence ----

    def save_to_sink(
        self,
        sink: DataSink,
        base_path: str = "",
        encryption: Optional[EncryptionSpecification] = None
    ) -> None:
        """
        Write ``<base_path>/acp/meta.json`` and one sub-directory per model.

        The meta file is never encrypted; ``encryption`` is passed on to every
        model.
        """
        if self._num_filled == 0:
            raise NotTrainedError("No trained models to save. Call .train() first.")
        acp_dir = join_entry(base_path, ACP_DIRECTORY)
        sink.create_directory(acp_dir)
        meta = json.dumps(self.get_properties(), indent=2).encode("utf-8")
        write_bytes(sink, join_entry(acp_dir, META_FILE), meta)
        for index, model in self.predictors.items():
            model.save_to_sink(sink, self._model_path(acp_dir, index), encryption)
        logger.info("Saved %d/%d models under '%s'", self._num_filled, self.num_samples, acp_dir)

    def load_from_source(
        self,
        source: DataSource,
        base_path: str = "",
        encryption: Optional[EncryptionSpecification] = None
    ):
        """
        Restore an ensemble written by :meth:`save_to_sink`.

        Models that are missing or unreadable are skipped with a log message;
        a wrong encryption key aborts the whole load. The template is
        replaced by a clone of the first loaded model.

        Raises
        ------
        InvalidKeyError
            If any model cannot be decrypted.
        ModelLoadError
            If the metadata is missing or invalid, or no model could be loaded.
        """
        acp_dir = join_entry(base_path, ACP_DIRECTORY)
        meta_entry = join_entry(acp_dir, META_FILE)
        if not source.has_entry(meta_entry):
            raise ModelLoadError(f"No ensemble metadata found at '{meta_entry}'")
        try:
            meta = json.loads(read_bytes(source, meta_entry).decode("utf-8"))
            strategy = SamplingStrategy.from_properties(meta)
            seed = int(meta['seed'])
            aggregation = AggregationType.parse(meta.get('aggregation', self.aggregation))
        except (ValueError, KeyError, TypeError) as e:
            raise ModelLoadError(f"Invalid ensemble metadata in '{meta_entry}': {e}") from e
        if meta.get('predictorType') != self.predictor_type:
            raise ModelLoadError(
                f"Saved ensemble is of type '{meta.get('predictorType')}', "
                f"expected '{self.predictor_type}'"
            )
        self._validate_strategy(strategy)

        results = []
        for index in range(strategy.num_samples):
            result = self._load_index(source, acp_dir, index, encryption)
            if result.status is LoadStatus.FATAL:
                path = self._model_path(acp_dir, index)
                raise InvalidKeyError(f"model {index} at '{path}': {result.error}") from result.error
            results.append(result)

        loaded = [r for r in results if r.status is LoadStatus.LOADED]
        if not loaded:
            raise ModelLoadError(f"No ICP models could be loaded from '{acp_dir}'")

        self._strategy = strategy
        self.random_seed = seed
        self.aggregation = aggregation
        self._reset_slots()
        for r in loaded:
            self._store(r.index, r.model)
        self.icp_implementation = loaded[0].model.clone()
        logger.info("Loaded %d/%d models from '%s'", len(loaded), strategy.num_samples, acp_dir)
        return self

    def save(self, filepath, encryption: Optional[EncryptionSpecification] = None) -> None:
        """Save to a directory, or to a zip archive when ``filepath`` ends in ``.zip``."""
        with open_sink(filepath) as sink:
            self.save_to_sink(sink, "", encryption)
        if self.verbose:
            print(f"✓ Ensemble saved to {filepath}")

    @classmethod
    def load(cls, filepath, icp=None, encryption: Optional[EncryptionSpecification] = None):
        """
        Load an ensemble saved with :meth:`save`.

        Parameters
        ----------
        filepath : str or Path
            Directory or ``.zip`` archive.
        icp : ICP, optional
            Template whose solver lock should be used by the loaded models.
        encryption : EncryptionSpecification, optional
        """
        predictor = cls(icp) if icp is not None else cls()
        with open_source(filepath) as source:
            predictor.load_from_source(source, "", encryption)
        return predictor

    # ---- Introspection ----

    def get_properties(self) -> Dict[str, object]:
        props = {
            'predictorType': self.predictor_type,
            'seed': self.random_seed,
            'aggregation': self.aggregation.value,
            'numTrainedModels': self._num_filled,
        }
        props.update(self._strategy.get_properties())
        return props

    def clone(self):
        """Untrained copy with the same configuration."""
        return type(self)(
            self.icp_implementation.clone(),
            strategy=self._strategy.clone(),
            random_seed=self.random_seed,
            aggregation=self.aggregation,
            n_jobs=self.n_jobs,
            verbose=self.verbose
        )

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(strategy={self._strategy!r}, "
            f"trained={self._num_filled}/{self.num_samples}, "
            f"aggregation={self.aggregation.value})"
        )

    # ---- Private methods ----

    def _validate_strategy(self, strategy: SamplingStrategy) -> None:
        if not isinstance(strategy, SamplingStrategy):
            raise ValueError(f"strategy must be a SamplingStrategy, got {type(strategy).__name__}")

    def _reset_slots(self):
        self._slots = [None] * self.num_samples
        self._num_filled = 0
        self._generator = None

    def _store(self, index: int, model) -> None:
        if self._slots[index] is None:
            self._num_filled += 1
        else:
            logger.debug("Replacing model at index %d", index)
        self._slots[index] = model

    def _get_generator(self, dataset: Dataset) -> TrainSplitGenerator:
        gen = self._generator
        if gen is None or gen.dataset is not dataset or gen.seed != self.random_seed:
            gen = self._strategy.get_iterator(dataset, self.random_seed)
            self._generator = gen
        return gen

    def _train_model(self, split: TrainSplit, index: int):
        model = self.icp_implementation.clone()
        model.set_seed(self.random_seed)
        model.train(split)
        logger.debug("Trained model %d on %d records", index, split.total_num_records)
        return model

    def _train_from_generator(self, generator: TrainSplitGenerator, index: int):
        return self._train_model(generator.get(index), index)

    def _train_all(self, dataset: Dataset):
        self._reset_slots()
        generator = self._get_generator(dataset)
        n = self.num_samples
        if self.n_jobs == 1:
            for index, split in enumerate(generator):
                model = self._train_model(split, index)
                del split
                self._store(index, model)
        else:
            models = Parallel(n_jobs=self.n_jobs, prefer="threads")(
                delayed(self._train_from_generator)(generator, i) for i in range(n)
            )
            for index, model in enumerate(models):
                self._store(index, model)
        logger.info("Trained %d models with %s sampling", n, self._strategy.name)
        if self.verbose:
            print(f"✓ Trained {n} ICPs ({self._strategy.name} sampling, seed={self.random_seed})")

    def _train_index(self, dataset: Dataset, index: int):
        if not 0 <= index < self.num_samples:
            raise ValueError(f"index must be in [0, {self.num_samples - 1}], got {index}")
        split = self._get_generator(dataset).get(index)
        self._store(index, self._train_model(split, index))
        if self.verbose:
            print(f"✓ Trained ICP {index} ({self._num_filled}/{self.num_samples} done)")

    def _check_trained(self):
        if not self.is_trained:
            raise NotTrainedError(
                f"{type(self).__name__} not trained ({self._num_filled}/"
                f"{self.num_samples} models). Call .train() first."
            )

    def _map_models(self, fn: Callable) -> List:
        """Apply ``fn`` to every model; all results are collected before returning."""
        self._check_trained()
        if self.n_jobs == 1:
            return [fn(model) for model in self._slots]
        return Parallel(n_jobs=self.n_jobs, prefer="threads")(
            delayed(fn)(model) for model in self._slots
        )

    @staticmethod
    def _model_path(acp_dir: str, index: int) -> str:
        return join_entry(acp_dir, f"{MODEL_DIRECTORY_PREFIX}{index}")

    def _load_index(
        self,
        source: DataSource,
        acp_dir: str,
        index: int,
        encryption: Optional[EncryptionSpecification]
    ) -> IndexLoadResult:
        path = self._model_path(acp_dir, index)
        model = self.icp_implementation.clone()
        try:
            model.load_from_source(source, path, encryption)
        except InvalidKeyError as e:
            logger.error("Could not decrypt model %d at '%s': %s", index, path, e)
            return IndexLoadResult(index, LoadStatus.FATAL, error=e)
        except FileNotFoundError:
            logger.info("No model saved at index %d ('%s'), skipping", index, path)
            return IndexLoadResult(index, LoadStatus.MISSING)
        except Exception as e:
            logger.warning("Failed reading model %d at '%s', skipping: %r", index, path, e)
            return IndexLoadResult(index, LoadStatus.FAILED, error=e)
        return IndexLoadResult(index, LoadStatus.LOADED, model=model)
