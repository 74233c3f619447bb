"""
Data containers for conformal prediction.

This module defines the sparse feature vector, the labeled record and the
dataset that sampling strategies partition into proper-training and
calibration sets. A dataset holds a main list of records plus two optional
side pools: records that must always be used for modeling and records that
must always be used for calibration.
"""

import numpy as np
import pandas as pd
from scipy import sparse
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Tuple, Union


class SparseVector:
    """
    Immutable sparse feature vector.

    Parameters
    ----------
    features : dict or iterable of (int, float), optional
        Mapping from non-negative feature index to value. Explicit zeros
        are kept so that gradients can be computed for them.

    Examples
    --------
    >>> v = SparseVector({0: 1.5, 3: -2.0})
    >>> v[3]
    -2.0
    >>> v.with_value(1, 4.0).to_dict()
    {0: 1.5, 1: 4.0, 3: -2.0}
    """

    __slots__ = ("_indices", "_values")

    def __init__(self, features: Optional[Union[Dict[int, float], Iterable[Tuple[int, float]]]] = None):
        items = dict(features.items() if isinstance(features, dict) else (features or ()))
        for idx in items:
            if int(idx) != idx or idx < 0:
                raise ValueError(f"feature indices must be non-negative integers, got {idx}")
        ordered = sorted((int(k), float(v)) for k, v in items.items())
        self._indices = tuple(k for k, _ in ordered)
        self._values = tuple(v for _, v in ordered)

    @classmethod
    def from_dense(cls, values: Sequence[float]) -> "SparseVector":
        """Build a vector from a dense sequence, dropping zeros."""
        arr = np.asarray(values, dtype=float).ravel()
        nz = np.flatnonzero(arr)
        return cls(zip(nz.tolist(), arr[nz].tolist()))

    @property
    def max_index(self) -> int:
        """Largest explicit index, -1 for an empty vector."""
        return self._indices[-1] if self._indices else -1

    def with_value(self, index: int, value: float) -> "SparseVector":
        """Copy of this vector with one feature set to ``value``."""
        features = self.to_dict()
        features[index] = value
        return SparseVector(features)

    def to_dict(self) -> Dict[int, float]:
        return dict(zip(self._indices, self._values))

    def __getitem__(self, index: int) -> float:
        pos = np.searchsorted(self._indices, index)
        if pos < len(self._indices) and self._indices[pos] == index:
            return self._values[pos]
        return 0.0

    def __iter__(self) -> Iterator[Tuple[int, float]]:
        return iter(zip(self._indices, self._values))

    def __len__(self) -> int:
        return len(self._indices)

    def __eq__(self, other) -> bool:
        if not isinstance(other, SparseVector):
            return NotImplemented
        return self._indices == other._indices and self._values == other._values

    def __hash__(self) -> int:
        return hash((self._indices, self._values))

    def __repr__(self) -> str:
        inner = ", ".join(f"{i}: {v:g}" for i, v in self)
        return f"SparseVector({{{inner}}})"


class DataRecord:
    """A label together with its feature vector. Compared by identity."""

    __slots__ = ("_label", "_features")

    def __init__(self, label: float, features: Union[SparseVector, Dict[int, float]]):
        self._label = float(label)
        self._features = features if isinstance(features, SparseVector) else SparseVector(features)

    @property
    def label(self) -> float:
        return self._label

    @property
    def features(self) -> SparseVector:
        return self._features

    def __repr__(self) -> str:
        return f"DataRecord(label={self._label:g}, features={self._features!r})"


class Dataset:
    """
    Ordered collection of records with two optional exclusive pools.

    Parameters
    ----------
    records : list of DataRecord, optional
        Records that sampling strategies are free to partition.
    modeling_exclusive : list of DataRecord, optional
        Records always placed in the proper-training set.
    calibration_exclusive : list of DataRecord, optional
        Records always placed in the calibration set.

    Notes
    -----
    Sampling never mutates a dataset; shuffling returns a shuffled clone.
    Clones share record objects, so split disjointness can be checked by
    record identity.
    """

    def __init__(
        self,
        records: Optional[List[DataRecord]] = None,
        modeling_exclusive: Optional[List[DataRecord]] = None,
        calibration_exclusive: Optional[List[DataRecord]] = None
    ):
        self.records = list(records or [])
        self.modeling_exclusive = list(modeling_exclusive or [])
        self.calibration_exclusive = list(calibration_exclusive or [])

    # ---- Constructors ----

    @classmethod
    def from_arrays(cls, X, y) -> "Dataset":
        """
        Build a dataset from a feature matrix and a label vector.

        Parameters
        ----------
        X : array-like or scipy.sparse matrix, shape (n, n_features)
        y : array-like, shape (n,)
        """
        y = np.asarray(y, dtype=float).ravel()
        if not sparse.issparse(X):
            X = np.asarray(X, dtype=float)
        if X.shape[0] != len(y):
            raise ValueError(
                f"Length mismatch: X ({X.shape[0]}) vs y ({len(y)})"
            )
        if sparse.issparse(X):
            X = sparse.csr_matrix(X)
            records = []
            for i in range(X.shape[0]):
                start, end = X.indptr[i], X.indptr[i + 1]
                vec = SparseVector(zip(X.indices[start:end].tolist(), X.data[start:end].tolist()))
                records.append(DataRecord(y[i], vec))
        else:
            records = [DataRecord(label, SparseVector.from_dense(row)) for row, label in zip(X, y)]
        return cls(records)

    @classmethod
    def from_dataframe(
        cls,
        df: pd.DataFrame,
        target: str,
        feature_columns: Optional[List[str]] = None
    ) -> "Dataset":
        """Build a dataset from a DataFrame; feature ``i`` is the i-th feature column."""
        if target not in df.columns:
            raise ValueError(f"target column '{target}' not found in DataFrame")
        if feature_columns is None:
            feature_columns = [c for c in df.columns if c != target]
        return cls.from_arrays(df[feature_columns].to_numpy(dtype=float), df[target].to_numpy())

    # ---- Properties ----

    @property
    def num_records(self) -> int:
        """Number of records over all three pools."""
        return len(self.records) + len(self.modeling_exclusive) + len(self.calibration_exclusive)

    @property
    def num_features(self) -> int:
        return max((r.features.max_index for r in self.all_records()), default=-1) + 1

    @property
    def labels(self) -> List[float]:
        return sorted({r.label for r in self.all_records()})

    def all_records(self) -> Iterator[DataRecord]:
        yield from self.records
        yield from self.modeling_exclusive
        yield from self.calibration_exclusive

    def label_range(self) -> Optional[Tuple[float, float]]:
        """(min, max) label over all pools, or None for an empty dataset."""
        labels = [r.label for r in self.all_records()]
        if not labels:
            return None
        return min(labels), max(labels)

    def records_per_label(self) -> Dict[float, List[DataRecord]]:
        """Main records grouped by label, keys sorted, record order kept."""
        groups: Dict[float, List[DataRecord]] = {}
        for r in self.records:
            groups.setdefault(r.label, []).append(r)
        return {k: groups[k] for k in sorted(groups)}

    # ---- Copies ----

    def clone(self) -> "Dataset":
        return Dataset(self.records, self.modeling_exclusive, self.calibration_exclusive)

    def shuffle(self, seed: int) -> "Dataset":
        """Shuffled clone; every pool is permuted with the same seed."""
        return Dataset(
            shuffled(self.records, seed),
            shuffled(self.modeling_exclusive, seed),
            shuffled(self.calibration_exclusive, seed)
        )

    def __len__(self) -> int:
        return self.num_records

    def __repr__(self) -> str:
        return (
            f"Dataset(records={len(self.records)}, "
            f"modeling_exclusive={len(self.modeling_exclusive)}, "
            f"calibration_exclusive={len(self.calibration_exclusive)})"
        )


def shuffled(items: Sequence, seed: int) -> list:
    """New list with ``items`` permuted deterministically by ``seed``."""
    order = np.random.default_rng(seed).permutation(len(items))
    return [items[i] for i in order]


def to_csr(vectors: Sequence[SparseVector], num_features: int) -> sparse.csr_matrix:
    """
    Stack feature vectors into a CSR matrix with ``num_features`` columns.

    Indices at or beyond ``num_features`` are dropped, as a model trained on
    fewer features has no weight for them.
    """
    rows, cols, vals = [], [], []
    for r, vec in enumerate(vectors):
        for idx, val in vec:
            if idx < num_features:
                rows.append(r)
                cols.append(idx)
                vals.append(val)
    return sparse.csr_matrix(
        (vals, (rows, cols)), shape=(len(vectors), num_features), dtype=float
    )
