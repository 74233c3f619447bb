"""
Nonconformity measures backed by scikit-learn estimators.

A nonconformity measure fits an underlying estimator on the proper-training
set and turns its output into scores: larger scores mean the label is more
unusual for the example. Calls into the estimator can be serialized with a
shared :class:`SolverLock` when the backend is not safe for concurrent use.
"""

import contextlib
import threading
import numpy as np
from abc import ABC, abstractmethod
from sklearn.base import clone as clone_estimator
from sklearn.linear_model import LogisticRegression
from sklearn.svm import LinearSVC, LinearSVR
from typing import List, Optional, Tuple


class SolverLock:
    """
    Mutex guarding calls into a solver that is not thread safe.

    Share one instance between every measure that uses the same backend; the
    lock is held only for the duration of each ``fit``/``predict`` call.

    Examples
    --------
    >>> lock = SolverLock()
    >>> ncm = AbsDiffNCM(solver_lock=lock)
    >>> clone = ncm.clone()
    >>> clone.solver_lock is lock
    True
    """

    def __init__(self):
        self._lock = threading.Lock()

    def __enter__(self):
        self._lock.acquire()
        return self

    def __exit__(self, exc_type, exc, tb):
        self._lock.release()
        return False

    def locked(self) -> bool:
        return self._lock.locked()


class NonconformityMeasure(ABC):
    """Base class; wraps one estimator and an optional solver lock."""

    name = "base"

    def __init__(self, estimator, solver_lock: Optional[SolverLock] = None):
        self.estimator = estimator
        self.solver_lock = solver_lock
        self.num_features_ = None

    @property
    def is_fitted(self) -> bool:
        return self.num_features_ is not None

    def clone(self) -> "NonconformityMeasure":
        """Unfitted copy; estimators are cloned, the lock is shared."""
        return type(self)(clone_estimator(self.estimator), solver_lock=self.solver_lock)

    def set_seed(self, seed: int) -> None:
        """Seed estimators that expose ``random_state`` and have none set."""
        for est in self._estimators():
            params = est.get_params(deep=False)
            if "random_state" in params and params["random_state"] is None:
                est.set_params(random_state=seed)

    def _estimators(self) -> List:
        return [self.estimator]

    def _guard(self):
        return self.solver_lock if self.solver_lock is not None else contextlib.nullcontext()

    def __getstate__(self):
        state = self.__dict__.copy()
        state["solver_lock"] = None
        return state

    def __repr__(self) -> str:
        return f"{type(self).__name__}(estimator={self.estimator!r})"


# ============================================================================
# Classification
# ============================================================================


class ClassificationNCM(NonconformityMeasure):
    """Scores every candidate label of every example."""

    def fit(self, X, y: np.ndarray) -> "ClassificationNCM":
        with self._guard():
            self.estimator.fit(X, y)
        self.labels_ = [int(c) for c in self.estimator.classes_]
        self.num_features_ = X.shape[1]
        return self

    @abstractmethod
    def scores(self, X) -> np.ndarray:
        """Array of shape (n, n_labels), columns ordered as ``labels_``."""


class NegativeDistanceToHyperplaneNCM(ClassificationNCM):
    """
    Score of a label is minus the signed decision value toward that label.

    Parameters
    ----------
    estimator : sklearn classifier with ``decision_function``, optional
        Defaults to ``LinearSVC()``.
    solver_lock : SolverLock, optional
    """

    name = "NegativeDistanceToHyperplane"

    def __init__(self, estimator=None, solver_lock: Optional[SolverLock] = None):
        super().__init__(estimator if estimator is not None else LinearSVC(), solver_lock)

    def scores(self, X) -> np.ndarray:
        with self._guard():
            d = np.asarray(self.estimator.decision_function(X), dtype=float)
        if d.ndim == 1:
            # Binary: positive values favour classes_[1]
            return np.column_stack([d, -d])
        return -d


class ProbabilityMarginNCM(ClassificationNCM):
    """
    Score of label y is ``0.5 - (p_y - max_{y' != y} p_y') / 2``.

    Parameters
    ----------
    estimator : sklearn classifier with ``predict_proba``, optional
        Defaults to ``LogisticRegression()``.
    solver_lock : SolverLock, optional
    """

    name = "ProbabilityMargin"

    def __init__(self, estimator=None, solver_lock: Optional[SolverLock] = None):
        super().__init__(estimator if estimator is not None else LogisticRegression(), solver_lock)

    def scores(self, X) -> np.ndarray:
        with self._guard():
            proba = np.asarray(self.estimator.predict_proba(X), dtype=float)
        out = np.empty_like(proba)
        for k in range(proba.shape[1]):
            best_other = np.delete(proba, k, axis=1).max(axis=1)
            out[:, k] = 0.5 - (proba[:, k] - best_other) / 2
        return out


# ============================================================================
# Regression
# ============================================================================


class RegressionNCM(NonconformityMeasure):
    """Scores are absolute residuals divided by a per-example scaling."""

    def fit(self, X, y: np.ndarray) -> "RegressionNCM":
        with self._guard():
            self.estimator.fit(X, y)
        self.num_features_ = X.shape[1]
        return self

    @abstractmethod
    def predict(self, X) -> Tuple[np.ndarray, np.ndarray]:
        """Midpoints and interval scalings."""

    def scores(self, X, y: np.ndarray) -> np.ndarray:
        y_hat, scaling = self.predict(X)
        return np.abs(np.asarray(y, dtype=float) - y_hat) / scaling


class AbsDiffNCM(RegressionNCM):
    """
    Absolute difference ``|y - y_hat|``; every interval has scaling 1.

    Parameters
    ----------
    estimator : sklearn regressor, optional
        Defaults to ``LinearSVR()``.
    solver_lock : SolverLock, optional
    """

    name = "AbsDiff"

    def __init__(self, estimator=None, solver_lock: Optional[SolverLock] = None):
        super().__init__(estimator if estimator is not None else LinearSVR(), solver_lock)

    def predict(self, X):
        with self._guard():
            y_hat = np.asarray(self.estimator.predict(X), dtype=float)
        return y_hat, np.ones_like(y_hat)


class LogNormalizedNCM(RegressionNCM):
    """
    Residual normalized by a second model of the log absolute error.

    The error model is fit on ``log(|y - y_hat|)`` over the proper-training
    set; the scaling of an example is ``exp(error_prediction) + beta``.

    Parameters
    ----------
    estimator : sklearn regressor, optional
        Midpoint model, defaults to ``LinearSVR()``.
    error_estimator : sklearn regressor, optional
        Error model, defaults to a clone of ``estimator``.
    beta : float, optional (default=0.01)
        Smoothing added to every scaling, must be >= 0.
    solver_lock : SolverLock, optional
    """

    name = "LogNormalized"

    def __init__(
        self,
        estimator=None,
        error_estimator=None,
        beta: float = 0.01,
        solver_lock: Optional[SolverLock] = None
    ):
        super().__init__(estimator if estimator is not None else LinearSVR(), solver_lock)
        if beta < 0:
            raise ValueError(f"beta must be >= 0, got {beta}")
        self.error_estimator = (
            error_estimator if error_estimator is not None else clone_estimator(self.estimator)
        )
        self.beta = beta

    def clone(self) -> "LogNormalizedNCM":
        return LogNormalizedNCM(
            clone_estimator(self.estimator),
            clone_estimator(self.error_estimator),
            beta=self.beta,
            solver_lock=self.solver_lock
        )

    def _estimators(self):
        return [self.estimator, self.error_estimator]

    def fit(self, X, y):
        y = np.asarray(y, dtype=float)
        with self._guard():
            self.estimator.fit(X, y)
            residuals = np.abs(y - self.estimator.predict(X))
        log_err = np.log(np.maximum(residuals, np.finfo(float).eps))
        with self._guard():
            self.error_estimator.fit(X, log_err)
        self.num_features_ = X.shape[1]
        return self

    def predict(self, X):
        with self._guard():
            y_hat = np.asarray(self.estimator.predict(X), dtype=float)
            log_err = np.asarray(self.error_estimator.predict(X), dtype=float)
        return y_hat, np.exp(log_err) + self.beta
