"""
Unit Tests for Inductive Conformal Predictors
=============================================

Covers:
- Classification and regression training/prediction
- Calibration set validation
- Gradients
- Cloning, releasing resources and the solver lock
- Single-model persistence
"""

import json
import math
import pickle

import numpy as np
import pytest
from sklearn.linear_model import LogisticRegression, Ridge
from sklearn.svm import LinearSVC

from aggcp import DataRecord, NotTrainedError, SamplingStrategy, SparseVector
from aggcp.icp import (
    AbsDiffNCM,
    ICPClassifier,
    ICPRegressor,
    LogNormalizedNCM,
    NegativeDistanceToHyperplaneNCM,
    ProbabilityMarginNCM,
    SolverLock,
)
from aggcp.icp.nonconformity import ClassificationNCM, RegressionNCM
from aggcp.icp.pvalues import SmoothedPValue
from aggcp.io import DirectorySink, DirectorySource
from aggcp.sampling import TrainSplit


# ============================================================================
# Test Fixtures
# ============================================================================

@pytest.fixture
def class_split(binary_dataset):
    return SamplingStrategy.random(calibration_ratio=0.3).get_iterator(binary_dataset, 1).get(0)


@pytest.fixture
def reg_split(regression_dataset):
    return SamplingStrategy.random(calibration_ratio=0.3).get_iterator(regression_dataset, 1).get(0)


LOCK = SolverLock()
LOCK_STATES = []


class LockCheckingRidge(Ridge):
    """Ridge that records whether the shared lock is held while fitting."""

    def fit(self, X, y, sample_weight=None):
        LOCK_STATES.append(LOCK.locked())
        return super().fit(X, y, sample_weight=sample_weight)


# ============================================================================
# Test 1: Classification
# ============================================================================

@pytest.mark.parametrize("ncm", [
    ProbabilityMarginNCM(LogisticRegression()),
    NegativeDistanceToHyperplaneNCM(LinearSVC(random_state=0)),
], ids=lambda n: n.name)
def test_classifier_predicts_all_labels(ncm, class_split):
    icp = ICPClassifier(ncm).train(class_split)
    assert icp.is_trained
    assert icp.labels == [0, 1]
    p = icp.predict(class_split.calibration_set[0].features)
    assert set(p) == {0, 1}
    assert all(0 < v <= 1 for v in p.values())


def test_classifier_calibration_is_valid(binary_dataset):
    """On held-out data, the true label has p > 0.2 at least ~80% of the time."""
    gen = SamplingStrategy.random(calibration_ratio=0.3).get_iterator(binary_dataset, 2)
    split = gen.get(0)
    test_records = split.proper_training_set[:30]
    train = TrainSplit(split.proper_training_set[30:], split.calibration_set)
    icp = ICPClassifier(ProbabilityMarginNCM(LogisticRegression())).train(train)
    hits = [icp.predict(r.features)[int(r.label)] > 0.2 for r in test_records]
    assert np.mean(hits) >= 0.6


def test_classifier_requires_all_classes_in_calibration(binary_dataset):
    zeros = [r for r in binary_dataset.records if r.label == 0]
    ones = [r for r in binary_dataset.records if r.label == 1]
    split = TrainSplit(zeros[:20] + ones[:20], zeros[20:30])
    with pytest.raises(ValueError):
        ICPClassifier(ProbabilityMarginNCM()).train(split)


def test_classifier_requires_two_labels(binary_dataset):
    zeros = [r for r in binary_dataset.records if r.label == 0]
    with pytest.raises(ValueError):
        ICPClassifier().train(TrainSplit(zeros[:20], zeros[20:30]))


def test_classifier_gradient(class_split):
    icp = ICPClassifier(ProbabilityMarginNCM(LogisticRegression())).train(class_split)
    features = class_split.calibration_set[0].features
    grad = icp.calculate_gradient(features, stepsize=0.5)
    assert set(grad) == {idx for idx, _ in features}
    assert all(math.isfinite(v) for v in grad.values())
    with pytest.raises(ValueError):
        icp.calculate_gradient(features, label=7)


# ============================================================================
# Test 2: Regression
# ============================================================================

def test_regressor_intervals_grow_with_confidence(reg_split):
    icp = ICPRegressor(AbsDiffNCM(Ridge())).train(reg_split)
    features = reg_split.calibration_set[0].features
    result = icp.predict(features, [0.5, 0.8, 0.95])
    widths = [result.get_interval(c).half_width for c in (0.5, 0.8, 0.95)]
    assert widths == sorted(widths)
    assert result.interval_scaling == 1.0
    assert (icp.min_obs_, icp.max_obs_) == reg_split.observed_label_range


def test_regressor_infinite_width_for_tiny_calibration(regression_dataset):
    records = regression_dataset.records
    icp = ICPRegressor(AbsDiffNCM(Ridge())).train(TrainSplit(records[:50], records[50:54]))
    result = icp.predict(records[60].features, 0.9)
    assert math.isinf(result.get_interval(0.9).half_width)
    lower, upper = result.get_interval(0.9).capped_interval
    assert (lower, upper) == (icp.min_obs_, icp.max_obs_)


def test_regressor_midpoint_and_gradient(reg_split):
    icp = ICPRegressor(AbsDiffNCM(Ridge(alpha=1e-6))).train(reg_split)
    features = SparseVector({0: 0.5, 1: -0.2, 3: 1.0})
    grad = icp.calculate_gradient(features, stepsize=1.0)
    # Linear model: gradient equals the coefficients
    coef = icp.ncm.estimator.coef_
    for idx, value in grad.items():
        assert value == pytest.approx(coef[idx], abs=1e-6)
    assert icp.predict_midpoint(features) == icp.predict(features, 0.5).y_hat


def test_log_normalized_scaling_varies(reg_split):
    icp = ICPRegressor(LogNormalizedNCM(Ridge(), beta=0.01)).train(reg_split)
    scalings = {
        round(icp.predict_midpoint_and_scaling(r.features)[1], 10)
        for r in reg_split.calibration_set[:10]
    }
    assert len(scalings) > 1
    assert all(s > 0 for s in scalings)


def test_log_normalized_rejects_negative_beta():
    with pytest.raises(ValueError):
        LogNormalizedNCM(beta=-1.0)


# ============================================================================
# Test 3: Lifecycle
# ============================================================================

def test_predict_before_train_raises():
    with pytest.raises(NotTrainedError):
        ICPRegressor().predict(SparseVector({0: 1.0}), 0.8)
    with pytest.raises(RuntimeError):
        ICPClassifier().predict(SparseVector({0: 1.0}))


def test_clone_is_untrained_and_independent(reg_split):
    icp = ICPRegressor(AbsDiffNCM(Ridge())).train(reg_split)
    clone = icp.clone()
    assert not clone.is_trained
    assert clone.ncm is not icp.ncm
    assert clone.ncm.estimator is not icp.ncm.estimator


def test_release_resources(reg_split):
    icp = ICPRegressor(AbsDiffNCM(Ridge())).train(reg_split)
    assert icp.release_resources() is True
    assert not icp.is_trained
    assert icp.release_resources() is False


def test_solver_lock_is_shared_and_held_during_fit(reg_split):
    LOCK_STATES.clear()
    icp = ICPRegressor(AbsDiffNCM(LockCheckingRidge(), solver_lock=LOCK))
    clone = icp.clone()
    assert clone.ncm.solver_lock is LOCK
    clone.train(reg_split)
    assert LOCK_STATES == [True]
    assert not LOCK.locked()

    restored = pickle.loads(pickle.dumps(clone.ncm))
    assert restored.solver_lock is None


def test_measure_bases_are_abstract():
    with pytest.raises(TypeError):
        ClassificationNCM(LogisticRegression())
    with pytest.raises(TypeError):
        RegressionNCM(Ridge())


def test_set_seed_fills_missing_random_state():
    ncm = NegativeDistanceToHyperplaneNCM(LinearSVC())
    ncm.set_seed(17)
    assert ncm.estimator.random_state == 17
    ncm = NegativeDistanceToHyperplaneNCM(LinearSVC(random_state=3))
    ncm.set_seed(17)
    assert ncm.estimator.random_state == 3


# ============================================================================
# Test 4: Persistence
# ============================================================================

def test_icp_save_and_load(tmp_path, class_split):
    icp = ICPClassifier(ProbabilityMarginNCM(LogisticRegression())).train(class_split)
    with DirectorySink(tmp_path) as sink:
        icp.save_to_sink(sink, "icp")

    loaded = ICPClassifier().load_from_source(DirectorySource(tmp_path), "icp")
    features = class_split.calibration_set[3].features
    assert loaded.predict(features) == icp.predict(features)
    assert isinstance(loaded.ncm, ProbabilityMarginNCM)


def test_icp_load_wrong_type(tmp_path, reg_split):
    icp = ICPRegressor(AbsDiffNCM(Ridge())).train(reg_split)
    with DirectorySink(tmp_path) as sink:
        icp.save_to_sink(sink, "icp")
    with pytest.raises(ValueError):
        ICPClassifier().load_from_source(DirectorySource(tmp_path), "icp")
    with pytest.raises(FileNotFoundError):
        ICPRegressor().load_from_source(DirectorySource(tmp_path), "missing")


def test_icp_entry_layout(tmp_path, reg_split):
    icp = ICPRegressor(AbsDiffNCM(Ridge()), SmoothedPValue(seed=4)).train(reg_split)
    with DirectorySink(tmp_path) as sink:
        icp.save_to_sink(sink, "icp")

    source = DirectorySource(tmp_path)
    assert sorted(source.entries()) == ["icp/meta.json", "icp/ncm.pkl", "icp/scores.json"]
    meta = json.loads((tmp_path / "icp" / "meta.json").read_text())
    assert meta["encrypted"] is False
    assert meta["pValueCalculator"] == "smoothed"
    assert meta["numCalibration"] == len(reg_split.calibration_set)
    scores = json.loads((tmp_path / "icp" / "scores.json").read_text())
    assert len(scores["scores"]) == len(reg_split.calibration_set)

    loaded = ICPRegressor().load_from_source(source, "icp")
    assert isinstance(loaded.p_value_template, SmoothedPValue)
    assert loaded.p_value_template.seed == 4
    features = reg_split.calibration_set[0].features
    assert loaded.predict(features, 0.8).get_interval(0.8).interval == \
        icp.predict(features, 0.8).get_interval(0.8).interval


def test_untrained_icp_cannot_be_saved(tmp_path):
    with DirectorySink(tmp_path) as sink:
        with pytest.raises(NotTrainedError):
            ICPRegressor().save_to_sink(sink, "icp")
