"""
Unit Tests for ACPClassifier
============================

Covers:
- Median/mean aggregation of p-values
- Ensemble states and untrained rejection
- Full vs. per-index training equivalence
- add_predictor, release_resources
- Gradients, prediction sets and frames
- Threaded training and prediction
"""

import pandas as pd
import pytest
from sklearn.linear_model import LogisticRegression

from aggcp import (
    ACPClassifier,
    AggregationType,
    EnsembleState,
    NotTrainedError,
    SamplingStrategy,
    SparseVector,
)
from aggcp.acp import aggregate, average_gradients
from aggcp.icp import ICPClassifier, ProbabilityMarginNCM


# ============================================================================
# Test Fixtures
# ============================================================================

class StubICP:
    """Trained single predictor returning fixed p-values and gradients."""

    def __init__(self, p_values=None, gradient=None):
        self.p_values = dict(p_values or {})
        self.gradient = dict(gradient or {})
        self.is_trained = p_values is not None
        self.released = False

    @property
    def labels(self):
        return sorted(self.p_values)

    def clone(self):
        return StubICP()

    def predict(self, features):
        return dict(self.p_values)

    def calculate_gradient(self, features, stepsize=1.0, label=None):
        return dict(self.gradient)

    def release_resources(self):
        self.released = True
        return True


def make_stub_ensemble(outputs, aggregation="median", gradients=None):
    acp = ACPClassifier(StubICP(), SamplingStrategy.random(num_samples=len(outputs)), aggregation=aggregation)
    gradients = gradients or [{}] * len(outputs)
    for p_values, grad in zip(outputs, gradients):
        acp.add_predictor(StubICP(p_values, grad))
    return acp


STUB_OUTPUTS = [
    {0: 0.2, 1: 0.8},
    {0: 0.5, 1: 0.5},
    {0: 0.9, 1: 0.1},
]

X0 = SparseVector({0: 1.0})


@pytest.fixture
def trained_acp(binary_dataset):
    acp = ACPClassifier(
        ICPClassifier(ProbabilityMarginNCM(LogisticRegression())),
        SamplingStrategy.random_stratified(num_samples=5, calibration_ratio=0.25),
        random_seed=13
    )
    return acp.train(binary_dataset)


# ============================================================================
# Test 1: Aggregation
# ============================================================================

def test_median_aggregation():
    """Median of {.2,.5,.9} and {.8,.5,.1}."""
    result = make_stub_ensemble(STUB_OUTPUTS).predict(X0)
    assert result == pytest.approx({0: 0.5, 1: 0.5})


def test_mean_aggregation():
    acp = make_stub_ensemble(STUB_OUTPUTS, aggregation="mean")
    assert acp.aggregation is AggregationType.MEAN
    assert acp.predict(X0) == pytest.approx({0: 1.6 / 3, 1: 1.4 / 3})


def test_aggregation_can_change_before_predicting():
    acp = make_stub_ensemble(STUB_OUTPUTS)
    acp.aggregation = AggregationType.MEAN
    assert acp.predict(X0)[0] == pytest.approx(0.5333, abs=1e-4)


def test_median_of_even_count():
    assert aggregate([1.0, 4.0, 2.0, 3.0]) == 2.5
    assert aggregate([1.0, 4.0], AggregationType.MEAN) == 2.5
    with pytest.raises(ValueError):
        aggregate([])
    with pytest.raises(ValueError):
        AggregationType.parse("mode")


def test_models_with_different_labels():
    """Labels missing from a model are aggregated over the models that have them."""
    acp = make_stub_ensemble([{0: 0.2, 1: 0.8}, {0: 0.4}])
    assert acp.predict(X0) == pytest.approx({0: 0.3, 1: 0.8})


def test_gradient_averaging():
    """Denominator is the number of models, not the number of contributions."""
    grads = [{0: 1.0, 2: 3.0}, {0: 2.0}, {1: 6.0}]
    assert average_gradients(grads) == pytest.approx({0: 1.0, 1: 2.0, 2: 1.0})

    acp = make_stub_ensemble(STUB_OUTPUTS, gradients=grads)
    assert acp.calculate_gradient(X0, stepsize=0.1) == pytest.approx({0: 1.0, 1: 2.0, 2: 1.0})


def test_predicted_label_and_set():
    acp = make_stub_ensemble([{0: 0.05, 1: 0.7}, {0: 0.08, 1: 0.6}, {0: 0.2, 1: 0.4}])
    assert acp.predict_label(X0) == 1
    assert acp.predict_set(X0, 0.9) == [1]
    assert acp.predict_set(X0, 0.95) == [0, 1]
    with pytest.raises(ValueError):
        acp.predict_set(X0, 1.5)


# ============================================================================
# Test 2: Ensemble States
# ============================================================================

def test_empty_ensemble_rejects_prediction():
    acp = ACPClassifier(strategy=SamplingStrategy.random(num_samples=3))
    assert acp.status is EnsembleState.EMPTY
    with pytest.raises(NotTrainedError):
        acp.predict(X0)
    with pytest.raises(NotTrainedError):
        acp.calculate_gradient(X0)


def test_partially_trained_rejects_prediction(binary_dataset):
    acp = ACPClassifier(
        ICPClassifier(ProbabilityMarginNCM(LogisticRegression())),
        SamplingStrategy.random(num_samples=3)
    )
    acp.train(binary_dataset, index=1)
    assert acp.status is EnsembleState.PARTIALLY_TRAINED
    assert acp.num_trained_predictors == 1
    assert list(acp.predictors) == [1]
    with pytest.raises(NotTrainedError):
        acp.predict(binary_dataset.records[0].features)

    acp.train(binary_dataset, index=0)
    acp.train(binary_dataset, index=2)
    assert acp.is_trained
    assert set(acp.predict(binary_dataset.records[0].features)) == {0, 1}


def test_train_index_out_of_range(binary_dataset):
    acp = ACPClassifier(strategy=SamplingStrategy.random(num_samples=2))
    with pytest.raises(ValueError):
        acp.train(binary_dataset, index=2)
    with pytest.raises(ValueError):
        acp.train(binary_dataset, index=-1)


def test_release_resources(trained_acp):
    models = list(trained_acp.predictors.values())
    assert trained_acp.release_resources() is True
    assert trained_acp.status is EnsembleState.EMPTY
    assert not any(m.is_trained for m in models)
    assert trained_acp.release_resources() is False
    assert trained_acp.num_samples == 5


def test_clear_keeps_models_usable(trained_acp, binary_dataset):
    model = trained_acp.predictors[0]
    trained_acp.clear()
    assert trained_acp.status is EnsembleState.EMPTY
    assert model.is_trained
    assert set(model.predict(binary_dataset.records[0].features)) == {0, 1}


# ============================================================================
# Test 3: Training
# ============================================================================

def test_full_and_indexed_training_are_identical(binary_dataset):
    """Training indices one by one reproduces the full ensemble exactly."""
    def make():
        return ACPClassifier(
            ICPClassifier(ProbabilityMarginNCM(LogisticRegression())),
            SamplingStrategy.random(num_samples=5, calibration_ratio=0.2),
            random_seed=99
        )

    full = make().train(binary_dataset)
    indexed = make()
    for i in [3, 0, 4, 1, 2]:
        indexed.train(binary_dataset, index=i)

    features = binary_dataset.records[7].features
    for i in range(5):
        assert full.predictors[i].predict(features) == indexed.predictors[i].predict(features)
    assert full.predict(features) == indexed.predict(features)


def test_retraining_replaces_models(trained_acp, binary_dataset):
    before = dict(trained_acp.predictors)
    trained_acp.train(binary_dataset)
    assert trained_acp.num_trained_predictors == 5
    assert all(trained_acp.predictors[i] is not before[i] for i in range(5))


def test_threaded_training_matches_sequential(binary_dataset, trained_acp):
    threaded = trained_acp.clone()
    threaded.n_jobs = 2
    threaded.train(binary_dataset)
    features = binary_dataset.records[0].features
    assert threaded.predict(features) == trained_acp.predict(features)


def test_folded_stratified_ensemble(binary_dataset):
    acp = ACPClassifier(
        ICPClassifier(ProbabilityMarginNCM(LogisticRegression())),
        SamplingStrategy.folded_stratified(4)
    ).train(binary_dataset)
    assert acp.num_trained_predictors == 4
    assert acp.labels == [0, 1]
    assert acp.num_classes == 2
    assert acp.num_observations_used == binary_dataset.num_records


def test_changing_strategy_resets_models(trained_acp):
    trained_acp.strategy = SamplingStrategy.random(num_samples=2)
    assert trained_acp.status is EnsembleState.EMPTY
    assert trained_acp.num_samples == 2


def test_strategy_change_with_same_count_resets_models(trained_acp):
    trained_acp.strategy = SamplingStrategy.random(num_samples=5, calibration_ratio=0.25)
    assert trained_acp.status is EnsembleState.EMPTY
    assert trained_acp.num_samples == 5


# ============================================================================
# Test 4: add_predictor
# ============================================================================

def test_add_predictor_grows_random_strategy():
    acp = make_stub_ensemble(STUB_OUTPUTS)
    acp.add_predictor(StubICP({0: 0.1, 1: 0.9}))
    assert acp.num_samples == 4
    assert acp.strategy.num_samples == 4
    assert acp.is_trained


def test_add_predictor_fills_gaps_and_explicit_index():
    acp = ACPClassifier(StubICP(), SamplingStrategy.random(num_samples=3))
    acp.add_predictor(StubICP({0: 0.5}), index=2)
    acp.add_predictor(StubICP({0: 0.5}))
    assert sorted(acp.predictors) == [0, 2]
    with pytest.raises(ValueError):
        acp.add_predictor(StubICP({0: 0.5}), index=3)
    with pytest.raises(ValueError):
        acp.add_predictor(StubICP())


def test_add_predictor_to_full_folded_raises():
    acp = ACPClassifier(StubICP(), SamplingStrategy.folded(2))
    acp.add_predictor(StubICP({0: 0.5}))
    acp.add_predictor(StubICP({0: 0.5}))
    with pytest.raises(ValueError):
        acp.add_predictor(StubICP({0: 0.5}))


# ============================================================================
# Test 5: Real Ensemble Outputs
# ============================================================================

def test_gradient_of_trained_ensemble(trained_acp, binary_dataset):
    features = binary_dataset.records[5].features
    grad = trained_acp.calculate_gradient(features)
    assert set(grad) == {idx for idx, _ in features}
    grad_label0 = trained_acp.calculate_gradient(features, stepsize=0.5, label=0)
    assert set(grad_label0) == set(grad)


def test_predict_frame(trained_acp, binary_dataset):
    examples = [r.features for r in binary_dataset.records[:4]]
    frame = trained_acp.predict_frame(examples)
    assert isinstance(frame, pd.DataFrame)
    assert list(frame.columns) == [0, 1]
    assert len(frame) == 4
    assert frame.iloc[2].to_dict() == pytest.approx(trained_acp.predict(examples[2]))


def test_properties_and_clone(trained_acp):
    props = trained_acp.get_properties()
    assert props['seed'] == 13
    assert props['samplingStrategy'] == 2
    assert props['numSamples'] == 5
    assert props['numTrainedModels'] == 5
    clone = trained_acp.clone()
    assert clone.status is EnsembleState.EMPTY
    assert clone.strategy == trained_acp.strategy
    assert clone.seed == trained_acp.seed


if __name__ == "__main__":
    pytest.main([__file__, "-v", "--tb=short"])
