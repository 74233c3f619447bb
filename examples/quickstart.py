"""
aggcp Quickstart Example
========================

This example walks through the aggcp workflow:
1. Build datasets from pandas DataFrames
2. Train an aggregated conformal classifier
3. Predict p-values and prediction sets
4. Train an aggregated conformal regressor and predict intervals
5. Save and reload the ensemble

NOTE: This example uses synthetic data for demonstration.
Replace with your own data in production.
"""

from pathlib import Path

import numpy as np
import pandas as pd
from sklearn.linear_model import LogisticRegression, Ridge

from aggcp import ACPClassifier, ACPRegressor, Dataset, SamplingStrategy, configure_logging
from aggcp.icp import AbsDiffNCM, ICPClassifier, ICPRegressor, ProbabilityMarginNCM

# Set random seed for reproducibility
np.random.seed(42)
configure_logging("WARNING")

print("="*70)
print("aggcp Quickstart Example")
print("="*70)


# ===== 1. Prepare Data =====
print("\n[Step 1] Generating synthetic data...")


def generate_customers(n_customers):
    """Synthetic customer table with a churn label and a spend target."""
    data = {
        'recency': np.random.exponential(scale=30, size=n_customers),
        'frequency': np.random.poisson(lam=5, size=n_customers).astype(float),
        'tenure': np.random.uniform(1, 36, size=n_customers),
    }
    logit = -1.0 + 0.03 * data['recency'] - 0.15 * data['frequency'] - 0.02 * data['tenure']
    data['churned'] = (1 / (1 + np.exp(-logit)) > np.random.rand(n_customers)).astype(int)
    data['spend'] = 20 + 4 * data['frequency'] + 0.5 * data['tenure'] + np.random.normal(0, 3, n_customers)
    return pd.DataFrame(data)


customers = generate_customers(400)
features = ['recency', 'frequency', 'tenure']
churn_data = Dataset.from_dataframe(customers, target='churned', feature_columns=features)
spend_data = Dataset.from_dataframe(customers, target='spend', feature_columns=features)

print(f"  {churn_data.num_records} customers, {churn_data.num_features} features")
print(f"  Churn rate: {customers['churned'].mean():.1%}")


# ===== 2. Train Classifier =====
print("\n" + "="*70)
print("[Step 2] Training ACP Classifier (10 stratified folds)")
print("="*70 + "\n")

classifier = ACPClassifier(
    ICPClassifier(ProbabilityMarginNCM(LogisticRegression(max_iter=500))),
    SamplingStrategy.folded_stratified(10),
    random_seed=42,
    verbose=True
)
classifier.train(churn_data)


# ===== 3. Predict =====
print("\n" + "="*70)
print("[Step 3] p-values and Prediction Sets at 90% Confidence")
print("="*70 + "\n")

new_customers = Dataset.from_dataframe(generate_customers(10), target='churned', feature_columns=features)
examples = [r.features for r in new_customers.records]

print(classifier.predict_frame(examples).round(3).to_string())

sets = [classifier.predict_set(x, 0.9) for x in examples]
print(f"\n  ✓ {sum(len(s) == 1 for s in sets)} customers: single label")
print(f"  ? {sum(len(s) == 2 for s in sets)} customers: both labels (uncertain)")
print(f"  ∅ {sum(len(s) == 0 for s in sets)} customers: empty set")


# ===== 4. Regression =====
print("\n" + "="*70)
print("[Step 4] ACP Regressor: Intervals and Width-based Confidence")
print("="*70 + "\n")

regressor = ACPRegressor(
    ICPRegressor(AbsDiffNCM(Ridge())),
    SamplingStrategy.random(num_samples=10, calibration_ratio=0.2),
    random_seed=42,
    verbose=True
)
regressor.train(spend_data)

x = spend_data.records[0].features
result = regressor.predict(x, [0.8, 0.9, 0.95])
print(result.to_frame().round(2).to_string(index=False))

width = result.get_interval(0.9).width
by_width = regressor.predict_confidence(x, width)
print(f"\n  Interval of width {width:.2f} → confidence "
      f"{by_width.get_width_based_interval(width).confidence:.3f}")


# ===== 5. Save Ensemble =====
print("\n" + "="*70)
print("[Step 5] Saving and Reloading")
print("="*70 + "\n")

classifier.save('churn_acp.zip')
reloaded = ACPClassifier.load('churn_acp.zip')
assert reloaded.predict(examples[0]) == classifier.predict(examples[0])
print(f"✓ Reloaded {reloaded.num_trained_predictors} models with identical predictions")

Path("churn_acp.zip").unlink()


# ===== Summary =====
print("\n" + "="*70)
print("✅ Quickstart Complete!")
print("="*70)
print("\nNext Steps:")
print("  1. Replace synthetic data with your own DataFrame")
print("  2. Choose a nonconformity measure that suits your estimator")
print("  3. Tune the sampling strategy (random vs. folded)")
print("\n" + "="*70 + "\n")
