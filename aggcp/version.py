"""Version information for aggcp."""

__version__ = "0.3.0"
__author__ = "aggcp developers"
__email__ = "aggcp-dev@users.noreply.github.com"
__description__ = "Aggregated Conformal Prediction: ensembles of inductive conformal predictors"
__url__ = "https://github.com/aggcp/aggcp"
