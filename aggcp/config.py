"""
Library-wide defaults.

Values here are used whenever a constructor argument is left as ``None``.
The default random seed can be changed for a whole session with
:func:`set_default_seed`.
"""

DEFAULT_RANDOM_SEED = 42
DEFAULT_STEPSIZE = 1.0
DEFAULT_CALIBRATION_RATIO = 0.2
DEFAULT_NUM_SAMPLES = 1
DEFAULT_NUM_FOLDS = 10
MIN_NUM_FOLDS = 2

_default_seed = DEFAULT_RANDOM_SEED


def get_default_seed() -> int:
    """Seed used by predictors constructed without ``random_seed``."""
    return _default_seed


def set_default_seed(seed: int) -> None:
    """Change the session-wide default seed."""
    global _default_seed
    if not isinstance(seed, int) or isinstance(seed, bool):
        raise TypeError(f"seed must be an int, got {type(seed).__name__}")
    _default_seed = seed
