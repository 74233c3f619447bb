"""Exceptions raised by aggcp."""


class NotTrainedError(RuntimeError):
    """Raised when predicting with a model that is not (fully) trained."""


class NoSuchSplitError(IndexError):
    """Raised when asking a split generator for an index it cannot produce."""


class InvalidKeyError(Exception):
    """Raised when encrypted content cannot be decrypted with the given key."""


class ModelLoadError(IOError):
    """Raised when a saved ensemble cannot be loaded."""
