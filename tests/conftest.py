"""Shared fixtures for the aggcp test suite."""

import gzip

import numpy as np
import pytest

from aggcp import DataRecord, Dataset, InvalidKeyError
from aggcp.io import EncryptionSpecification


# ============================================================================
# Test Encryption
# ============================================================================

class GzipEncryption(EncryptionSpecification):
    """
    Toy encryption for tests: a key-derived header followed by gzip data.

    Decrypting with a different key fails on the header check.
    """

    name = "gzip"

    def __init__(self, key: bytes):
        self.key = key
        self._header = b"gzip=%4d" % (sum(key) % 1000)

    def encrypt(self, data):
        return self._header + gzip.compress(data)

    def decrypt(self, data):
        if not data.startswith(self._header):
            raise InvalidKeyError("Wrong encryption key")
        return gzip.decompress(data[len(self._header):])


# ============================================================================
# Test Fixtures
# ============================================================================

@pytest.fixture
def binary_dataset():
    """120 records, 5 features, roughly 60/40 binary labels."""
    np.random.seed(42)
    X = np.random.randn(120, 5)
    logit = 1.5 * X[:, 0] - 1.0 * X[:, 1] + 0.5 * X[:, 2] + 0.4
    y = (logit + np.random.normal(0, 0.5, 120) > 0).astype(int)
    return Dataset.from_arrays(X, y)


@pytest.fixture
def multiclass_dataset():
    """90 records, 3 classes."""
    np.random.seed(7)
    X = np.random.randn(90, 4)
    y = np.repeat([0, 1, 2], 30)
    X[:, 0] += y * 2.0
    return Dataset.from_arrays(X, y)


@pytest.fixture
def regression_dataset():
    """200 records of a noisy linear function of 4 features."""
    np.random.seed(3)
    X = np.random.randn(200, 4)
    y = X @ np.array([2.0, -1.0, 0.5, 0.0]) + 3.0 + np.random.normal(0, 0.3, 200)
    return Dataset.from_arrays(X, y)


@pytest.fixture
def pooled_dataset():
    """Dataset with both exclusive pools populated."""
    np.random.seed(11)

    def make(n, offset):
        return [
            DataRecord(int(i % 2), {0: float(v), 1: float(i + offset)})
            for i, v in enumerate(np.random.randn(n))
        ]

    return Dataset(make(50, 0), modeling_exclusive=make(6, 100), calibration_exclusive=make(4, 200))


@pytest.fixture
def encryption():
    return GzipEncryption(b"secret")


@pytest.fixture
def wrong_encryption():
    return GzipEncryption(b"other")
