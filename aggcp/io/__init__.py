"""Model persistence: archive sinks/sources and encryption hook"""

from .encryption import EncryptionSpecification, InvalidKeyError
from .sinks import (
    DataSink,
    DataSource,
    DirectorySink,
    DirectorySource,
    ZipSink,
    ZipSource,
    open_sink,
    open_source,
)

__all__ = [
    'EncryptionSpecification',
    'InvalidKeyError',
    'DataSink',
    'DataSource',
    'DirectorySink',
    'DirectorySource',
    'ZipSink',
    'ZipSource',
    'open_sink',
    'open_source',
]
