"""
Encryption hook for saved models.

aggcp does not ship a cipher. Applications that need encrypted models
implement :class:`EncryptionSpecification` and pass an instance to the
save/load methods; it is applied to every model payload, never to the
plain-text metadata files.
"""

from abc import ABC, abstractmethod

from ..exceptions import InvalidKeyError


class EncryptionSpecification(ABC):
    """Symmetric transformation of model payloads."""

    name = "encryption"

    @abstractmethod
    def encrypt(self, data: bytes) -> bytes:
        ...

    @abstractmethod
    def decrypt(self, data: bytes) -> bytes:
        """Inverse of :meth:`encrypt`; raises InvalidKeyError for a wrong key."""

    def can_decrypt(self, data: bytes) -> bool:
        try:
            self.decrypt(data)
        except InvalidKeyError:
            return False
        return True


__all__ = ["EncryptionSpecification", "InvalidKeyError"]
