"""
Confidential computation -- encrypted inputs, reveals, and the signatures that authorize them.
"""

from .base import ComputationClient, DecryptRequest, EncryptedInput, EncryptedPayload
from .signature import FileStringStorage, MemoryStringStorage, StringStorage, load_or_sign

__all__ = [
    "ComputationClient",
    "DecryptRequest",
    "EncryptedInput",
    "EncryptedPayload",
    "FileStringStorage",
    "MemoryStringStorage",
    "StringStorage",
    "load_or_sign",
]
