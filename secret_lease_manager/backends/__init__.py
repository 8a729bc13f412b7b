# -*- coding: utf-8 -*-

from .base import SecretBackendClient, SecretResponse
from .gcp import GCPSecretManagerBackend
from .memory import InMemorySecretBackend
from .vault import VaultSecretBackend

__all__ = ["SecretBackendClient",
           "SecretResponse",
           "InMemorySecretBackend",
           "GCPSecretManagerBackend",
           "VaultSecretBackend"]
