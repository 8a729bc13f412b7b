# -*- coding: utf-8 -*-

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict

from ..domain import Lease, NO_LEASE


@dataclass(frozen=True)
class SecretResponse:
    data: Dict[str, Any] = field(default_factory=dict)
    lease: Lease = NO_LEASE


class SecretBackendClient(ABC):
    """Abstract Base Class for the client talking to a remote secret service.

    The :class:`~secret_lease_manager.scheduler.LeaseRenewalScheduler` performs
    every read, renewal and revocation through an implementation of this
    class. Implementations translate their transport's failures into the
    package exceptions:

    * :class:`~secret_lease_manager.exceptions.SecretNotFoundError` when a
      path holds no data,
    * :class:`~secret_lease_manager.exceptions.LeaseNotFoundError` when a
      lease can no longer be renewed,
    * :class:`~secret_lease_manager.exceptions.BackendError` for anything else.
    """

    @abstractmethod
    def read(self, path):
        """Reads the secret at ``path``.

        Args:
            path (str): The secret location.

        Returns:
            SecretResponse: The secret data and its lease, ``NO_LEASE`` when
            the secret is not leased.
        """

    @abstractmethod
    def renew(self, lease_id, path):
        """Renews the lease ``lease_id`` obtained by reading ``path``.

        Returns:
            Lease: The renewed lease, its id and duration may differ from the
            original.
        """

    @abstractmethod
    def revoke(self, lease_id):
        """Revokes the lease ``lease_id``."""
