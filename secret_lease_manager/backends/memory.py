# -*- coding: utf-8 -*-
"""A backend keeping secrets in process memory, for local development and tests."""

import copy
import itertools
import logging
import threading

from ..domain import Lease
from ..exceptions import LeaseNotFoundError, SecretNotFoundError
from .base import SecretBackendClient, SecretResponse


class InMemorySecretBackend(SecretBackendClient):
    """Stores secrets by path and issues leases for them.

    Each write can configure the lease handed out on reads of that path:
    ``lease_duration`` of ``None`` makes it a static secret, ``renewable``
    whether the lease can be renewed and ``generic`` a lease without an id
    (a secret with a ttl that can only be rotated). Every read of a leased
    path issues a new lease id. Calls are recorded in ``reads``, ``renewals``
    and ``revocations``.
    """

    def __init__(self):
        self.lock = threading.Lock()
        self._secrets = {}
        self._leases = {}
        self._ids = itertools.count(1)
        self.reads = []
        self.renewals = []
        self.revocations = []

    def write(self, path, data, lease_duration=None, renewable=True, generic=False,
              renew_duration=None):
        with self.lock:
            self._secrets[path] = {
                "data": copy.deepcopy(data),
                "lease_duration": lease_duration,
                "renewable": renewable,
                "generic": generic,
                "renew_duration": renew_duration,
            }

    def delete(self, path):
        with self.lock:
            self._secrets.pop(path, None)

    def expire_lease(self, lease_id):
        """Invalidates a lease as if it expired or was revoked out of band."""
        with self.lock:
            self._leases.pop(lease_id, None)

    def active_leases(self):
        with self.lock:
            return dict(self._leases)

    def read(self, path):
        with self.lock:
            self.reads.append(path)
            stored = self._secrets.get(path)
            if stored is None:
                raise SecretNotFoundError(path)
            data = copy.deepcopy(stored["data"])
            if stored["lease_duration"] is None:
                return SecretResponse(data=data)
            if stored["generic"]:
                return SecretResponse(data=data, lease=Lease.of("", stored["lease_duration"]))
            lease_id = f"{path}/{next(self._ids)}"
            self._leases[lease_id] = path
        return SecretResponse(data=data,
                              lease=Lease.of(lease_id, stored["lease_duration"],
                                             stored["renewable"]))

    def renew(self, lease_id, path):
        with self.lock:
            self.renewals.append(lease_id)
            stored = self._secrets.get(path)
            if lease_id not in self._leases or stored is None or not stored["renewable"]:
                raise LeaseNotFoundError(lease_id)
            duration = stored["renew_duration"]
            if duration is None:
                duration = stored["lease_duration"]
        return Lease.of(lease_id, duration, True)

    def revoke(self, lease_id):
        with self.lock:
            self.revocations.append(lease_id)
            if self._leases.pop(lease_id, None) is None:
                logging.getLogger(__name__).debug(f"Revoking unknown lease {lease_id}")
