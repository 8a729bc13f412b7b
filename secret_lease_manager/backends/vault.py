# -*- coding: utf-8 -*-
"""HashiCorp Vault backend built on hvac.

Reads go through Vault's generic logical read so that any secrets engine
(database credentials, PKI, key value, ...) can be requested by path. Key
value version 2 responses are unwrapped so consumers see the secret data
rather than the versioned envelope.
"""

import logging

import hvac
from hvac.exceptions import Forbidden, InternalServerError, InvalidPath, InvalidRequest, \
    RateLimitExceeded, Unauthorized, VaultDown, VaultError

from ..domain import Lease, NO_LEASE
from ..exceptions import BackendError, LeaseNotFoundError, SecretNotFoundError
from .base import SecretBackendClient, SecretResponse

TRANSIENT_EXCEPTIONS = (VaultDown, InternalServerError, RateLimitExceeded, OSError)


class VaultSecretBackend(SecretBackendClient):

    def __init__(self, client=None, url=None, token=None, timeout=5.0, verify=True):
        if client is None:
            assert url, "Either an hvac client or a Vault url is required"
            client = hvac.Client(url=url, token=token, timeout=timeout, verify=verify)
        self._client = client

    @property
    def client(self):
        return self._client

    @staticmethod
    def _backend_error(action, error):
        if isinstance(error, (Unauthorized, Forbidden)):
            message = f"{action} denied: {error}"
        else:
            message = f"{action} failed: {error}"
        return BackendError(message, transient=isinstance(error, TRANSIENT_EXCEPTIONS))

    def read(self, path):
        try:
            response = self._client.read(path)
        except InvalidPath as e:
            raise SecretNotFoundError(path) from e
        except (VaultError, OSError) as e:
            raise self._backend_error(f"Reading secret {path}", e) from e

        if not response or response.get("data") is None:
            raise SecretNotFoundError(path)

        return SecretResponse(data=self._unwrap(response["data"]), lease=self._to_lease(response))

    @staticmethod
    def _unwrap(data):
        if isinstance(data.get("data"), dict) and isinstance(data.get("metadata"), dict):
            return data["data"]
        return data

    @staticmethod
    def _to_lease(response):
        lease_id = response.get("lease_id") or ""
        duration = response.get("lease_duration") or 0
        if not lease_id and not duration:
            return NO_LEASE
        return Lease.of(lease_id, duration, bool(response.get("renewable")))

    def renew(self, lease_id, path):
        try:
            response = self._client.sys.renew_lease(lease_id=lease_id)
        except (InvalidRequest, InvalidPath) as e:
            raise LeaseNotFoundError(lease_id) from e
        except (VaultError, OSError) as e:
            raise self._backend_error(f"Renewing lease {lease_id}", e) from e

        return Lease.of(response.get("lease_id") or lease_id,
                        response.get("lease_duration") or 0,
                        bool(response.get("renewable")))

    def revoke(self, lease_id):
        try:
            self._client.sys.revoke_lease(lease_id=lease_id)
        except (VaultError, OSError) as e:
            raise self._backend_error(f"Revoking lease {lease_id}", e) from e
        logging.getLogger(__name__).debug(f"Revoked lease {lease_id}")
