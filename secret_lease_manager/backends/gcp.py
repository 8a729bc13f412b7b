# -*- coding: utf-8 -*-
"""Google Cloud Secret Manager backend.

Secret Manager has no leases of its own. A secret configured with a rotation
schedule is handed out with a non renewable lease that runs until its next
rotation time, a secret with an expire time with a lease that runs until
then. Requesting such a secret in ``Mode.ROTATE`` re-reads it once the
rotation is due so that the new version is picked up. In ``Mode.RENEW`` the
lease cannot be renewed and simply expires. Secrets without either are
static.

This always takes the most recent *enabled* version
rather than "latest", so a bad release can be rolled back by disabling the
newest version. A ``/versions/N`` suffix caps the version used at N.
"""

import json
import logging
import re
import threading
from datetime import datetime, timezone

import google.auth
import google_crc32c
from google.api_core import exceptions
from google.cloud import secretmanager, secretmanager_v1

from ..domain import Lease, NO_LEASE
from ..exceptions import BackendError, LeaseNotFoundError, NoActiveSecretVersion, \
    SecretNotFoundError
from .base import SecretBackendClient, SecretResponse

TRANSIENT_EXCEPTIONS = (exceptions.ServerError,
                        exceptions.TooManyRequests)


class GCPSecretManagerBackend(SecretBackendClient):

    def __init__(self, _credentials_callback=None):
        self._credentials_callback = _credentials_callback
        # clients are not shared between the sweep thread and application threads
        self.ns = threading.local()

    @property
    def _credentials(self):
        if not hasattr(self.ns, "_credentials"):
            if self._credentials_callback is not None:
                _credentials, _project_id = self._credentials_callback()
            else:
                _credentials, _project_id = google.auth.default()
            self.ns._credentials = _credentials
        return self.ns._credentials

    def _client(self):
        if not hasattr(self.ns, "client"):
            self.ns.client = secretmanager.SecretManagerServiceClient(credentials=self._credentials)
        return self.ns.client

    @staticmethod
    def _split_version(path):
        secret_version_match = re.search(
            r'(projects/[^/]+/secrets/[^/]+)/versions/([0-9]+|latest)',
            path)

        if not secret_version_match:
            return path, None
        max_version = secret_version_match.group(2)
        if max_version == "latest":
            max_version = None
        return secret_version_match.group(1), max_version

    def read(self, path):
        secret_name, max_version = self._split_version(path)
        try:
            latest = self._latest_enabled_version(secret_name, max_version)
            request = secretmanager_v1.AccessSecretVersionRequest(name=latest.name)
            payload = self._client().access_secret_version(request).payload.data
            secret = self._client().get_secret(request={"name": secret_name})
        except exceptions.NotFound as e:
            raise SecretNotFoundError(path) from e
        except TRANSIENT_EXCEPTIONS as e:
            raise BackendError(f"Reading secret {path} failed: {e}", transient=True) from e
        except exceptions.GoogleAPICallError as e:
            raise BackendError(f"Reading secret {path} failed: {e}") from e

        return SecretResponse(data=self._to_data(payload),
                              lease=self._to_lease(latest.name, secret))

    def _latest_enabled_version(self, secret_name, max_version):
        request = secretmanager_v1.ListSecretVersionsRequest(
            parent=secret_name,
            filter="state=ENABLED"
        )
        page_result = self._client().list_secret_versions(request=request)
        latest = None
        for response in sorted(page_result, key=lambda d: d.create_time):
            if max_version:
                version_num = int(re.search(r'projects/[^/]+/secrets/[^/]+/versions/([0-9]+)',
                                            response.name).group(1))
                if version_num == int(max_version):
                    latest = response
                    break
                if version_num > int(max_version):
                    continue
            if latest is None or latest.create_time < response.create_time:
                latest = response

        if not latest:
            raise NoActiveSecretVersion(secret_name)
        return latest

    @staticmethod
    def _to_data(payload):
        try:
            text = payload.decode("utf-8")
        except UnicodeDecodeError:
            # binary secrets, e.g. keystores, are handed out as they are
            return {"value": payload}
        try:
            data = json.loads(text)
        except json.decoder.JSONDecodeError:
            return {"value": text}
        if isinstance(data, dict):
            return data
        return {"value": data}

    @staticmethod
    def _to_lease(version_name, secret):
        until = None
        if "rotation" in secret and secret.rotation.next_rotation_time:
            until = secret.rotation.next_rotation_time
        elif "expire_time" in secret and secret.expire_time:
            until = secret.expire_time

        if until is None:
            return NO_LEASE

        remaining = (until - datetime.now(timezone.utc)).total_seconds()
        if remaining <= 0:
            logging.getLogger(__name__).debug(
                f"Secret {secret.name} rotation or expiry time {until} already passed")
            return NO_LEASE
        return Lease.of(version_name, remaining, False)

    def renew(self, lease_id, path):
        # versions cannot be extended, a re-read picks up the next version
        raise LeaseNotFoundError(lease_id)

    def revoke(self, lease_id):
        logging.getLogger(__name__).debug(
            f"Secret manager has no lease revocation, leaving version {lease_id} enabled")

    def write(self, path, data):
        """Adds a new version of the secret at ``path`` holding ``data``.

        Dictionaries and lists are stored as JSON, other values as their
        UTF-8 encoded string.
        """
        if not isinstance(data, bytes):
            if isinstance(data, (dict, list)):
                data = json.dumps(data)
            if not isinstance(data, str):
                data = str(data)
            data = data.encode("utf8")

        # Passing a checksum in add-version request is optional.
        crc32c = google_crc32c.Checksum()
        crc32c.update(data)
        secret_name, _ = self._split_version(path)

        try:
            return self._client().add_secret_version(
                request={
                    "parent": secret_name,
                    "payload": {"data": data, "data_crc32c": int(crc32c.hexdigest(), 16)},
                }
            )
        except exceptions.NotFound as e:
            raise SecretNotFoundError(path) from e
        except exceptions.GoogleAPICallError as e:
            raise BackendError(f"Writing secret {path} failed: {e}",
                               transient=isinstance(e, TRANSIENT_EXCEPTIONS)) from e
