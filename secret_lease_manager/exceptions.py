# -*- coding: utf-8 -*-

class SecretLeaseError(Exception):
    """Base Error class."""


class SchedulerStateError(SecretLeaseError):
    """Raised when the scheduler is used in a state that does not allow it."""


class SecretNotFoundError(SecretLeaseError):
    CUSTOM_ERROR_MESSAGE = "Secret {} not found"

    def __init__(self, path):
        super(SecretNotFoundError, self).__init__(self.CUSTOM_ERROR_MESSAGE.format(path))
        self._path = path

    @property
    def path(self):
        return self._path


class NoActiveSecretVersion(SecretNotFoundError):
    CUSTOM_ERROR_MESSAGE = "Secret {} has no active enabled versions"


class LeaseNotFoundError(SecretLeaseError):
    CUSTOM_ERROR_MESSAGE = "Lease {} is no longer valid"

    def __init__(self, lease_id):
        super(LeaseNotFoundError, self).__init__(self.CUSTOM_ERROR_MESSAGE.format(lease_id))
        self._lease_id = lease_id

    @property
    def lease_id(self):
        return self._lease_id


class BackendError(SecretLeaseError):
    """Transport, authorization or server side failure talking to the backend.

    ``transient`` marks failures worth retrying (server errors, rate limits,
    connection problems).
    """

    def __init__(self, message, transient=False):
        super(BackendError, self).__init__(message)
        self._transient = transient

    @property
    def transient(self):
        return self._transient
