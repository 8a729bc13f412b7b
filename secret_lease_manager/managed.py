# -*- coding: utf-8 -*-
"""Callback style consumption of rotating secrets."""

import logging

from .domain import RequestedSecret
from .events import EventKind, LeaseListenerAdapter

_MISSING = object()


class SecretAccessor:
    """Typed read access to the data of a secret."""

    def __init__(self, secrets):
        self._secrets = dict(secrets)

    def get(self, key, default=None, expected_type=None):
        value = self._secrets.get(key, _MISSING)
        if value is _MISSING or value is None:
            return default
        if expected_type is not None and not isinstance(value, expected_type):
            raise TypeError(f"Value for key {key} (type {type(value).__name__}) is not of type "
                            f"{expected_type.__name__}")
        return value

    def get_required(self, key, expected_type=None):
        value = self.get(key, expected_type=expected_type)
        if value is None:
            raise KeyError(f"No value present for key {key}")
        return value

    def get_string(self, key, default=None):
        return self.get(key, default, str)

    def get_int(self, key, default=None):
        value = self.get(key, default)
        return None if value is None else int(value)

    def as_dict(self):
        return dict(self._secrets)


def _log_error(requested_secret):
    def _error_consumer(error):
        logging.getLogger(__name__).error(
            f"Error occurred while processing secret at path {requested_secret.path}",
            exc_info=error)

    return _error_consumer


class ManagedSecret(LeaseListenerAdapter):
    """Hands every new value of a secret to a consumer.

    The consumer is called with a :class:`SecretAccessor` whenever the secret
    is created or rotated, e.g. to reconfigure a connection pool with fresh
    database credentials::

        ManagedSecret.rotating("database/creds/app", pool.reconfigure).register(scheduler)

    Exceptions raised by the consumer and lease errors go to the error
    consumer, which logs them by default.
    """

    def __init__(self, requested_secret, secrets_consumer, error_consumer=None):
        self._requested_secret = requested_secret
        self._secrets_consumer = secrets_consumer
        self._error_consumer = error_consumer or _log_error(requested_secret)

    @classmethod
    def rotating(cls, path, secrets_consumer, error_consumer=None):
        return cls(RequestedSecret.rotating(path), secrets_consumer, error_consumer)

    @classmethod
    def renewable(cls, path, secrets_consumer, error_consumer=None):
        return cls(RequestedSecret.renewable(path), secrets_consumer, error_consumer)

    @property
    def requested_secret(self):
        return self._requested_secret

    def register(self, scheduler):
        scheduler.add_lease_listener(self)
        scheduler.add_error_listener(self)
        scheduler.add_requested_secret(self._requested_secret)
        return self

    def on_lease_event(self, event):
        if event.requested_secret != self._requested_secret:
            return
        if event.kind not in (EventKind.CREATED, EventKind.ROTATED):
            return
        try:
            self._secrets_consumer(SecretAccessor(event.secrets))
        except Exception as e:
            self._error_consumer(e)

    def on_lease_error(self, event, error):
        if event.requested_secret == self._requested_secret:
            self._error_consumer(error)

    def __repr__(self):
        return f"ManagedSecret [{self._requested_secret}]"
