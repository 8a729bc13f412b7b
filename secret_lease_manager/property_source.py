# -*- coding: utf-8 -*-
"""A live key/value view over a leased secret.

The view registers its requested secret with a scheduler and follows the
lease events for it, so lookups always see the current secret::

    source = LeaseAwareSecretPropertySource(scheduler, RequestedSecret.rotating("database/creds/app"))
    password = source["password"]
"""

import logging
import threading

from .events import EventKind, LeaseListenerAdapter
from .exceptions import SecretLeaseError, SecretNotFoundError
from .flatten import flatten


def noop_transformer(properties):
    return properties


def prefix_transformer(prefix):
    """Returns a transformer prepending ``prefix`` to every property name."""
    assert prefix, "Prefix must not be empty"

    def _transform(properties):
        return {f"{prefix}{key}": value for key, value in properties.items()}

    return _transform


class LeaseAwareSecretPropertySource(LeaseListenerAdapter):
    """Flattened properties of one requested secret, kept current by lease events.

    Created events replace all properties, rotated events drop keys the new
    secret no longer has and merge the rest in a single step, expired and
    revocation events clear the properties. Renewals keep the data.

    Args:
        scheduler (LeaseRenewalScheduler): The scheduler managing the secret.
        requested_secret (RequestedSecret): The secret to expose.
        name (str, optional): Name of the source, defaults to the secret path.
        ignore_secret_not_found (bool): Start empty instead of failing when
            the secret does not exist.
        property_transformer (callable, optional): Maps the flattened
            properties, e.g. :func:`prefix_transformer`.

    Raises:
        SecretNotFoundError: The secret does not exist and
            ``ignore_secret_not_found`` is False.
        SecretLeaseError: Reading the secret failed.
    """

    def __init__(self, scheduler, requested_secret, name=None, ignore_secret_not_found=False,
                 property_transformer=None):
        self._scheduler = scheduler
        self._requested_secret = requested_secret
        self._name = name or requested_secret.path
        self._property_transformer = property_transformer or noop_transformer
        self._properties = {}
        self._lock = threading.RLock()
        self._loading_thread = None
        self._outcome = None
        self._error = None
        self._load(ignore_secret_not_found)

    def _load(self, ignore_secret_not_found):
        logging.getLogger(__name__).debug(
            f"Requesting secrets at {self._requested_secret.path} using "
            f"{self._requested_secret.mode.name}")
        # only events published by this thread tell the outcome of the registration
        self._loading_thread = threading.get_ident()
        self._scheduler.add_lease_listener(self)
        self._scheduler.add_error_listener(self)
        try:
            lease = self._scheduler.add_requested_secret(self._requested_secret)
        except Exception:
            self._remove_listeners()
            raise
        finally:
            self._loading_thread = None

        if self._outcome is EventKind.NOT_FOUND:
            if ignore_secret_not_found:
                logging.getLogger(__name__).info(
                    f"Secret {self._requested_secret.path} not found, property source "
                    f"{self._name} is empty")
                return
            self._remove_listeners()
            raise SecretNotFoundError(self._requested_secret.path)

        if self._outcome is EventKind.ERROR or lease is None:
            self._remove_listeners()
            raise SecretLeaseError(
                f"Cannot load property source {self._name} from {self._requested_secret.path}"
            ) from self._error

        if self._outcome is None:
            # registered earlier by someone else, no created event this time
            data = self._scheduler.get_secret_data(self._requested_secret)
            if data is not None:
                self._replace(data)

    @property
    def name(self):
        return self._name

    @property
    def requested_secret(self):
        return self._requested_secret

    def get_property(self, name, default=None):
        with self._lock:
            return self._properties.get(name, default)

    def property_names(self):
        with self._lock:
            return list(self._properties)

    def snapshot(self):
        with self._lock:
            return dict(self._properties)

    def __getitem__(self, name):
        with self._lock:
            return self._properties[name]

    def __contains__(self, name):
        with self._lock:
            return name in self._properties

    def __len__(self):
        with self._lock:
            return len(self._properties)

    def close(self, remove_secret=True):
        """Stops following lease events, and by default stops managing the secret."""
        self._remove_listeners()
        if remove_secret:
            self._scheduler.remove_lease_for_secret(self._requested_secret)
        with self._lock:
            self._properties.clear()

    def _is_loading(self):
        return self._loading_thread == threading.get_ident()

    def _remove_listeners(self):
        self._scheduler.remove_lease_listener(self)
        self._scheduler.remove_error_listener(self)

    def _transform(self, secrets):
        return self._property_transformer(flatten(secrets))

    def _replace(self, secrets):
        properties = self._transform(secrets)
        with self._lock:
            self._properties.clear()
            self._properties.update(properties)

    def on_lease_event(self, event):
        if event.requested_secret != self._requested_secret:
            return

        if self._is_loading() and self._outcome is None and \
                event.kind in (EventKind.CREATED, EventKind.NOT_FOUND):
            self._outcome = event.kind

        if event.kind is EventKind.CREATED:
            self._replace(event.secrets)
        elif event.kind is EventKind.ROTATED:
            properties = self._transform(event.secrets)
            with self._lock:
                for stale in [key for key in self._properties if key not in properties]:
                    del self._properties[stale]
                self._properties.update(properties)
        elif event.kind in (EventKind.EXPIRED, EventKind.BEFORE_REVOCATION):
            with self._lock:
                self._properties.clear()

    def on_lease_error(self, event, error):
        if event.requested_secret != self._requested_secret:
            return
        if self._is_loading() and self._outcome is None:
            self._outcome = EventKind.ERROR
            self._error = error
        logging.getLogger(__name__).debug(
            f"Property source {self._name} keeps its properties after error {error}")
