# -*- coding: utf-8 -*-
"""Lease lifecycle events and the publisher fanning them out to listeners.

Every state change of a requested secret is published as a
:class:`SecretLeaseEvent`. Events are delivered synchronously, in listener
registration order, on the thread that detected the change (the sweep thread
or, for the first read, the registering thread) and are not retained.
"""

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from .domain import Lease, RequestedSecret


class EventKind(Enum):
    CREATED = "created"
    RENEWED = "renewed"
    ROTATED = "rotated"
    EXPIRED = "expired"
    BEFORE_REVOCATION = "before_revocation"
    AFTER_REVOCATION = "after_revocation"
    NOT_FOUND = "not_found"
    ERROR = "error"


_KINDS_WITH_SECRETS = (EventKind.CREATED, EventKind.ROTATED)


@dataclass(frozen=True)
class SecretLeaseEvent:
    kind: EventKind
    requested_secret: RequestedSecret
    lease: Lease
    secrets: Optional[Dict[str, Any]] = None
    previous_lease: Optional[Lease] = None
    error: Optional[BaseException] = None

    def __post_init__(self):
        assert (self.secrets is not None) == (self.kind in _KINDS_WITH_SECRETS), \
            f"Secrets are carried by created and rotated events only not {self.kind}"
        assert self.previous_lease is None or self.kind is EventKind.ROTATED, \
            f"Previous lease is carried by rotated events only not {self.kind}"
        assert (self.error is not None) == (self.kind is EventKind.ERROR), \
            f"Errors are carried by error events only not {self.kind}"

    @property
    def source(self):
        return self.requested_secret

    @classmethod
    def created(cls, requested_secret, lease, secrets):
        return cls(EventKind.CREATED, requested_secret, lease, secrets=dict(secrets))

    @classmethod
    def renewed(cls, requested_secret, lease):
        return cls(EventKind.RENEWED, requested_secret, lease)

    @classmethod
    def rotated(cls, requested_secret, previous_lease, lease, secrets):
        return cls(EventKind.ROTATED, requested_secret, lease, secrets=dict(secrets),
                   previous_lease=previous_lease)

    @classmethod
    def expired(cls, requested_secret, lease):
        return cls(EventKind.EXPIRED, requested_secret, lease)

    @classmethod
    def before_revocation(cls, requested_secret, lease):
        return cls(EventKind.BEFORE_REVOCATION, requested_secret, lease)

    @classmethod
    def after_revocation(cls, requested_secret, lease):
        return cls(EventKind.AFTER_REVOCATION, requested_secret, lease)

    @classmethod
    def not_found(cls, requested_secret, lease=None):
        return cls(EventKind.NOT_FOUND, requested_secret, lease or Lease.none())

    @classmethod
    def failed(cls, requested_secret, lease, error):
        return cls(EventKind.ERROR, requested_secret, lease or Lease.none(), error=error)


class LeaseListener(ABC):

    @abstractmethod
    def on_lease_event(self, event):
        """Called for every lifecycle event other than errors."""


class LeaseErrorListener(ABC):

    @abstractmethod
    def on_lease_error(self, event, error):
        """Called for error events, ``error`` is the exception that triggered it."""


class LeaseListenerAdapter(LeaseListener, LeaseErrorListener):
    """Listener implementing both callbacks as no-ops, override what you need."""

    def on_lease_event(self, event):
        pass

    def on_lease_error(self, event, error):
        pass


class SecretLeaseEventPublisher:
    """Registry of lease and error listeners.

    Listener collections are copy on write tuples so that delivery iterates a
    snapshot: listeners may register or remove themselves (or others) while
    an event is being delivered.
    """

    def __init__(self):
        self._listener_lock = threading.Lock()
        self._lease_listeners = ()
        self._error_listeners = ()

    def add_lease_listener(self, listener):
        assert hasattr(listener, "on_lease_event"), "Lease listener must implement on_lease_event"
        with self._listener_lock:
            self._lease_listeners = self._lease_listeners + (listener,)

    def remove_lease_listener(self, listener):
        with self._listener_lock:
            self._lease_listeners = tuple(
                existing for existing in self._lease_listeners if existing is not listener)

    def add_error_listener(self, listener):
        assert hasattr(listener, "on_lease_error"), "Error listener must implement on_lease_error"
        with self._listener_lock:
            self._error_listeners = self._error_listeners + (listener,)

    def remove_error_listener(self, listener):
        with self._listener_lock:
            self._error_listeners = tuple(
                existing for existing in self._error_listeners if existing is not listener)

    def publish(self, event):
        if event.kind is EventKind.ERROR:
            self._publish_error(event)
            return

        for listener in self._lease_listeners:
            try:
                listener.on_lease_event(event)
            except Exception:
                logging.getLogger(__name__).exception(
                    f"Lease listener {listener!r} failed handling {event.kind.value} event for "
                    f"{event.requested_secret.path}")

    def _publish_error(self, event):
        listeners = self._error_listeners
        if not listeners:
            logging.getLogger(__name__).error(
                f"Lease error for {event.requested_secret.path}: {event.error}",
                exc_info=event.error)
            return

        for listener in listeners:
            try:
                listener.on_lease_error(event, event.error)
            except Exception:
                logging.getLogger(__name__).exception(
                    f"Error listener {listener!r} failed handling error for "
                    f"{event.requested_secret.path}")
