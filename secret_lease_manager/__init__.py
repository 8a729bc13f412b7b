# -*- coding: utf-8 -*-
"""secret_lease_manager

Keeps leased secrets from a remote secret service alive: leases are renewed or
the secret rotated shortly before expiry, revoked when no longer needed, and
every change is published to listeners such as live property sources.

"""

from __future__ import absolute_import

from secret_lease_manager.backends import SecretBackendClient, \
    SecretResponse, \
    InMemorySecretBackend, \
    GCPSecretManagerBackend, \
    VaultSecretBackend
from secret_lease_manager.config import SchedulerSettings
from secret_lease_manager.decorators import InjectSecretValue, InjectKeywordedSecretValues
from secret_lease_manager.domain import Lease, Mode, NO_LEASE, RequestedSecret
from secret_lease_manager.events import EventKind, \
    SecretLeaseEvent, \
    LeaseListener, \
    LeaseErrorListener, \
    LeaseListenerAdapter, \
    SecretLeaseEventPublisher
from secret_lease_manager.exceptions import SecretLeaseError, \
    SchedulerStateError, \
    SecretNotFoundError, \
    NoActiveSecretVersion, \
    LeaseNotFoundError, \
    BackendError
from secret_lease_manager.flatten import flatten
from secret_lease_manager.managed import ManagedSecret, SecretAccessor
from secret_lease_manager.property_source import LeaseAwareSecretPropertySource, \
    noop_transformer, \
    prefix_transformer
from secret_lease_manager.scheduler import LeaseRenewalScheduler
from secret_lease_manager.strategies import drop_on_error, retain_on_error, retain_on_transient_error
from ._version import __version__

__all__ = ["__version__",
           "SecretBackendClient",
           "SecretResponse",
           "InMemorySecretBackend",
           "GCPSecretManagerBackend",
           "VaultSecretBackend",
           "SchedulerSettings",
           "InjectSecretValue",
           "InjectKeywordedSecretValues",
           "Lease",
           "Mode",
           "NO_LEASE",
           "RequestedSecret",
           "EventKind",
           "SecretLeaseEvent",
           "LeaseListener",
           "LeaseErrorListener",
           "LeaseListenerAdapter",
           "SecretLeaseEventPublisher",
           "SecretLeaseError",
           "SchedulerStateError",
           "SecretNotFoundError",
           "NoActiveSecretVersion",
           "LeaseNotFoundError",
           "BackendError",
           "flatten",
           "ManagedSecret",
           "SecretAccessor",
           "LeaseAwareSecretPropertySource",
           "noop_transformer",
           "prefix_transformer",
           "LeaseRenewalScheduler",
           "drop_on_error",
           "retain_on_error",
           "retain_on_transient_error"]
