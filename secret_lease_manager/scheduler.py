# -*- coding: utf-8 -*-
"""This module implements the lease renewal scheduler

The scheduler owns every requested secret and its current lease. Leases are
kept in a min-heap ordered by due time; a background thread sleeps until the
earliest due time (bounded by ``max_sleep_seconds``), then renews, rotates or
expires what is due and publishes the outcome as lease events.

Work on a single requested secret is serialised by a per entry lock, so a
removal racing with a renewal either waits for the renewal to finish or
makes the sweep skip the entry. Heap items carry the entry's schedule
generation; items made stale by a reschedule or a removal are dropped when
they surface.
"""

import heapq
import itertools
import logging
import threading
import time
import weakref

from .config import SchedulerSettings
from .domain import Mode, RequestedSecret
from .events import SecretLeaseEvent, SecretLeaseEventPublisher
from .exceptions import LeaseNotFoundError, SchedulerStateError, SecretNotFoundError
from .strategies import retain_on_error

STATUS_INITIAL = "initial"
STATUS_STARTED = "started"
STATUS_STOPPED = "stopped"


# we use a thread disconnected from class to ensure background thread
# references don't keep the scheduler it supports alive beyond its natural lifecycle

def _background_sweep_thread(scheduler_weak_ref, wakeup):
    """
    Main background thread driver loop for renewing leases
    :param scheduler_weak_ref: weak reference to the scheduler
    :param wakeup: event set when an earlier due time is scheduled or on stop
    :return: None
    """
    while True:
        # cleared before the status check and the sweep so that neither a
        # stop nor a schedule made meanwhile is missed
        wakeup.clear()
        scheduler = scheduler_weak_ref()

        if scheduler is None or not scheduler.is_running():
            break

        timeout = None
        try:
            scheduler.run_pending()
            timeout = scheduler.next_wait()
        except Exception:
            logging.getLogger(__name__).exception("While sweeping due leases")
            timeout = scheduler.settings.max_sleep_seconds
        # proactively delete reference
        # so the scheduler can be garbage collected during sleep
        del scheduler
        wakeup.wait(timeout)


class _ManagedLease:

    def __init__(self, requested_secret):
        self.requested_secret = requested_secret
        self.lease = None
        self.data = None
        self.issued_at = None
        self.due = None
        self.failures = 0
        self.generation = 0
        self.cancelled = False
        self.lock = threading.RLock()

    def __repr__(self):
        return f"_ManagedLease({self.requested_secret!r}, lease={self.lease!r}, due={self.due})"


class LeaseRenewalScheduler(SecretLeaseEventPublisher):
    """Keeps requested secrets alive by renewing or rotating their leases before expiry.

    Example::

        scheduler = LeaseRenewalScheduler(VaultSecretBackend(url=..., token=...))
        scheduler.add_lease_listener(listener)
        scheduler.request_rotating_secret("database/creds/readonly")
        scheduler.start()
        ...
        scheduler.stop()

    Secrets registered before :meth:`start` are read immediately and fail
    loudly, renewals only start once the scheduler is started. After
    :meth:`start`, failures are only reported through error events.

    Args:
        backend (SecretBackendClient): Client reading, renewing and revoking secrets.
        settings (SchedulerSettings, optional): Renewal timing and failure policy.
        lease_strategy (callable, optional): Called with the error of a failed
            renewal or rotation, returns True to drop the lease immediately.
            Defaults to :func:`~secret_lease_manager.strategies.retain_on_error`.
        clock (callable, optional): Monotonic clock in seconds.
    """

    def __init__(self, backend, settings=None, lease_strategy=None, clock=time.monotonic):
        super(LeaseRenewalScheduler, self).__init__()
        assert backend is not None, "Secret backend client must not be None"
        self._backend = backend
        self._settings = settings or SchedulerSettings()
        self._lease_strategy = lease_strategy or retain_on_error
        self._clock = clock
        self._lock = threading.Lock()
        self._entries = {}
        self._queue = []
        self._sequence = itertools.count()
        self._status = STATUS_INITIAL
        self._wakeup = threading.Event()
        self._thread = None

    @property
    def settings(self):
        return self._settings

    @property
    def backend(self):
        return self._backend

    def is_running(self):
        return self._status == STATUS_STARTED

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def start(self):
        with self._lock:
            if self._status == STATUS_STARTED:
                return
            if self._status == STATUS_STOPPED:
                raise SchedulerStateError("Scheduler is stopped and cannot be restarted")
            self._status = STATUS_STARTED
            t = threading.Thread(target=_background_sweep_thread,
                                 name=f"lease_sweep_{id(self):x}",
                                 args=[weakref.ref(self), self._wakeup])
            t.daemon = True
            self._thread = t
        t.start()
        logging.getLogger(__name__).info(f"Started lease renewal with {len(self._entries)} secrets")

    def stop(self):
        with self._lock:
            if self._status == STATUS_STOPPED:
                return
            self._status = STATUS_STOPPED
            thread = self._thread
            self._thread = None
        self._wakeup.set()

        if thread is not None and thread is not threading.current_thread():
            thread.join(self._settings.shutdown_timeout_seconds)
            if thread.is_alive():
                logging.getLogger(__name__).warning(
                    f"Lease sweep thread {thread.name} did not stop within "
                    f"{self._settings.shutdown_timeout_seconds} seconds")

        with self._lock:
            entries = list(self._entries.values())
            self._entries.clear()
            self._queue.clear()

        for entry in entries:
            self._release(entry, revoke=self._settings.revoke_on_shutdown,
                          announce=self._settings.revoke_on_shutdown)
        logging.getLogger(__name__).info(f"Stopped lease renewal released {len(entries)} secrets")

    # -------------------------------------------------------------------------
    # Registration
    # -------------------------------------------------------------------------

    def request_secret_once(self, path):
        return self._request(RequestedSecret.once(path))

    def request_renewable_secret(self, path):
        return self._request(RequestedSecret.renewable(path))

    def request_rotating_secret(self, path):
        return self._request(RequestedSecret.rotating(path))

    def _request(self, requested_secret):
        self.add_requested_secret(requested_secret)
        return requested_secret

    def add_requested_secret(self, requested_secret):
        """Registers ``requested_secret`` and reads it unless already registered.

        Returns:
            Lease: The current lease, ``NO_LEASE`` for static secrets, or None
            when the secret was not found or the read failed while running.

        Raises:
            SchedulerStateError: The scheduler was stopped.
            Exception: The read failure, when the scheduler is not started yet.
        """
        assert isinstance(requested_secret, RequestedSecret), "Expected a RequestedSecret"
        while True:
            with self._lock:
                if self._status == STATUS_STOPPED:
                    raise SchedulerStateError(
                        f"Scheduler is stopped, cannot add {requested_secret.path}")
                entry = self._entries.get(requested_secret)
                owner = entry is None
                if owner:
                    entry = _ManagedLease(requested_secret)
                    # uncontended, nobody else can see the entry yet
                    entry.lock.acquire()
                    self._entries[requested_secret] = entry

            if owner:
                try:
                    return self._register(entry)
                finally:
                    entry.lock.release()

            # wait for a registration in flight on another thread
            with entry.lock:
                if not entry.cancelled:
                    return entry.lease
            # that registration failed or the secret was removed meanwhile, read it ourselves

    def _register(self, entry):
        requested_secret = entry.requested_secret
        logging.getLogger(__name__).debug(
            f"Requesting secret {requested_secret.path} using {requested_secret.mode.name}")
        try:
            response = self._backend.read(requested_secret.path)
        except SecretNotFoundError:
            self._untrack(entry)
            logging.getLogger(__name__).warning(f"Secret {requested_secret.path} not found")
            self.publish(SecretLeaseEvent.not_found(requested_secret))
            return None
        except Exception as e:
            self._untrack(entry)
            started = self.is_running()
            self.publish(SecretLeaseEvent.failed(requested_secret, None, e))
            if not started:
                raise
            return None

        with self._lock:
            if entry.cancelled:
                return None
            self._apply_locked(entry, response.lease, response.data)

        lease = response.lease
        if requested_secret.mode is Mode.RENEW and lease.has_duration() and not lease.renewable:
            logging.getLogger(__name__).warning(
                f"Lease of {requested_secret.path} cannot be renewed and expires in {lease.duration} "
                f"seconds, request it with Mode.ROTATE to read a new secret before then")
        self.publish(SecretLeaseEvent.created(requested_secret, lease, response.data))
        return lease

    def remove_lease_for_secret(self, requested_secret):
        """Stops managing ``requested_secret``, revoking its lease when configured.

        Revocation failures are logged and otherwise ignored. Unknown secrets
        are ignored.
        """
        with self._lock:
            entry = self._entries.get(requested_secret)
        if entry is None:
            return
        self._release(entry, revoke=self._settings.revoke_on_remove, announce=True)

    def _release(self, entry, revoke, announce):
        with entry.lock:
            with self._lock:
                if entry.cancelled:
                    return
                self._cancel_locked(entry)
            lease = entry.lease
            if lease is None or not announce:
                return

            requested_secret = entry.requested_secret
            self.publish(SecretLeaseEvent.before_revocation(requested_secret, lease))
            if not revoke or not lease.lease_id:
                return
            try:
                self._backend.revoke(lease.lease_id)
            except Exception:
                logging.getLogger(__name__).exception(
                    f"Cannot revoke lease {lease.lease_id} of {requested_secret.path}")
                return
            self.publish(SecretLeaseEvent.after_revocation(requested_secret, lease))

    # -------------------------------------------------------------------------
    # Inspection
    # -------------------------------------------------------------------------

    def get_lease(self, requested_secret):
        with self._lock:
            entry = self._entries.get(requested_secret)
            return entry.lease if entry is not None else None

    def get_secret_data(self, requested_secret):
        with self._lock:
            entry = self._entries.get(requested_secret)
            if entry is None or entry.data is None:
                return None
            return dict(entry.data)

    def requested_secrets(self):
        with self._lock:
            return [secret for secret, entry in self._entries.items() if entry.lease is not None]

    def next_wait(self):
        """Seconds until the earliest due lease, bounded by the sleep settings."""
        with self._lock:
            self._discard_stale_locked()
            if not self._queue:
                return self._settings.max_sleep_seconds
            wait = self._queue[0][0] - self._clock()
        if wait <= 0:
            return 0.0
        return min(max(wait, self._settings.min_sleep_seconds), self._settings.max_sleep_seconds)

    # -------------------------------------------------------------------------
    # Sweep
    # -------------------------------------------------------------------------

    def run_pending(self, now=None):
        """Processes every lease due at ``now`` (defaults to the clock).

        Returns:
            int: The number of leases processed.
        """
        if now is None:
            now = self._clock()
        processed = 0
        while True:
            with self._lock:
                item = self._pop_due_locked(now)
            if item is None:
                return processed
            generation, entry = item
            processed += 1
            try:
                self._process(entry, generation)
            except Exception:
                logging.getLogger(__name__).exception(
                    f"While processing lease of {entry.requested_secret.path}")

    def _process(self, entry, generation):
        with entry.lock:
            with self._lock:
                if entry.cancelled or entry.generation != generation:
                    return

            lease = entry.lease
            mode = entry.requested_secret.mode
            if mode is Mode.ROTATE:
                logging.getLogger(__name__).info(f"Rotating secret {entry.requested_secret.path}")
                self._reread(entry, rotate=True)
            elif mode is Mode.RENEW and lease.renewable:
                self._renew(entry)
            else:
                self._expire(entry)

    def _renew(self, entry):
        requested_secret = entry.requested_secret
        lease = entry.lease
        logging.getLogger(__name__).debug(f"Renewing lease {lease.lease_id}")
        try:
            renewed = self._backend.renew(lease.lease_id, requested_secret.path)
        except LeaseNotFoundError:
            logging.getLogger(__name__).info(
                f"Lease {lease.lease_id} is gone, requesting {requested_secret.path} again")
            self._reread(entry, rotate=False)
            return
        except Exception as e:
            self._on_failure(entry, e)
            return

        if renewed.duration <= self._settings.expiry_threshold_seconds:
            logging.getLogger(__name__).info(
                f"Lease {lease.lease_id} renewed for {renewed.duration} seconds only, "
                f"requesting {requested_secret.path} again")
            self._reread(entry, rotate=False)
            return

        with self._lock:
            if not self._is_current_locked(entry):
                return
            self._apply_locked(entry, renewed, entry.data)
        self.publish(SecretLeaseEvent.renewed(requested_secret, renewed))

    def _reread(self, entry, rotate):
        requested_secret = entry.requested_secret
        previous = entry.lease
        try:
            response = self._backend.read(requested_secret.path)
        except Exception as e:
            self._on_failure(entry, e)
            return

        with self._lock:
            if not self._is_current_locked(entry):
                return
            self._apply_locked(entry, response.lease, response.data)

        if rotate:
            self.publish(SecretLeaseEvent.rotated(requested_secret, previous, response.lease,
                                                  response.data))
        else:
            self.publish(SecretLeaseEvent.created(requested_secret, response.lease, response.data))

    def _on_failure(self, entry, error):
        requested_secret = entry.requested_secret
        entry.failures += 1
        self.publish(SecretLeaseEvent.failed(requested_secret, entry.lease, error))

        if self._lease_strategy(error):
            logging.getLogger(__name__).warning(
                f"Dropping lease of {requested_secret.path} after error {error}")
            self._expire(entry)
            return
        if entry.failures >= self._settings.max_renewal_failures:
            logging.getLogger(__name__).warning(
                f"Dropping lease of {requested_secret.path} after {entry.failures} failures")
            self._expire(entry)
            return

        delay = self._settings.retry_delay(entry.failures)
        if requested_secret.mode is Mode.RENEW:
            # a renewal is never attempted after the lease ran out
            remaining = self._remaining(entry)
            if remaining is not None:
                if remaining <= 0:
                    logging.getLogger(__name__).warning(
                        f"Lease of {requested_secret.path} ran out after {entry.failures} failures")
                    self._expire(entry)
                    return
                delay = min(delay, remaining)
        with self._lock:
            if self._is_current_locked(entry):
                self._schedule_locked(entry, delay)
        logging.getLogger(__name__).debug(
            f"Retrying {requested_secret.path} in {delay} seconds after failure {entry.failures}")

    def _remaining(self, entry):
        lease = entry.lease
        if lease is None or not lease.has_duration() or entry.issued_at is None:
            return None
        return entry.issued_at + lease.duration - self._clock()

    def _expire(self, entry):
        with self._lock:
            if not self._is_current_locked(entry):
                return
            self._cancel_locked(entry)
        logging.getLogger(__name__).info(f"Lease of {entry.requested_secret.path} expired")
        self.publish(SecretLeaseEvent.expired(entry.requested_secret, entry.lease))

    # -------------------------------------------------------------------------
    # Helpers, callers hold self._lock
    # -------------------------------------------------------------------------

    def _apply_locked(self, entry, lease, data):
        entry.lease = lease
        entry.data = dict(data)
        entry.issued_at = self._clock()
        entry.failures = 0
        delay = self._initial_delay(entry.requested_secret, lease)
        if delay is None:
            # static secret or nothing to renew, keep tracking without a schedule
            entry.generation += 1
            entry.due = None
            return
        self._schedule_locked(entry, delay)

    def _initial_delay(self, requested_secret, lease):
        if lease.is_none() or not lease.has_duration():
            return None
        mode = requested_secret.mode
        if mode is Mode.ROTATE or (mode is Mode.RENEW and lease.renewable):
            return self._settings.due_offset(lease.duration)
        # only tracked to tell listeners when it expires
        return lease.duration

    def _schedule_locked(self, entry, delay):
        entry.generation += 1
        entry.due = self._clock() + delay
        earliest = not self._queue or entry.due < self._queue[0][0]
        heapq.heappush(self._queue, (entry.due, next(self._sequence), entry.generation, entry))
        logging.getLogger(__name__).debug(
            f"Scheduled {entry.requested_secret.path} lease {entry.lease.lease_id} in {delay} seconds")
        if earliest:
            self._wakeup.set()

    def _pop_due_locked(self, now):
        while self._queue and self._queue[0][0] <= now:
            due, _, generation, entry = heapq.heappop(self._queue)
            if entry.cancelled or entry.generation != generation:
                continue
            entry.due = None
            return generation, entry
        return None

    def _discard_stale_locked(self):
        while self._queue:
            _, _, generation, entry = self._queue[0]
            if not entry.cancelled and entry.generation == generation:
                return
            heapq.heappop(self._queue)

    def _is_current_locked(self, entry):
        return not entry.cancelled and self._entries.get(entry.requested_secret) is entry

    def _cancel_locked(self, entry):
        entry.cancelled = True
        entry.generation += 1
        entry.due = None
        if self._entries.get(entry.requested_secret) is entry:
            del self._entries[entry.requested_secret]

    def _untrack(self, entry):
        with self._lock:
            self._cancel_locked(entry)
