# -*- coding: utf-8 -*-
"""Strategies deciding whether a lease is dropped after a failed renewal or rotation.

A strategy is any callable taking the error and returning True when the
lease should be dropped (published as expired and untracked) right away.
Retained leases are retried until the failure budget is exhausted.
"""

from .exceptions import BackendError


def drop_on_error(error):
    return True


def retain_on_error(error):
    return False


def retain_on_transient_error(error):
    """Retain when the error, or any error it was raised from, is an I/O or transient backend error."""
    inspect = error
    while inspect is not None:
        if isinstance(inspect, OSError):
            return False
        if isinstance(inspect, BackendError) and inspect.transient:
            return False
        inspect = inspect.__cause__ or inspect.__context__
    return True
