# -*- coding: utf-8 -*-
"""Value types shared by the scheduler, the backends and the consumers."""

from dataclasses import dataclass
from enum import Enum


class Mode(Enum):
    """How the scheduler keeps a requested secret alive."""

    # read once, never renewed; leases with a duration still expire
    ONCE = "once"
    # renew the lease, re-read when the lease can no longer be renewed
    RENEW = "renew"
    # every due time fetches an entirely new secret
    ROTATE = "rotate"


@dataclass(frozen=True)
class Lease:
    lease_id: str
    duration: float
    renewable: bool

    @classmethod
    def of(cls, lease_id, duration, renewable=False):
        assert lease_id is not None, "Lease id must not be None"
        assert duration >= 0, f"Lease duration must not be negative was {duration}"
        return cls(lease_id=lease_id, duration=float(duration), renewable=bool(renewable))

    @staticmethod
    def none():
        """The sentinel used for static, non leased secrets."""
        return NO_LEASE

    def is_none(self):
        return self is NO_LEASE

    def has_duration(self):
        return self.duration > 0

    def is_rotating_generic_lease(self):
        """A lease without id but with a ttl, e.g. a key value secret with a ttl."""
        return not self.renewable and self.has_duration() and not self.lease_id


# compared by identity, a Lease("", 0.0, False) built elsewhere is not "no lease"
NO_LEASE = Lease(lease_id="", duration=0.0, renewable=False)


@dataclass(frozen=True)
class RequestedSecret:
    path: str
    mode: Mode = Mode.RENEW

    def __post_init__(self):
        assert self.path, "Path must not be empty"
        assert not self.path.startswith("/"), f"Path {self.path} must not start with a slash (/)"
        assert isinstance(self.mode, Mode), f"Mode must be a Mode was {self.mode!r}"

    @classmethod
    def once(cls, path):
        return cls(path, Mode.ONCE)

    @classmethod
    def renewable(cls, path):
        return cls(path, Mode.RENEW)

    @classmethod
    def rotating(cls, path):
        return cls(path, Mode.ROTATE)
