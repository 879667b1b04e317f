"""Readiness checks for cluster services."""

from __future__ import annotations

import sys
from dataclasses import dataclass, field

NOT_READY_MSG = "Waiting, endpoint for service is not ready yet...\n"


class EndpointNotReadyError(Exception):
    """Raised when a service endpoint is not ready yet."""


@dataclass(frozen=True)
class EndpointAddress:
    """One address behind an endpoint."""

    ip: str


@dataclass
class EndpointSubset:
    """A group of ready and not-ready addresses."""

    addresses: list[EndpointAddress] = field(default_factory=list)
    not_ready_addresses: list[EndpointAddress] = field(default_factory=list)


@dataclass
class Endpoints:
    """The endpoints object associated with a service."""

    subsets: list[EndpointSubset] = field(default_factory=list)


def _not_ready() -> EndpointNotReadyError:
    sys.stderr.write(NOT_READY_MSG)
    return EndpointNotReadyError("Endpoint for service is not ready yet")


def check_endpoint_ready(endpoint: Endpoints) -> None:
    """Raise unless the endpoint has subsets and none has not-ready addresses."""
    if not endpoint.subsets:
        raise _not_ready()
    if any(subset.not_ready_addresses for subset in endpoint.subsets):
        raise _not_ready()


def to_https(url: str) -> str:
    """Turn the first ``http`` in ``url`` into ``https``."""
    return url.replace("http", "https", 1)