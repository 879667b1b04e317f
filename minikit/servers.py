"""Lifecycle management for the components of a local cluster."""

from __future__ import annotations

import sys
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable, Iterator
from typing import TextIO

Routine = Callable[[], object]


class ServerNotFoundError(LookupError):
    """Raised when no server has the requested name."""


class Server(ABC):
    """A component whose lifecycle can be managed.

    ``name`` is a unique identifier for the component.
    """

    name: str

    @abstractmethod
    def start(self) -> None:
        """Start the component immediately."""

    @abstractmethod
    def stop(self) -> None:
        """Begin stopping the component."""


def until(
    routine: Routine,
    output: TextIO,
    name: str,
    interval: float,
    stop_event: threading.Event,
) -> None:
    """Run ``routine`` again and again until ``stop_event`` is set.

    Each exit is reported on ``output``; ``interval`` seconds pass between runs.
    """
    while not stop_event.is_set():
        try:
            routine()
        except Exception as exc:  # noqa: BLE001 - any failure is reported and retried
            output.write(f"{name}: Exit with error: {exc}\n")
        else:
            output.write(f"{name}: Exited with no errors.\n")
        output.flush()
        stop_event.wait(interval)


class SimpleServer(Server):
    """A server that keeps restarting one routine in a background thread."""

    def __init__(
        self,
        name: str,
        interval: float,
        routine: Routine,
        output: TextIO | None = None,
    ) -> None:
        self.name = name
        self.interval = interval
        self._routine = routine
        self._output = output
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        """Run the routine in a background thread until stopped."""
        output = self._output if self._output is not None else sys.stdout
        self._thread = threading.Thread(
            target=until,
            args=(self._routine, output, self.name, self.interval, self._stop_event),
            name=self.name,
            daemon=True,
        )
        self._thread.start()

    def stop(self) -> None:
        """Stop restarting the routine; a running routine is not interrupted."""
        if self._stop_event.is_set():
            raise RuntimeError(f"server '{self.name}' already stopped")
        self._stop_event.set()


class Servers:
    """An ordered collection of servers managed together."""

    def __init__(self, servers: Iterable[Server] = ()) -> None:
        self._servers: list[Server] = list(servers)

    def __iter__(self) -> Iterator[Server]:
        return iter(self._servers)

    def __len__(self) -> int:
        return len(self._servers)

    def add(self, server: Server) -> None:
        """Append ``server`` to the collection."""
        self._servers.append(server)

    def get(self, name: str) -> Server:
        """Return the server called ``name``."""
        for server in self._servers:
            if server.name == name:
                return server
        raise ServerNotFoundError(f"server '{name}' does not exist")

    def start_all(self) -> None:
        """Start every server, first to last."""
        for server in self._servers:
            print(f"Starting {server.name}...")
            server.start()

    def stop_all(self) -> None:
        """Stop every server, last to first."""
        for server in reversed(self._servers):
            print(f"Stopping {server.name}...")
            server.stop()

    def start(self, name: str) -> None:
        """Start the server called ``name``."""
        self.get(name).start()

    def stop(self, name: str) -> None:
        """Stop the server called ``name``."""
        self.get(name).stop()