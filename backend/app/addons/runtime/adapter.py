from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List, Optional

from ..domain.models import ContainerHandle, ContainerSpec, ContainerState


class RuntimeAdapterError(RuntimeError):
    """A container engine operation failed."""

    def __init__(self, message: str, *, operation: str, container_ref: Optional[str] = None):
        super().__init__(message)
        self.operation = operation
        self.container_ref = container_ref


class RuntimeTimeout(RuntimeAdapterError):
    """The engine did not answer within the configured timeout."""


class ContainerNotFound(RuntimeAdapterError):
    """The engine has no container for this reference (already removed)."""


class ContainerRuntimeAdapter(ABC):
    """
    Contract between the addon core and a container engine.

    Every method may block on engine I/O and must be bounded by the
    implementation's timeout. Failures raise RuntimeAdapterError or one of
    its subclasses; nothing is retried here.
    """

    @abstractmethod
    def create_and_start(self, spec: ContainerSpec) -> ContainerHandle:
        ...

    @abstractmethod
    def stop(self, container_ref: str) -> None:
        ...

    @abstractmethod
    def remove(self, container_ref: str) -> None:
        ...

    @abstractmethod
    def fetch_logs(self, container_ref: str, tail: int) -> List[str]:
        ...

    @abstractmethod
    def inspect_status(self, container_ref: str) -> ContainerState:
        ...

    def ping(self) -> bool:
        return True

    def close(self) -> None:
        return None
