from .adapter import (
    ContainerNotFound,
    ContainerRuntimeAdapter,
    RuntimeAdapterError,
    RuntimeTimeout,
)
from .docker_runtime import DockerRuntimeAdapter
