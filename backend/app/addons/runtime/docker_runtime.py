from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Iterator, List, Optional, TypeVar

import docker
import requests
from docker.errors import APIError, DockerException, ImageNotFound, NotFound

from ...config import Settings
from ..domain.models import ContainerHandle, ContainerSpec, ContainerState
from .adapter import ContainerNotFound, ContainerRuntimeAdapter, RuntimeAdapterError, RuntimeTimeout

logger = logging.getLogger("addonhost.runtime.docker")

T = TypeVar("T")

ADDON_LABEL = "addonhost.addon"


class DockerRuntimeAdapter(ContainerRuntimeAdapter):
    """
    Runs addon containers on a Docker engine through the Docker SDK.

    The client is created on first use so that constructing the adapter never
    touches the engine (the SDK negotiates the API version on connect).
    """

    def __init__(self, settings: Settings, client: Optional[docker.DockerClient] = None):
        self.settings = settings
        self._client = client
        self._client_lock = threading.Lock()

    # ----------------------------
    # Client + error mapping
    # ----------------------------

    @property
    def client(self) -> docker.DockerClient:
        if self._client is None:
            with self._client_lock:
                if self._client is None:
                    logger.info("Connecting to docker engine at %s", self.settings.docker_host)
                    self._client = docker.DockerClient(
                        base_url=self.settings.docker_host,
                        timeout=int(self.settings.engine_timeout),
                    )
        return self._client

    def _engine_call(self, operation: str, container_ref: Optional[str], fn: Callable[[], T]) -> T:
        try:
            return fn()
        except ImageNotFound as e:
            raise RuntimeAdapterError(
                f"Image not found: {e.explanation or e}", operation=operation, container_ref=container_ref
            ) from e
        except NotFound as e:
            if container_ref is None:
                # nothing to look up yet: the missing thing is the image or a referenced resource
                raise RuntimeAdapterError(
                    f"Image or resource not found: {e.explanation or e}", operation=operation
                ) from e
            raise ContainerNotFound(
                f"Container not found: {container_ref}", operation=operation, container_ref=container_ref
            ) from e
        except requests.exceptions.Timeout as e:
            raise RuntimeTimeout(
                f"Docker engine timed out after {self.settings.engine_timeout}s",
                operation=operation,
                container_ref=container_ref,
            ) from e
        except APIError as e:
            raise RuntimeAdapterError(
                f"Docker API error: {e.explanation or e}", operation=operation, container_ref=container_ref
            ) from e
        except (DockerException, requests.exceptions.ConnectionError) as e:
            raise RuntimeAdapterError(
                f"Docker engine unavailable: {e}", operation=operation, container_ref=container_ref
            ) from e

    def container_name(self, addon_id: str) -> str:
        return f"{self.settings.container_prefix}{addon_id[:12]}"

    def _uses_bridge(self) -> bool:
        return self.settings.network == "bridge"

    # ----------------------------
    # create + start
    # ----------------------------

    def create_and_start(self, spec: ContainerSpec) -> ContainerHandle:
        name = self.container_name(spec.addon_id)
        port_key = f"{spec.port}/tcp"

        environment = dict(spec.environment)
        environment.setdefault("ADDON_ID", spec.addon_id)
        environment["PORT"] = str(spec.port)

        kwargs = dict(
            name=name,
            environment=environment,
            labels={
                ADDON_LABEL: "true",
                f"{ADDON_LABEL}.id": spec.addon_id,
                f"{ADDON_LABEL}.owner": spec.owner_id,
            },
            mem_limit=self.settings.memory_limit,
            cpu_period=100000,
            cpu_quota=self.settings.cpu_quota,
            restart_policy={"Name": "unless-stopped"},
        )
        if self._uses_bridge():
            # engine picks a free host port, bound to loopback only
            kwargs["ports"] = {port_key: ("127.0.0.1", None)}
        else:
            kwargs["network"] = self.settings.network

        logger.info("Creating container %s from image %s", name, spec.image)
        try:
            container = self._engine_call("create", None, lambda: self._create(spec.image, kwargs))
        except RuntimeAdapterError as e:
            # the engine may have registered the name before failing
            if not self._discard(name):
                e.container_ref = name
            raise
        ref = container.id

        try:
            self._engine_call("start", ref, container.start)

            if self._uses_bridge():
                host_port = self._published_port(container, port_key)
                endpoint = f"http://127.0.0.1:{host_port}"
            else:
                endpoint = f"http://{name}:{spec.port}"

            if self.settings.health_timeout > 0 and not self.wait_for_health(endpoint):
                raise RuntimeAdapterError(
                    f"Addon did not become healthy within {self.settings.health_timeout}s",
                    operation="create",
                    container_ref=ref,
                )
        except RuntimeAdapterError as e:
            if self._discard(ref):
                e.container_ref = None
            else:
                e.container_ref = ref
            raise

        logger.info("Container %s started (%s) at %s", name, ref[:12], endpoint)
        return ContainerHandle(container_ref=ref, internal_endpoint=endpoint, container_name=name)

    def _create(self, image: str, kwargs: dict):
        try:
            return self.client.containers.create(image, **kwargs)
        except ImageNotFound:
            logger.info("Image %s not present, pulling", image)
            self.client.images.pull(image)
            return self.client.containers.create(image, **kwargs)

    def _published_port(self, container, port_key: str) -> str:
        def lookup() -> Optional[str]:
            container.reload()
            bindings = (container.attrs.get("NetworkSettings") or {}).get("Ports") or {}
            for binding in bindings.get(port_key) or []:
                if binding.get("HostPort"):
                    return binding["HostPort"]
            return None

        host_port = self._engine_call("create", container.id, lookup)
        if not host_port:
            raise RuntimeAdapterError(
                f"No host port published for {port_key}", operation="create", container_ref=container.id
            )
        return host_port

    def wait_for_health(self, endpoint: str) -> bool:
        url = f"{endpoint}/health"
        deadline = time.monotonic() + self.settings.health_timeout
        attempt = 0
        logger.info("Waiting for health check at %s", url)

        while True:
            attempt += 1
            try:
                resp = requests.get(url, timeout=min(5.0, self.settings.health_timeout))
                if 200 <= resp.status_code < 300:
                    logger.info("Health check passed on attempt %d", attempt)
                    return True
            except requests.RequestException:
                # container may still be booting
                pass

            if time.monotonic() + self.settings.health_interval > deadline:
                break
            time.sleep(self.settings.health_interval)

        logger.error("Health check failed after %d attempts: %s", attempt, url)
        return False

    def _discard(self, container_ref: str) -> bool:
        try:
            self.remove(container_ref)
        except ContainerNotFound:
            return True
        except RuntimeAdapterError as e:
            logger.warning("Failed to discard container %s: %s", container_ref[:12], e)
            return False
        return True

    # ----------------------------
    # stop / remove
    # ----------------------------

    def stop(self, container_ref: str) -> None:
        logger.info("Stopping container %s", container_ref[:12])

        def do_stop() -> None:
            container = self.client.containers.get(container_ref)
            # the engine answers 304 for an already stopped container, which is not an error
            container.stop(timeout=self.settings.stop_grace_seconds)

        self._engine_call("stop", container_ref, do_stop)
        logger.info("Container stopped: %s", container_ref[:12])

    def remove(self, container_ref: str) -> None:
        logger.info("Removing container %s", container_ref[:12])

        def do_remove() -> None:
            container = self.client.containers.get(container_ref)
            container.remove(force=True)

        self._engine_call("remove", container_ref, do_remove)
        logger.info("Container removed: %s", container_ref[:12])

    # ----------------------------
    # logs / inspect
    # ----------------------------

    def fetch_logs(self, container_ref: str, tail: int) -> List[str]:
        def do_fetch() -> bytes:
            container = self.client.containers.get(container_ref)
            return container.logs(stdout=True, stderr=True, tail=tail, timestamps=True)

        raw = self._engine_call("logs", container_ref, do_fetch)
        if isinstance(raw, (bytes, bytearray)):
            text = raw.decode("utf-8", errors="replace")
        else:
            text = str(raw)
        return list(_split_lines(text))

    def inspect_status(self, container_ref: str) -> ContainerState:
        try:
            container = self._engine_call(
                "inspect", container_ref, lambda: self.client.containers.get(container_ref)
            )
        except ContainerNotFound:
            return ContainerState.NOT_FOUND

        try:
            return ContainerState(container.status)
        except ValueError:
            return ContainerState.UNKNOWN

    def ping(self) -> bool:
        try:
            return bool(self._engine_call("ping", None, lambda: self.client.ping()))
        except RuntimeAdapterError as e:
            logger.warning("Docker engine ping failed: %s", e)
            return False

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None


def _split_lines(text: str) -> Iterator[str]:
    for line in text.splitlines():
        if line.strip():
            yield line
