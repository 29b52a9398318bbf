"""Docker container lifecycle for the query runner.

The search node and the query cluster run as Docker containers on a
private network, driven through the docker CLI. This module handles:

- Starting and removing containers and networks
- Polling helpers for health checks
- Docker availability detection
"""

from __future__ import annotations

import shutil
import subprocess
import time
from collections.abc import Callable
from dataclasses import dataclass, field

from floe_elasticsearch.errors import ContainerError
from floe_elasticsearch.observability import get_logger

# Default polling configuration
DEFAULT_POLL_INTERVAL = 1.0
DEFAULT_POLL_TIMEOUT = 120.0


def wait_for_condition(
    condition: Callable[[], bool],
    timeout: float = DEFAULT_POLL_TIMEOUT,
    poll_interval: float = DEFAULT_POLL_INTERVAL,
    description: str = "condition",
) -> bool:
    """Wait for a condition to become True using polling.

    Args:
        condition: Callable that returns True when the condition is met.
            Exceptions raised while polling count as "not yet".
        timeout: Maximum time to wait in seconds.
        poll_interval: Time between polls in seconds.
        description: Human-readable description for logging.

    Returns:
        True if condition was met within timeout, False otherwise.

    Example:
        >>> wait_for_condition(node.is_healthy, timeout=60, description="search node")
        True
    """
    logger = get_logger()
    start_time = time.time()
    while time.time() - start_time < timeout:
        try:
            if condition():
                return True
        except Exception as exc:
            # Service may not be ready yet
            logger.debug("poll_not_ready", description=description, error=str(exc))
        time.sleep(poll_interval)
    logger.warning("poll_timed_out", description=description, timeout=timeout)
    return False


def is_docker_available() -> bool:
    """Check that the docker CLI exists and the daemon answers."""
    if shutil.which("docker") is None:
        return False
    try:
        result = subprocess.run(
            ["docker", "info", "--format", "{{.ServerVersion}}"],
            capture_output=True,
            text=True,
            timeout=10,
        )
    except (OSError, subprocess.TimeoutExpired):
        return False
    return result.returncode == 0


def run_docker(*args: str, container: str | None = None) -> str:
    """Run a docker CLI command.

    Args:
        *args: Arguments after ``docker``.
        container: Container name for error reporting.

    Returns:
        Standard output, stripped.

    Raises:
        ContainerError: If the command cannot run or exits non-zero.
    """
    cmd = ["docker", *args]
    try:
        result = subprocess.run(cmd, capture_output=True, text=True, check=False)
    except OSError as exc:
        raise ContainerError(
            f"Cannot run docker: {exc}",
            container=container,
        ) from exc
    if result.returncode != 0:
        raise ContainerError(
            f"docker {args[0]} failed with exit code {result.returncode}",
            container=container,
            stderr=result.stderr.strip(),
        )
    return result.stdout.strip()


@dataclass
class DockerNetwork:
    """A user-defined bridge network shared by the containers."""

    name: str
    created: bool = False

    def create(self) -> None:
        run_docker("network", "create", self.name)
        self.created = True
        get_logger().debug("network_created", network=self.name)

    def remove(self) -> None:
        if not self.created:
            return
        run_docker("network", "rm", self.name)
        self.created = False

    def __enter__(self) -> DockerNetwork:
        self.create()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.remove()


@dataclass
class DockerContainer:
    """A detached container started with ``docker run``.

    Attributes:
        name: Container name, also its hostname on the network.
        image: Image reference.
        network: Network to attach to.
        ports: Host port -> container port.
        env: Environment variables.
        volumes: Host path -> container path mounts (read-only).
        command: Optional command override.
    """

    name: str
    image: str
    network: str | None = None
    ports: dict[int, int] = field(default_factory=dict)
    env: dict[str, str] = field(default_factory=dict)
    volumes: dict[str, str] = field(default_factory=dict)
    command: list[str] = field(default_factory=list)
    container_id: str | None = None

    def run_args(self) -> list[str]:
        """Arguments of the ``docker run`` invocation."""
        args = ["run", "-d", "--name", self.name, "--hostname", self.name]
        if self.network:
            args += ["--network", self.network]
        for host_port, container_port in sorted(self.ports.items()):
            args += ["-p", f"{host_port}:{container_port}"]
        for key, value in sorted(self.env.items()):
            args += ["-e", f"{key}={value}"]
        for host_path, container_path in sorted(self.volumes.items()):
            args += ["-v", f"{host_path}:{container_path}:ro"]
        args.append(self.image)
        args += self.command
        return args

    def start(self) -> None:
        """Start the container.

        Raises:
            ContainerError: If docker cannot start it.
        """
        try:
            self.container_id = run_docker(*self.run_args(), container=self.name)
        except ContainerError:
            # docker run creates the container before starting it.
            self._remove_created()
            raise
        get_logger().info("container_started", container=self.name, image=self.image)

    def stop(self) -> None:
        """Remove the container, whether running or not."""
        if self.container_id is None:
            return
        run_docker("rm", "-f", self.name, container=self.name)
        self.container_id = None
        get_logger().info("container_removed", container=self.name)

    def _remove_created(self) -> None:
        try:
            run_docker("rm", "-f", self.name, container=self.name)
        except ContainerError as exc:
            if "No such container" not in (exc.stderr or ""):
                get_logger().warning(
                    "container_cleanup_failed", container=self.name, error=exc.stderr or exc.message
                )
            return
        get_logger().info("container_removed", container=self.name)

    def logs(self, tail: int = 200) -> str:
        """Get the container's recent log output."""
        cmd = ["docker", "logs", "--tail", str(tail), self.name]
        result = subprocess.run(cmd, capture_output=True, text=True)
        return result.stdout + result.stderr
