"""
Container runtime control through the docker CLI.

Containers bound to a volume are stopped before the volume is read or
replaced and started again afterwards. The controller usually runs in a
container itself, so it must never stop its own container.
"""

import logging
import socket
import subprocess
from dataclasses import dataclass
from typing import List, Optional

from volume_backup.errors import BackupError, ErrorKind


logger = logging.getLogger(__name__)

# Length of the ids printed by `docker ps -q`
SHORT_ID_LENGTH = 12


class ContainerError(BackupError):
    """Raised when a docker command fails."""
    kind = ErrorKind.CONTAINER_CONTROL


@dataclass(frozen=True)
class SelfIdentity:
    """Identity of the container this process runs in."""
    container_id: str

    def matches(self, container_id: str) -> bool:
        """
        Docker lists short ids (the first 12 characters of the full id), and
        the hostname inside a container is that same short id. A configured
        full id therefore matches its short form; shorter values only match
        exactly.
        """
        if not self.container_id or not container_id:
            return False
        if container_id == self.container_id:
            return True
        return len(container_id) >= SHORT_ID_LENGTH and self.container_id.startswith(container_id)


def resolve_self_identity(override: Optional[str] = None) -> SelfIdentity:
    """
    Resolve the controller's own container id once at startup.

    Args:
        override: Explicit container id (SELF_CONTAINER_ID), if configured

    Returns:
        SelfIdentity wrapping the override or the hostname
    """
    container_id = (override or socket.gethostname()).strip()
    logger.debug(f"Resolved self identity: {container_id}")
    return SelfIdentity(container_id)


class DockerRuntime:
    """
    Stops and starts containers by volume using the docker CLI.
    """

    def __init__(self, self_identity: SelfIdentity, docker_binary: str = 'docker', timeout: int = 300):
        """
        Initialize docker runtime.

        Args:
            self_identity: Identity excluded from every stop call
            docker_binary: Name or path of the docker executable
            timeout: Seconds to wait for any single docker command
        """
        self.self_identity = self_identity
        self.docker_binary = docker_binary
        self.timeout = timeout

    def _run(self, *args: str) -> str:
        command = [self.docker_binary, *args]
        try:
            result = subprocess.run(
                command,
                capture_output=True,
                text=True,
                timeout=self.timeout
            )
        except FileNotFoundError as e:
            raise ContainerError(f"Docker binary not found: {self.docker_binary}") from e
        except subprocess.TimeoutExpired as e:
            raise ContainerError(f"Command timed out after {self.timeout}s: {' '.join(command)}") from e

        if result.returncode != 0:
            raise ContainerError(
                f"Command failed ({result.returncode}): {' '.join(command)}: {result.stderr.strip()}"
            )
        return result.stdout

    def list_containers_using_volume(self, volume_name: str) -> List[str]:
        """List ids of running containers that mount ``volume_name``."""
        output = self._run('ps', '-q', '--filter', f'volume={volume_name}')
        return [line.strip() for line in output.splitlines() if line.strip()]

    def stop_containers_using_volume(self, volume_name: str) -> List[str]:
        """
        Stop every running container using a volume, except ourselves.

        Args:
            volume_name: Docker volume name

        Returns:
            Ids of the containers that were stopped, in stop order

        Raises:
            ContainerError: If listing or stopping fails. Containers stopped
                before the failure are started again before raising.
        """
        stopped = []

        for container_id in self.list_containers_using_volume(volume_name):
            if self.self_identity.matches(container_id):
                logger.debug(f"Skipping own container {container_id}")
                continue

            try:
                self._run('stop', container_id)
            except ContainerError:
                if stopped:
                    logger.warning(f"Stop failed for {container_id}, restarting {len(stopped)} stopped containers")
                    self.start_containers(stopped)
                raise

            logger.info(f"Stopped container {container_id} (volume: {volume_name})")
            stopped.append(container_id)

        return stopped

    def start_containers(self, container_ids: List[str]):
        """
        Start containers. Every id is attempted even if an earlier one fails.

        Raises:
            ContainerError: Naming every container that failed to start
        """
        failures = []

        for container_id in container_ids:
            try:
                self._run('start', container_id)
                logger.info(f"Started container {container_id}")
            except ContainerError as e:
                logger.error(f"Failed to start container {container_id}: {e}")
                failures.append(f"{container_id}: {e}")

        if failures:
            raise ContainerError(f"Failed to start containers: {'; '.join(failures)}")
