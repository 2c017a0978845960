"""
Restore executor - replaces volume data with the contents of a backup.

Workflow:
1. Resolve the artifact ("latest" or a literal name)
2. Download and extract the bundle
3. Resolve the volumes to restore ("all" or a comma separated list)
4. Take a safety backup of the current state
5. For each volume: stop containers, replace the data, start containers
6. Remove the temp workspace
"""

import logging
import os
import posixpath
import shutil
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List

from volume_backup.errors import BackupError, ConfigurationError, ErrorKind
from .compression import decompress_archive
from .docker import DockerRuntime
from .naming import ARTIFACT_GLOB, ARTIFACT_SUFFIX
from .transport import Transport


logger = logging.getLogger(__name__)

LATEST = 'latest'
ALL_VOLUMES = 'all'


class RestoreError(BackupError):
    """Raised when a restore cannot proceed or a volume failed to restore."""
    kind = ErrorKind.ARCHIVE


def parse_volume_selector(selector: str) -> List[str]:
    """Split a comma separated volume list, dropping blanks."""
    return [name.strip() for name in selector.split(',') if name.strip()]


def list_bundle_volumes(extract_dir: str) -> List[str]:
    """Volume names of the per-volume archives in an extracted bundle, in listing order."""
    with os.scandir(extract_dir) as entries:
        return [entry.name[:-len(ARTIFACT_SUFFIX)] for entry in entries
                if entry.is_file() and entry.name.endswith(ARTIFACT_SUFFIX)]


def replace_directory_contents(target_dir: str, source_dir: str):
    """
    Remove every child of ``target_dir`` and move the children of
    ``source_dir`` into it. The target directory itself is kept since it is
    a mount point.
    """
    target = Path(target_dir)
    for child in target.iterdir():
        if child.is_dir() and not child.is_symlink():
            shutil.rmtree(child)
        else:
            child.unlink()

    for child in Path(source_dir).iterdir():
        shutil.move(str(child), str(target / child.name))


class RestoreExecutor:
    """
    Orchestrates the complete restore workflow.
    """

    def __init__(
        self,
        transport: Transport,
        runtime: DockerRuntime,
        remote_directory: str,
        volumes_root: str,
        temp_dir: str,
        safety_backup: Callable[[], Any]
    ):
        """
        Initialize restore executor.

        Args:
            transport: Transport to the backup target
            runtime: Container runtime used to quiesce volumes
            remote_directory: Remote directory holding the artifacts
            volumes_root: Directory whose subdirectories are the volume mounts
            temp_dir: Temp workspace owned by this restore
            safety_backup: Runs one full backup cycle before data is replaced
        """
        self.transport = transport
        self.runtime = runtime
        self.remote_directory = remote_directory
        self.volumes_root = volumes_root
        self.temp_dir = temp_dir
        self.safety_backup = safety_backup
        self.logs = []

    def execute(self, backup_selector: str = LATEST, volume_selector: str = ALL_VOLUMES) -> Dict[str, Any]:
        """
        Restore volumes from a backup.

        Volumes are restored one by one without rollback: a failing volume
        is recorded and the remaining ones are still restored.

        Args:
            backup_selector: "latest" or an artifact file name
            volume_selector: "all" or a comma separated list of volume names

        Returns:
            Dict with artifact, restored, started_at, completed_at, logs

        Raises:
            RestoreError: If no artifact exists or any volume failed
            ConfigurationError: If every failed volume has no mount
            BackupError: Download, extraction and safety backup failures
        """
        started_at = datetime.now()

        try:
            artifact = self.resolve_artifact(backup_selector)
            self._log(f"Restoring from {artifact}")

            volume_names = self._fetch_and_extract(artifact, volume_selector)
            self._log(f"Volumes selected for restore: {', '.join(volume_names) or 'none'}")

            self._log("Running safety backup before restore")
            self.safety_backup()

            restored, failures = self._restore_volumes(volume_names)
        finally:
            shutil.rmtree(self.temp_dir, ignore_errors=True)

        if failures:
            # Only configuration problems: report them as such
            error_class = (ConfigurationError
                           if all(isinstance(e, ConfigurationError) for e in failures.values())
                           else RestoreError)
            raise error_class(
                f"Failed to restore {len(failures)} of {len(volume_names)} volumes: "
                + '; '.join(f"{name}: {error}" for name, error in failures.items())
            )

        self._log(f"Restoration completed. Volumes {restored} were restored from {artifact}")
        return {
            'artifact': artifact,
            'restored': restored,
            'started_at': started_at,
            'completed_at': datetime.now(),
            'logs': self.logs
        }

    def resolve_artifact(self, backup_selector: str) -> str:
        """
        Resolve "latest" to the newest remote artifact; other values are literal names.

        Raises:
            RestoreError: If "latest" is requested and no artifact exists
        """
        if backup_selector != LATEST:
            return backup_selector

        names = self.transport.list_newest_matching(self.remote_directory, ARTIFACT_GLOB)
        if not names:
            raise RestoreError(f"No backup files found in {self.remote_directory}")
        return names[0]

    def _fetch_and_extract(self, artifact: str, volume_selector: str) -> List[str]:
        Path(self.temp_dir).mkdir(parents=True, exist_ok=True)
        local_path = os.path.join(self.temp_dir, artifact)
        self.transport.download(posixpath.join(self.remote_directory, artifact), local_path)
        self._log(f"Downloaded {artifact}")

        extract_dir = self._volumes_dir()
        decompress_archive(local_path, extract_dir)
        os.remove(local_path)

        if volume_selector == ALL_VOLUMES:
            return list_bundle_volumes(extract_dir)
        return parse_volume_selector(volume_selector)

    def _restore_volumes(self, volume_names: List[str]):
        restored = []
        failures = {}

        for volume in volume_names:
            try:
                self.restore_volume(volume)
                restored.append(volume)
                self._log(f"Restored volume: {volume}")
            except BackupError as e:
                failures[volume] = e
                self._log(f"Failed to restore volume {volume}: {e}", level=logging.ERROR)

        return restored, failures

    def restore_volume(self, volume: str):
        """
        Replace one volume's data with its extracted snapshot.

        Containers are started again even when the replacement fails.

        Raises:
            RestoreError: If the snapshot is missing or the data could not
                be replaced
            ConfigurationError: If the volume has no mount under the backup path
            ContainerError: If stopping or starting containers fails
        """
        archive_path = os.path.join(self._volumes_dir(), f"{volume}{ARTIFACT_SUFFIX}")
        staging_dir = os.path.join(self._volumes_dir(), volume)
        mount_path = os.path.join(self.volumes_root, volume)

        if not os.path.isfile(archive_path):
            raise RestoreError(f"Volume {volume} is not part of the backup")
        decompress_archive(archive_path, staging_dir)

        container_ids = self.runtime.stop_containers_using_volume(volume)
        try:
            if not os.path.isdir(mount_path):
                raise ConfigurationError(f"Volume {volume} does not exist (no mount at {mount_path})")
            try:
                replace_directory_contents(mount_path, staging_dir)
            except OSError as e:
                raise RestoreError(f"Failed to replace data of volume {volume}: {e}") from e
        finally:
            self.runtime.start_containers(container_ids)

    def _volumes_dir(self) -> str:
        return os.path.join(self.temp_dir, 'volumes')

    def _log(self, message: str, level: int = logging.INFO):
        timestamp = datetime.now().strftime('%Y-%m-%d %H:%M:%S')
        self.logs.append(f"[{timestamp}] {message}")
        logger.log(level, message)
