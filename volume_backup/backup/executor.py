"""
Backup executor - orchestrates one complete backup cycle.

Workflow:
1. Apply the retention policy to the remote directory
2. For each volume: stop its containers, snapshot it, start them again
3. Combine the volume snapshots into one timestamped bundle
4. Upload the bundle and remove the temp workspace
5. Apply the retention policy again
"""

import logging
import os
import posixpath
import shutil
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from volume_backup.errors import ConfigurationError

from .compression import compress_directory, compress_files, get_archive_size
from .docker import DockerRuntime
from .naming import artifact_name
from .retention import BackupPruner, RetentionPolicy
from .transport import Transport


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Volume:
    """A data directory under the backup root, named after its docker volume."""
    name: str
    path: str


def discover_volumes(volumes_root: str) -> List[Volume]:
    """
    List volume directories under the backup root.

    Order is the filesystem listing order.

    Raises:
        ConfigurationError: If the backup root does not exist
    """
    if not os.path.isdir(volumes_root):
        raise ConfigurationError(f"Backup path {volumes_root} does not exist or is not a directory")
    with os.scandir(volumes_root) as entries:
        return [Volume(entry.name, entry.path) for entry in entries if entry.is_dir()]


class VolumeBackupOrchestrator:
    """
    Snapshots volumes while their containers are stopped.

    Containers are always started again, even when the snapshot fails.
    """

    def __init__(self, runtime: DockerRuntime):
        self.runtime = runtime

    def snapshot_volume(self, volume: Volume, temp_dir: str) -> str:
        """
        Stop containers using a volume, archive it and start them again.

        Args:
            volume: Volume to snapshot
            temp_dir: Directory receiving ``<volume>.tar.gz``

        Returns:
            Path of the volume archive

        Raises:
            CompressionError: If the snapshot failed (after resume was attempted)
            ContainerError: If stopping or resuming containers failed
        """
        archive_path = os.path.join(temp_dir, f"{volume.name}.tar.gz")
        container_ids = self.runtime.stop_containers_using_volume(volume.name)

        try:
            compress_directory(volume.path, archive_path)
        finally:
            self.runtime.start_containers(container_ids)

        return archive_path

    def run_cycle(self, volumes_root: str, temp_dir: str) -> List[str]:
        """
        Snapshot every volume under ``volumes_root``.

        Returns:
            Archive paths in volume discovery order
        """
        archive_paths = []

        for volume in discover_volumes(volumes_root):
            logger.info(f"Backing up volume: {volume.name}")
            archive_paths.append(self.snapshot_volume(volume, temp_dir))

        return archive_paths


class BackupCombiner:
    """
    Folds volume archives into one bundle and uploads it.
    """

    def __init__(self, transport: Transport, remote_directory: str):
        self.transport = transport
        self.remote_directory = remote_directory
        self.bundle_size = None

    def combine_and_upload(self, archive_paths: List[str], timestamp: datetime, temp_dir: str) -> str:
        """
        Build ``backup-<timestamp>.tar.gz`` and upload it.

        The volume archives are removed while they are folded in. The temp
        workspace is removed after a successful upload and left in place when
        the upload fails.

        Args:
            archive_paths: Per-volume archives
            timestamp: Time the combination step started
            temp_dir: Temp workspace holding the archives

        Returns:
            Remote artifact name

        Raises:
            CompressionError: If the bundle cannot be built
            TransportError: If the upload fails
        """
        name = artifact_name(timestamp)
        bundle_path = os.path.join(temp_dir, name)

        compress_files(archive_paths, bundle_path)
        self.bundle_size = get_archive_size(bundle_path)

        self.transport.upload(bundle_path, posixpath.join(self.remote_directory, name))
        shutil.rmtree(temp_dir, ignore_errors=True)

        return name


class BackupExecutor:
    """
    Orchestrates the complete backup workflow.
    """

    def __init__(
        self,
        transport: Transport,
        runtime: DockerRuntime,
        remote_directory: str,
        volumes_root: str,
        temp_dir: str,
        retention_policy: Optional[RetentionPolicy] = None
    ):
        """
        Initialize backup executor.

        Args:
            transport: Transport to the backup target
            runtime: Container runtime used to quiesce volumes
            remote_directory: Remote directory for artifacts
            volumes_root: Directory whose subdirectories are the volumes
            temp_dir: Temp workspace owned by this cycle
            retention_policy: Policy applied before and after the upload
        """
        self.transport = transport
        self.runtime = runtime
        self.remote_directory = remote_directory
        self.volumes_root = volumes_root
        self.temp_dir = temp_dir
        self.retention_policy = retention_policy or RetentionPolicy.unbounded()
        self.logs = []

    def execute(self) -> Dict[str, Any]:
        """
        Run one backup cycle.

        Returns:
            Dict describing the cycle: artifact, volumes, size_bytes,
            pruned, started_at, completed_at, logs

        Raises:
            BackupError: Any component failure is fatal to the cycle
        """
        started_at = datetime.now()
        self._log(f"Starting backup of {self.volumes_root}")

        try:
            result = self._execute_workflow()
        except Exception as e:
            self._log(f"Backup failed: {e}", level=logging.ERROR)
            if os.path.exists(self.temp_dir):
                self._log(f"Temporary files kept for diagnosis: {self.temp_dir}", level=logging.WARNING)
            raise

        result['started_at'] = started_at
        result['completed_at'] = datetime.now()
        result['logs'] = self.logs
        return result

    def _execute_workflow(self) -> Dict[str, Any]:
        pruner = BackupPruner(self.transport, self.remote_directory)
        pruned = self._prune(pruner)

        # Step 1: Temp workspace
        Path(self.temp_dir).mkdir(parents=True, exist_ok=True)

        # Step 2: Snapshot volumes
        orchestrator = VolumeBackupOrchestrator(self.runtime)
        archive_paths = orchestrator.run_cycle(self.volumes_root, self.temp_dir)
        volume_names = [Path(path).name[:-len('.tar.gz')] for path in archive_paths]
        self._log(f"Snapshotted {len(volume_names)} volumes: {', '.join(volume_names) or 'none'}")
        if not volume_names:
            self._log(f"No volumes found under {self.volumes_root}", level=logging.WARNING)

        # Step 3: Combine and upload
        combiner = BackupCombiner(self.transport, self.remote_directory)
        name = combiner.combine_and_upload(archive_paths, datetime.now(), self.temp_dir)
        self._log(
            f"Uploaded {name} to {self.remote_directory} "
            f"({combiner.bundle_size / 1024 / 1024:.2f} MB)"
        )

        # Step 4: Retention after upload
        pruned.extend(self._prune(pruner))

        return {
            'artifact': name,
            'volumes': volume_names,
            'size_bytes': combiner.bundle_size,
            'pruned': pruned
        }

    def _prune(self, pruner: BackupPruner) -> List[str]:
        summary = pruner.prune(self.retention_policy)
        for error in summary['errors']:
            self._log(error, level=logging.WARNING)
        return summary['deleted']

    def _log(self, message: str, level: int = logging.INFO):
        """
        Add a log message with timestamp.

        Args:
            message: Log message
            level: Logging level for the module logger
        """
        timestamp = datetime.now().strftime('%Y-%m-%d %H:%M:%S')
        self.logs.append(f"[{timestamp}] {message}")
        logger.log(level, message)
