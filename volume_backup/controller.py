"""
Backup controller - wires configuration to the backup and restore executors.

Every backup or restore cycle holds the cycle lock, so a scheduled backup
and a manual restore can never touch the temp workspace or the remote
directory at the same time.
"""

import logging
import os
from typing import Any, Dict, Optional

from volume_backup.backup.docker import DockerRuntime, resolve_self_identity
from volume_backup.backup.executor import BackupExecutor
from volume_backup.backup.restore import RestoreExecutor
from volume_backup.backup.transport import Transport, create_transport
from volume_backup.config import build_retention_policy, validate_config
from volume_backup.errors import ConfigurationError
from volume_backup.scheduler import run_scheduled
from volume_backup.utils.lock import CycleLock


logger = logging.getLogger(__name__)


class BackupController:
    """
    Entry point for backup and restore runs.
    """

    def __init__(self, config, transport: Optional[Transport] = None, runtime: Optional[DockerRuntime] = None):
        """
        Initialize controller.

        Args:
            config: Configuration object
            transport: Transport override (default: built from config)
            runtime: Container runtime override (default: docker CLI)

        Raises:
            ConfigurationError: If the configuration is invalid
        """
        validate_config(config)

        self.config = config
        self.retention_policy = build_retention_policy(config)
        self.transport = transport or create_transport(config)
        self.runtime = runtime or DockerRuntime(
            resolve_self_identity(config.SELF_CONTAINER_ID),
            docker_binary=config.DOCKER_BINARY,
            timeout=int(config.COMMAND_TIMEOUT)
        )
        self.lock = CycleLock(config.LOCK_FILE)

    def _backup_executor(self) -> BackupExecutor:
        return BackupExecutor(
            transport=self.transport,
            runtime=self.runtime,
            remote_directory=self.config.SERVER_DIRECTORY,
            volumes_root=self.config.BACKUP_PATH,
            temp_dir=os.path.join(self.config.TEMP_DIR, 'backup'),
            retention_policy=self.retention_policy
        )

    def _run_backup(self) -> Dict[str, Any]:
        result = self._backup_executor().execute()
        logger.info(
            f"Backup completed successfully. Volumes {result['volumes']} were backed up "
            f"to {self.config.SERVER_DIRECTORY}/{result['artifact']}"
        )
        return result

    def backup(self) -> Dict[str, Any]:
        """Run one backup cycle under the cycle lock."""
        with self.lock:
            return self._run_backup()

    def restore(self, backup_selector: Optional[str] = None, volume_selector: Optional[str] = None) -> Dict[str, Any]:
        """
        Run one restore under the cycle lock.

        The safety backup runs inside the same lock.

        Args:
            backup_selector: "latest" or artifact name (default: BACKUP_TO_BE_RESTORED)
            volume_selector: "all" or comma list (default: VOLUMES_TO_BE_RESTORED)
        """
        executor = RestoreExecutor(
            transport=self.transport,
            runtime=self.runtime,
            remote_directory=self.config.SERVER_DIRECTORY,
            volumes_root=self.config.BACKUP_PATH,
            temp_dir=os.path.join(self.config.TEMP_DIR, 'restore'),
            safety_backup=self._run_backup
        )

        with self.lock:
            return executor.execute(
                backup_selector or self.config.BACKUP_TO_BE_RESTORED,
                volume_selector or self.config.VOLUMES_TO_BE_RESTORED
            )

    def run(self):
        """
        Run the configured action.

        Backup with BACKUP_CRON runs until a cycle fails; without it a
        single cycle runs.
        """
        action = self.config.ACTION
        try:
            if action == 'backup':
                if self.config.BACKUP_CRON:
                    run_scheduled(self.config.BACKUP_CRON, self.backup, timezone=self.config.SCHEDULER_TIMEZONE)
                else:
                    self.backup()
            elif action == 'restore':
                self.restore()
            else:
                raise ConfigurationError(f"Invalid action: {action}")
        finally:
            self.transport.close()
