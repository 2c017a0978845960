"""
Backup module for the volume backup controller.

This module handles the core backup functionality including:
- Artifact naming
- Container quiesce/resume
- Compression
- Transport (SSH, local directory, S3)
- Retention policy enforcement
- Backup and restore orchestration
"""

from .executor import BackupExecutor, BackupCombiner, VolumeBackupOrchestrator
from .restore import RestoreExecutor
from .docker import DockerRuntime, SelfIdentity
from .transport import SSHTransport, LocalTransport, S3Transport, create_transport
from .retention import RetentionPolicy, BackupPruner, select_for_deletion

__all__ = [
    'BackupExecutor',
    'BackupCombiner',
    'VolumeBackupOrchestrator',
    'RestoreExecutor',
    'DockerRuntime',
    'SelfIdentity',
    'SSHTransport',
    'LocalTransport',
    'S3Transport',
    'create_transport',
    'RetentionPolicy',
    'BackupPruner',
    'select_for_deletion'
]
