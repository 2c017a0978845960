"""
Shared pytest fixtures for volume backup tests.

This module provides fixtures for:
- A backup root with sample volumes
- A mocked container runtime
- A local transport target
- Configuration objects pointing at temporary directories
- Mock fixtures for external services (S3, SSH)
"""

import tarfile
from unittest.mock import MagicMock, patch

import boto3
import pytest
from moto import mock_aws

from volume_backup.backup.docker import DockerRuntime
from volume_backup.backup.transport import LocalTransport
from volume_backup.config import Config


@pytest.fixture
def volumes_root(tmp_path):
    """
    Create a backup root with three volumes.

    Creates:
    - a/data.txt
    - b/nested/config.yml
    - c/ (empty)
    """
    root = tmp_path / 'backup'
    (root / 'a').mkdir(parents=True)
    (root / 'a' / 'data.txt').write_text('volume a')
    (root / 'b' / 'nested').mkdir(parents=True)
    (root / 'b' / 'nested' / 'config.yml').write_text('volume: b')
    (root / 'c').mkdir()
    return root


@pytest.fixture
def mock_runtime():
    """
    Mock DockerRuntime that reports one container per volume.

    Stopping volume ``x`` returns ``['container-x']``.
    """
    runtime = MagicMock(spec=DockerRuntime)
    runtime.stop_containers_using_volume.side_effect = lambda volume: [f'container-{volume}']
    return runtime


@pytest.fixture
def remote_root(tmp_path):
    """Directory acting as the remote backup target."""
    root = tmp_path / 'remote'
    (root / 'backups').mkdir(parents=True)
    return root


@pytest.fixture
def local_transport(remote_root):
    return LocalTransport(str(remote_root))


@pytest.fixture
def test_config(tmp_path, volumes_root, remote_root):
    """
    Configuration for the local transport with every path in tmp_path.
    """
    class TestConfig(Config):
        DEBUG = False
        LOG_DIR = None
        ACTION = 'backup'
        BACKUP_PATH = str(volumes_root)
        TEMP_DIR = str(tmp_path / 'temp')
        LOCK_FILE = str(tmp_path / 'volume-backup.lock')
        TRANSPORT = 'local'
        LOCAL_TARGET_DIR = str(remote_root)
        SERVER_DIRECTORY = 'backups'
        BACKUP_CRON = None
        SCHEDULER_TIMEZONE = 'UTC'
        BACKUP_RETENTION_COUNT = None
        BACKUP_RETENTION_PERIOD_IN_DAYS = None
        BACKUP_TO_BE_RESTORED = 'latest'
        VOLUMES_TO_BE_RESTORED = 'all'
        SELF_CONTAINER_ID = 'self-container'
        COMMAND_TIMEOUT = '300'

    return TestConfig


@pytest.fixture
def make_bundle(tmp_path):
    """
    Build a combined backup bundle from a mapping of volume name to files.

    Returns a function ``make_bundle(path, {'a': {'file.txt': 'content'}})``.
    """
    def _make_bundle(bundle_path, volumes):
        work = tmp_path / 'bundle_work'
        work.mkdir(exist_ok=True)
        archives = []

        for name, files in volumes.items():
            volume_dir = work / name
            volume_dir.mkdir()
            for relative, content in files.items():
                target = volume_dir / relative
                target.parent.mkdir(parents=True, exist_ok=True)
                target.write_text(content)

            archive = work / f'{name}.tar.gz'
            with tarfile.open(archive, 'w:gz') as tar:
                tar.add(volume_dir, arcname='.')
            archives.append(archive)

        with tarfile.open(bundle_path, 'w:gz') as tar:
            for archive in archives:
                tar.add(archive, arcname=archive.name)
        return bundle_path

    return _make_bundle


@pytest.fixture
def mock_s3():
    """
    Mock AWS S3 service using moto.

    Creates a test bucket 'test-bucket' in us-east-1 region.
    """
    with mock_aws():
        s3 = boto3.resource('s3', region_name='us-east-1')
        s3.create_bucket(Bucket='test-bucket')
        yield s3


@pytest.fixture
def mock_ssh_client():
    """
    Mock paramiko SSHClient for SSH/SFTP testing.

    Returns a MagicMock that simulates SSH connections.
    """
    with patch('volume_backup.backup.transport.SSHClient') as mock_ssh:
        mock_sftp = MagicMock()
        mock_ssh.return_value.open_sftp.return_value = mock_sftp
        mock_ssh.return_value.connect.return_value = None
        yield mock_ssh
