"""
Transport handlers for the remote backup target.

Supports:
- SSHTransport: remote host over SSH/SFTP with key based authentication
- LocalTransport: a directory on this machine (NAS mounts, development)
- S3Transport: an AWS S3 bucket

Remote paths are ``<directory>/<file name>`` strings in every transport.
"""

import fnmatch
import logging
import os
import posixpath
import shlex
import shutil
from pathlib import Path
from typing import List, Optional

import boto3
import paramiko
from boto3.exceptions import S3UploadFailedError
from botocore.exceptions import BotoCoreError, ClientError
from paramiko import AutoAddPolicy, SSHClient

from volume_backup.errors import BackupError, ConfigurationError, ErrorKind


logger = logging.getLogger(__name__)

PARTIAL_SUFFIX = '.partial'


class TransportError(BackupError):
    """Raised when a transfer, listing or remote command fails."""
    kind = ErrorKind.TRANSPORT
    retryable = True


class Transport:
    """Interface shared by all transports."""

    name = 'base'

    def upload(self, local_path: str, remote_path: str):
        raise NotImplementedError

    def download(self, remote_path: str, local_path: str):
        raise NotImplementedError

    def list_directory(self, remote_directory: str) -> List[str]:
        raise NotImplementedError

    def delete_file(self, remote_path: str):
        raise NotImplementedError

    def list_newest_matching(self, remote_directory: str, pattern: str) -> List[str]:
        """File names in ``remote_directory`` matching ``pattern``, newest first."""
        raise NotImplementedError

    def close(self):
        """Release any connection. Safe to call more than once."""
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False


class SSHTransport(Transport):
    """
    Transport to a remote host over SSH.

    File operations use SFTP; the newest-first listing runs ``ls -t`` on the
    remote host. The connection is opened lazily and reused until close().
    """

    name = 'ssh'

    def __init__(self, host: str, username: str, key_path: str, port: int = 22, timeout: int = 30):
        """
        Initialize SSH transport.

        Args:
            host: SSH hostname or IP
            username: SSH username
            key_path: Path to the private key file
            port: SSH port (default 22)
            timeout: Connection timeout in seconds
        """
        self.host = host
        self.port = port
        self.username = username
        self.key_path = key_path
        self.timeout = timeout

        self.ssh_client = None
        self.sftp_client = None

    def _connect(self):
        """
        Establish the SSH connection if needed.

        Raises:
            TransportError: If the key is missing or connection/auth fails
        """
        if self.ssh_client is not None:
            return

        key_path = Path(self.key_path).expanduser()
        if not key_path.exists():
            raise TransportError(f"Private key not found: {self.key_path}")

        client = SSHClient()
        client.set_missing_host_key_policy(AutoAddPolicy())

        try:
            client.connect(
                hostname=self.host,
                port=self.port,
                username=self.username,
                key_filename=str(key_path),
                timeout=self.timeout,
                allow_agent=False,
                look_for_keys=False
            )
            self.sftp_client = client.open_sftp()
        except paramiko.AuthenticationException as e:
            client.close()
            raise TransportError(f"SSH authentication failed: {e}") from e
        except (paramiko.SSHException, OSError) as e:
            client.close()
            raise TransportError(f"Failed to connect to {self.host}:{self.port}: {e}") from e

        self.ssh_client = client
        logger.debug(f"Connected to {self.username}@{self.host}:{self.port}")

    def _exec(self, command: str) -> str:
        """
        Run a command on the remote host.

        Raises:
            TransportError: On connection failure or non-zero exit status
        """
        self._connect()
        try:
            _, stdout, stderr = self.ssh_client.exec_command(command, timeout=self.timeout)
            output = stdout.read().decode('utf-8', errors='replace')
            exit_status = stdout.channel.recv_exit_status()
            error_output = stderr.read().decode('utf-8', errors='replace')
        except (paramiko.SSHException, OSError) as e:
            raise TransportError(f"Remote command failed: {command}: {e}") from e

        if exit_status != 0:
            raise TransportError(
                f"Remote command exited with {exit_status}: {command}: {error_output.strip()}"
            )
        return output

    def upload(self, local_path: str, remote_path: str):
        if not os.path.exists(local_path):
            raise TransportError(f"Local file not found: {local_path}")

        self._connect()
        partial_path = remote_path + PARTIAL_SUFFIX
        try:
            self.sftp_client.put(local_path, partial_path)
            self.sftp_client.posix_rename(partial_path, remote_path)
        except (IOError, paramiko.SSHException) as e:
            raise TransportError(f"Failed to upload {local_path} to {remote_path}: {e}") from e

    def download(self, remote_path: str, local_path: str):
        self._connect()
        Path(local_path).parent.mkdir(parents=True, exist_ok=True)
        try:
            self.sftp_client.get(remote_path, local_path)
        except FileNotFoundError as e:
            raise TransportError(f"Remote file not found: {remote_path}") from e
        except (IOError, paramiko.SSHException) as e:
            raise TransportError(f"Failed to download {remote_path}: {e}") from e

    def list_directory(self, remote_directory: str) -> List[str]:
        self._connect()
        try:
            return self.sftp_client.listdir(remote_directory)
        except FileNotFoundError as e:
            raise TransportError(f"Remote directory not found: {remote_directory}") from e
        except (IOError, paramiko.SSHException) as e:
            raise TransportError(f"Failed to list {remote_directory}: {e}") from e

    def delete_file(self, remote_path: str):
        self._connect()
        try:
            self.sftp_client.remove(remote_path)
        except FileNotFoundError as e:
            raise TransportError(f"Remote file not found: {remote_path}") from e
        except (IOError, paramiko.SSHException) as e:
            raise TransportError(f"Failed to delete {remote_path}: {e}") from e

    def list_newest_matching(self, remote_directory: str, pattern: str) -> List[str]:
        self._connect()
        try:
            self.sftp_client.stat(remote_directory)
        except FileNotFoundError as e:
            raise TransportError(f"Remote directory not found: {remote_directory}") from e
        except (IOError, paramiko.SSHException) as e:
            raise TransportError(f"Failed to access {remote_directory}: {e}") from e

        # Glob stays unquoted so the remote shell expands it. An unmatched glob
        # stays literal: that case alone is an empty listing.
        directory = shlex.quote(remote_directory)
        command = (
            f'[ -r {directory} ] || {{ echo "directory is not readable" >&2; exit 1; }}; '
            f'set -- {directory}/{pattern}; [ -e "$1" ] || exit 0; ls -t "$@"'
        )
        output = self._exec(command)
        return [posixpath.basename(line.strip()) for line in output.splitlines() if line.strip()]

    def close(self):
        """Close SSH/SFTP connections."""
        if self.sftp_client:
            try:
                self.sftp_client.close()
            except Exception as e:
                logger.debug(f"Error closing SFTP client: {e}")
            self.sftp_client = None

        if self.ssh_client:
            try:
                self.ssh_client.close()
            except Exception as e:
                logger.debug(f"Error closing SSH client: {e}")
            self.ssh_client = None


class LocalTransport(Transport):
    """
    Transport to a directory on the local filesystem.

    Remote paths are resolved relative to ``base_path``.
    """

    name = 'local'

    def __init__(self, base_path: str):
        self.base_path = Path(base_path)

        try:
            self.base_path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise TransportError(f"Failed to create target directory {base_path}: {e}") from e

    def _resolve(self, remote_path: str) -> Path:
        return self.base_path / remote_path.lstrip('/')

    def upload(self, local_path: str, remote_path: str):
        if not os.path.exists(local_path):
            raise TransportError(f"Local file not found: {local_path}")

        destination = self._resolve(remote_path)
        partial = destination.with_name(destination.name + PARTIAL_SUFFIX)
        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(local_path, partial)
            os.replace(partial, destination)
        except OSError as e:
            raise TransportError(f"Failed to store {local_path} at {destination}: {e}") from e

    def download(self, remote_path: str, local_path: str):
        source = self._resolve(remote_path)
        if not source.is_file():
            raise TransportError(f"Remote file not found: {remote_path}")

        try:
            Path(local_path).parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(source, local_path)
        except OSError as e:
            raise TransportError(f"Failed to copy {source}: {e}") from e

    def list_directory(self, remote_directory: str) -> List[str]:
        directory = self._resolve(remote_directory)
        if not directory.is_dir():
            raise TransportError(f"Remote directory not found: {remote_directory}")
        return [entry.name for entry in directory.iterdir() if entry.is_file()]

    def delete_file(self, remote_path: str):
        target = self._resolve(remote_path)
        try:
            target.unlink()
        except FileNotFoundError as e:
            raise TransportError(f"Remote file not found: {remote_path}") from e
        except OSError as e:
            raise TransportError(f"Failed to delete {target}: {e}") from e

    def list_newest_matching(self, remote_directory: str, pattern: str) -> List[str]:
        directory = self._resolve(remote_directory)
        if not directory.is_dir():
            raise TransportError(f"Remote directory not found: {remote_directory}")

        matches = [entry for entry in directory.iterdir()
                   if entry.is_file() and fnmatch.fnmatch(entry.name, pattern)]
        matches.sort(key=lambda entry: entry.stat().st_mtime, reverse=True)
        return [entry.name for entry in matches]


class S3Transport(Transport):
    """
    Transport to an AWS S3 bucket. Remote paths map directly to object keys.
    """

    name = 's3'

    def __init__(self, bucket_name: str, region: str = 'us-east-1',
                 access_key: Optional[str] = None, secret_key: Optional[str] = None):
        """
        Initialize S3 transport.

        Args:
            bucket_name: S3 bucket name
            region: AWS region (default: us-east-1)
            access_key: AWS access key ID (default credential chain if omitted)
            secret_key: AWS secret access key
        """
        self.bucket_name = bucket_name
        self.region = region

        try:
            self.s3_client = boto3.client(
                's3',
                aws_access_key_id=access_key,
                aws_secret_access_key=secret_key,
                region_name=region
            )
        except (BotoCoreError, ValueError) as e:
            raise TransportError(f"Failed to initialize S3 client: {e}") from e

    @staticmethod
    def _key(remote_path: str) -> str:
        return remote_path.lstrip('/')

    @staticmethod
    def _prefix(remote_directory: str) -> str:
        prefix = remote_directory.strip('/')
        return f"{prefix}/" if prefix else ''

    def _list_objects(self, remote_directory: str) -> list:
        prefix = self._prefix(remote_directory)
        objects = []
        try:
            paginator = self.s3_client.get_paginator('list_objects_v2')
            for page in paginator.paginate(Bucket=self.bucket_name, Prefix=prefix, Delimiter='/'):
                for obj in page.get('Contents', []):
                    objects.append({
                        'name': obj['Key'][len(prefix):],
                        'LastModified': obj['LastModified']
                    })
        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            raise TransportError(f"S3 list failed ({error_code}): {e}") from e
        except BotoCoreError as e:
            raise TransportError(f"S3 list failed: {e}") from e
        return objects

    def upload(self, local_path: str, remote_path: str):
        if not os.path.exists(local_path):
            raise TransportError(f"Local file not found: {local_path}")

        try:
            self.s3_client.upload_file(local_path, self.bucket_name, self._key(remote_path))
        except (ClientError, BotoCoreError, S3UploadFailedError) as e:
            raise TransportError(f"S3 upload failed: {e}") from e

    def download(self, remote_path: str, local_path: str):
        Path(local_path).parent.mkdir(parents=True, exist_ok=True)
        try:
            self.s3_client.download_file(self.bucket_name, self._key(remote_path), local_path)
        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            raise TransportError(f"S3 download failed ({error_code}): {remote_path}") from e
        except BotoCoreError as e:
            raise TransportError(f"S3 download failed: {e}") from e

    def list_directory(self, remote_directory: str) -> List[str]:
        return [obj['name'] for obj in self._list_objects(remote_directory)]

    def delete_file(self, remote_path: str):
        try:
            self.s3_client.delete_object(Bucket=self.bucket_name, Key=self._key(remote_path))
        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            raise TransportError(f"S3 delete failed ({error_code}): {e}") from e
        except BotoCoreError as e:
            raise TransportError(f"S3 delete failed: {e}") from e

    def list_newest_matching(self, remote_directory: str, pattern: str) -> List[str]:
        objects = [obj for obj in self._list_objects(remote_directory)
                   if fnmatch.fnmatch(obj['name'], pattern)]
        objects.sort(key=lambda obj: obj['LastModified'], reverse=True)
        return [obj['name'] for obj in objects]


def create_transport(config) -> Transport:
    """
    Factory function to create the configured transport.

    Args:
        config: Configuration object (TRANSPORT plus transport specific keys)

    Returns:
        SSHTransport, LocalTransport or S3Transport instance

    Raises:
        ConfigurationError: If the transport type is invalid
    """
    transport_type = (config.TRANSPORT or '').lower()

    if transport_type == 'ssh':
        return SSHTransport(
            host=config.SERVER_IP,
            username=config.SERVER_USER,
            key_path=config.SSH_KEY_PATH,
            port=int(config.SERVER_PORT or 22)
        )
    elif transport_type == 'local':
        return LocalTransport(config.LOCAL_TARGET_DIR)
    elif transport_type == 's3':
        return S3Transport(
            bucket_name=config.S3_BUCKET,
            region=config.S3_REGION or 'us-east-1',
            access_key=config.AWS_ACCESS_KEY_ID,
            secret_key=config.AWS_SECRET_ACCESS_KEY
        )
    else:
        raise ConfigurationError(f"Invalid transport type: {config.TRANSPORT}")
