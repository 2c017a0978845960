"""
Unit tests for transport handlers (volume_backup/backup/transport.py).

Tests LocalTransport, S3Transport and SSHTransport.
"""

import os
import subprocess
import time
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import paramiko
import pytest

from volume_backup.backup.transport import (
    LocalTransport,
    S3Transport,
    SSHTransport,
    TransportError,
    create_transport
)
from volume_backup.errors import ConfigurationError, ErrorKind


class TestLocalTransport:
    """Test LocalTransport against a temporary directory."""

    def test_upload_and_download(self, local_transport, remote_root, tmp_path):
        source = tmp_path / 'bundle.tar.gz'
        source.write_bytes(b'bundle')

        local_transport.upload(str(source), 'backups/backup-2024-01-15T02-00-00.tar.gz')

        stored = remote_root / 'backups' / 'backup-2024-01-15T02-00-00.tar.gz'
        assert stored.read_bytes() == b'bundle'
        assert not (remote_root / 'backups' / 'backup-2024-01-15T02-00-00.tar.gz.partial').exists()

        destination = tmp_path / 'restore' / 'copy.tar.gz'
        local_transport.download('backups/backup-2024-01-15T02-00-00.tar.gz', str(destination))
        assert destination.read_bytes() == b'bundle'

    def test_upload_missing_local_file(self, local_transport, tmp_path):
        with pytest.raises(TransportError, match="not found") as exc_info:
            local_transport.upload(str(tmp_path / 'missing'), 'backups/x')

        assert exc_info.value.kind == ErrorKind.TRANSPORT
        assert exc_info.value.retryable

    def test_list_and_delete(self, local_transport, remote_root):
        (remote_root / 'backups' / 'one.tar.gz').write_bytes(b'1')
        (remote_root / 'backups' / 'nested').mkdir()

        assert local_transport.list_directory('backups') == ['one.tar.gz']

        local_transport.delete_file('backups/one.tar.gz')
        assert local_transport.list_directory('backups') == []

        with pytest.raises(TransportError):
            local_transport.delete_file('backups/one.tar.gz')

    def test_list_missing_directory(self, local_transport):
        with pytest.raises(TransportError, match="not found"):
            local_transport.list_directory('nope')

    def test_download_missing_file(self, local_transport, tmp_path):
        with pytest.raises(TransportError):
            local_transport.download('backups/missing.tar.gz', str(tmp_path / 'x'))

    def test_list_newest_matching(self, local_transport, remote_root):
        directory = remote_root / 'backups'
        for index, name in enumerate(['backup-old.tar.gz', 'backup-new.tar.gz', 'other.txt']):
            path = directory / name
            path.write_bytes(b'x')
            stamp = time.time() - 1000 + index * 100
            os.utime(path, (stamp, stamp))

        assert local_transport.list_newest_matching('backups', 'backup-*.tar.gz') == [
            'backup-new.tar.gz',
            'backup-old.tar.gz'
        ]


class TestS3Transport:
    """Test S3Transport with moto."""

    def make_transport(self):
        return S3Transport(
            bucket_name='test-bucket',
            region='us-east-1',
            access_key='test_access_key',
            secret_key='test_secret_key'
        )

    def test_upload_list_download_delete(self, mock_s3, tmp_path):
        source = tmp_path / 'backup-2024-01-15T02-00-00.tar.gz'
        source.write_bytes(b'bundle')
        transport = self.make_transport()

        transport.upload(str(source), '/backups/backup-2024-01-15T02-00-00.tar.gz')

        assert mock_s3.Object('test-bucket', 'backups/backup-2024-01-15T02-00-00.tar.gz').content_length == 6
        assert transport.list_directory('/backups') == ['backup-2024-01-15T02-00-00.tar.gz']

        destination = tmp_path / 'download' / 'bundle.tar.gz'
        transport.download('backups/backup-2024-01-15T02-00-00.tar.gz', str(destination))
        assert destination.read_bytes() == b'bundle'

        transport.delete_file('backups/backup-2024-01-15T02-00-00.tar.gz')
        assert transport.list_directory('backups') == []

    def test_list_excludes_nested_keys(self, mock_s3):
        bucket = mock_s3.Bucket('test-bucket')
        bucket.put_object(Key='backups/backup-a.tar.gz', Body=b'a')
        bucket.put_object(Key='backups/archive/backup-b.tar.gz', Body=b'b')
        bucket.put_object(Key='other/backup-c.tar.gz', Body=b'c')

        assert self.make_transport().list_directory('backups') == ['backup-a.tar.gz']

    def test_list_newest_matching(self, mock_s3):
        bucket = mock_s3.Bucket('test-bucket')
        bucket.put_object(Key='backups/backup-first.tar.gz', Body=b'a')
        bucket.put_object(Key='backups/notes.txt', Body=b'n')
        transport = self.make_transport()

        assert transport.list_newest_matching('backups', 'backup-*.tar.gz') == ['backup-first.tar.gz']

    def test_download_missing_object(self, mock_s3, tmp_path):
        with pytest.raises(TransportError, match="download failed"):
            self.make_transport().download('backups/missing.tar.gz', str(tmp_path / 'x'))

    def test_missing_bucket(self, mock_s3):
        transport = S3Transport(bucket_name='no-such-bucket', access_key='k', secret_key='s')
        with pytest.raises(TransportError):
            transport.list_directory('backups')


class TestSSHTransport:
    """Test SSHTransport with a mocked paramiko client."""

    def make_transport(self, tmp_path):
        key = tmp_path / 'id_rsa'
        key.write_text('fake key')
        return SSHTransport(host='backup.example.com', username='backup', key_path=str(key), port=2222)

    def test_connect_uses_key_authentication(self, mock_ssh_client, tmp_path):
        transport = self.make_transport(tmp_path)
        transport.list_directory('/srv/backups')

        kwargs = mock_ssh_client.return_value.connect.call_args.kwargs
        assert kwargs['hostname'] == 'backup.example.com'
        assert kwargs['port'] == 2222
        assert kwargs['username'] == 'backup'
        assert kwargs['key_filename'] == str(tmp_path / 'id_rsa')

    def test_connection_reused(self, mock_ssh_client, tmp_path):
        transport = self.make_transport(tmp_path)
        transport.list_directory('/srv/backups')
        transport.delete_file('/srv/backups/x')

        mock_ssh_client.return_value.connect.assert_called_once()

    def test_missing_key(self, mock_ssh_client, tmp_path):
        transport = SSHTransport(host='h', username='u', key_path=str(tmp_path / 'missing'))
        with pytest.raises(TransportError, match="Private key not found"):
            transport.list_directory('/srv')

    def test_authentication_failure(self, mock_ssh_client, tmp_path):
        mock_ssh_client.return_value.connect.side_effect = paramiko.AuthenticationException("denied")

        with pytest.raises(TransportError, match="authentication failed"):
            self.make_transport(tmp_path).list_directory('/srv')

    def test_upload_renames_partial(self, mock_ssh_client, tmp_path):
        source = tmp_path / 'bundle.tar.gz'
        source.write_bytes(b'data')
        transport = self.make_transport(tmp_path)

        transport.upload(str(source), '/srv/backups/backup-x.tar.gz')

        sftp = mock_ssh_client.return_value.open_sftp.return_value
        sftp.put.assert_called_once_with(str(source), '/srv/backups/backup-x.tar.gz.partial')
        sftp.posix_rename.assert_called_once_with(
            '/srv/backups/backup-x.tar.gz.partial', '/srv/backups/backup-x.tar.gz'
        )

    def test_upload_failure(self, mock_ssh_client, tmp_path):
        source = tmp_path / 'bundle.tar.gz'
        source.write_bytes(b'data')
        sftp = mock_ssh_client.return_value.open_sftp.return_value
        sftp.put.side_effect = IOError("disk full")

        with pytest.raises(TransportError, match="disk full"):
            self.make_transport(tmp_path).upload(str(source), '/srv/backups/b.tar.gz')

    def test_list_newest_matching_runs_ls(self, mock_ssh_client, tmp_path):
        stdout = MagicMock()
        stdout.read.return_value = b'/srv/backups/backup-b.tar.gz\n/srv/backups/backup-a.tar.gz\n'
        stdout.channel.recv_exit_status.return_value = 0
        stderr = MagicMock()
        stderr.read.return_value = b''
        mock_ssh_client.return_value.exec_command.return_value = (MagicMock(), stdout, stderr)

        names = self.make_transport(tmp_path).list_newest_matching('/srv/backups', 'backup-*.tar.gz')

        assert names == ['backup-b.tar.gz', 'backup-a.tar.gz']
        command = mock_ssh_client.return_value.exec_command.call_args.args[0]
        assert command == (
            '[ -r /srv/backups ] || { echo "directory is not readable" >&2; exit 1; }; '
            'set -- /srv/backups/backup-*.tar.gz; [ -e "$1" ] || exit 0; ls -t "$@"'
        )
        assert '|| true' not in command

    def test_list_newest_matching_without_matches(self, mock_ssh_client, tmp_path):
        stdout = MagicMock()
        stdout.read.return_value = b''
        stdout.channel.recv_exit_status.return_value = 0
        stderr = MagicMock()
        stderr.read.return_value = b''
        mock_ssh_client.return_value.exec_command.return_value = (MagicMock(), stdout, stderr)

        assert self.make_transport(tmp_path).list_newest_matching('/srv/backups', 'backup-*.tar.gz') == []

    def test_list_newest_matching_missing_directory(self, mock_ssh_client, tmp_path):
        sftp = mock_ssh_client.return_value.open_sftp.return_value
        sftp.stat.side_effect = FileNotFoundError()

        with pytest.raises(TransportError, match="not found"):
            self.make_transport(tmp_path).list_newest_matching('/srv/missing', 'backup-*.tar.gz')

        mock_ssh_client.return_value.exec_command.assert_not_called()

    def test_unreadable_directory_is_an_error(self, mock_ssh_client, tmp_path):
        """A listing failure other than an unmatched glob is not reported as an empty directory."""
        stdout = MagicMock()
        stdout.read.return_value = b''
        stdout.channel.recv_exit_status.return_value = 1
        stderr = MagicMock()
        stderr.read.return_value = b'directory is not readable'
        mock_ssh_client.return_value.exec_command.return_value = (MagicMock(), stdout, stderr)

        with pytest.raises(TransportError, match="not readable"):
            self.make_transport(tmp_path).list_newest_matching('/srv/backups', 'backup-*.tar.gz')

    def listing_command(self, mock_ssh_client, tmp_path, directory):
        stdout = MagicMock()
        stdout.read.return_value = b''
        stdout.channel.recv_exit_status.return_value = 0
        stderr = MagicMock()
        stderr.read.return_value = b''
        mock_ssh_client.return_value.exec_command.return_value = (MagicMock(), stdout, stderr)
        self.make_transport(tmp_path).list_newest_matching(directory, 'backup-*.tar.gz')
        return mock_ssh_client.return_value.exec_command.call_args.args[0]

    def test_listing_command_in_shell(self, mock_ssh_client, tmp_path):
        directory = tmp_path / 'remote dir'
        directory.mkdir()
        command = self.listing_command(mock_ssh_client, tmp_path, str(directory))

        empty = subprocess.run(['sh', '-c', command], capture_output=True, text=True)
        assert empty.returncode == 0
        assert empty.stdout == ''

        for index, name in enumerate(['backup-old.tar.gz', 'backup-new.tar.gz']):
            path = directory / name
            path.write_bytes(b'x')
            stamp = time.time() - 1000 + index * 100
            os.utime(path, (stamp, stamp))
        (directory / 'notes.txt').write_text('')

        listed = subprocess.run(['sh', '-c', command], capture_output=True, text=True)
        assert listed.returncode == 0
        assert [os.path.basename(line) for line in listed.stdout.splitlines()] == [
            'backup-new.tar.gz',
            'backup-old.tar.gz'
        ]

    def test_listing_command_fails_for_missing_directory(self, mock_ssh_client, tmp_path):
        command = self.listing_command(mock_ssh_client, tmp_path, str(tmp_path / 'gone'))

        result = subprocess.run(['sh', '-c', command], capture_output=True, text=True)

        assert result.returncode != 0
        assert 'not readable' in result.stderr

    def test_remote_command_failure(self, mock_ssh_client, tmp_path):
        stdout = MagicMock()
        stdout.read.return_value = b''
        stdout.channel.recv_exit_status.return_value = 2
        stderr = MagicMock()
        stderr.read.return_value = b'ls: cannot access'
        mock_ssh_client.return_value.exec_command.return_value = (MagicMock(), stdout, stderr)

        with pytest.raises(TransportError, match="exited with 2"):
            self.make_transport(tmp_path).list_newest_matching('/srv/backups', 'backup-*.tar.gz')

    def test_close(self, mock_ssh_client, tmp_path):
        transport = self.make_transport(tmp_path)
        transport.list_directory('/srv')
        transport.close()
        transport.close()

        mock_ssh_client.return_value.close.assert_called_once()
        assert transport.ssh_client is None


class TestCreateTransport:

    def test_create_each_type(self, tmp_path):
        base = dict(SERVER_IP='h', SERVER_USER='u', SSH_KEY_PATH='/k', SERVER_PORT='22',
                    LOCAL_TARGET_DIR=str(tmp_path / 'target'), S3_BUCKET='b', S3_REGION='eu-west-1',
                    AWS_ACCESS_KEY_ID='k', AWS_SECRET_ACCESS_KEY='s')

        assert isinstance(create_transport(SimpleNamespace(TRANSPORT='ssh', **base)), SSHTransport)
        assert isinstance(create_transport(SimpleNamespace(TRANSPORT='LOCAL', **base)), LocalTransport)
        assert isinstance(create_transport(SimpleNamespace(TRANSPORT='s3', **base)), S3Transport)

    def test_invalid_type(self):
        with pytest.raises(ConfigurationError):
            create_transport(SimpleNamespace(TRANSPORT='ftp'))
