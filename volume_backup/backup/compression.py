"""
Archive codec for volume snapshots and combined bundles.

All archives are gzip compressed tarballs:
- per-volume archives hold the volume tree relative to ``.``
- combined bundles hold each per-volume archive as a top-level entry
"""

import os
import tarfile
from pathlib import Path
from typing import List

from volume_backup.errors import BackupError, ErrorKind


class CompressionError(BackupError):
    """Raised when archive creation or extraction fails."""
    kind = ErrorKind.ARCHIVE


def _remove_partial(archive_path: str):
    if os.path.exists(archive_path):
        try:
            os.remove(archive_path)
        except OSError:
            pass


def compress_directory(directory: str, archive_path: str) -> str:
    """
    Compress a directory tree into a tar.gz archive.

    Args:
        directory: Directory to archive
        archive_path: Output archive path (including extension)

    Returns:
        Path to the created archive

    Raises:
        CompressionError: If the directory is missing or archiving fails
    """
    source = Path(directory)
    if not source.is_dir():
        raise CompressionError(f"Directory does not exist: {directory}")

    try:
        with tarfile.open(archive_path, 'w:gz') as tar:
            tar.add(str(source), arcname='.', recursive=True)
        return archive_path
    except Exception as e:
        _remove_partial(archive_path)
        raise CompressionError(f"Failed to compress {directory}: {e}") from e


def compress_files(file_paths: List[str], archive_path: str) -> str:
    """
    Fold files into one tar.gz archive, flattening them to their basenames.

    Each input file is removed as soon as it has been added so disk usage
    stays close to a single copy of the data.

    Args:
        file_paths: Files to include
        archive_path: Output archive path (including extension)

    Returns:
        Path to the created archive

    Raises:
        CompressionError: If an input is missing or archiving fails
    """
    try:
        with tarfile.open(archive_path, 'w:gz') as tar:
            for file_path in file_paths:
                source = Path(file_path)

                if not source.is_file():
                    raise CompressionError(f"File does not exist: {file_path}")

                tar.add(str(source), arcname=source.name, recursive=False)
                source.unlink()
        return archive_path
    except CompressionError:
        _remove_partial(archive_path)
        raise
    except Exception as e:
        _remove_partial(archive_path)
        raise CompressionError(f"Failed to combine archives: {e}") from e


def decompress_archive(archive_path: str, output_dir: str) -> str:
    """
    Extract a tar.gz archive into a directory.

    Members that would land outside ``output_dir`` are rejected.

    Args:
        archive_path: Archive to extract
        output_dir: Destination directory (created if missing)

    Returns:
        The output directory

    Raises:
        CompressionError: If the archive is missing, corrupt or unsafe
    """
    if not os.path.isfile(archive_path):
        raise CompressionError(f"Archive not found: {archive_path}")

    destination = Path(output_dir).resolve()
    destination.mkdir(parents=True, exist_ok=True)

    try:
        with tarfile.open(archive_path, 'r:gz') as tar:
            for member in tar.getmembers():
                target = (destination / member.name).resolve()
                if target != destination and destination not in target.parents:
                    raise CompressionError(
                        f"Refusing to extract {member.name} outside {output_dir}"
                    )
            if hasattr(tarfile, 'tar_filter'):
                tar.extractall(str(destination), filter='tar')
            else:
                tar.extractall(str(destination))
        return output_dir
    except CompressionError:
        raise
    except Exception as e:
        raise CompressionError(f"Failed to extract {archive_path}: {e}") from e


def get_archive_size(archive_path: str) -> int:
    """
    Get the size of an archive file in bytes.

    Raises:
        CompressionError: If file doesn't exist or cannot be accessed
    """
    try:
        return os.path.getsize(archive_path)
    except FileNotFoundError:
        raise CompressionError(f"Archive not found: {archive_path}")
    except OSError as e:
        raise CompressionError(f"Failed to get archive size: {e}")
