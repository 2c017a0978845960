"""
Artifact naming convention.

Combined backups are stored remotely as ``backup-YYYY-MM-DDTHH-MM-SS.tar.gz``.
The embedded timestamp is the only metadata the retention policy relies on.
"""

from datetime import datetime
from typing import Optional


ARTIFACT_PREFIX = 'backup-'
ARTIFACT_SUFFIX = '.tar.gz'
ARTIFACT_GLOB = f'{ARTIFACT_PREFIX}*{ARTIFACT_SUFFIX}'
TIMESTAMP_FORMAT = '%Y-%m-%dT%H-%M-%S'


def format_timestamp(moment: datetime) -> str:
    """Format a datetime the way artifact names embed it."""
    return moment.strftime(TIMESTAMP_FORMAT)


def artifact_name(moment: datetime) -> str:
    """
    Build the artifact file name for a backup taken at ``moment``.

    Args:
        moment: Time the combination step started

    Returns:
        File name such as ``backup-2024-01-15T02-00-00.tar.gz``
    """
    return f"{ARTIFACT_PREFIX}{format_timestamp(moment)}{ARTIFACT_SUFFIX}"


def is_artifact_name(name: str) -> bool:
    """Check the prefix and suffix only; the timestamp may still be garbage."""
    return name.startswith(ARTIFACT_PREFIX) and name.endswith(ARTIFACT_SUFFIX)


def parse_artifact_date(name: str) -> Optional[datetime]:
    """
    Extract the creation time from an artifact name.

    Args:
        name: Remote file name

    Returns:
        Naive datetime, or None if the name does not follow the convention
    """
    if not is_artifact_name(name):
        return None

    timestamp = name[len(ARTIFACT_PREFIX):len(name) - len(ARTIFACT_SUFFIX)]
    try:
        return datetime.strptime(timestamp, TIMESTAMP_FORMAT)
    except ValueError:
        return None
