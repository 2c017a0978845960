"""
Retention policy enforcement for remote backups.

The policy keeps at most ``count`` artifacts, none older than ``period_days``,
spread evenly across the retention window and always including the newest
one. Deciding what to delete is a pure function; BackupPruner applies the
decision through a transport.
"""

import logging
import math
import posixpath
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional

from volume_backup.errors import PolicyError
from .naming import is_artifact_name, parse_artifact_date
from .transport import Transport, TransportError


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetentionPolicy:
    """
    Per-run retention settings.

    Attributes:
        count: Maximum number of artifacts to keep (None = unbounded)
        period_days: Maximum artifact age in days (None = unbounded)
    """
    count: Optional[int] = None
    period_days: Optional[int] = None

    def __post_init__(self):
        for field_name in ('count', 'period_days'):
            value = getattr(self, field_name)
            if value is not None and value < 0:
                raise PolicyError(f"Retention {field_name} must not be negative: {value}")

    @classmethod
    def unbounded(cls) -> 'RetentionPolicy':
        """Policy that keeps every well-named artifact."""
        return cls()

    def describe(self) -> str:
        count = 'unbounded' if self.count is None else self.count
        period = 'unbounded' if self.period_days is None else f"{self.period_days} days"
        return f"count={count}, period={period}"


def select_for_deletion(
    artifacts: Iterable[str],
    policy: RetentionPolicy,
    now: Optional[datetime] = None
) -> List[str]:
    """
    Decide which artifacts a retention policy does not keep.

    Artifacts that fail to parse or are not strictly newer than the age
    cutoff are always deleted. The rest (the survivor pool, newest first) is
    thinned in passes: each pass keeps the first element and then every
    element at least ``ceil(pool / free_slots)`` positions after the last kept
    one. Integer rounding can under-fill a pass, so passes repeat on the
    remaining pool until ``count`` artifacts are kept or the pool runs dry.

    Args:
        artifacts: Artifact file names
        policy: Retention policy to apply
        now: Reference time for the age cutoff (default: datetime.now())

    Returns:
        Names to delete, in input order
    """
    artifacts = list(artifacts)
    now = now or datetime.now()
    cutoff = None
    if policy.period_days is not None:
        cutoff = now - timedelta(days=policy.period_days)

    pool = []
    for name in artifacts:
        created = parse_artifact_date(name)
        if created is None:
            continue
        if cutoff is not None and not created > cutoff:
            continue
        pool.append((name, created))

    pool.sort(key=lambda item: item[1], reverse=True)

    retained = set()
    if policy.count is None:
        retained.update(name for name, _ in pool)

    else:
        while len(retained) < policy.count and pool:
            interval = math.ceil(len(pool) / (policy.count - len(retained)))
            last_kept = 0

            for index, (name, _) in enumerate(pool):
                if index == 0 or index - last_kept >= interval:
                    retained.add(name)
                    last_kept = index

            pool = [item for item in pool if item[0] not in retained]

    return [name for name in artifacts if name not in retained]


class BackupPruner:
    """
    Deletes remote artifacts that the retention policy does not keep.
    """

    def __init__(self, transport: Transport, remote_directory: str):
        """
        Initialize backup pruner.

        Args:
            transport: Transport to the backup target
            remote_directory: Directory holding the artifacts
        """
        self.transport = transport
        self.remote_directory = remote_directory
        self.logs = []

    def prune(self, policy: RetentionPolicy, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Apply a retention policy to the remote directory.

        Individual delete failures are logged and collected; the remaining
        deletions still run.

        Args:
            policy: Retention policy to apply
            now: Reference time for the age cutoff

        Returns:
            Dict with summary of the run:
            {
                'listed': int,
                'deleted': List[str],
                'errors': List[str],
                'logs': List[str]
            }

        Raises:
            TransportError: If the remote directory cannot be listed
        """
        self._log(f"Applying retention policy ({policy.describe()}) to {self.remote_directory}")

        names = [name for name in self.transport.list_directory(self.remote_directory)
                 if is_artifact_name(name)]
        to_delete = select_for_deletion(names, policy, now=now)

        summary = {
            'listed': len(names),
            'deleted': [],
            'errors': []
        }

        for name in to_delete:
            remote_path = posixpath.join(self.remote_directory, name)
            try:
                self.transport.delete_file(remote_path)
                summary['deleted'].append(name)
                self._log(f"Deleted backup: {name}")
            except TransportError as e:
                error_msg = f"Failed to delete backup {name}: {e}"
                logger.error(error_msg)
                self.logs.append(error_msg)
                summary['errors'].append(error_msg)

        self._log(
            f"Retention complete. Listed: {summary['listed']}, "
            f"deleted: {len(summary['deleted'])}, errors: {len(summary['errors'])}"
        )

        summary['logs'] = self.logs
        return summary

    def _log(self, message: str):
        self.logs.append(message)
        logger.info(message)
