"""
Error taxonomy for the backup controller.

Every failure raised by a component carries an ErrorKind so callers can
tell fatal configuration problems from transport failures that are worth
retrying by an outer restart policy.
"""

from enum import Enum


class ErrorKind(Enum):
    """Closed set of failure classes."""
    CONFIGURATION = 'configuration'
    CONTAINER_CONTROL = 'container-control'
    ARCHIVE = 'archive'
    TRANSPORT = 'transport'
    POLICY = 'policy'
    CONCURRENCY = 'concurrency'


class BackupError(Exception):
    """Base class for all controller errors."""
    kind = ErrorKind.CONFIGURATION
    retryable = False


class ConfigurationError(BackupError):
    """Raised for missing or invalid operator configuration."""
    kind = ErrorKind.CONFIGURATION


class PolicyError(BackupError):
    """Raised when a retention policy is malformed."""
    kind = ErrorKind.POLICY


class LockError(BackupError):
    """Raised when another cycle already holds the cycle lock."""
    kind = ErrorKind.CONCURRENCY
