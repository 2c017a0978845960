import os

from volume_backup.errors import ConfigurationError, PolicyError
from volume_backup.backup.retention import RetentionPolicy


ACTIONS = ('backup', 'restore')
TRANSPORTS = ('ssh', 'local', 's3')


class Config:
    """Base configuration"""

    DEBUG = False
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')
    LOG_DIR = os.environ.get('LOG_DIR') or '/data/logs'

    # Action: 'backup' or 'restore'
    ACTION = os.environ.get('ACTION', 'backup')

    # Volume mounts and local working state
    BACKUP_PATH = os.environ.get('BACKUP_PATH') or '/backup'
    TEMP_DIR = os.environ.get('TEMP_DIR') or '/tmp/volume-backup'
    LOCK_FILE = os.environ.get('LOCK_FILE') or '/tmp/volume-backup.lock'

    # Transport
    TRANSPORT = os.environ.get('TRANSPORT', 'ssh')
    SERVER_IP = os.environ.get('SERVER_IP')
    SERVER_PORT = os.environ.get('SERVER_PORT', '22')
    SERVER_USER = os.environ.get('SERVER_USER')
    SERVER_DIRECTORY = os.environ.get('SERVER_DIRECTORY', '')
    SSH_KEY_PATH = os.environ.get('SSH_KEY_PATH') or '/.ssh/id_rsa'
    LOCAL_TARGET_DIR = os.environ.get('LOCAL_TARGET_DIR')
    S3_BUCKET = os.environ.get('S3_BUCKET')
    S3_REGION = os.environ.get('S3_REGION', 'us-east-1')
    AWS_ACCESS_KEY_ID = os.environ.get('AWS_ACCESS_KEY_ID')
    AWS_SECRET_ACCESS_KEY = os.environ.get('AWS_SECRET_ACCESS_KEY')

    # Scheduler (no cron expression: run one cycle and exit)
    BACKUP_CRON = os.environ.get('BACKUP_CRON')
    SCHEDULER_TIMEZONE = os.environ.get('SCHEDULER_TIMEZONE')

    # Retention (unset: unbounded)
    BACKUP_RETENTION_COUNT = os.environ.get('BACKUP_RETENTION_COUNT')
    BACKUP_RETENTION_PERIOD_IN_DAYS = os.environ.get('BACKUP_RETENTION_PERIOD_IN_DAYS')

    # Restore
    BACKUP_TO_BE_RESTORED = os.environ.get('BACKUP_TO_BE_RESTORED', 'latest')
    VOLUMES_TO_BE_RESTORED = os.environ.get('VOLUMES_TO_BE_RESTORED', 'all')

    # Container runtime
    SELF_CONTAINER_ID = os.environ.get('SELF_CONTAINER_ID')
    DOCKER_BINARY = os.environ.get('DOCKER_BINARY', 'docker')
    COMMAND_TIMEOUT = os.environ.get('COMMAND_TIMEOUT', '300')


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True

    # Use local data directory for development
    BASE_DIR = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))
    DATA_DIR = os.path.join(BASE_DIR, 'data')
    LOG_DIR = os.path.join(DATA_DIR, 'logs')
    BACKUP_PATH = os.path.join(DATA_DIR, 'volumes')
    TEMP_DIR = os.path.join(DATA_DIR, 'temp')
    LOCK_FILE = os.path.join(DATA_DIR, 'volume-backup.lock')
    TRANSPORT = os.environ.get('TRANSPORT', 'local')
    LOCAL_TARGET_DIR = os.environ.get('LOCAL_TARGET_DIR') or os.path.join(DATA_DIR, 'remote')


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'default': ProductionConfig
}


def _parse_optional_int(name: str, value):
    if value is None or str(value).strip() == '':
        return None
    try:
        parsed = int(str(value).strip())
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got '{value}'")
    if parsed < 0:
        raise ConfigurationError(f"{name} must not be negative, got {parsed}")
    return parsed


def build_retention_policy(cfg) -> RetentionPolicy:
    """
    Build the retention policy from configuration.

    Raises:
        ConfigurationError: If a retention value is not a non-negative integer
    """
    try:
        return RetentionPolicy(
            count=_parse_optional_int('BACKUP_RETENTION_COUNT', cfg.BACKUP_RETENTION_COUNT),
            period_days=_parse_optional_int('BACKUP_RETENTION_PERIOD_IN_DAYS', cfg.BACKUP_RETENTION_PERIOD_IN_DAYS)
        )
    except PolicyError as e:
        raise ConfigurationError(str(e)) from e


def validate_config(cfg):
    """
    Check that the configuration is complete for the selected action.

    Raises:
        ConfigurationError: Describing the first problem found
    """
    if cfg.ACTION not in ACTIONS:
        raise ConfigurationError(
            f"Invalid action: {cfg.ACTION}. Valid options: {list(ACTIONS)}"
        )

    transport = (cfg.TRANSPORT or '').lower()
    if transport not in TRANSPORTS:
        raise ConfigurationError(
            f"Invalid transport type: {cfg.TRANSPORT}. Valid options: {list(TRANSPORTS)}"
        )

    required = {
        'ssh': ('SERVER_IP', 'SERVER_USER', 'SERVER_DIRECTORY', 'SSH_KEY_PATH'),
        'local': ('LOCAL_TARGET_DIR',),
        's3': ('S3_BUCKET',)
    }[transport]
    missing = [name for name in required if not getattr(cfg, name, None)]
    if missing:
        raise ConfigurationError(
            f"Missing configuration for {transport} transport: {', '.join(missing)}"
        )

    if transport == 'ssh':
        _parse_optional_int('SERVER_PORT', cfg.SERVER_PORT)
    _parse_optional_int('COMMAND_TIMEOUT', cfg.COMMAND_TIMEOUT)

    build_retention_policy(cfg)

    if cfg.ACTION == 'backup' and cfg.BACKUP_CRON:
        from volume_backup.scheduler import parse_cron_expression
        parse_cron_expression(cfg.BACKUP_CRON, timezone=cfg.SCHEDULER_TIMEZONE)

    if cfg.ACTION == 'restore':
        if not (cfg.BACKUP_TO_BE_RESTORED or '').strip():
            raise ConfigurationError("BACKUP_TO_BE_RESTORED must be 'latest' or a backup file name")
        if not (cfg.VOLUMES_TO_BE_RESTORED or '').strip():
            raise ConfigurationError("VOLUMES_TO_BE_RESTORED must be 'all' or a comma separated list")
