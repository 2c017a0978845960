import os
import logging
from logging.handlers import RotatingFileHandler


def configure_logging(cfg):
    """Configure application logging"""

    # Set log level based on environment
    if cfg.DEBUG:
        log_level = logging.DEBUG
    else:
        log_level = logging.getLevelName(str(cfg.LOG_LEVEL).upper())
        if not isinstance(log_level, int):
            log_level = logging.INFO

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s in %(module)s: %(message)s'
    )
    console_handler.setFormatter(console_formatter)
    handlers = [console_handler]

    # File handler
    if cfg.LOG_DIR:
        os.makedirs(cfg.LOG_DIR, exist_ok=True)
        file_handler = RotatingFileHandler(
            os.path.join(cfg.LOG_DIR, 'volume-backup.log'),
            maxBytes=10485760,  # 10MB
            backupCount=10
        )
        file_handler.setLevel(log_level)
        file_formatter = logging.Formatter(
            '[%(asctime)s] %(levelname)s [%(name)s.%(funcName)s:%(lineno)d] %(message)s'
        )
        file_handler.setFormatter(file_formatter)
        handlers.append(file_handler)

    # paramiko logs every channel event at INFO
    logging.getLogger('paramiko').setLevel(logging.WARNING)

    logging.basicConfig(level=log_level, handlers=handlers, force=True)
    logging.getLogger(__name__).info(f"Logging configured (level: {logging.getLevelName(log_level)})")


def create_controller(config_name=None):
    """Controller factory"""

    # Load configuration
    if config_name is None:
        config_name = os.environ.get('APP_ENV', 'production')

    from volume_backup.config import config
    if config_name not in config:
        from volume_backup.errors import ConfigurationError
        raise ConfigurationError(f"Unknown configuration: {config_name}")
    cfg = config[config_name]

    # Configure logging
    configure_logging(cfg)

    from volume_backup.controller import BackupController
    return BackupController(cfg)
