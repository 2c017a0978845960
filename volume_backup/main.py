"""Process entry point."""

import logging
import sys

from volume_backup import create_controller
from volume_backup.errors import BackupError


logger = logging.getLogger(__name__)


def main(config_name=None) -> int:
    """
    Run the configured action.

    Returns:
        0 on success, 1 on a controller error. Unexpected exceptions propagate.
    """
    try:
        controller = create_controller(config_name)
        controller.run()
    except BackupError as e:
        if not logging.getLogger().handlers:
            logging.basicConfig(level=logging.INFO)
        logger.error(f"{e.kind.value} error: {e}")
        return 1
    return 0


if __name__ == '__main__':
    sys.exit(main())
