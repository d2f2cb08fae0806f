"""Apply pending attribute migrations (deploy hook / operator action)."""

from __future__ import annotations

import logging
import sys

from app.runtime import build_object_manager
from attribute_errors import MigrationError, MigrationInProgressError


logger = logging.getLogger("objmgr")


def main() -> int:
    logging.basicConfig(level=logging.INFO)
    manager = build_object_manager()
    pending = manager.pending()
    logger.info("migrate_pending count=%s", len(pending))
    try:
        manager.migration_execute()
    except MigrationInProgressError:
        logger.warning("migrate_skipped reason=in_progress")
        return 2
    except MigrationError as exc:
        logger.error("migrate_failed retryable=%s error=%s", exc.retryable, exc)
        return 1
    logger.info("migrate_ok count=%s", len(pending))
    return 0


if __name__ == "__main__":
    sys.exit(main())
