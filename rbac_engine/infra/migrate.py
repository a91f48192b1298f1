from __future__ import annotations

import logging

from alembic import command
from alembic.config import Config

logger = logging.getLogger(__name__)


def run_upgrade(
    revision: str = "head",
    config_path: str = "alembic.ini",
    database_url: str | None = None,
) -> None:
    config = Config(config_path)
    if database_url is not None:
        config.attributes["database_url"] = database_url
    logger.info("upgrading schema to %s", revision)
    command.upgrade(config, revision)


if __name__ == "__main__":
    run_upgrade()
