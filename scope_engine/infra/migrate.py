from __future__ import annotations

import os

from alembic import command
from alembic.config import Config

ALEMBIC_CONFIG = os.getenv("ALEMBIC_CONFIG", "alembic.ini")


def run_upgrade_head(revision: str = "head") -> None:
    config = Config(ALEMBIC_CONFIG)
    command.upgrade(config, revision)


if __name__ == "__main__":
    run_upgrade_head()
