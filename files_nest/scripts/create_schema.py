#!/usr/bin/env python3
"""Create the files-nest tables in the configured database."""

import asyncio
import logging

from files_nest.config import get_config
from files_nest.logging_config import setup_loki_logging
from files_nest.orm import create_schema
from files_nest.orm import initialize_engine


logger = logging.getLogger(__name__)


async def main() -> None:
    config = get_config()
    setup_loki_logging(config, "create_schema", include_context=False)

    engine = initialize_engine(config.database_url)
    try:
        await create_schema(engine)
    finally:
        await engine.dispose()
    logger.info("Schema creation completed")


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
