import asyncio
import os

from common.db import create_schema, dispose_db_engine, init_db_engine


async def main() -> None:
    init_db_engine(os.environ["DATABASE_URL"])
    try:
        await create_schema()
    finally:
        await dispose_db_engine()


if __name__ == "__main__":
    asyncio.run(main())
