# stockrelay/cli/create_tables.py
import asyncio

import click
from sqlalchemy.ext.asyncio import create_async_engine

from stockrelay.database import Base, get_database_url

# Import the models so they register with Base
from stockrelay.models import IdempotencyRecord, SyncActivity, UpstreamInventoryItem  # noqa: F401


@click.command()
@click.option("--echo", is_flag=True, help="Echo the generated SQL")
def create_tables(echo):
    """Create the engine's tables directly using SQLAlchemy"""

    async def _create_tables():
        engine = create_async_engine(get_database_url(), echo=echo)
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        await engine.dispose()
        click.echo("All tables created successfully!")

    asyncio.run(_create_tables())


if __name__ == "__main__":
    create_tables()
