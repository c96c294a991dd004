"""
FastAPI dependency injection providers.

Routes receive a ``SqlDataStore`` bound to the request's database session;
tests replace ``get_data_store`` through ``app.dependency_overrides`` with
in-memory stores.

CHANGELOG:
- 2026-10-18: Add DataStore dependency wrapping the request session
- 2026-10-18: Initial creation

TODO:
- None
"""

from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from meter_recon.config import Settings, get_settings
from meter_recon.db.session import get_async_session
from meter_recon.services.data_fetching import SqlDataStore

# Type alias for injecting an async DB session via FastAPI Depends().
DbSession = Annotated[AsyncSession, Depends(get_async_session)]

AppSettings = Annotated[Settings, Depends(get_settings)]


def get_data_store(db: DbSession, settings: AppSettings) -> SqlDataStore:
    """Build the read-only store for one request.

    Args:
        db: Request-scoped async session.
        settings: Application settings (page size).

    Returns:
        SqlDataStore: Reading, tariff and meter store over *db*.
    """
    return SqlDataStore(db, page_size=settings.READINGS_PAGE_SIZE)


# Annotated dependency for route signatures:
#   async def my_endpoint(store: DataStore): ...
DataStore = Annotated[SqlDataStore, Depends(get_data_store)]
