"""
Warehouse engine creation with SQLAlchemy async
"""

from sqlalchemy.ext.asyncio import create_async_engine, AsyncEngine
from sqlalchemy.pool import NullPool
from core.config import settings
import logging

logger = logging.getLogger(__name__)


def create_warehouse_engine(url: str = None) -> AsyncEngine:
    """Create async engine for the SQL warehouse"""
    url = url or settings.WAREHOUSE_URL
    logger.debug(f"Creating warehouse engine for {url.split('@')[-1]}")
    return create_async_engine(
        url,
        echo=settings.ENVIRONMENT == "development",
        poolclass=NullPool,  # Jobs open short-lived connections
        future=True
    )
