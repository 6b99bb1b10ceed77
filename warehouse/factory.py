"""
Warehouse client selection from a URL
"""

from core.config import settings
from core.database import create_warehouse_engine
from warehouse.base import WarehouseClient
from warehouse.memory import InMemoryWarehouse
from warehouse.sql import SqlWarehouse

MEMORY_URL_PREFIX = "memory://"


def create_warehouse(url: str = None) -> WarehouseClient:
    """``memory://`` selects the in-process warehouse, anything else is a SQLAlchemy URL"""
    url = url or settings.WAREHOUSE_URL
    if url.startswith(MEMORY_URL_PREFIX):
        return InMemoryWarehouse()
    return SqlWarehouse(create_warehouse_engine(url), insert_chunk_size=settings.BATCH_SIZE)
