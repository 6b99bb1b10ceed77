"""
Pytest configuration and fixtures
"""

import pytest
from datetime import datetime

from export.codec import RecordCodec
from export.runner import ExportRunner
from schemas.export import ExportDestination
from schemas.product import Product
from warehouse.memory import InMemoryWarehouse

FIXED_NOW = datetime(2024, 1, 15, 10, 0, 0)


def build_product(key, **overrides) -> Product:
    fields = {
        "longArticleId": str(key),
        "title": f"Product {key}",
        "article": f"ART-{key}",
        "descriptionContent": f"Description of product {key}",
        "mainCategoryTitle": "Electronics",
        "categoryTree": "Electronics/Audio/Headphones",
        "image": f"https://example.com/images/{key}.png",
        "producerTitle": "Acme",
        "modified": "2023-12-01T08:00:00.000000",
    }
    fields.update(overrides)
    return Product(**fields)


@pytest.fixture
def product_factory():
    """Build a product with realistic field values"""
    return build_product


@pytest.fixture
def products():
    """Ten products with keys "1".."10" """
    return [build_product(i) for i in range(1, 11)]


@pytest.fixture
def fixed_codec():
    """Codec whose freshness clock always returns FIXED_NOW"""
    return RecordCodec(clock=lambda: FIXED_NOW)


@pytest.fixture
def destination():
    return ExportDestination(
        dataset_name="products",
        table_name="product",
        staging_table_name="product_tmp",
        batch_size=4
    )


@pytest.fixture
def warehouse(destination):
    """In-process warehouse with empty target and staging tables"""
    warehouse = InMemoryWarehouse()
    warehouse.create_table(destination.target)
    warehouse.create_table(destination.staging)
    return warehouse


@pytest.fixture
def export_path(tmp_path):
    return str(tmp_path / "export.ndjson")


@pytest.fixture
def runner(warehouse, fixed_codec, export_path):
    return ExportRunner(
        warehouse,
        codec=fixed_codec,
        export_file_path=export_path,
        truncate_before_write=True
    )
