from typing import Optional
from sqlalchemy import Column, MetaData, String, Table, Text

# Storage column names, in warehouse order
KEY_COLUMN = "longArticleId"

PRODUCT_COLUMNS = (
    KEY_COLUMN,
    "title",
    "article",
    "descriptionContent",
    "mainCategoryTitle",
    "categoryTree",
    "image",
    "producerTitle",
    "modified",
)

VALUE_COLUMNS = tuple(c for c in PRODUCT_COLUMNS if c != KEY_COLUMN)


def product_table(
    name: str,
    metadata: MetaData,
    schema: Optional[str] = None,
    keyed: bool = True
) -> Table:
    """
    Product table definition shared by target and staging tables.

    Both tables carry the same columns. Staging tables are created with
    keyed=False: they are a plain landing area and may hold repeated keys.
    """
    return Table(
        name,
        metadata,
        Column(KEY_COLUMN, String(255), primary_key=keyed, nullable=False),
        Column("title", Text, nullable=True),
        Column("article", Text, nullable=True),
        Column("descriptionContent", Text, nullable=True),
        Column("mainCategoryTitle", Text, nullable=True),
        Column("categoryTree", Text, nullable=True),
        Column("image", Text, nullable=True),
        Column("producerTitle", Text, nullable=True),
        Column("modified", String(64), nullable=True),
        schema=schema,
    )
