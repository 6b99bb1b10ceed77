"""
Pydantic schema for the exported product record
"""

from pydantic import BaseModel, Field, field_validator
from typing import Any
from datetime import date, datetime
from decimal import Decimal

# Text format of the freshness timestamp stamped at export time
MODIFIED_FORMAT = "%Y-%m-%dT%H:%M:%S.%f"


def to_text(value: Any) -> str:
    """Coerce a backend-native value to its text form"""
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, datetime):
        return value.strftime(MODIFIED_FORMAT)
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, Decimal):
        return format(value, "f")
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode("utf-8", errors="replace")
    return str(value)


class Product(BaseModel):
    """
    Immutable product record.

    Attribute names are snake_case; the camelCase aliases are the storage
    column names used in the warehouse and in the NDJSON stream.
    ``long_article_id`` is the merge key and must be unique across the
    dataset.
    """

    long_article_id: str = Field("", alias="longArticleId")
    title: str = ""
    article: str = ""
    description_content: str = Field("", alias="descriptionContent")
    main_category_title: str = Field("", alias="mainCategoryTitle")
    category_tree: str = Field("", alias="categoryTree")
    image: str = ""
    producer_title: str = Field("", alias="producerTitle")
    modified: str = ""

    @field_validator("*", mode="before")
    @classmethod
    def coerce_text(cls, v):
        """Accept typed warehouse values for every field"""
        return to_text(v)

    class Config:
        frozen = True
        populate_by_name = True
        extra = "ignore"
