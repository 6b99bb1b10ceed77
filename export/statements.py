"""
Statement builders for merge, truncate and select.

Dataset, table and column names are validated as plain identifiers before
they are interpolated, and quoted with the backend's quote character at
render time. Statements stay structured so an in-process backend can
execute them without parsing SQL.
"""

from pydantic import BaseModel
from typing import Tuple

from core.exceptions import InvalidIdentifierError
from models.product import KEY_COLUMN, PRODUCT_COLUMNS, VALUE_COLUMNS
from schemas.export import IDENTIFIER_PATTERN, TableRef


def validate_identifier(name: str) -> str:
    if not isinstance(name, str) or not IDENTIFIER_PATTERN.match(name):
        raise InvalidIdentifierError(
            "Identifier must contain only letters, digits and underscores",
            context={"identifier": repr(name)}
        )
    return name


def quote_identifier(name: str, quote: str = "`") -> str:
    return f"{quote}{validate_identifier(name)}{quote}"


def quote_table(table: TableRef, quote: str = "`") -> str:
    return f"{quote_identifier(table.dataset, quote)}.{quote_identifier(table.table, quote)}"


def _table_ref(dataset_name: str, table_name: str) -> TableRef:
    return TableRef(
        dataset=validate_identifier(dataset_name),
        table=validate_identifier(table_name)
    )


class MergeStatement(BaseModel):
    """Upsert of every source row into target, matched on one key column"""
    operation: str = "MERGE"
    target: TableRef
    source: TableRef
    key_column: str = KEY_COLUMN
    value_columns: Tuple[str, ...] = VALUE_COLUMNS

    @property
    def columns(self) -> Tuple[str, ...]:
        return (self.key_column,) + tuple(self.value_columns)

    def render(self, quote: str = "`") -> str:
        def q(name):
            return quote_identifier(name, quote)

        key = q(self.key_column)
        updates = ",\n    ".join(f"{q(c)} = s.{q(c)}" for c in self.value_columns)
        insert_columns = ", ".join(q(c) for c in self.columns)
        insert_values = ", ".join(f"s.{q(c)}" for c in self.columns)
        return (
            f"MERGE INTO {quote_table(self.target, quote)} AS t\n"
            f"USING {quote_table(self.source, quote)} AS s\n"
            f"ON t.{key} = s.{key}\n"
            f"WHEN MATCHED THEN UPDATE SET\n"
            f"    {updates}\n"
            f"WHEN NOT MATCHED THEN INSERT ({insert_columns})\n"
            f"VALUES ({insert_values})"
        )

    class Config:
        frozen = True


class TruncateStatement(BaseModel):
    operation: str = "TRUNCATE"
    table: TableRef

    def render(self, quote: str = "`") -> str:
        return f"TRUNCATE TABLE {quote_table(self.table, quote)}"

    class Config:
        frozen = True


class SelectStatement(BaseModel):
    operation: str = "SELECT"
    table: TableRef
    columns: Tuple[str, ...] = PRODUCT_COLUMNS

    def render(self, quote: str = "`") -> str:
        column_list = ",\n    ".join(quote_identifier(c, quote) for c in self.columns)
        return f"SELECT\n    {column_list}\nFROM {quote_table(self.table, quote)}"

    class Config:
        frozen = True


def build_merge_statement(
    dataset_name: str,
    target_table: str,
    staging_table: str,
    key_column: str = KEY_COLUMN,
    value_columns: Tuple[str, ...] = VALUE_COLUMNS
) -> MergeStatement:
    """
    Build the staging -> target upsert.

    Matched keys get every value column overwritten from staging, unmatched
    staging rows are inserted, target rows absent from staging are left
    alone.
    """
    validate_identifier(key_column)
    for column in value_columns:
        validate_identifier(column)
    if key_column in value_columns:
        raise InvalidIdentifierError(
            "Key column cannot also be a value column",
            context={"identifier": key_column}
        )
    return MergeStatement(
        target=_table_ref(dataset_name, target_table),
        source=_table_ref(dataset_name, staging_table),
        key_column=key_column,
        value_columns=tuple(value_columns),
    )


def build_truncate_statement(dataset_name: str, table_name: str) -> TruncateStatement:
    return TruncateStatement(table=_table_ref(dataset_name, table_name))


def build_select_statement(
    dataset_name: str,
    table_name: str,
    columns: Tuple[str, ...] = PRODUCT_COLUMNS
) -> SelectStatement:
    for column in columns:
        validate_identifier(column)
    return SelectStatement(table=_table_ref(dataset_name, table_name), columns=tuple(columns))
