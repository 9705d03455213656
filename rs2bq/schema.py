import logging
import re
from dataclasses import dataclass
from typing import List

from google.cloud import bigquery

from rs2bq.errors import ExtractError

logger = logging.getLogger(__name__)

COLUMNS_SQL = """
    SELECT column_name, data_type, is_nullable
      FROM information_schema.columns
     WHERE table_schema = %s
       AND table_name   = %s
     ORDER BY ordinal_position
"""

CHARACTER_SQL = r"""('"' || REPLACE(REPLACE(REPLACE({0}, '"', '""'), CHR(10), '\\n'), CHR(13), '\\r') || '"')"""
TIMESTAMP_SQL = "(TO_CHAR({0}, 'YYYY-MM-DD HH24:MI:SS.US'))"
DATE_SQL = "(TO_CHAR({0}, 'YYYY-MM-DD'))"
BOOLEAN_SQL = "(CASE WHEN {0} THEN 1 ELSE 0 END)"
NULLABLE_BOOLEAN_SQL = "(CASE WHEN {0} IS NULL THEN NULL WHEN {0} THEN 1 ELSE 0 END)"

INTEGER_TYPES = ("smallint", "integer", "bigint", "int2", "int4", "int8")
FLOAT_TYPES = ("double precision", "real", "float4", "float8", "float")


@dataclass(frozen=True)
class ColumnSpec:
    name: str
    source_type: str
    nullable: bool = True

    @property
    def base_type(self) -> str:
        return re.sub(r"\(.*\)", "", self.source_type or "").strip().lower()


def quote_identifier(name: str) -> str:
    return '"{}"'.format(name.replace('"', '""'))


def fetch_table_columns(connection, schema_name: str, table_name: str) -> List[ColumnSpec]:
    cursor = connection.cursor()
    try:
        cursor.execute(COLUMNS_SQL, (schema_name, table_name))
        rows = cursor.fetchall()
    finally:
        cursor.close()
    if not rows:
        raise ExtractError("Table {}.{} not found or has no columns".format(schema_name, table_name))
    columns = [ColumnSpec(name=row[0], source_type=row[1], nullable=str(row[2]).upper() == "YES") for row in rows]
    logger.debug("[SCHEMA] %s.%s columns=%s", schema_name, table_name, [c.name for c in columns])
    return columns


def column_to_sql(column: ColumnSpec) -> str:
    """Projection expression used inside UNLOAD so every value has one unambiguous text form."""
    base_type = column.base_type
    ident = quote_identifier(column.name)
    if base_type in INTEGER_TYPES or base_type in FLOAT_TYPES or base_type in ("numeric", "decimal"):
        return ident
    if base_type.startswith("character") or base_type in ("varchar", "char", "bpchar", "text"):
        return CHARACTER_SQL.format(ident)
    if base_type.startswith("timestamp"):
        return TIMESTAMP_SQL.format(ident)
    if base_type == "date":
        return DATE_SQL.format(ident)
    if base_type in ("boolean", "bool"):
        if column.nullable:
            return NULLABLE_BOOLEAN_SQL.format(ident)
        return BOOLEAN_SQL.format(ident)
    raise ExtractError("Unsupported column type: {!r} ({})".format(column.source_type, column.name))


def big_query_type(column: ColumnSpec) -> str:
    base_type = column.base_type
    if base_type in INTEGER_TYPES:
        return "INTEGER"
    if base_type in FLOAT_TYPES:
        return "FLOAT"
    if base_type in ("numeric", "decimal"):
        return "STRING"
    if base_type.startswith("character") or base_type in ("varchar", "char", "bpchar", "text"):
        return "STRING"
    if base_type.startswith("timestamp"):
        return "TIMESTAMP"
    if base_type == "date":
        return "DATE"
    if base_type in ("boolean", "bool"):
        return "BOOLEAN"
    raise ExtractError("Unsupported column type: {!r} ({})".format(column.source_type, column.name))


def column_to_bigquery(column: ColumnSpec) -> bigquery.SchemaField:
    mode = "NULLABLE" if column.nullable else "REQUIRED"
    return bigquery.SchemaField(column.name, big_query_type(column), mode=mode)


def to_bigquery_schema(columns: List[ColumnSpec]) -> List[bigquery.SchemaField]:
    return [column_to_bigquery(c) for c in columns]
