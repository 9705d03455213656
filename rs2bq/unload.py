import logging
import re
from typing import Dict, List, Optional, Tuple

import redshift_connector
from botocore.exceptions import BotoCoreError, ClientError

from rs2bq.errors import ConnectError, ExtractError
from rs2bq.naming import s3_uri
from rs2bq.schema import ColumnSpec, column_to_sql, fetch_table_columns, quote_identifier
from rs2bq.storage import list_s3_keys_under_prefix

MAX_FILE_SIZE = "3.9 GB"
FIELD_DELIMITER = r"\t"

_CREDENTIALS_RE = re.compile(r"CREDENTIALS '[^']*'")


def escape_literal(text: str) -> str:
    return text.replace("'", "''")


def build_select_sql(schema_name: str, table_name: str, columns: List[ColumnSpec]) -> str:
    projection = ", ".join(column_to_sql(c) for c in columns)
    return "SELECT {} FROM {}.{}".format(projection, quote_identifier(schema_name), quote_identifier(table_name))


def build_credentials_string(aws_credentials) -> str:
    parts = [
        "aws_access_key_id={}".format(aws_credentials.access_key_id),
        "aws_secret_access_key={}".format(aws_credentials.secret_access_key),
    ]
    if getattr(aws_credentials, "session_token", None):
        parts.append("token={}".format(aws_credentials.session_token))
    return ";".join(parts)


def build_unload_sql(select_sql: str,
                     target_uri: str,
                     credentials_string: str,
                     compression: Optional[bool] = True,
                     allow_overwrite: bool = False) -> str:
    """
    UNLOAD ('<select>') TO '<uri>' CREDENTIALS '<creds>' DELIMITER '\\t'
        [GZIP] [ALLOWOVERWRITE] MAXFILESIZE 3.9 GB

    The select is embedded in a single-quoted literal, so its quotes are doubled.
    Compression is on unless explicitly disabled.
    """
    unload_sql = "UNLOAD ('{}')".format(escape_literal(select_sql))
    unload_sql += " TO '{}'".format(escape_literal(target_uri))
    unload_sql += " CREDENTIALS '{}'".format(escape_literal(credentials_string))
    unload_sql += " DELIMITER '{}'".format(FIELD_DELIMITER)
    if compression or compression is None:
        unload_sql += " GZIP"
    if allow_overwrite:
        unload_sql += " ALLOWOVERWRITE"
    unload_sql += " MAXFILESIZE {}".format(MAX_FILE_SIZE)
    return unload_sql


def redact_credentials(unload_sql: str) -> str:
    return _CREDENTIALS_RE.sub("CREDENTIALS '***'", unload_sql)


class RedshiftUnloader:
    def __init__(self, connection, s3_client, aws_credentials, logger: Optional[logging.Logger] = None):
        self.connection = connection
        self.s3_client = s3_client
        self.aws_credentials = aws_credentials
        self.logger = logger or logging.getLogger(__name__)
        self._columns: Dict[Tuple[str, str], List[ColumnSpec]] = {}

    def columns(self, schema_name: str, table_name: str) -> List[ColumnSpec]:
        cache_key = (schema_name, table_name)
        if cache_key not in self._columns:
            try:
                self._columns[cache_key] = fetch_table_columns(self.connection, schema_name, table_name)
            except redshift_connector.Error as exc:
                raise ExtractError("Schema query for {}.{} failed: {}".format(schema_name, table_name, exc)) from exc
        return self._columns[cache_key]

    def check_destination(self, bucket: str, prefix: str, allow_overwrite: bool) -> None:
        if allow_overwrite:
            return
        try:
            existing = list_s3_keys_under_prefix(self.s3_client, bucket, prefix)
        except (BotoCoreError, ClientError) as exc:
            raise ConnectError("Listing {} failed: {}".format(s3_uri(bucket, prefix), exc)) from exc
        if existing:
            raise ExtractError("Target already exists: {} ({} objects); refusing to overwrite".format(
                s3_uri(bucket, prefix), len(existing)))

    def unload_to(self,
                  schema_name: str,
                  table_name: str,
                  bucket: str,
                  prefix: str,
                  allow_overwrite: bool = False,
                  compression: Optional[bool] = True) -> None:
        target_uri = s3_uri(bucket, prefix)
        self.check_destination(bucket, prefix, allow_overwrite)
        select_sql = build_select_sql(schema_name, table_name, self.columns(schema_name, table_name))
        unload_sql = build_unload_sql(
            select_sql,
            target_uri,
            build_credentials_string(self.aws_credentials),
            compression=compression,
            allow_overwrite=allow_overwrite,
        )
        self.logger.info("Unloading Redshift table %s to %s", table_name, target_uri)
        self.logger.debug("[UNLOAD] %s", redact_credentials(unload_sql))
        cursor = self.connection.cursor()
        try:
            cursor.execute(unload_sql)
            self.connection.commit()
        except redshift_connector.Error as exc:
            raise ExtractError("UNLOAD of {}.{} failed: {}".format(schema_name, table_name, exc)) from exc
        finally:
            cursor.close()
        self.logger.info("Unload of %s complete", table_name)
