import datetime as dt
from dataclasses import dataclass
from typing import Optional

import pytz


@dataclass(frozen=True)
class RunIdentity:
    database: str
    schema: str
    table: str
    user_segment: Optional[str] = None

    @property
    def prefix(self) -> str:
        return prefix_for(self, self.user_segment)


def strip_separators(segment: Optional[str]) -> str:
    return (segment or "").strip("/")


def prefix_for(identity: RunIdentity, user_segment: Optional[str] = None) -> str:
    """
    Object key prefix shared by every object of one run:

        [<segment>/]<db>/<schema>/<table>/<db>-<schema>-<table>-

    Segments are opaque; only leading/trailing separators are removed from the
    user segment.
    """
    db_name = identity.database
    schema_name = identity.schema
    table_name = identity.table
    prefix = "{0}/{1}/{2}/{0}-{1}-{2}-".format(db_name, schema_name, table_name)
    segment = strip_separators(user_segment)
    if segment:
        prefix = "{}/{}".format(segment, prefix)
    return prefix.lstrip("/")


def transfer_description(identity: RunIdentity, now: Optional[dt.datetime] = None) -> str:
    now = now or dt.datetime.now(pytz.utc)
    return "rs2bq-{}-{}-{}-{}".format(identity.database, identity.schema, identity.table, now.strftime("%Y%m%dT%H%M"))


def s3_uri(bucket: str, key: str) -> str:
    return "s3://{}/{}".format(bucket, key)


def gcs_uri(bucket: str, key: str) -> str:
    return "gs://{}/{}".format(bucket, key)
