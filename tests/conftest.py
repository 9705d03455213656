import datetime as dt
from collections import OrderedDict

import pytest
import pytz
from botocore.exceptions import ClientError
from google.api_core.exceptions import NotFound

from rs2bq.clients import AwsCredentials
from rs2bq.config import RunConfig


class FakeS3Client:
    """In-memory stand-in for the boto3 S3 client calls the project uses."""

    def __init__(self, objects=None, page_size=1000):
        self.objects = OrderedDict()
        for bucket, keys in (objects or {}).items():
            self.objects[bucket] = OrderedDict(keys)
        self.page_size = page_size
        self.deleted = []
        self.list_calls = []
        self.fail_on_delete = {}

    def list_objects_v2(self, Bucket, Prefix, ContinuationToken=None):
        self.list_calls.append((Bucket, Prefix))
        keys = [(k, s) for k, s in self.objects.get(Bucket, {}).items() if k.startswith(Prefix)]
        start = int(ContinuationToken or 0)
        page = keys[start:start + self.page_size]
        response = {"KeyCount": len(page), "IsTruncated": start + self.page_size < len(keys)}
        if page:
            response["Contents"] = [{"Key": k, "Size": s} for k, s in page]
        if response["IsTruncated"]:
            response["NextContinuationToken"] = str(start + self.page_size)
        return response

    def delete_object(self, Bucket, Key):
        if Key in self.fail_on_delete:
            raise ClientError({"Error": {"Code": self.fail_on_delete[Key], "Message": "denied"}}, "DeleteObject")
        self.deleted.append((Bucket, Key))
        self.objects.get(Bucket, {}).pop(Key, None)
        return {}


class FakeBlob:
    def __init__(self, client, bucket, key):
        self.client = client
        self.bucket = bucket
        self.key = key

    def delete(self):
        if self.key in self.client.fail_on_delete:
            raise self.client.fail_on_delete[self.key]
        self.client.delete_attempts.append((self.bucket, self.key))
        keys = self.client.objects.get(self.bucket, set())
        if self.key not in keys:
            raise NotFound("No such object: {}/{}".format(self.bucket, self.key))
        keys.discard(self.key)


class FakeBucket:
    def __init__(self, client, name):
        self.client = client
        self.name = name

    def blob(self, key):
        return FakeBlob(self.client, self.name, key)


class FakeGCSClient:
    def __init__(self, objects=None):
        self.objects = {bucket: set(keys) for bucket, keys in (objects or {}).items()}
        self.delete_attempts = []
        self.fail_on_delete = {}

    def bucket(self, name):
        return FakeBucket(self, name)


class FakeCursor:
    def __init__(self, connection):
        self.connection = connection
        self.rows = []
        self.closed = False

    def execute(self, sql, params=None):
        self.connection.executed.append((sql, params))
        if self.connection.execute_error is not None and sql.startswith("UNLOAD"):
            raise self.connection.execute_error
        if "information_schema" in sql:
            self.rows = list(self.connection.column_rows)

    def fetchall(self):
        return self.rows

    def close(self):
        self.closed = True


class FakeConnection:
    def __init__(self, column_rows=None, execute_error=None):
        self.column_rows = column_rows or []
        self.execute_error = execute_error
        self.executed = []
        self.commits = 0
        self.closed = False

    def cursor(self):
        return FakeCursor(self)

    def commit(self):
        self.commits += 1

    def close(self):
        self.closed = True

    def unload_statements(self):
        return [sql for sql, _ in self.executed if sql.startswith("UNLOAD")]


@pytest.fixture
def aws_credentials():
    return AwsCredentials(
        access_key_id="my-aws-access-key-id",
        secret_access_key="my-aws-secret-access-key",
        region="us-east-1",
    )


@pytest.fixture
def fixed_now():
    return dt.datetime(2016, 3, 11, 19, 2, 33, tzinfo=pytz.utc)


@pytest.fixture
def run_config():
    def _make(**overrides):
        values = dict(
            rs_credentials={"host": "rs.example.com", "port": 5439, "username": "u", "password": "p"},
            rs_database="sales",
            rs_schema="public",
            rs_table="orders",
            bq_dataset="analytics",
            s3_bucket="my-s3-bucket",
            cs_bucket="my-gcs-bucket",
            s3_prefix="nightly/",
            run_id="run001",
            poll_interval=13,
        )
        values.update(overrides)
        return RunConfig(**values)
    return _make
