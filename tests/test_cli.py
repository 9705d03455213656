import json
import logging

import pytest
from botocore.exceptions import NoRegionError
from google.auth.exceptions import RefreshError

from rs2bq import cli
from rs2bq.errors import TransferError
from rs2bq.pipeline import Pipeline
from rs2bq.schema import ColumnSpec

from conftest import FakeS3Client


@pytest.fixture
def argv(tmp_path):
    rs = tmp_path / "rs.json"
    rs.write_text(json.dumps({"host": "h", "port": 5439, "username": "u", "password": "p"}))
    return [
        "--rs-credentials", str(rs),
        "--rs-database", "sales",
        "--rs-table", "orders",
        "--bq-dataset", "analytics",
        "--s3-bucket", "my-s3-bucket",
        "--cs-bucket", "my-gcs-bucket",
        "--lock-dir", str(tmp_path / "locks"),
    ]


@pytest.fixture(autouse=True)
def no_logging_setup(monkeypatch):
    monkeypatch.setattr(cli, "configure_logging", lambda **kwargs: None)


class FakePipeline:
    def __init__(self, error=None):
        self.error = error
        self.ran = False
        self.closed = False

    def run(self):
        self.ran = True
        if self.error:
            raise self.error

    def close(self):
        self.closed = True


def test_configuration_errors_exit_with_usage(capsys):
    assert cli.main([]) == cli.EXIT_CONFIG
    err = capsys.readouterr().err
    assert "Configuration missing or malformed" in err
    assert "--rs-database is required" in err
    assert "usage:" in err


def test_successful_run(argv, monkeypatch, tmp_path):
    pipeline = FakePipeline()
    monkeypatch.setattr(cli, "build_pipeline", lambda config: pipeline)

    assert cli.main(argv) == cli.EXIT_OK
    assert pipeline.ran and pipeline.closed
    assert list((tmp_path / "locks").iterdir()) == []


def test_step_failure_is_reported_with_kind_and_step(argv, monkeypatch, caplog):
    caplog.set_level(logging.ERROR)
    pipeline = FakePipeline(TransferError("job failed", step="transfer"))
    monkeypatch.setattr(cli, "build_pipeline", lambda config: pipeline)

    assert cli.main(argv) == cli.EXIT_FAILED
    assert "[ERROR] step=transfer kind=TransferError message=job failed" in caplog.messages
    assert pipeline.closed


def test_aws_auth_errors_become_connect_errors(argv, monkeypatch, caplog):
    caplog.set_level(logging.ERROR)

    def fail(config):
        raise NoRegionError()

    monkeypatch.setattr(cli, "build_pipeline", fail)

    assert cli.main(argv) == cli.EXIT_FAILED
    assert any(m.startswith("[ERROR] step=setup kind=ConnectError message=AWS configuration missing or malformed")
               for m in caplog.messages)


def test_concurrent_run_is_refused(argv, monkeypatch, tmp_path, caplog):
    caplog.set_level(logging.ERROR)
    locks = tmp_path / "locks"
    locks.mkdir()
    (locks / "sales__public__orders.lock").write_text("pid=1")
    monkeypatch.setattr(cli, "build_pipeline", lambda config: pytest.fail("pipeline must not be built"))

    assert cli.main(argv) == cli.EXIT_FAILED
    assert any("kind=LockError" in m for m in caplog.messages)
    assert (locks / "sales__public__orders.lock").exists()


def test_auth_failure_during_load_is_reported_against_load(argv, monkeypatch, caplog):
    caplog.set_level(logging.ERROR)

    class Unloader:
        def columns(self, schema_name, table_name):
            return [ColumnSpec("id", "bigint", False)]

    class Loader:
        def load(self, uri, table_id, columns, max_bad_records=None):
            raise RefreshError("invalid_grant")

    s3_client = FakeS3Client({"my-s3-bucket": [("sales/public/orders/sales-public-orders-0000_part_00.gz", 1)]})
    monkeypatch.setattr(cli, "build_pipeline",
                        lambda config: Pipeline(config, s3_client, unloader=Unloader(), loader=Loader()))

    assert cli.main(argv + ["--steps", "load"]) == cli.EXIT_FAILED
    assert "[ERROR] step=load kind=ConnectError message=GCP configuration missing or malformed: invalid_grant" \
        in caplog.messages
