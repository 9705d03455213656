import json

import pytest

from rs2bq.config import STEPS, get_config, parse_args, parse_steps, require_config
from rs2bq.errors import CliError, ConfigError


@pytest.fixture
def rs_credentials_file(tmp_path):
    path = tmp_path / "rs.json"
    path.write_text(json.dumps({"host": "rs.example.com", "port": 5439, "username": "u", "password": "p"}))
    return str(path)


@pytest.fixture
def base_argv(rs_credentials_file):
    return [
        "--rs-credentials", rs_credentials_file,
        "--rs-database", "sales",
        "--rs-table", "orders",
        "--bq-dataset", "analytics",
        "--s3-bucket", "my-s3-bucket",
        "--cs-bucket", "my-gcs-bucket",
    ]


def test_defaults(base_argv):
    config = parse_args(base_argv, environ={})
    assert config.rs_schema == "public"
    assert config.bq_table_id == "orders"
    assert config.steps == STEPS
    assert config.compression is True
    assert config.unload_allow_overwrite is False
    assert config.transfer_allow_overwrite is False
    assert config.poll_interval == 60
    assert config.s3_prefix is None
    assert config.rs_credentials["host"] == "rs.example.com"
    assert config.aws_credentials is None
    assert config.run_id


def test_options(base_argv, tmp_path):
    aws = tmp_path / "aws.json"
    aws.write_text(json.dumps({"aws_access_key_id": "a", "aws_secret_access_key": "b", "region": "eu-west-1"}))
    config = parse_args(base_argv + [
        "--rs-schema", "finance",
        "--bq-table", "orders_copy",
        "--s3-prefix", "nightly/",
        "--aws-credentials", str(aws),
        "--max-bad-records", "10",
        "--steps", "cleanup,unload",
        "--no-compression",
        "--allow-unload-overwrite",
        "--poll-interval", "5",
        "--run-id", "abc",
    ], environ={})
    assert config.rs_schema == "finance"
    assert config.bq_table_id == "orders_copy"
    assert config.s3_prefix == "nightly/"
    assert config.aws_credentials["region"] == "eu-west-1"
    assert config.max_bad_records == 10
    assert config.steps == ("unload", "cleanup")
    assert config.compression is False
    assert config.unload_allow_overwrite is True
    assert config.poll_interval == 5
    assert config.run_id == "abc"
    assert config.run("unload") and not config.run("transfer")


def test_missing_arguments_are_reported_together():
    with pytest.raises(CliError) as excinfo:
        parse_args([], environ={})
    details = excinfo.value.details
    for flag in ("--rs-credentials", "--rs-database", "--rs-table", "--bq-dataset", "--s3-bucket", "--cs-bucket"):
        assert "{} is required".format(flag) in details
    assert "usage:" in excinfo.value.usage


def test_missing_credential_files_are_reported(base_argv):
    with pytest.raises(CliError) as excinfo:
        parse_args(base_argv + ["--aws-credentials", "/nope/aws.json", "--gcp-credentials", "/nope/gcp.json"],
                   environ={})
    assert '"/nope/aws.json" does not exist' in excinfo.value.details
    assert '"/nope/gcp.json" does not exist' in excinfo.value.details


def test_gcp_credentials_fall_back_to_the_environment(base_argv, tmp_path):
    gcp = tmp_path / "gcp.json"
    gcp.write_text("{}")
    config = parse_args(base_argv, environ={"GOOGLE_APPLICATION_CREDENTIALS": str(gcp)})
    assert config.gcp_credentials_path == str(gcp)


def test_incomplete_credentials_file(base_argv, tmp_path):
    aws = tmp_path / "aws.json"
    aws.write_text(json.dumps({"aws_access_key_id": "a"}))
    with pytest.raises(CliError) as excinfo:
        parse_args(base_argv + ["--aws-credentials", str(aws)], environ={})
    assert "Missing required config: aws_credentials.aws_secret_access_key" in excinfo.value.details


def test_bad_values(base_argv):
    with pytest.raises(CliError) as excinfo:
        parse_args(base_argv + ["--steps", "unload,explode", "--poll-interval", "0"], environ={})
    assert any("explode" in d for d in excinfo.value.details)
    assert "--poll-interval must be greater than zero" in excinfo.value.details


def test_non_integer_max_bad_records(base_argv):
    with pytest.raises(CliError):
        parse_args(base_argv + ["--max-bad-records", "many"], environ={})


def test_parse_steps_keeps_pipeline_order():
    assert parse_steps(None) == STEPS
    assert parse_steps("") == STEPS
    assert parse_steps("load, transfer") == ("transfer", "load")
    with pytest.raises(ConfigError):
        parse_steps("upload")


def test_require_config():
    assert require_config({"a": 1}, "a", "cfg") == 1
    assert require_config({"a": ""}, "a", "cfg", allow_empty_str=True) == ""
    with pytest.raises(ConfigError, match="cfg.b"):
        require_config({"a": 1}, "b", "cfg")
    with pytest.raises(ConfigError):
        require_config({"a": None}, "a", "cfg")
    assert get_config({}, "a", 3) == 3
