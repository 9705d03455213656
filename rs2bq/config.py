import argparse
import json
import logging
import os
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

from rs2bq.errors import CliError, ConfigError

logger = logging.getLogger(__name__)

STEP_UNLOAD = "unload"
STEP_TRANSFER = "transfer"
STEP_LOAD = "load"
STEP_CLEANUP = "cleanup"

STEPS = (STEP_UNLOAD, STEP_TRANSFER, STEP_LOAD, STEP_CLEANUP)

DEFAULT_SCHEMA = "public"
DEFAULT_POLL_INTERVAL = 60

RS_CREDENTIAL_KEYS = ("host", "port", "username", "password")
AWS_CREDENTIAL_KEYS = ("aws_access_key_id", "aws_secret_access_key")


# ============================================================================
# Config helpers
# ============================================================================
def require_config(cfg: Dict[str, Any], key: str, path: str, allow_empty_str: bool = False) -> Any:
    if key not in cfg:
        logger.debug("[CONFIG][MISSING] required key not found: %s.%s (available_keys=%s)", path, key, list(cfg.keys()))
        raise ConfigError("Missing required config: {}.{}".format(path, key))
    value = cfg[key]
    if value is None:
        raise ConfigError("Missing required config: {}.{}".format(path, key))
    if (not allow_empty_str) and isinstance(value, str) and value == "":
        raise ConfigError("Missing required config: {}.{}".format(path, key))
    return value


def get_config(cfg: Dict[str, Any], key: str, default: Any = None) -> Any:
    return cfg[key] if key in cfg else default


def load_json_credentials(file_path: str, label: str, required_keys: Sequence[str]) -> Dict[str, Any]:
    """Read a JSON credentials file and check that every required key is present."""
    if not file_path or not os.path.isfile(file_path):
        raise ConfigError("{} does not exist".format(json.dumps(file_path)))
    try:
        with open(file_path, "r", encoding="utf-8") as file_handle:
            data = json.load(file_handle)
    except ValueError as exc:
        raise ConfigError("{} is not valid JSON: {}".format(file_path, exc)) from exc
    if not isinstance(data, dict):
        raise ConfigError("{} must contain a JSON object".format(file_path))
    for key in required_keys:
        require_config(data, key, label)
    logger.debug("[CREDENTIALS] loaded %s from %s keys=%s", label, file_path, sorted(data.keys()))
    return data


def parse_steps(raw: Optional[str]) -> Tuple[str, ...]:
    """Select steps from a comma separated list, always in pipeline order."""
    if not raw or not raw.strip():
        return STEPS
    requested = [s.strip().lower() for s in raw.split(",") if s.strip()]
    unknown = [s for s in requested if s not in STEPS]
    if unknown:
        raise ConfigError("Unknown step(s): {} (valid: {})".format(", ".join(unknown), ", ".join(STEPS)))
    return tuple(s for s in STEPS if s in requested)


# ============================================================================
# Run configuration
# ============================================================================
@dataclass(frozen=True)
class RunConfig:
    rs_credentials: Dict[str, Any]
    rs_database: str
    rs_table: str
    bq_dataset: str
    s3_bucket: str
    cs_bucket: str
    rs_schema: str = DEFAULT_SCHEMA
    bq_table: Optional[str] = None
    s3_prefix: Optional[str] = None
    aws_credentials: Optional[Dict[str, Any]] = None
    gcp_credentials_path: Optional[str] = None
    max_bad_records: Optional[int] = None
    steps: Tuple[str, ...] = STEPS
    compression: bool = True
    unload_allow_overwrite: bool = False
    transfer_allow_overwrite: bool = False
    poll_interval: float = DEFAULT_POLL_INTERVAL
    log_dir: Optional[str] = None
    lock_dir: Optional[str] = None
    verbose: bool = False
    nr_api_key: Optional[str] = None
    nr_api_endpoint: Optional[str] = None
    run_id: str = ""

    @property
    def bq_table_id(self) -> str:
        return self.bq_table or self.rs_table

    def run(self, step: str) -> bool:
        return step in self.steps


# ============================================================================
# Command line
# ============================================================================
class _ArgumentParser(argparse.ArgumentParser):
    def error(self, message):
        raise CliError("Configuration missing or malformed", [message], self.format_help())


# flag, metavar, type, dest, required
ARGUMENTS = [
    ("--gcp-credentials", "PATH", str, "gcp_credentials_path", False),
    ("--aws-credentials", "PATH", str, "aws_credentials_path", False),
    ("--rs-credentials", "PATH", str, "rs_credentials_path", True),
    ("--rs-database", "DB_NAME", str, "rs_database", True),
    ("--rs-schema", "SCHEMA_NAME", str, "rs_schema", False),
    ("--rs-table", "TABLE_NAME", str, "rs_table", True),
    ("--bq-dataset", "DATASET_ID", str, "bq_dataset", True),
    ("--bq-table", "TABLE_ID", str, "bq_table", False),
    ("--s3-bucket", "BUCKET_NAME", str, "s3_bucket", True),
    ("--s3-prefix", "PREFIX", str, "s3_prefix", False),
    ("--cs-bucket", "BUCKET_NAME", str, "cs_bucket", True),
    ("--max-bad-records", "N", int, "max_bad_records", False),
    ("--steps", "STEPS", str, "steps", False),
    ("--poll-interval", "SECONDS", float, "poll_interval", False),
    ("--log-dir", "PATH", str, "log_dir", False),
    ("--lock-dir", "PATH", str, "lock_dir", False),
    ("--run-id", "RUN_ID", str, "run_id", False),
    ("--nr-api-key", "KEY", str, "nr_api_key", False),
    ("--nr-api-endpoint", "URL", str, "nr_api_endpoint", False),
]


def build_parser() -> argparse.ArgumentParser:
    parser = _ArgumentParser(prog="rs2bq", description="Move a Redshift table to BigQuery via S3 and Cloud Storage")
    for flag, metavar, value_type, dest, _ in ARGUMENTS:
        parser.add_argument(flag, metavar=metavar, type=value_type, dest=dest, default=None)
    parser.add_argument("--compression", dest="compression", action="store_true", default=True)
    parser.add_argument("--no-compression", dest="compression", action="store_false")
    parser.add_argument("--allow-unload-overwrite", dest="unload_allow_overwrite", action="store_true", default=False)
    parser.add_argument("--allow-transfer-overwrite", dest="transfer_allow_overwrite", action="store_true", default=False)
    parser.add_argument("-v", "--verbose", dest="verbose", action="store_true", default=False)
    return parser


def parse_args(argv: List[str], environ: Optional[Dict[str, str]] = None) -> RunConfig:
    """Parse and validate the command line once. Every problem is reported together."""
    environ = os.environ if environ is None else environ
    parser = build_parser()
    usage = parser.format_help()
    args = parser.parse_args(list(argv))

    config_errors: List[str] = []

    for flag, _, _, dest, required in ARGUMENTS:
        if required and getattr(args, dest) in (None, ""):
            config_errors.append("{} is required".format(flag))

    if not args.gcp_credentials_path and environ.get("GOOGLE_APPLICATION_CREDENTIALS"):
        args.gcp_credentials_path = environ["GOOGLE_APPLICATION_CREDENTIALS"]
    if args.gcp_credentials_path and not os.path.isfile(args.gcp_credentials_path):
        config_errors.append("{} does not exist".format(json.dumps(args.gcp_credentials_path)))

    rs_credentials = None
    if args.rs_credentials_path:
        try:
            rs_credentials = load_json_credentials(args.rs_credentials_path, "rs_credentials", RS_CREDENTIAL_KEYS)
        except ConfigError as exc:
            config_errors.append(str(exc))

    aws_credentials = None
    if args.aws_credentials_path:
        try:
            aws_credentials = load_json_credentials(args.aws_credentials_path, "aws_credentials", AWS_CREDENTIAL_KEYS)
        except ConfigError as exc:
            config_errors.append(str(exc))

    steps = STEPS
    try:
        steps = parse_steps(args.steps)
    except ConfigError as exc:
        config_errors.append(str(exc))

    poll_interval = DEFAULT_POLL_INTERVAL if args.poll_interval is None else args.poll_interval
    if poll_interval <= 0:
        config_errors.append("--poll-interval must be greater than zero")

    if args.max_bad_records is not None and args.max_bad_records < 0:
        config_errors.append("--max-bad-records must not be negative")

    if config_errors:
        raise CliError("Configuration missing or malformed", config_errors, usage)

    return RunConfig(
        rs_credentials=rs_credentials,
        rs_database=args.rs_database,
        rs_schema=args.rs_schema or DEFAULT_SCHEMA,
        rs_table=args.rs_table,
        bq_dataset=args.bq_dataset,
        bq_table=args.bq_table,
        s3_bucket=args.s3_bucket,
        s3_prefix=args.s3_prefix,
        cs_bucket=args.cs_bucket,
        aws_credentials=aws_credentials,
        gcp_credentials_path=args.gcp_credentials_path,
        max_bad_records=args.max_bad_records,
        steps=steps,
        compression=args.compression,
        unload_allow_overwrite=args.unload_allow_overwrite,
        transfer_allow_overwrite=args.transfer_allow_overwrite,
        poll_interval=poll_interval,
        log_dir=args.log_dir,
        lock_dir=args.lock_dir,
        verbose=args.verbose,
        nr_api_key=args.nr_api_key,
        nr_api_endpoint=args.nr_api_endpoint,
        run_id=(args.run_id or "").strip() or uuid.uuid4().hex[:12],
    )
