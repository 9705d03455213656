import logging
import sys
from typing import List, Optional

from botocore.exceptions import NoCredentialsError, NoRegionError
from google.auth.exceptions import GoogleAuthError

from rs2bq.config import parse_args
from rs2bq.errors import CliError, ConnectError, FrameworkError
from rs2bq.locking import RunLock
from rs2bq.logs import build_log_filename, configure_logging
from rs2bq.naming import RunIdentity
from rs2bq.pipeline import build_pipeline

logger = logging.getLogger("rs2bq.cli")

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CONFIG = 2


def report_error(exc: FrameworkError) -> None:
    logger.error("[ERROR] step=%s kind=%s message=%s", exc.step or "setup", type(exc).__name__, exc)


def run(config) -> None:
    lock = None
    if config.lock_dir:
        identity = RunIdentity(config.rs_database, config.rs_schema, config.rs_table, config.s3_prefix)
        lock = RunLock(config.lock_dir, identity, config.run_id)
        lock.acquire()
    try:
        pipeline = build_pipeline(config)
        try:
            pipeline.run()
        finally:
            pipeline.close()
    except (NoCredentialsError, NoRegionError) as exc:
        raise ConnectError("AWS configuration missing or malformed: {}".format(exc)) from exc
    except GoogleAuthError as exc:
        raise ConnectError("GCP configuration missing or malformed: {}".format(exc)) from exc
    finally:
        if lock is not None:
            lock.release()


def main(argv: Optional[List[str]] = None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    try:
        config = parse_args(argv)
    except CliError as exc:
        sys.stderr.write("{}\n".format(exc))
        for detail in exc.details:
            sys.stderr.write("  {}\n".format(detail))
        sys.stderr.write("\n{}".format(exc.usage))
        return EXIT_CONFIG

    configure_logging(
        verbose=config.verbose,
        log_dir=config.log_dir,
        log_filename=build_log_filename(config.rs_database, config.rs_schema, config.rs_table),
    )
    logger.info("[BOOT] database=%s schema=%s table=%s run_id=%s steps=%s",
                config.rs_database, config.rs_schema, config.rs_table, config.run_id, ",".join(config.steps))
    try:
        run(config)
    except FrameworkError as exc:
        report_error(exc)
        return EXIT_FAILED
    logger.info("[DONE] run_id=%s", config.run_id)
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
