import datetime as dt
import logging
from typing import Callable, Optional

import pytz
from botocore.exceptions import NoCredentialsError, NoRegionError
from google.auth.exceptions import GoogleAuthError

from rs2bq.cleaner import Cleaner
from rs2bq.clients import (
    create_bigquery_client,
    create_gcs_client,
    create_redshift_connection,
    create_s3_client,
    create_transfer_client,
    resolve_aws_credentials,
    resolve_gcp_credentials,
)
from rs2bq.config import STEP_CLEANUP, STEP_LOAD, STEP_TRANSFER, STEP_UNLOAD, RunConfig
from rs2bq.errors import ConnectError, FrameworkError
from rs2bq.load import BigQueryLoader
from rs2bq.manifest import RunManifest, build_manifest
from rs2bq.metrics import StepMetrics
from rs2bq.naming import RunIdentity, gcs_uri, transfer_description
from rs2bq.transfer import CloudStorageTransfer, StorageTransferService
from rs2bq.unload import RedshiftUnloader

STATUS_SUCCESS = "SUCCESS"
STATUS_FAILED = "FAILED"
STATUS_SKIPPED = "SKIPPED"


class Pipeline:
    """
    UNLOAD -> TRANSFER -> LOAD -> CLEANUP, strictly in order.

    Each step can be switched off through ``config.steps``. The manifest is
    built after the unload step whether or not it ran, so transfer and cleanup
    always work from what is actually in S3.
    """

    def __init__(self,
                 config: RunConfig,
                 s3_client,
                 unloader: Optional[RedshiftUnloader] = None,
                 transfer: Optional[CloudStorageTransfer] = None,
                 loader: Optional[BigQueryLoader] = None,
                 cleaner: Optional[Cleaner] = None,
                 metrics: Optional[StepMetrics] = None,
                 clock: Optional[Callable[[], dt.datetime]] = None,
                 logger: Optional[logging.Logger] = None,
                 connection=None):
        self.config = config
        self.identity = RunIdentity(config.rs_database, config.rs_schema, config.rs_table, config.s3_prefix)
        self.s3_client = s3_client
        self.unloader = unloader
        self.transfer_service = transfer
        self.loader = loader
        self.cleaner = cleaner
        self.metrics = metrics or StepMetrics(None, None)
        self.clock = clock or (lambda: dt.datetime.now(pytz.utc))
        self.logger = logger or logging.getLogger(__name__)
        self.connection = connection
        self.manifest: Optional[RunManifest] = None

    @property
    def prefix(self) -> str:
        return self.identity.prefix

    def run(self) -> Optional[RunManifest]:
        self.logger.debug("Setup complete")
        self._step(STEP_UNLOAD, self._unload)
        self._step(STEP_TRANSFER, self._transfer)
        self._step(STEP_LOAD, self._load)
        self._step(STEP_CLEANUP, self._cleanup)
        return self.manifest

    def close(self) -> None:
        if self.connection is not None:
            self.connection.close()
            self.connection = None

    # ------------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------------
    def _step(self, step: str, action: Callable[[bool], None]) -> None:
        enabled = self.config.run(step)
        start_dttm = self.clock()
        status = STATUS_SUCCESS if enabled else STATUS_SKIPPED
        error_msg = ""
        if enabled:
            self.logger.debug("Running %s", step)
        else:
            self.logger.debug("Skipping %s", step)
        try:
            action(enabled)
        except FrameworkError as exc:
            if exc.step is None:
                exc.step = step
            status = STATUS_FAILED
            error_msg = str(exc)
            raise
        except (NoCredentialsError, NoRegionError) as exc:
            status = STATUS_FAILED
            error_msg = "AWS configuration missing or malformed: {}".format(exc)
            raise ConnectError(error_msg, step=step) from exc
        except GoogleAuthError as exc:
            # token refresh happens on the first API call, inside the step
            status = STATUS_FAILED
            error_msg = "GCP configuration missing or malformed: {}".format(exc)
            raise ConnectError(error_msg, step=step) from exc
        except Exception as exc:
            status = STATUS_FAILED
            error_msg = str(exc)
            raise
        finally:
            self.metrics.post({
                "database": self.identity.database,
                "schema": self.identity.schema,
                "table": self.identity.table,
                "run_id": self.config.run_id,
                "step": step,
                "status": status,
                "object_count": len(self.manifest) if self.manifest is not None else 0,
                "start_dttm": start_dttm,
                "end_dttm": self.clock(),
                "error_msg": error_msg,
            })
        if enabled:
            self.logger.debug("%s complete", step.capitalize())

    def _unload(self, enabled: bool) -> None:
        if enabled:
            self.unloader.unload_to(
                self.config.rs_schema,
                self.config.rs_table,
                self.config.s3_bucket,
                self.prefix,
                allow_overwrite=self.config.unload_allow_overwrite,
                compression=self.config.compression,
            )
        self.manifest = build_manifest(self.s3_client, self.config.s3_bucket, self.prefix)

    def _transfer(self, enabled: bool) -> None:
        if not enabled:
            return
        description = transfer_description(self.identity, self.clock())
        self.transfer_service.copy_to_cloud_storage(
            self.manifest,
            self.config.cs_bucket,
            description=description,
            allow_overwrite=self.config.transfer_allow_overwrite,
            poll_interval=self.config.poll_interval,
        )

    def _load(self, enabled: bool) -> None:
        if not enabled:
            return
        if self.manifest is not None and self.manifest.empty:
            self.logger.warning("[LOAD] manifest for %s is empty; nothing to load", self.prefix)
            return
        self.logger.debug("Querying Redshift schema")
        columns = self.unloader.columns(self.config.rs_schema, self.config.rs_table)
        self.loader.load(
            gcs_uri(self.config.cs_bucket, self.prefix + "*"),
            self.config.bq_table_id,
            columns,
            max_bad_records=self.config.max_bad_records,
        )

    def _cleanup(self, enabled: bool) -> None:
        if not enabled:
            return
        self.cleaner.cleanup(self.manifest, self.config.cs_bucket)


def build_pipeline(config: RunConfig) -> Pipeline:
    """Create the clients the selected steps need, once, and wire them into a Pipeline."""
    aws_credentials = resolve_aws_credentials(config)
    s3_client = create_s3_client(aws_credentials)

    connection = None
    unloader = None
    if config.run(STEP_UNLOAD) or config.run(STEP_LOAD):
        connection = create_redshift_connection(config)
        unloader = RedshiftUnloader(connection, s3_client, aws_credentials)

    transfer = None
    loader = None
    cleaner = None
    if config.run(STEP_TRANSFER) or config.run(STEP_LOAD) or config.run(STEP_CLEANUP):
        gcp_credentials, project_id = resolve_gcp_credentials(config)
        if config.run(STEP_TRANSFER):
            service = StorageTransferService(create_transfer_client(gcp_credentials), aws_credentials)
            transfer = CloudStorageTransfer(service, project_id)
        if config.run(STEP_LOAD):
            loader = BigQueryLoader(create_bigquery_client(gcp_credentials, project_id), config.bq_dataset)
        if config.run(STEP_CLEANUP):
            cleaner = Cleaner(s3_client, create_gcs_client(gcp_credentials, project_id))

    return Pipeline(
        config,
        s3_client,
        unloader=unloader,
        transfer=transfer,
        loader=loader,
        cleaner=cleaner,
        metrics=StepMetrics(config.nr_api_key, config.nr_api_endpoint),
        connection=connection,
    )
