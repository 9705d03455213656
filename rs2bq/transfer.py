import datetime as dt
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence

import pytz
from google.api_core.exceptions import GoogleAPICallError
from google.cloud import storage_transfer

from rs2bq.errors import TransferError
from rs2bq.manifest import RunManifest
from rs2bq.naming import gcs_uri, s3_uri

DEFAULT_POLL_INTERVAL = 60

# Remote operation status values
STATUS_UNKNOWN = "UNKNOWN"
STATUS_IN_PROGRESS = "IN_PROGRESS"
STATUS_SUCCESS = "SUCCESS"
STATUS_FAILED = "FAILED"
STATUS_ABORTED = "ABORTED"

# Local job states
STATE_SUBMITTED = "SUBMITTED"
STATE_POLLING = "POLLING"
STATE_SUCCEEDED = "SUCCEEDED"
STATE_FAILED = "FAILED"


@dataclass(frozen=True)
class TransferJobDescriptor:
    description: str
    project_id: str
    source_bucket: str
    source_prefix: str
    destination_bucket: str
    start_time: dt.datetime
    allow_overwrite: bool = False


@dataclass(frozen=True)
class JobHandle:
    name: str
    description: str = ""


@dataclass(frozen=True)
class OperationSnapshot:
    done: bool
    status: Optional[str] = None
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return bool(self.error) or self.status in (STATUS_FAILED, STATUS_ABORTED)


# ============================================================================
# Storage Transfer Service adapter
# ============================================================================
def build_transfer_job(descriptor: TransferJobDescriptor, aws_credentials) -> Dict[str, Any]:
    """One-shot job: starts and ends on the submission date, copies only the run prefix."""
    start = descriptor.start_time
    run_date = {"year": start.year, "month": start.month, "day": start.day}
    return {
        "description": descriptor.description,
        "project_id": descriptor.project_id,
        "status": storage_transfer.TransferJob.Status.ENABLED,
        "schedule": {
            "schedule_start_date": dict(run_date),
            "schedule_end_date": dict(run_date),
            "start_time_of_day": {"hours": start.hour, "minutes": start.minute},
        },
        "transfer_spec": {
            "aws_s3_data_source": {
                "bucket_name": descriptor.source_bucket,
                "aws_access_key": {
                    "access_key_id": aws_credentials.access_key_id,
                    "secret_access_key": aws_credentials.secret_access_key,
                },
            },
            "gcs_data_sink": {"bucket_name": descriptor.destination_bucket},
            "object_conditions": {"include_prefixes": [descriptor.source_prefix]},
            "transfer_options": {
                "overwrite_objects_already_existing_in_sink": bool(descriptor.allow_overwrite),
            },
        },
    }


def snapshot_from_operation(operation) -> OperationSnapshot:
    status = None
    error = None
    metadata = getattr(operation, "metadata", None)
    if metadata is not None and metadata.value:
        transfer_operation = storage_transfer.TransferOperation.deserialize(metadata.value)
        status_name = storage_transfer.TransferOperation.Status(transfer_operation.status).name
        if status_name != "STATUS_UNSPECIFIED":
            status = status_name
    if operation.HasField("error") and operation.error.code:
        error = operation.error.message or "code {}".format(operation.error.code)
    return OperationSnapshot(done=bool(operation.done), status=status, error=error)


class StorageTransferService:
    """Narrow boundary over the Storage Transfer client: create a job, list its operations."""

    def __init__(self, client, aws_credentials):
        self.client = client
        self.aws_credentials = aws_credentials

    def create_job(self, descriptor: TransferJobDescriptor) -> JobHandle:
        transfer_job = build_transfer_job(descriptor, self.aws_credentials)
        created = self.client.create_transfer_job({"transfer_job": transfer_job})
        return JobHandle(name=created.name, description=created.description or descriptor.description)

    def list_operations(self, project_id: str, job_names: Sequence[str]) -> Optional[List[OperationSnapshot]]:
        job_filter = json.dumps({"project_id": project_id, "job_names": list(job_names)})
        operations = self.client.transport.operations_client.list_operations("transferOperations", job_filter)
        if operations is None:
            return None
        return [snapshot_from_operation(op) for op in operations]


# ============================================================================
# Copy job state machine
# ============================================================================
class CloudStorageTransfer:
    def __init__(self,
                 service,
                 project_id: str,
                 clock: Optional[Callable[[], dt.datetime]] = None,
                 sleep: Optional[Callable[[float], None]] = None,
                 logger: Optional[logging.Logger] = None):
        self.service = service
        self.project_id = project_id
        self.clock = clock or (lambda: dt.datetime.now(pytz.utc))
        self.sleep = sleep or time.sleep
        self.logger = logger or logging.getLogger(__name__)
        self.state: Optional[str] = None

    def describe_job(self,
                     manifest: RunManifest,
                     cloud_storage_bucket: str,
                     description: Optional[str] = None,
                     allow_overwrite: bool = False) -> TransferJobDescriptor:
        now = self.clock().astimezone(pytz.utc)
        return TransferJobDescriptor(
            description=description or "",
            project_id=self.project_id,
            source_bucket=manifest.bucket,
            source_prefix=manifest.prefix,
            destination_bucket=cloud_storage_bucket,
            start_time=now,
            allow_overwrite=bool(allow_overwrite),
        )

    def submit(self, descriptor: TransferJobDescriptor) -> JobHandle:
        try:
            return self.service.create_job(descriptor)
        except GoogleAPICallError as exc:
            raise TransferError("Transfer job submission failed: {}".format(exc)) from exc

    def poll(self, handle: JobHandle) -> Optional[OperationSnapshot]:
        """Latest operation of the job, or None while the service has not registered one."""
        try:
            operations = self.service.list_operations(self.project_id, [handle.name])
        except GoogleAPICallError as exc:
            raise TransferError("Listing operations of {} failed: {}".format(handle.name, exc)) from exc
        if not operations:
            return None
        return operations[0]

    def copy_to_cloud_storage(self,
                              manifest: RunManifest,
                              cloud_storage_bucket: str,
                              description: Optional[str] = None,
                              allow_overwrite: bool = False,
                              poll_interval: float = DEFAULT_POLL_INTERVAL) -> JobHandle:
        descriptor = self.describe_job(manifest, cloud_storage_bucket, description, allow_overwrite)
        handle = self.submit(descriptor)
        self.state = STATE_SUBMITTED
        job_description = handle.description or descriptor.description
        self.logger.info("Transferring objects from %s to %s",
                         s3_uri(manifest.bucket, manifest.prefix),
                         gcs_uri(cloud_storage_bucket, manifest.prefix))
        started = False
        while True:
            snapshot = self.poll(handle)
            self.state = STATE_POLLING
            if snapshot is not None and snapshot.done:
                if snapshot.failed:
                    self.state = STATE_FAILED
                    raise TransferError('Transfer job "{}" ({}) failed: status={} error={}'.format(
                        job_description, handle.name, snapshot.status or "unknown", snapshot.error or ""))
                self.state = STATE_SUCCEEDED
                self.logger.info("Transfer complete")
                return handle
            status = (snapshot.status if snapshot is not None else None) or "unknown"
            if status == STATUS_ABORTED:
                self.state = STATE_FAILED
                raise TransferError('Transfer job "{}" ({}) was aborted'.format(job_description, handle.name))
            if status == STATUS_IN_PROGRESS and not started:
                self.logger.info("Transfer started")
                started = True
            else:
                self.logger.debug('Waiting for job "%s" (status: %s)', job_description, status)
            self.sleep(poll_interval)
