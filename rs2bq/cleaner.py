import logging
from typing import Optional

from botocore.exceptions import BotoCoreError, ClientError
from google.api_core.exceptions import GoogleAPICallError

from rs2bq.errors import CleanupError
from rs2bq.manifest import RunManifest
from rs2bq.naming import gcs_uri, s3_uri
from rs2bq.storage import delete_gcs_object, delete_s3_object


class Cleaner:
    """
    Removes a run's intermediate objects from S3 and Cloud Storage.

    Only keys enumerated in the manifest are deleted; the same keys are used
    in the Cloud Storage bucket since the transfer keeps object names. Missing
    objects count as deleted. The first failing delete stops the cleanup.
    """

    def __init__(self, s3_client, gcs_client, logger: Optional[logging.Logger] = None):
        self.s3_client = s3_client
        self.gcs_client = gcs_client
        self.logger = logger or logging.getLogger(__name__)

    def cleanup(self, manifest: RunManifest, cloud_storage_bucket: str) -> int:
        self.logger.info("[CLEANUP] deleting %s objects from s3://%s and gs://%s",
                         len(manifest), manifest.bucket, cloud_storage_bucket)
        for key in manifest.object_keys:
            try:
                delete_s3_object(self.s3_client, manifest.bucket, key)
            except (BotoCoreError, ClientError) as exc:
                raise CleanupError("Deleting {} failed: {}".format(s3_uri(manifest.bucket, key), exc)) from exc
            self.logger.debug("[CLEANUP] deleted %s", s3_uri(manifest.bucket, key))
        for key in manifest.object_keys:
            try:
                delete_gcs_object(self.gcs_client, cloud_storage_bucket, key)
            except GoogleAPICallError as exc:
                raise CleanupError("Deleting {} failed: {}".format(gcs_uri(cloud_storage_bucket, key), exc)) from exc
            self.logger.debug("[CLEANUP] deleted %s", gcs_uri(cloud_storage_bucket, key))
        return len(manifest)
