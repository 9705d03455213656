import logging
from typing import List, Tuple

from botocore.exceptions import ClientError
from google.api_core.exceptions import NotFound

logger = logging.getLogger(__name__)


def list_s3_objects(s3_client, bucket: str, prefix: str) -> List[Tuple[str, int]]:
    """Return (key, size) for every object under the prefix, in listing order."""
    objects: List[Tuple[str, int]] = []
    continuation_token = None
    while True:
        request_kwargs = {"Bucket": bucket, "Prefix": prefix}
        if continuation_token:
            request_kwargs["ContinuationToken"] = continuation_token
        response = s3_client.list_objects_v2(**request_kwargs)
        for obj in response.get("Contents", []):
            key = obj.get("Key")
            if key:
                objects.append((key, int(obj.get("Size", 0) or 0)))
        if response.get("IsTruncated"):
            continuation_token = response.get("NextContinuationToken")
        else:
            break
    return objects


def list_s3_keys_under_prefix(s3_client, bucket: str, prefix: str) -> List[str]:
    return [key for key, _ in list_s3_objects(s3_client, bucket, prefix)]


def delete_s3_object(s3_client, bucket: str, key: str) -> None:
    try:
        s3_client.delete_object(Bucket=bucket, Key=key)
    except ClientError as exc:
        code = exc.response.get("Error", {}).get("Code", "")
        if code in ("404", "NoSuchKey", "NotFound"):
            logger.debug("[S3_DELETE] already absent s3://%s/%s", bucket, key)
            return
        raise


def delete_gcs_object(gcs_client, bucket: str, key: str) -> None:
    try:
        gcs_client.bucket(bucket).blob(key).delete()
    except NotFound:
        logger.debug("[GCS_DELETE] already absent gs://%s/%s", bucket, key)
