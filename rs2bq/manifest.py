import logging
from dataclasses import dataclass
from typing import Optional, Tuple

from botocore.exceptions import BotoCoreError, ClientError

from rs2bq.errors import ConnectError
from rs2bq.storage import list_s3_objects

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RunManifest:
    """
    The objects one run owns in S3.

    Transfer and cleanup select objects from this and never from a fresh
    listing, so objects written later under the same prefix are left alone.
    """

    bucket: str
    prefix: str
    object_keys: Tuple[str, ...] = ()
    total_byte_size: Optional[int] = None

    def __len__(self) -> int:
        return len(self.object_keys)

    @property
    def empty(self) -> bool:
        return not self.object_keys


def build_manifest(s3_client, bucket: str, prefix: str) -> RunManifest:
    try:
        objects = list_s3_objects(s3_client, bucket, prefix)
    except (BotoCoreError, ClientError) as exc:
        raise ConnectError("Listing s3://{}/{} failed: {}".format(bucket, prefix, exc)) from exc
    manifest = RunManifest(
        bucket=bucket,
        prefix=prefix,
        object_keys=tuple(key for key, _ in objects),
        total_byte_size=sum(size for _, size in objects),
    )
    if manifest.empty:
        logger.warning("[MANIFEST] no objects found under s3://%s/%s", bucket, prefix)
    else:
        logger.info("[MANIFEST] s3://%s/%s objects=%s bytes=%s", bucket, prefix, len(manifest), manifest.total_byte_size)
    return manifest
