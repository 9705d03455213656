import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

import boto3
import google.auth
import redshift_connector
from google.auth.exceptions import GoogleAuthError
from google.cloud import bigquery, storage, storage_transfer
from google.oauth2 import service_account

from rs2bq.config import RunConfig
from rs2bq.errors import ConfigError, ConnectError

logger = logging.getLogger(__name__)

CLOUD_PLATFORM_SCOPE = "https://www.googleapis.com/auth/cloud-platform"
DEFAULT_REDSHIFT_PORT = 5439


@dataclass(frozen=True)
class AwsCredentials:
    access_key_id: str
    secret_access_key: str
    session_token: Optional[str] = None
    region: Optional[str] = None

    def __repr__(self):
        return "AwsCredentials(access_key_id={!r}, region={!r})".format(self.access_key_id, self.region)


# ============================================================================
# Redshift
# ============================================================================
def create_redshift_connection(config: RunConfig):
    creds = config.rs_credentials
    try:
        connection = redshift_connector.connect(
            host=creds["host"],
            port=int(creds.get("port") or DEFAULT_REDSHIFT_PORT),
            database=config.rs_database,
            user=creds["username"],
            password=creds["password"],
            ssl=True,
            tcp_keepalive=True,
        )
    except redshift_connector.Error as exc:
        raise ConnectError("Redshift connection to {}:{} failed: {}".format(creds.get("host"), creds.get("port"), exc)) from exc
    cursor = connection.cursor()
    try:
        cursor.execute('SET search_path = "{}"'.format(config.rs_schema.replace('"', '""')))
    finally:
        cursor.close()
    logger.debug("[REDSHIFT] connected host=%s database=%s", creds.get("host"), config.rs_database)
    return connection


# ============================================================================
# AWS
# ============================================================================
def resolve_aws_credentials(config: RunConfig, environ: Optional[Dict[str, str]] = None) -> AwsCredentials:
    environ = os.environ if environ is None else environ
    env_region = environ.get("AWS_REGION") or environ.get("AWS_DEFAULT_REGION")
    if config.aws_credentials:
        profile: Dict[str, Any] = config.aws_credentials
        region = profile.get("region") or env_region
        if not region:
            raise ConfigError("AWS Region not specified")
        return AwsCredentials(
            access_key_id=profile["aws_access_key_id"],
            secret_access_key=profile["aws_secret_access_key"],
            session_token=profile.get("session_token") or None,
            region=region,
        )

    session = boto3.session.Session()
    resolved = session.get_credentials()
    if resolved is None:
        raise ConnectError("AWS configuration missing or malformed: no credentials found")
    frozen = resolved.get_frozen_credentials()
    region = env_region or session.region_name
    if not region:
        raise ConfigError("AWS Region not specified")
    return AwsCredentials(
        access_key_id=frozen.access_key,
        secret_access_key=frozen.secret_key,
        session_token=frozen.token,
        region=region,
    )


def create_s3_client(aws_credentials: AwsCredentials):
    kwargs = dict(
        region_name=aws_credentials.region,
        aws_access_key_id=aws_credentials.access_key_id,
        aws_secret_access_key=aws_credentials.secret_access_key,
    )
    if aws_credentials.session_token:
        kwargs["aws_session_token"] = aws_credentials.session_token
    return boto3.client("s3", **kwargs)


# ============================================================================
# GCP
# ============================================================================
def resolve_gcp_credentials(config: RunConfig) -> Tuple[Any, str]:
    try:
        if config.gcp_credentials_path:
            credentials = service_account.Credentials.from_service_account_file(
                config.gcp_credentials_path, scopes=[CLOUD_PLATFORM_SCOPE])
            project_id = credentials.project_id
        else:
            credentials, project_id = google.auth.default(scopes=[CLOUD_PLATFORM_SCOPE])
    except (GoogleAuthError, ValueError) as exc:
        raise ConnectError("GCP configuration missing or malformed: {}".format(exc)) from exc
    if not project_id:
        raise ConfigError("GCP project could not be determined from credentials")
    return credentials, project_id


def create_gcs_client(credentials, project_id: str):
    return storage.Client(project=project_id, credentials=credentials)


def create_transfer_client(credentials):
    return storage_transfer.StorageTransferServiceClient(credentials=credentials)


def create_bigquery_client(credentials, project_id: str):
    return bigquery.Client(project=project_id, credentials=credentials)
