import logging
from typing import List, Optional

from google.api_core.exceptions import GoogleAPICallError
from google.cloud import bigquery

from rs2bq.errors import LoadError
from rs2bq.schema import ColumnSpec, to_bigquery_schema


def build_load_job_config(columns: List[ColumnSpec], max_bad_records: Optional[int] = None) -> bigquery.LoadJobConfig:
    job_config = bigquery.LoadJobConfig(
        schema=to_bigquery_schema(columns),
        source_format=bigquery.SourceFormat.CSV,
        field_delimiter="\t",
        write_disposition=bigquery.WriteDisposition.WRITE_TRUNCATE,
        create_disposition=bigquery.CreateDisposition.CREATE_IF_NEEDED,
    )
    if max_bad_records is not None:
        job_config.max_bad_records = max_bad_records
    return job_config


class BigQueryLoader:
    def __init__(self, client, dataset_id: str, logger: Optional[logging.Logger] = None):
        self.client = client
        self.dataset_id = dataset_id
        self.logger = logger or logging.getLogger(__name__)

    def table_ref(self, table_id: str) -> str:
        return "{}.{}.{}".format(self.client.project, self.dataset_id, table_id)

    def load(self, uri: str, table_id: str, columns: List[ColumnSpec], max_bad_records: Optional[int] = None):
        destination = self.table_ref(table_id)
        job_config = build_load_job_config(columns, max_bad_records)
        self.logger.info("[LOAD] %s -> %s columns=%s", uri, destination, len(columns))
        try:
            job = self.client.load_table_from_uri(uri, destination, job_config=job_config)
            job.result()
        except GoogleAPICallError as exc:
            raise LoadError("Load of {} into {} failed: {}".format(uri, destination, exc)) from exc
        self.logger.info("[LOAD] %s rows loaded into %s", job.output_rows, destination)
        return job
