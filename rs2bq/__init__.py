"""
Redshift to BigQuery table mover.

Unloads a Redshift table to S3, copies the objects to Cloud Storage with the
Storage Transfer Service, loads them into BigQuery and removes the
intermediate objects again. Every run is a full-table replace.
"""

__version__ = "0.1.0"
