import datetime as dt
import logging
import time
from typing import Any, Dict, Optional

import pandas as pd
import requests

logger = logging.getLogger(__name__)

EVENT_TYPE = "RS2BQ_STEP"
ERROR_MSG_MAX_LEN = 4000
REQUEST_TIMEOUT = 30


def truncate_error_message(message: str) -> str:
    if not message:
        return ""
    if len(message) <= ERROR_MSG_MAX_LEN:
        return message
    return message[:ERROR_MSG_MAX_LEN]


def _fmt_dt(value: Optional[dt.datetime]) -> Optional[str]:
    return value.strftime("%Y-%m-%d %H:%M:%S") if value else None


def build_event(metrics: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "eventType": EVENT_TYPE,
        "database": metrics.get("database"),
        "schema": metrics.get("schema"),
        "table": metrics.get("table"),
        "run_id": metrics.get("run_id"),
        "step": metrics.get("step"),
        "status": metrics.get("status"),
        "object_count": metrics.get("object_count", 0),
        "start_dttm": _fmt_dt(metrics.get("start_dttm")),
        "end_dttm": _fmt_dt(metrics.get("end_dttm")),
        "timestamp": int(time.time()),
        "error_msg": truncate_error_message(metrics.get("error_msg") or ""),
    }


class StepMetrics:
    """Posts one New Relic event per pipeline step. Disabled unless both key and endpoint are set."""

    def __init__(self, api_key: Optional[str], endpoint: Optional[str], session=None):
        self.api_key = api_key
        self.endpoint = endpoint
        self.session = session or requests

    @property
    def enabled(self) -> bool:
        return bool(self.api_key and self.endpoint)

    def post(self, metrics: Dict[str, Any]) -> Optional[int]:
        if not self.enabled:
            return None
        header = {
            "Content-Type": "application/json",
            "X-Insert-Key": self.api_key,
        }
        try:
            json_body = pd.DataFrame([build_event(metrics)]).to_json(orient="records")
            response = self.session.post(url=self.endpoint, data=json_body, headers=header, timeout=REQUEST_TIMEOUT)
        except (requests.RequestException, ValueError) as exc:
            logger.warning("[NEWRELIC] failed to post metrics: %s", exc)
            return None
        body = response.text or ""
        logger.debug("[NEWRELIC] metrics posted status=%s body=%s", response.status_code, body[:200])
        return response.status_code
