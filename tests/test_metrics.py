import datetime as dt
import json

import requests

from rs2bq.metrics import ERROR_MSG_MAX_LEN, StepMetrics, build_event, truncate_error_message


class FakeSession:
    def __init__(self, error=None):
        self.error = error
        self.posts = []

    def post(self, url, data, headers, timeout):
        if self.error:
            raise self.error
        self.posts.append((url, data, headers))

        class Response:
            status_code = 200
            text = '{"success":true}'

        return Response()


def test_disabled_without_key_or_endpoint():
    session = FakeSession()
    assert StepMetrics(None, "https://insights", session=session).post({}) is None
    assert StepMetrics("key", None, session=session).post({}) is None
    assert session.posts == []


def test_posts_one_event_per_call():
    session = FakeSession()
    metrics = StepMetrics("key", "https://insights", session=session)

    status = metrics.post({
        "database": "sales", "schema": "public", "table": "orders", "run_id": "r1",
        "step": "unload", "status": "SUCCESS", "start_dttm": dt.datetime(2016, 3, 11, 19, 2),
    })

    assert status == 200
    url, body, headers = session.posts[0]
    assert url == "https://insights"
    assert headers["X-Insert-Key"] == "key"
    event = json.loads(body)[0]
    assert event["eventType"] == "RS2BQ_STEP"
    assert event["step"] == "unload"
    assert event["start_dttm"] == "2016-03-11 19:02:00"


def test_post_failures_are_not_fatal():
    metrics = StepMetrics("key", "https://insights", session=FakeSession(requests.ConnectionError("down")))
    assert metrics.post({"step": "load"}) is None


def test_error_messages_are_truncated():
    assert len(truncate_error_message("x" * (ERROR_MSG_MAX_LEN + 10))) == ERROR_MSG_MAX_LEN
    assert truncate_error_message(None) == ""
    assert build_event({"error_msg": "boom"})["error_msg"] == "boom"
