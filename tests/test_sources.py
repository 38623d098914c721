"""
Tests for metrics sources.
"""

from datetime import timedelta

import pytest
import requests

from autoheal.exceptions import MetricsFetchError
from autoheal.slo import LatencyHistogram, Objective, ObjectiveKind, PrometheusMetricsSource, RatioSample
from autoheal.slo.sources import format_window


class FakeResponse:
    def __init__(self, body, status_code=200):
        self.body = body
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def json(self):
        if isinstance(self.body, Exception):
            raise self.body
        return self.body


class FakeSession:
    """Answers Prometheus instant queries from a query -> response map."""

    def __init__(self, responses):
        self.responses = responses
        self.queries = []

    def get(self, url, params=None, headers=None, timeout=None):
        self.queries.append(params["query"])
        response = self.responses.get(params["query"])
        if isinstance(response, Exception):
            raise response
        return response


def vector(*samples):
    return FakeResponse({
        "status": "success",
        "data": {
            "resultType": "vector",
            "result": [{"metric": metric, "value": [1714557600, value]} for metric, value in samples],
        },
    })


@pytest.fixture
def ratio_objective():
    return Objective(
        id="api-availability",
        target=0.999,
        window=timedelta(minutes=30),
        success_query='sum(increase(http_requests_total{code!~"5.."}[{window}]))',
        total_query="sum(increase(http_requests_total[{window}]))",
    )


def test_format_window():
    assert format_window(timedelta(minutes=30)) == "30m"
    assert format_window(timedelta(hours=2)) == "2h"
    assert format_window(timedelta(seconds=90)) == "90s"


def test_ratio_sample(ratio_objective):
    session = FakeSession({
        'sum(increase(http_requests_total{code!~"5.."}[30m]))': vector(({}, "998")),
        "sum(increase(http_requests_total[30m]))": vector(({}, "1000")),
    })
    source = PrometheusMetricsSource("http://prometheus:9090/", session=session)

    sample = source.fetch(ratio_objective, ratio_objective.window)

    assert sample == RatioSample(success=998.0, total=1000.0)
    assert len(session.queries) == 2


def test_empty_vector_means_no_requests(ratio_objective):
    empty = vector()
    session = FakeSession({
        'sum(increase(http_requests_total{code!~"5.."}[30m]))': empty,
        "sum(increase(http_requests_total[30m]))": empty,
    })
    source = PrometheusMetricsSource("http://prometheus:9090", session=session)

    assert source.fetch(ratio_objective, ratio_objective.window) == RatioSample(success=0.0, total=0.0)


def test_latency_histogram():
    objective = Objective(
        id="api-latency",
        target=0.95,
        window=timedelta(minutes=5),
        kind=ObjectiveKind.LATENCY,
        latency_query="sum by (le) (increase(http_request_duration_seconds_bucket[{window}]))",
        latency_threshold_seconds=0.25,
    )
    session = FakeSession({
        "sum by (le) (increase(http_request_duration_seconds_bucket[5m]))": vector(
            ({"le": "0.5"}, "995"),
            ({"le": "0.1"}, "900"),
            ({"le": "+Inf"}, "1000"),
            ({"le": "0.25"}, "990"),
        ),
    })
    source = PrometheusMetricsSource("http://prometheus:9090", session=session)

    sample = source.fetch(objective, objective.window)

    assert sample == LatencyHistogram(buckets=((0.1, 900.0), (0.25, 990.0), (0.5, 995.0)), total=1000.0)


@pytest.mark.parametrize("response", [
    requests.ConnectionError("connection refused"),
    FakeResponse({}, status_code=503),
    FakeResponse(ValueError("not json")),
    FakeResponse({"status": "error", "error": "parse error"}),
    FakeResponse({"status": "success", "data": {"resultType": "matrix", "result": []}}),
    FakeResponse({"status": "success", "data": {"resultType": "vector", "result": [{"value": []}]}}),
])
def test_failures_raise_fetch_error(ratio_objective, response):
    session = FakeSession({
        'sum(increase(http_requests_total{code!~"5.."}[30m]))': response,
    })
    source = PrometheusMetricsSource("http://prometheus:9090", session=session)

    with pytest.raises(MetricsFetchError) as exc_info:
        source.fetch(ratio_objective, ratio_objective.window)

    assert exc_info.value.objective_id == "api-availability"


def test_missing_query_is_fetch_error():
    objective = Objective(id="broken", target=0.99, window=timedelta(minutes=5))
    source = PrometheusMetricsSource("http://prometheus:9090", session=FakeSession({}))

    with pytest.raises(MetricsFetchError):
        source.fetch(objective, objective.window)
