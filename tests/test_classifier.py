"""
Tests for alert classification and incident lifecycle.
"""

from datetime import timedelta

import pytest

from autoheal.alerting import AlertClassifier, AlertQueue
from autoheal.alerting.models import AlertSeverity, AlertState, IncidentState
from autoheal.metrics import metrics

from conftest import T0


@pytest.fixture
def classifier(clock):
    return AlertClassifier(grace_period=timedelta(seconds=30), clock=clock)


class TestIdentity:
    """Tests for incident identity and deduplication."""

    def test_volatile_labels_share_an_incident(self, classifier, make_alert):
        first = classifier.classify(make_alert("HighLatency", instance="10.0.0.1:8080"))
        second = classifier.classify(make_alert("HighLatency", instance="10.0.0.2:8080"))

        assert first == second
        incident = classifier.get(first)
        assert incident.firing_count == 2
        assert len(incident.alerts) == 2

    def test_different_resources_split(self, classifier, make_alert):
        first = classifier.classify(make_alert("HighLatency", resource="api"))
        second = classifier.classify(make_alert("HighLatency", resource="worker"))

        assert first != second
        assert len(classifier.active_incidents()) == 2

    def test_duplicate_delivery_is_recorded_once(self, classifier, make_alert):
        alert = make_alert("ApplicationDown")
        incident_id = classifier.classify(alert)
        classifier.classify(alert)
        classifier.classify(alert)

        assert len(classifier.get(incident_id).alerts) == 1

    def test_severity_is_max_of_constituents(self, classifier, make_alert):
        incident_id = classifier.classify(
            make_alert("DiskPressure", severity=AlertSeverity.WARNING, instance="a")
        )
        classifier.classify(make_alert("DiskPressure", severity=AlertSeverity.CRITICAL, instance="b"))
        classifier.classify(make_alert("DiskPressure", severity=AlertSeverity.INFO, instance="c"))

        assert classifier.get(incident_id).severity == AlertSeverity.CRITICAL

    def test_incident_keeps_resource(self, classifier, make_alert):
        incident_id = classifier.classify(make_alert("ApplicationDown", resource="checkout", namespace="shop"))

        incident = classifier.get(incident_id)
        assert incident.resource == "checkout"
        assert incident.identity_labels == {"resource": "checkout", "namespace": "shop"}
        assert incident.incident_id.endswith("-1")


class TestResolution:
    """Tests for grace-period resolution."""

    def test_resolved_without_incident_is_ignored(self, classifier, make_alert):
        assert classifier.classify(make_alert("ApplicationDown", state=AlertState.RESOLVED)) is None
        assert classifier.active_incidents() == []

    def test_resolves_after_grace_period(self, classifier, make_alert, clock):
        incident_id = classifier.classify(make_alert("ApplicationDown"))
        clock.advance(10)
        classifier.classify(make_alert("ApplicationDown", state=AlertState.RESOLVED, timestamp=clock.now))

        clock.advance(20)
        assert classifier.sweep() == []

        clock.advance(10)
        closed = classifier.sweep()

        assert [i.incident_id for i in closed] == [incident_id]
        assert closed[0].state == IncidentState.RESOLVED
        assert closed[0].closed_at == clock.now
        assert classifier.active_incidents() == []

    def test_partial_resolution_keeps_incident_open(self, classifier, make_alert, clock):
        incident_id = classifier.classify(make_alert("HighLatency", instance="a"))
        classifier.classify(make_alert("HighLatency", instance="b"))
        classifier.classify(make_alert("HighLatency", state=AlertState.RESOLVED, instance="a"))

        clock.advance(120)

        assert classifier.sweep() == []
        assert classifier.get(incident_id).firing_count == 1

    def test_flapping_alert_resolves_once(self, classifier, make_alert, clock):
        incident_id = classifier.classify(make_alert("ApplicationDown"))
        for _ in range(3):
            clock.advance(5)
            classifier.classify(make_alert("ApplicationDown", state=AlertState.RESOLVED, timestamp=clock.now))
            clock.advance(5)
            classifier.classify(make_alert("ApplicationDown", timestamp=clock.now))
            assert classifier.sweep() == []

        clock.advance(5)
        classifier.classify(make_alert("ApplicationDown", state=AlertState.RESOLVED, timestamp=clock.now))
        clock.advance(30)

        closed = classifier.sweep()
        assert [i.incident_id for i in closed] == [incident_id]
        assert classifier.sweep() == []
        assert metrics.get_counter("autoheal_incidents_total", {"state": "resolved"}) == 1

    def test_escalated_incident_keeps_state_on_close(self, classifier, make_alert, clock):
        incident_id = classifier.classify(make_alert("ApplicationDown"))
        incident = classifier.get(incident_id)
        incident.state = IncidentState.ESCALATED

        classifier.classify(make_alert("ApplicationDown", state=AlertState.RESOLVED, timestamp=clock.now))
        clock.advance(30)
        closed = classifier.sweep()

        assert closed == [incident]
        assert incident.state == IncidentState.ESCALATED
        assert not incident.is_active

    def test_new_firing_after_close_opens_new_incident(self, classifier, make_alert, clock):
        first = classifier.classify(make_alert("ApplicationDown"))
        classifier.classify(make_alert("ApplicationDown", state=AlertState.RESOLVED))
        clock.advance(30)
        classifier.sweep()

        second = classifier.classify(make_alert("ApplicationDown", timestamp=T0 + timedelta(minutes=5)))

        assert second != first
        assert second.endswith("-2")
        assert classifier.get(first).state == IncidentState.RESOLVED

    def test_history_is_bounded(self, clock, make_alert):
        classifier = AlertClassifier(grace_period=timedelta(0), max_history_size=2, clock=clock)
        ids = []
        for n in range(4):
            ids.append(classifier.classify(make_alert("ApplicationDown", resource=f"r{n}")))
            classifier.classify(make_alert("ApplicationDown", resource=f"r{n}", state=AlertState.RESOLVED))
            clock.advance(1)
            classifier.sweep()

        assert classifier.get(ids[0]) is None
        assert classifier.get(ids[1]) is None
        assert classifier.get(ids[3]) is not None

    def test_snapshot_is_detached(self, classifier, make_alert):
        incident_id = classifier.classify(make_alert("ApplicationDown"))

        copies = classifier.snapshot()
        copies[0].state = IncidentState.ESCALATED

        assert classifier.get(incident_id).state == IncidentState.OPEN


class TestAlertQueue:
    """Tests for the drop-oldest ingestion queue."""

    def test_drains_in_arrival_order(self, make_alert):
        queue = AlertQueue(maxsize=10)
        for n in range(3):
            assert queue.put(make_alert(f"Alert{n}"))

        assert [e.name for e in queue.drain()] == ["Alert0", "Alert1", "Alert2"]
        assert len(queue) == 0

    def test_overflow_drops_oldest(self, make_alert):
        queue = AlertQueue(maxsize=2)
        queue.put(make_alert("First"))
        queue.put(make_alert("Second"))

        assert queue.put(make_alert("Third")) is False
        assert queue.dropped == 1
        assert [e.name for e in queue.drain()] == ["Second", "Third"]
        assert metrics.get_counter("autoheal_alerts_dropped_total") == 1

    def test_drain_limit(self, make_alert):
        queue = AlertQueue()
        for n in range(5):
            queue.put(make_alert(f"Alert{n}"))

        assert len(queue.drain(limit=2)) == 2
        assert len(queue) == 3

    def test_invalid_size(self):
        with pytest.raises(ValueError):
            AlertQueue(maxsize=0)
