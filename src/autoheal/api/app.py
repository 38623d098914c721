"""
Flask application exposing controller state and the alert webhook.

Every read endpoint serves the snapshot the controller published at the
end of its last tick; request threads never touch live control-loop state.

Endpoints:
    GET  /health
    GET  /incidents            ?state=open|mitigating|resolved|escalated&active=true
    GET  /incidents/<id>
    GET  /budgets
    GET  /actions              ?status=...&resource=...
    GET  /metrics              Prometheus text format
    POST /webhook/alertmanager Alertmanager webhook (optional HMAC signature)
"""
import logging
import threading
import time
from typing import Optional

from flask import Flask, Response, jsonify, request
from werkzeug.serving import make_server

from ..exceptions import AlertFeedError, IncidentNotFoundError
from ..integrations.alertmanager import SIGNATURE_HEADER, parse_alertmanager_payload, verify_signature
from ..metrics import get_metrics_text
from ..version import __version__

logger = logging.getLogger(__name__)

MAX_WEBHOOK_BYTES = 1024 * 1024


def create_app(controller, webhook_secret: Optional[str] = None) -> Flask:
    """
    Create the Flask application.

    Args:
        controller: RemediationController to inspect and feed
        webhook_secret: Shared secret for webhook signatures (unsigned if None)

    Returns:
        Flask app instance
    """
    app = Flask(__name__)
    app.config['MAX_CONTENT_LENGTH'] = MAX_WEBHOOK_BYTES
    started = time.time()

    @app.after_request
    def add_security_headers(response):
        """Add security headers to all responses."""
        response.headers['X-Content-Type-Options'] = 'nosniff'
        response.headers['X-Frame-Options'] = 'DENY'
        return response

    @app.route('/health')
    def health():
        """Health check endpoint."""
        snapshot = controller.snapshot()
        return jsonify({
            'status': 'degraded' if snapshot.degraded_objectives else 'healthy',
            'service': 'autoheal',
            'version': __version__,
            'uptime_seconds': round(time.time() - started, 2),
            'tick_count': snapshot.tick_count,
            'last_tick': snapshot.taken_at.isoformat(),
            'degraded_objectives': snapshot.degraded_objectives,
            'queue_depth': snapshot.queue_depth,
            'alerts_dropped': snapshot.alerts_dropped,
        })

    @app.route('/incidents')
    def list_incidents():
        incidents = controller.snapshot().incidents

        state = request.args.get('state')
        if state:
            incidents = [i for i in incidents if i['state'] == state.lower()]
        if request.args.get('active', '').lower() in ('true', '1', 'yes'):
            incidents = [i for i in incidents if i['closed_at'] is None]

        return jsonify({'incidents': incidents, 'count': len(incidents)})

    @app.route('/incidents/<incident_id>')
    def get_incident(incident_id):
        try:
            incident = controller.snapshot().incident(incident_id)
        except IncidentNotFoundError as e:
            return jsonify({'error': str(e)}), 404
        return jsonify(incident)

    @app.route('/budgets')
    def budgets():
        snapshot = controller.snapshot()
        return jsonify({
            'budgets': snapshot.budgets,
            'degraded_objectives': snapshot.degraded_objectives,
        })

    @app.route('/actions')
    def actions():
        snapshot = controller.snapshot()
        history = snapshot.actions

        status = request.args.get('status')
        if status:
            history = [a for a in history if a['status'] == status.lower()]
        resource = request.args.get('resource')
        if resource:
            history = [a for a in history if a['resource'] == resource]

        return jsonify({
            'actions': history,
            'running': snapshot.running,
            'cooldowns': snapshot.cooldowns,
        })

    @app.route('/metrics')
    def metrics():
        return Response(get_metrics_text(), mimetype='text/plain; version=0.0.4')

    @app.route('/webhook/alertmanager', methods=['POST'])
    def alertmanager_webhook():
        body = request.get_data()

        if webhook_secret and not verify_signature(
            webhook_secret, body, request.headers.get(SIGNATURE_HEADER)
        ):
            logger.warning(f"Rejected webhook with invalid signature from {request.remote_addr}")
            return jsonify({'error': 'Invalid signature'}), 401

        payload = request.get_json(silent=True)
        if payload is None:
            return jsonify({'error': 'Request body must be JSON'}), 400

        try:
            events = parse_alertmanager_payload(payload)
        except AlertFeedError as e:
            return jsonify({'error': str(e)}), 400

        overflowed = 0
        for event in events:
            if not controller.ingest(event):
                overflowed += 1

        logger.info(f"Accepted {len(events)} alert events from Alertmanager")
        return jsonify({'accepted': len(events), 'overflowed': overflowed}), 202

    return app


class _ServerThread(threading.Thread):
    def __init__(self, app: Flask, host: str, port: int):
        super().__init__(name="autoheal-api", daemon=True)
        self.server = make_server(host, port, app, threaded=True)

    def run(self) -> None:
        self.server.serve_forever()

    def shutdown(self) -> None:
        self.server.shutdown()


def serve_in_thread(app: Flask, host: str = '127.0.0.1', port: int = 8080) -> _ServerThread:
    """
    Serve the API from a background thread next to the control loop.

    Returns:
        Started server thread (call shutdown() to stop it)
    """
    thread = _ServerThread(app, host, port)
    thread.start()
    logger.info(f"AUTOHEAL API listening on {host}:{port}")
    return thread
