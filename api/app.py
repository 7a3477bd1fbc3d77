"""
Bendrija Governance API - Flask Application Entry Point

This module builds the Flask application with OpenAPI 3.0 support, wires the
governance services and registers the HTTP routes.
"""

import os
import atexit
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from flask import jsonify
from flask_openapi3 import OpenAPI, Info, Tag

from observability.config import setup_observability, SERVICE_NAME
from observability.middleware import add_observability_middleware
from middleware.error_handler import ErrorHandlerMiddleware
from middleware.auth import AuthMiddleware
from models.responses import HealthCheckResponse
from services.mongodb import get_mongodb_service, close_mongodb_connection
from services.amqp import EventDispatcher, create_event_publisher
from services.audit import AuditService
from services.auth import AuthService
from services.membership import MembershipService
from services.procedural import ProceduralGateService
from services.resolutions import ResolutionService
from services.voting import VotingService
from services.meetings import MeetingService
from services.activation import ActivationService

SERVICE_VERSION = os.getenv('SERVICE_VERSION', '1.0.0')

info = Info(
    title="Bendrija Governance API",
    version=SERVICE_VERSION,
    description="Decision lifecycle of associations: resolutions, meetings, voting and organization activation"
)

health_tag = Tag(name="Health", description="System health and status")


def create_app(mongodb_service=None, event_publisher=None, auth_service=None):
    """
    Build the application.

    Args:
        mongodb_service: MongoDB service; built from the environment when omitted
        event_publisher: Event publisher; built from the environment when omitted
        auth_service: Token verification service; built from the environment when omitted

    Returns:
        Configured OpenAPI (Flask) application
    """
    setup_observability()

    app = OpenAPI(__name__, info=info)

    # Environment configuration
    app.config['ENVIRONMENT'] = os.getenv('ENVIRONMENT', 'development')
    app.config['DEBUG'] = app.config['ENVIRONMENT'] == 'development'
    app.config['BASE_URL'] = os.getenv('BASE_URL', 'http://localhost:5000')

    add_observability_middleware(app)
    ErrorHandlerMiddleware(app)

    # Initialize services
    mongodb_service = mongodb_service or get_mongodb_service()
    if os.getenv('MONGODB_CREATE_INDEXES', 'false').lower() == 'true':
        mongodb_service.create_indexes()

    event_publisher = event_publisher or create_event_publisher()
    workers = int(os.getenv('EVENT_DISPATCH_WORKERS', '2'))
    executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix='events') if workers > 0 else None
    if executor is not None:
        # Drain queued events before the interpreter exits
        atexit.register(executor.shutdown)
    event_dispatcher = EventDispatcher(event_publisher, executor)

    auth_service = auth_service or AuthService()
    audit_service = AuditService(mongodb_service)

    membership_service = MembershipService(mongodb_service, audit_service)
    procedural_service = ProceduralGateService(mongodb_service, audit_service)
    resolution_service = ResolutionService(
        mongodb_service, membership_service, procedural_service, audit_service, event_dispatcher
    )
    voting_service = VotingService(
        mongodb_service, membership_service, resolution_service, procedural_service,
        audit_service, event_dispatcher
    )
    meeting_service = MeetingService(
        mongodb_service, membership_service, procedural_service, voting_service, audit_service
    )
    activation_service = ActivationService(
        mongodb_service, membership_service, audit_service, event_dispatcher
    )

    # Make services available to routes
    app.mongodb_service = mongodb_service
    app.event_dispatcher = event_dispatcher
    app.auth_service = auth_service
    app.auth_middleware = AuthMiddleware(auth_service)
    app.audit_service = audit_service
    app.membership_service = membership_service
    app.procedural_service = procedural_service
    app.resolution_service = resolution_service
    app.voting_service = voting_service
    app.meeting_service = meeting_service
    app.activation_service = activation_service

    # Register routes
    from routes.organizations import org_bp
    from routes.resolutions import resolutions_bp
    from routes.meetings import meetings_bp
    from routes.votes import votes_bp

    app.register_api(org_bp)
    app.register_api(resolutions_bp)
    app.register_api(meetings_bp)
    app.register_api(votes_bp)

    @app.get('/api/healthz', tags=[health_tag], responses={200: HealthCheckResponse, 503: HealthCheckResponse})
    def health_check():
        """Health check reporting MongoDB connectivity"""
        mongodb_health = app.mongodb_service.health_check()
        healthy = mongodb_health.get('status') == 'healthy'

        health_data = {
            "status": "healthy" if healthy else "unhealthy",
            "service": SERVICE_NAME,
            "version": SERVICE_VERSION,
            "environment": app.config['ENVIRONMENT'],
            "timestamp": datetime.utcnow().isoformat() + "Z",
            "dependencies": {"mongodb": mongodb_health}
        }
        return jsonify(health_data), 200 if healthy else 503

    return app


if __name__ == '__main__':
    # Development server
    application = create_app()
    try:
        application.run(
            host='0.0.0.0',
            port=int(os.getenv('PORT', 5000)),
            debug=application.config['DEBUG']
        )
    finally:
        close_mongodb_connection()
