import structlog
from flask import jsonify
from werkzeug.exceptions import HTTPException
from core.exceptions import (
    VPNManagerError,
    NotFoundError,
    UserAlreadyExistsError,
    ValidationError,
    AuthenticationError,
    AuthorizationError,
    CertificateGenerationError,
    DatabaseError,
    ServiceError,
    InvalidStateError
)

logger = structlog.get_logger(__name__)

class ErrorHandler:
    """
    Maps service exceptions to ``{"success": false, "error": ...}`` responses.
    """
    
    @staticmethod
    def init_app(app) -> None:
        """Initialize error handlers with Flask app."""

        def failure(message: str, status: int):
            return jsonify({'success': False, 'error': message}), status
        
        @app.errorhandler(ValidationError)
        def handle_validation_error(e):
            return failure(str(e), 400)
        
        @app.errorhandler(AuthenticationError)
        def handle_authentication_error(e):
            return failure(str(e), 401)
        
        @app.errorhandler(AuthorizationError)
        def handle_permission_denied(e):
            return failure(str(e), 403)
        
        @app.errorhandler(NotFoundError)
        def handle_not_found_entity(e):
            return failure(str(e), 404)
        
        @app.errorhandler(UserAlreadyExistsError)
        @app.errorhandler(InvalidStateError)
        def handle_conflict(e):
            return failure(str(e), 409)
        
        @app.errorhandler(CertificateGenerationError)
        @app.errorhandler(ServiceError)
        def handle_external_error(e):
            logger.error("External operation failed", error=str(e))
            return failure(str(e), 502)
        
        @app.errorhandler(DatabaseError)
        def handle_database_error(e):
            logger.error("Database error", error=str(e))
            return failure('A storage error occurred', 500)
        
        @app.errorhandler(VPNManagerError)
        def handle_vpn_error(e):
            return failure(str(e), 500)
        
        @app.errorhandler(HTTPException)
        def handle_http_error(e):
            return failure(e.description or e.name, e.code)
        
        @app.errorhandler(Exception)
        def handle_generic_error(e):
            logger.exception("Unhandled API error")
            return failure('An unexpected error occurred', 500)
