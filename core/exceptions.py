"""
Custom exception classes for the OpenConnect panel.
Provides specific error handling and better debugging.
"""

class VPNManagerError(Exception):
    """Base exception for panel operations."""
    pass

class NotFoundError(VPNManagerError):
    """Raised when a requested entity does not exist."""

    def __init__(self, entity: str, key):
        self.entity = entity
        self.key = key
        super().__init__(f"{entity} '{key}' not found")

class UserNotFoundError(NotFoundError):
    """Raised when trying to access a non-existent user."""

    def __init__(self, username):
        self.username = username
        super().__init__("User", username)

class RouteNotFoundError(NotFoundError):
    """Raised when a route or ASN route does not exist."""

    def __init__(self, route_id):
        super().__init__("Route", route_id)

class GroupNotFoundError(NotFoundError):
    """Raised when a route group does not exist."""

    def __init__(self, group_id):
        super().__init__("Route group", group_id)

class InviteNotFoundError(NotFoundError):
    """Raised when an invite code does not exist."""

    def __init__(self, code: str):
        super().__init__("Invite code", code)

class UserAlreadyExistsError(VPNManagerError):
    """Raised when trying to create a user that already exists."""
    
    def __init__(self, username: str):
        self.username = username
        super().__init__(f"User '{username}' already exists")

class CertificateGenerationError(VPNManagerError):
    """Raised when certificate generation fails."""
    
    def __init__(self, username: str, reason: str):
        self.username = username
        self.reason = reason
        super().__init__(f"Certificate generation failed for '{username}': {reason}")

class DatabaseError(VPNManagerError):
    """Raised when database operations fail."""
    pass

class ConfigurationError(VPNManagerError):
    """Raised when configuration is invalid or missing."""
    pass

class ServiceError(VPNManagerError):
    """Raised when the VPN daemon or its introspection tool fails."""
    
    def __init__(self, service_name: str, operation: str, reason: str):
        self.service_name = service_name
        self.operation = operation
        self.reason = reason
        super().__init__(f"Service '{service_name}' {operation} failed: {reason}")

class InvalidStateError(VPNManagerError):
    """Raised on an illegal daemon lifecycle transition."""

    def __init__(self, operation: str, state: str):
        self.operation = operation
        self.state = state
        super().__init__(f"Cannot {operation} while server is {state}")

class ValidationError(VPNManagerError):
    """Raised when input validation fails."""
    
    def __init__(self, field: str, value: str, reason: str):
        self.field = field
        self.value = value
        self.reason = reason
        super().__init__(f"Validation failed for {field}='{value}': {reason}")

class AuthenticationError(VPNManagerError):
    """Raised when authentication fails."""
    pass

class AuthorizationError(VPNManagerError):
    """Raised when a role policy check refuses an action."""
    pass

PermissionDeniedError = AuthorizationError
