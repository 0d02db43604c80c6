"""
Domain exceptions and the DRF exception handler.

Every authorization and invitation failure is a distinct subclass of
MatchmakerException carrying its own code and HTTP status, so callers can
tell e.g. an expired invitation from an already accepted one.
"""
import logging
from rest_framework.views import exception_handler
from rest_framework.response import Response
from rest_framework import status
from django_ratelimit.exceptions import Ratelimited

logger = logging.getLogger(__name__)

RATE_LIMIT_RETRY_AFTER = 60


class MatchmakerException(Exception):
    """Base exception for Matchmaker-specific errors."""

    status_code = status.HTTP_400_BAD_REQUEST
    code = 'ERROR'
    default_message = 'Request could not be completed'

    def __init__(self, message=None, details=None):
        self.message = message or self.default_message
        self.details = details or {}
        super().__init__(self.message)

    def as_dict(self):
        error = {
            'code': self.code,
            'message': self.message,
        }
        if self.details:
            error['details'] = self.details
        return {'error': error}


# ===== AUTHORIZATION =====

class Unauthenticated(MatchmakerException):
    """Raised when no verified caller is attached to the request."""
    status_code = status.HTTP_401_UNAUTHORIZED
    code = 'UNAUTHENTICATED'
    default_message = 'Authentication required'


class TenantRequired(MatchmakerException):
    """Raised when no workspace could be resolved for the request."""
    status_code = status.HTTP_400_BAD_REQUEST
    code = 'TENANT_REQUIRED'
    default_message = 'Workspace required'


class NotAMember(MatchmakerException):
    """Raised when the caller has no membership in the resolved workspace."""
    status_code = status.HTTP_403_FORBIDDEN
    code = 'NOT_A_MEMBER'
    default_message = 'You do not have access to this workspace'


class Forbidden(MatchmakerException):
    """Raised when the caller's role lacks the required capability or role."""
    status_code = status.HTTP_403_FORBIDDEN
    code = 'FORBIDDEN'
    default_message = 'You do not have access to perform this action'

    def __init__(self, message=None, role=None, required_capability=None,
                 required_roles=None, details=None):
        self.role = role
        self.required_capability = required_capability
        self.required_roles = required_roles
        details = dict(details or {})
        details['role'] = role
        if required_capability is not None:
            details['required_capability'] = required_capability
        if required_roles is not None:
            details['required_roles'] = list(required_roles)
        super().__init__(message, details)


# ===== INVITATIONS =====

class InvitationNotFound(MatchmakerException):
    status_code = status.HTTP_404_NOT_FOUND
    code = 'INVITATION_NOT_FOUND'
    default_message = 'Invitation not found'


class Expired(MatchmakerException):
    """Raised when an invitation is past its expiry."""
    status_code = status.HTTP_410_GONE
    code = 'INVITATION_EXPIRED'
    default_message = 'This invitation has expired. Ask a workspace admin to send a new one.'


class AlreadyAccepted(MatchmakerException):
    status_code = status.HTTP_409_CONFLICT
    code = 'INVITATION_ALREADY_ACCEPTED'
    default_message = 'This invitation has already been accepted'


class AlreadyMember(MatchmakerException):
    status_code = status.HTTP_409_CONFLICT
    code = 'ALREADY_MEMBER'
    default_message = 'Already a member of this workspace'


class EmailMismatch(MatchmakerException):
    """Raised when the accepting identity's email differs from the invitee email."""
    status_code = status.HTTP_403_FORBIDDEN
    code = 'INVITATION_EMAIL_MISMATCH'
    default_message = 'This invitation was sent to a different email address'


# ===== MEMBERSHIP =====

class OwnerProtected(MatchmakerException):
    """Raised when an operation would demote, remove or drop the workspace owner."""
    status_code = status.HTTP_400_BAD_REQUEST
    code = 'OWNER_PROTECTED'
    default_message = 'The workspace owner cannot be demoted, removed or leave the workspace'


class MemberNotFound(MatchmakerException):
    status_code = status.HTTP_404_NOT_FOUND
    code = 'MEMBER_NOT_FOUND'
    default_message = 'User is not a member of this workspace'


class SelfRemovalNotAllowed(MatchmakerException):
    status_code = status.HTTP_400_BAD_REQUEST
    code = 'SELF_REMOVAL_NOT_ALLOWED'
    default_message = 'Use the leave endpoint to remove yourself from a workspace'


def custom_exception_handler(exc, context):
    """
    Custom exception handler that logs errors and returns consistent format.
    """
    request = context.get('request')
    request_id = getattr(request, 'request_id', None) if request else None

    if isinstance(exc, Ratelimited):
        from apps.core.logging import SecurityLogger

        SecurityLogger.log_rate_limit_exceeded(
            endpoint=request.path if request else 'unknown',
            ip_address=request.META.get('REMOTE_ADDR', 'unknown') if request else 'unknown',
        )
        return Response(
            {
                'error': {
                    'code': 'RATE_LIMIT_EXCEEDED',
                    'message': 'Rate limit exceeded. Please try again later.',
                },
                'retry_after': RATE_LIMIT_RETRY_AFTER,
                'request_id': request_id,
            },
            status=status.HTTP_429_TOO_MANY_REQUESTS,
            headers={'Retry-After': str(RATE_LIMIT_RETRY_AFTER)},
        )

    if isinstance(exc, MatchmakerException):
        logger.info(
            f"Request refused: {exc.code}",
            extra={
                'request_id': request_id,
                'path': request.path if request else None,
                'method': request.method if request else None,
                'error_code': exc.code,
            }
        )
        data = exc.as_dict()
        data['request_id'] = request_id
        return Response(data, status=exc.status_code)

    # Call DRF's default exception handler first
    response = exception_handler(exc, context)

    # If DRF didn't handle it, return a generic 500 error
    if response is None:
        logger.error(
            f"API Exception: {exc.__class__.__name__}",
            extra={
                'exception': str(exc),
                'request_id': request_id,
                'path': request.path if request else None,
                'method': request.method if request else None,
            },
            exc_info=(type(exc), exc, exc.__traceback__)
        )
        return Response(
            {
                'error': {
                    'code': 'INTERNAL_ERROR',
                    'message': 'An unexpected error occurred',
                },
                'request_id': request_id,
            },
            status=status.HTTP_500_INTERNAL_SERVER_ERROR
        )

    # Add request_id to all error responses
    if request_id and isinstance(response.data, dict):
        response.data['request_id'] = request_id

    return response
