"""
Core middleware for request processing.
"""
import threading
import uuid
import logging
from django.utils.deprecation import MiddlewareMixin

logger = logging.getLogger(__name__)

_request_local = threading.local()


class RequestIDMiddleware(MiddlewareMixin):
    """
    Inject a unique request_id into each request for tracing.
    The request_id is added to the request object, to log records and to
    the X-Request-ID response header.
    """

    def process_request(self, request):
        """Generate and attach request_id to the request."""
        request_id = request.META.get('HTTP_X_REQUEST_ID') or str(uuid.uuid4())
        request.request_id = request_id
        _request_local.request_id = request_id

    def process_response(self, request, response):
        """Add request_id to response headers."""
        if hasattr(request, 'request_id'):
            response['X-Request-ID'] = request.request_id
        _request_local.request_id = None
        return response


def current_request_id():
    return getattr(_request_local, 'request_id', None)


class LoggingFilter(logging.Filter):
    """
    Add request_id to log records from thread-local storage.
    """

    def filter(self, record):
        if not hasattr(record, 'request_id'):
            request_id = current_request_id()
            if request_id:
                record.request_id = request_id
        return True
