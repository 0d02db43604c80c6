"""
Custom logging formatters for structured JSON logging.
"""
import json
import logging
import re
import traceback
from datetime import datetime, timezone as dt_timezone
from django.utils import timezone
import sentry_sdk


class PIIMasker:
    """
    Utility class to mask sensitive PII data in logs.
    """

    EMAIL_PATTERN = re.compile(r'\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Z|a-z]{2,}\b')
    API_KEY_PATTERN = re.compile(r'(api[_-]?key|token|secret|password|auth)["\']?\s*[:=]\s*["\']?([^"\'\s,}]+)', re.IGNORECASE)

    # Sensitive field names that should be masked outright
    SENSITIVE_FIELDS = {
        'password', 'password_hash', 'passwd',
        'token', 'access_token', 'refresh_token', 'bearer_token',
        'secret', 'secret_key', 'api_key',
    }

    # Fields holding email addresses are partially masked, not dropped
    EMAIL_FIELDS = {'email', 'user_email', 'invitee_email', 'email_address'}

    @classmethod
    def mask_email(cls, text):
        """Mask email addresses in text."""
        if not isinstance(text, str):
            return text

        def mask_email_match(match):
            email = match.group(0)
            username, _, domain = email.partition('@')
            masked_username = username[0] + '*' * (len(username) - 1) if len(username) > 1 else username
            return f"{masked_username}@{domain}"
        return cls.EMAIL_PATTERN.sub(mask_email_match, text)

    @classmethod
    def mask_api_keys(cls, text):
        """Mask API keys, tokens, and secrets in text."""
        if not isinstance(text, str):
            return text
        return cls.API_KEY_PATTERN.sub(r'\1: ********', text)

    @classmethod
    def mask_text(cls, text):
        """Apply all masking patterns to text."""
        if not isinstance(text, str):
            return text
        text = cls.mask_email(text)
        text = cls.mask_api_keys(text)
        return text

    @classmethod
    def mask_dict(cls, data):
        """Recursively mask sensitive data in dictionaries."""
        if not isinstance(data, dict):
            return data

        masked = {}
        for key, value in data.items():
            lowered = key.lower()
            if lowered in cls.EMAIL_FIELDS:
                masked[key] = cls.mask_email(value)
            elif any(sensitive in lowered for sensitive in cls.SENSITIVE_FIELDS):
                masked[key] = '********' if value and not isinstance(value, (dict, list)) else value
            elif isinstance(value, dict):
                masked[key] = cls.mask_dict(value)
            elif isinstance(value, list):
                masked[key] = [
                    cls.mask_dict(item) if isinstance(item, dict) else cls.mask_text(item)
                    for item in value
                ]
            elif isinstance(value, str):
                masked[key] = cls.mask_text(value)
            else:
                masked[key] = value

        return masked


class JSONFormatter(logging.Formatter):
    """
    Format log records as JSON for structured logging.
    Includes request_id and workspace_id from extra fields if available.
    Automatically masks sensitive PII data.
    """

    RESERVED_ATTRS = {
        'name', 'msg', 'args', 'created', 'filename', 'funcName',
        'levelname', 'levelno', 'lineno', 'module', 'msecs', 'message',
        'pathname', 'process', 'processName', 'relativeCreated',
        'thread', 'threadName', 'exc_info', 'exc_text', 'stack_info',
        'request_id', 'workspace_id', 'taskName',
    }

    def format(self, record):
        log_data = {
            'timestamp': datetime.now(dt_timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': PIIMasker.mask_text(record.getMessage()),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
        }

        if hasattr(record, 'request_id'):
            log_data['request_id'] = record.request_id

        if getattr(record, 'workspace_id', None):
            log_data['workspace_id'] = str(record.workspace_id)

        if record.exc_info:
            log_data['exception'] = {
                'type': record.exc_info[0].__name__,
                'message': PIIMasker.mask_text(str(record.exc_info[1])),
                'traceback': [PIIMasker.mask_text(line) for line in traceback.format_exception(*record.exc_info)],
            }

        # Add any extra fields
        for key, value in record.__dict__.items():
            if key in self.RESERVED_ATTRS or key.startswith('_'):
                continue
            try:
                if isinstance(value, dict):
                    masked_value = PIIMasker.mask_dict(value)
                elif isinstance(value, str):
                    masked_value = PIIMasker.mask_dict({key: value})[key]
                else:
                    masked_value = value

                json.dumps(masked_value)  # Test if serializable
                log_data[key] = masked_value
            except (TypeError, ValueError):
                log_data[key] = PIIMasker.mask_text(str(value))

        return json.dumps(log_data)


class SecurityLogger:
    """
    Centralized logging for authorization-relevant security events.

    Events go to the 'security' logger with structured, PII-masked data.
    Critical events are also sent to Sentry for alerting.
    """

    CRITICAL_EVENTS = {
        'privilege_escalation_attempt',
    }

    @staticmethod
    def log_event(event_type: str, level: str = 'warning', **context):
        """
        Log a security event with structured data.

        Example:
            >>> SecurityLogger.log_event(
            ...     'authorization_denied',
            ...     user_id='123',
            ...     workspace_id='456',
            ...     reason='NOT_A_MEMBER'
            ... )
        """
        logger = logging.getLogger('security')

        log_data = {
            'event_type': event_type,
            'event_timestamp': timezone.now().isoformat(),
        }
        log_data.update(context)
        log_data = PIIMasker.mask_dict(log_data)

        log_method = getattr(logger, level, logger.warning)
        log_method(
            f"Security event: {event_type}",
            extra=log_data
        )

        if event_type in SecurityLogger.CRITICAL_EVENTS:
            sentry_sdk.capture_message(
                f"Critical security event: {event_type}",
                level='error',
                extras=log_data
            )

    @staticmethod
    def log_authorization_denied(user_id, workspace_id, reason: str, role=None,
                                 required=None, path: str = None):
        """Log a refused guard decision (not a member, missing capability)."""
        SecurityLogger.log_event(
            'authorization_denied',
            level='warning',
            user_id=str(user_id) if user_id else None,
            workspace_id=str(workspace_id) if workspace_id else None,
            reason=reason,
            role=role,
            required=required,
            path=path,
        )

    @staticmethod
    def log_invitation_email_mismatch(user_id, invitation_id, user_email: str, invitee_email: str):
        """Log an attempt to accept an invitation addressed to someone else."""
        SecurityLogger.log_event(
            'invitation_email_mismatch',
            level='warning',
            user_id=str(user_id),
            invitation_id=str(invitation_id),
            user_email=user_email,
            invitee_email=invitee_email,
        )

    @staticmethod
    def log_privilege_escalation_attempt(actor_id, workspace_id, operation: str):
        """Log a non-owner trying to grant the owner role."""
        SecurityLogger.log_event(
            'privilege_escalation_attempt',
            level='error',
            actor_id=str(actor_id),
            workspace_id=str(workspace_id),
            operation=operation,
        )

    @staticmethod
    def log_rate_limit_exceeded(endpoint: str, ip_address: str, user_email: str = None):
        """Log a rate limit violation."""
        SecurityLogger.log_event(
            'rate_limit_exceeded',
            level='warning',
            endpoint=endpoint,
            ip_address=ip_address,
            user_email=user_email,
        )
