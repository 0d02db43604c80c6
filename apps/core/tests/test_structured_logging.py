"""
Tests for JSON log formatting, PII masking and security events.
"""
import json
import logging
from unittest.mock import patch

from apps.core.logging import JSONFormatter, PIIMasker, SecurityLogger
from apps.core.middleware import LoggingFilter, _request_local


def make_record(message, **extra):
    record = logging.LogRecord('apps.test', logging.INFO, __file__, 10, message, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestPIIMasker:

    def test_mask_email(self):
        assert PIIMasker.mask_email('contact dana@example.com now') == 'contact d***@example.com now'

    def test_mask_dict(self):
        masked = PIIMasker.mask_dict({
            'user_email': 'dana@example.com',
            'password': 'hunter2',
            'nested': {'access_token': 'abc'},
            'role': 'admin',
        })

        assert masked == {
            'user_email': 'd***@example.com',
            'password': '********',
            'nested': {'access_token': '********'},
            'role': 'admin',
        }


class TestJSONFormatter:

    def test_formats_extra_fields(self):
        record = make_record('Invitation created', workspace_id='ws-1', request_id='req-1', invitation_id='inv-1')

        data = json.loads(JSONFormatter().format(record))

        assert data['message'] == 'Invitation created'
        assert data['level'] == 'INFO'
        assert data['workspace_id'] == 'ws-1'
        assert data['request_id'] == 'req-1'
        assert data['invitation_id'] == 'inv-1'

    def test_masks_message_and_fields(self):
        record = make_record('Sent to dana@example.com', email='dana@example.com')

        data = json.loads(JSONFormatter().format(record))

        assert data['message'] == 'Sent to d***@example.com'
        assert data['email'] == 'd***@example.com'

    def test_unserializable_extra_is_stringified(self):
        record = make_record('x', thing=object())

        data = json.loads(JSONFormatter().format(record))

        assert data['thing'].startswith('<object object')


class TestLoggingFilter:

    def test_adds_current_request_id(self):
        _request_local.request_id = 'req-9'
        try:
            record = make_record('x')
            LoggingFilter().filter(record)
        finally:
            _request_local.request_id = None

        assert record.request_id == 'req-9'


class TestSecurityLogger:

    security = logging.getLogger('security')

    def test_authorization_denied(self):
        with patch.object(self.security, 'warning') as warning:
            SecurityLogger.log_authorization_denied(
                user_id='u-1', workspace_id='w-1', reason='FORBIDDEN',
                role='viewer', required='canExportData',
            )

        extra = warning.call_args.kwargs['extra']
        assert extra['event_type'] == 'authorization_denied'
        assert extra['reason'] == 'FORBIDDEN'
        assert extra['required'] == 'canExportData'

    def test_email_mismatch_masks_addresses(self):
        with patch.object(self.security, 'warning') as warning:
            SecurityLogger.log_invitation_email_mismatch('u-1', 'inv-1', 'eve@x.com', 'dan@x.com')

        extra = warning.call_args.kwargs['extra']
        assert extra['user_email'] == 'e**@x.com'
        assert extra['invitee_email'] == 'd**@x.com'

    def test_privilege_escalation_goes_to_sentry(self):
        with patch.object(self.security, 'error') as error, \
                patch('apps.core.logging.sentry_sdk.capture_message') as capture:
            SecurityLogger.log_privilege_escalation_attempt('u-1', 'w-1', 'change_role')

        error.assert_called_once()
        capture.assert_called_once()
        assert capture.call_args.kwargs['level'] == 'error'
