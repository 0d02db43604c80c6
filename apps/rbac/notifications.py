"""
Invitation notification emails.

Delivery is best-effort: callers send after the invitation is committed
and a failure here never undoes the invitation.
"""
import logging

from django.conf import settings
from django.core.mail import send_mail

logger = logging.getLogger(__name__)


def invitation_link(invitation):
    return f"{settings.FRONTEND_URL.rstrip('/')}/invite/{invitation.token}"


def send_invitation_email(invitation):
    """
    Email the invitee a link to accept the invitation.

    Returns True when the mail was handed to the backend.
    """
    workspace = invitation.workspace
    inviter = invitation.invited_by
    inviter_name = inviter.get_full_name() if inviter else 'A teammate'

    subject = f"You've been invited to join {workspace.name}"
    message = f"""
Hello,

{inviter_name} has invited you to join {workspace.name} as {invitation.get_role_display().lower()}.

Accept your invitation: {invitation_link(invitation)}

This invitation expires on {invitation.expires_at:%Y-%m-%d %H:%M} UTC.
"""
    try:
        send_mail(
            subject,
            message,
            settings.DEFAULT_FROM_EMAIL,
            [invitation.email],
            fail_silently=False,
        )
    except Exception as e:
        logger.warning(
            f"Failed to send invitation email: {e}",
            extra={
                'invitation_id': str(invitation.id),
                'workspace_id': str(workspace.id),
            },
            exc_info=True
        )
        return False

    logger.info(
        "Invitation email sent",
        extra={'invitation_id': str(invitation.id), 'workspace_id': str(workspace.id)}
    )
    return True
