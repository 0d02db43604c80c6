"""
Tests for the invitation lifecycle.
"""
import threading
from datetime import timedelta
from smtplib import SMTPException
from unittest.mock import patch

import pytest
from django.core import mail
from django.db import connection
from django.utils import timezone

from apps.core.exceptions import (
    AlreadyAccepted, AlreadyMember, EmailMismatch, Expired, Forbidden,
    InvitationNotFound, NotAMember,
)
from apps.rbac.models import AuditLog, Invitation, Membership
from apps.rbac.roles import Role
from apps.rbac.services import AuthService, InvitationService


@pytest.fixture
def admin(workspace, make_user, add_member):
    user = make_user('ada@x.com')
    add_member(workspace, user, Role.ADMIN)
    return user


@pytest.mark.django_db
class TestInvite:

    def test_creates_invitation_and_sends_email(self, owner, workspace):
        invitation, created = InvitationService.invite(owner, workspace, 'bob@x.com', Role.MEMBER)

        assert created is True
        assert invitation.role == Role.MEMBER
        assert invitation.invited_by == owner
        assert invitation.accepted_at is None
        assert len(invitation.token) >= 32
        assert invitation.expires_at - timezone.now() > timedelta(days=6, hours=23)
        assert len(mail.outbox) == 1
        assert mail.outbox[0].to == ['bob@x.com']
        assert f"/invite/{invitation.token}" in mail.outbox[0].body
        assert AuditLog.objects.filter(action='invitation.created', resource_id=str(invitation.id)).exists()

    def test_expiry_follows_setting(self, owner, workspace, settings):
        settings.INVITATION_EXPIRY_DAYS = 2

        invitation, _ = InvitationService.invite(owner, workspace, 'bob@x.com')

        assert invitation.expires_at - timezone.now() < timedelta(days=2, minutes=1)

    def test_reinvite_refreshes_in_place(self, owner, workspace):
        first, _ = InvitationService.invite(owner, workspace, 'bob@x.com', Role.VIEWER)
        later = timezone.now() + timedelta(hours=5)

        with patch('apps.rbac.services.timezone.now', return_value=later):
            second, created = InvitationService.invite(owner, workspace, 'bob@x.com', Role.MEMBER)

        assert created is False
        assert second.id == first.id
        assert Invitation.objects.filter(workspace=workspace, email='bob@x.com').count() == 1
        refreshed = Invitation.objects.get(id=first.id)
        assert refreshed.token == first.token
        assert refreshed.expires_at > first.expires_at
        assert refreshed.role == Role.MEMBER
        assert AuditLog.objects.filter(action='invitation.refreshed').count() == 1

    def test_expired_invitation_is_superseded(self, owner, workspace):
        stale, _ = InvitationService.invite(owner, workspace, 'bob@x.com')
        Invitation.objects.filter(id=stale.id).update(expires_at=timezone.now() - timedelta(minutes=1))

        fresh, created = InvitationService.invite(owner, workspace, 'bob@x.com')

        assert created is True
        assert fresh.token != stale.token
        assert not Invitation.objects.filter(id=stale.id).exists()
        assert fresh.is_open()

    def test_admin_can_invite(self, admin, workspace):
        _, created = InvitationService.invite(admin, workspace, 'bob@x.com')

        assert created is True

    def test_member_cannot_invite(self, workspace, make_user, add_member):
        member = make_user('mo@x.com')
        add_member(workspace, member, Role.MEMBER)

        with pytest.raises(Forbidden) as exc_info:
            InvitationService.invite(member, workspace, 'bob@x.com')

        assert exc_info.value.required_capability == 'canInviteMembers'
        assert not Invitation.objects.exists()

    def test_outsider_cannot_invite(self, workspace, make_user):
        with pytest.raises(NotAMember):
            InvitationService.invite(make_user('carol@x.com'), workspace, 'bob@x.com')

    def test_admin_cannot_invite_an_owner(self, admin, workspace):
        with patch('apps.rbac.services.SecurityLogger.log_privilege_escalation_attempt') as log_escalation:
            with pytest.raises(Forbidden):
                InvitationService.invite(admin, workspace, 'bob@x.com', Role.OWNER)

        log_escalation.assert_called_once()

    def test_owner_can_invite_an_owner(self, owner, workspace):
        invitation, _ = InvitationService.invite(owner, workspace, 'bob@x.com', Role.OWNER)

        assert invitation.role == Role.OWNER

    def test_existing_member_is_rejected(self, owner, workspace, make_user, add_member):
        add_member(workspace, make_user('bob@x.com'))

        with pytest.raises(AlreadyMember):
            InvitationService.invite(owner, workspace, 'bob@x.com')

    def test_unknown_role_is_rejected(self, owner, workspace):
        with pytest.raises(ValueError):
            InvitationService.invite(owner, workspace, 'bob@x.com', 'superuser')

    def test_email_domain_is_normalized_like_user_emails(self, owner, workspace):
        invitation, _ = InvitationService.invite(owner, workspace, '  Bob@Example.COM ')

        assert invitation.email == 'Bob@example.com'

    def test_mixed_case_domain_registers_and_accepts(self, owner, workspace):
        invitation, _ = InvitationService.invite(owner, workspace, 'Bob@Example.COM')
        bob = AuthService.register_user('Bob@Example.COM', 's3cure-Passw0rd!')['user']

        membership = InvitationService.accept(bob, invitation.token)

        assert membership.user == bob
        assert membership.workspace_id == workspace.id

    def test_local_part_stays_case_sensitive(self, owner, workspace, make_user):
        invitation, _ = InvitationService.invite(owner, workspace, 'Bob@example.com')

        with pytest.raises(EmailMismatch):
            InvitationService.accept(make_user('bob@example.com'), invitation.token)

    def test_existing_member_with_mixed_case_domain(self, owner, workspace, make_user, add_member):
        add_member(workspace, make_user('carol@example.com'), Role.MEMBER)

        with pytest.raises(AlreadyMember):
            InvitationService.invite(owner, workspace, 'carol@EXAMPLE.com')

        assert not Invitation.objects.filter(workspace=workspace).exists()

    def test_notification_failure_keeps_invitation(self, owner, workspace):
        with patch('apps.rbac.notifications.send_mail', side_effect=SMTPException('relay down')):
            invitation, created = InvitationService.invite(owner, workspace, 'bob@x.com')

        assert created is True
        assert Invitation.objects.filter(id=invitation.id).exists()


@pytest.mark.django_db
class TestLookup:

    def test_returns_detail_without_consuming(self, owner, workspace):
        invitation, _ = InvitationService.invite(owner, workspace, 'bob@x.com', Role.MEMBER)

        detail = InvitationService.lookup(invitation.token)

        assert detail.role == 'member'
        assert detail.accepted_at is None
        assert detail.workspace_slug == 'acme'
        assert detail.workspace_name == 'Acme'
        assert detail.invited_by_email == 'alice@x.com'
        assert Invitation.objects.get(id=invitation.id).accepted_at is None

    def test_unknown_token(self, workspace):
        with pytest.raises(InvitationNotFound):
            InvitationService.lookup('no-such-token')

    def test_expired(self, owner, workspace):
        invitation, _ = InvitationService.invite(owner, workspace, 'bob@x.com')
        Invitation.objects.filter(id=invitation.id).update(expires_at=timezone.now() - timedelta(seconds=1))

        with pytest.raises(Expired):
            InvitationService.lookup(invitation.token)

    def test_already_accepted(self, owner, workspace, make_user):
        invitation, _ = InvitationService.invite(owner, workspace, 'bob@x.com')
        InvitationService.accept(make_user('bob@x.com'), invitation.token)

        with pytest.raises(AlreadyAccepted):
            InvitationService.lookup(invitation.token)


@pytest.mark.django_db
class TestAccept:

    @pytest.fixture
    def invitation(self, owner, workspace):
        return InvitationService.invite(owner, workspace, 'bob@x.com', Role.MEMBER)[0]

    def test_creates_membership(self, invitation, workspace, make_user):
        bob = make_user('bob@x.com')

        membership = InvitationService.accept(bob, invitation.token)

        assert membership.workspace_id == workspace.id
        assert membership.user == bob
        assert membership.role == Role.MEMBER
        assert membership.invited_by_id == invitation.invited_by_id
        invitation.refresh_from_db()
        assert invitation.accepted_at is not None
        assert invitation.accepted_by == bob
        assert AuditLog.objects.filter(action='invitation.accepted').count() == 1

    def test_unknown_token(self, workspace, make_user):
        with pytest.raises(InvitationNotFound):
            InvitationService.accept(make_user('bob@x.com'), 'no-such-token')

    def test_email_mismatch(self, invitation, make_user):
        with patch('apps.rbac.services.SecurityLogger.log_invitation_email_mismatch') as log_mismatch:
            with pytest.raises(EmailMismatch):
                InvitationService.accept(make_user('mallory@x.com'), invitation.token)

        log_mismatch.assert_called_once()
        assert not Membership.objects.filter(user__email='mallory@x.com').exists()

    def test_email_comparison_is_case_sensitive(self, owner, workspace, make_user):
        invitation, _ = InvitationService.invite(owner, workspace, 'Bob@x.com')

        with pytest.raises(EmailMismatch):
            InvitationService.accept(make_user('bob@x.com'), invitation.token)

    def test_expired(self, invitation, make_user):
        Invitation.objects.filter(id=invitation.id).update(expires_at=timezone.now() - timedelta(seconds=1))

        with pytest.raises(Expired):
            InvitationService.accept(make_user('bob@x.com'), invitation.token)

    def test_already_member(self, invitation, workspace, make_user, add_member):
        bob = make_user('bob@x.com')
        add_member(workspace, bob, Role.VIEWER)

        with pytest.raises(AlreadyMember):
            InvitationService.accept(bob, invitation.token)

        assert Membership.objects.filter(workspace=workspace, user=bob).count() == 1
        assert Invitation.objects.get(id=invitation.id).accepted_at is None

    def test_second_accept_is_already_member(self, invitation, make_user):
        bob = make_user('bob@x.com')
        InvitationService.accept(bob, invitation.token)

        with pytest.raises(AlreadyMember):
            InvitationService.accept(bob, invitation.token)

    def test_accepted_after_leaving_is_already_accepted(self, invitation, workspace, make_user):
        bob = make_user('bob@x.com')
        InvitationService.accept(bob, invitation.token)
        Membership.objects.filter(workspace=workspace, user=bob).delete()

        with pytest.raises(AlreadyAccepted):
            InvitationService.accept(bob, invitation.token)


@pytest.mark.django_db
class TestSingleAcceptance:
    """
    Two callers holding the same open invitation: only one consume succeeds.
    """

    def test_stale_consume_loses_on_accepted_at(self, owner, workspace, make_user):
        invitation, _ = InvitationService.invite(owner, workspace, 'bob@x.com')
        bob = make_user('bob@x.com')
        first_view = Invitation.objects.get(id=invitation.id)
        second_view = Invitation.objects.get(id=invitation.id)

        InvitationService.consume(first_view, bob)
        with pytest.raises(AlreadyAccepted):
            InvitationService.consume(second_view, bob)

        assert Membership.objects.filter(workspace=workspace, user=bob).count() == 1

    def test_membership_constraint_rolls_back_acceptance(self, owner, workspace, make_user, add_member):
        invitation, _ = InvitationService.invite(owner, workspace, 'bob@x.com')
        bob = make_user('bob@x.com')
        add_member(workspace, bob, Role.VIEWER)

        with pytest.raises(AlreadyMember):
            InvitationService.consume(invitation, bob)

        assert Invitation.objects.get(id=invitation.id).accepted_at is None
        assert Membership.objects.filter(workspace=workspace, user=bob).count() == 1


@pytest.mark.django_db(transaction=True)
class TestConcurrentAcceptance:

    def test_two_threads_accepting_one_invitation(self, owner, workspace, make_user):
        invitation, _ = InvitationService.invite(owner, workspace, 'bob@x.com')
        bob = make_user('bob@x.com')

        # Both callers finish their checks before either consumes; the
        # consumes themselves run one at a time (sqlite allows one writer).
        checks_done = threading.Barrier(2, timeout=10)
        writer = threading.Lock()
        holder = threading.local()
        consume = InvitationService.consume.__func__
        outcomes = []

        def racing_consume(cls, invitation, user):
            checks_done.wait()
            writer.acquire()
            holder.writing = True
            return consume(cls, invitation, user)

        def accept():
            try:
                outcomes.append(InvitationService.accept(bob, invitation.token))
            except (AlreadyAccepted, AlreadyMember) as exc:
                outcomes.append(exc)
            finally:
                if getattr(holder, 'writing', False):
                    writer.release()
                connection.close()

        with patch.object(InvitationService, 'consume', classmethod(racing_consume)):
            threads = [threading.Thread(target=accept) for _ in range(2)]
            for thread in threads:
                thread.start()
            for thread in threads:
                thread.join(timeout=30)

        assert len(outcomes) == 2
        assert sum(isinstance(outcome, Membership) for outcome in outcomes) == 1
        assert sum(isinstance(outcome, (AlreadyAccepted, AlreadyMember)) for outcome in outcomes) == 1
        assert Membership.objects.filter(workspace=workspace, user=bob).count() == 1
        assert Invitation.objects.get(id=invitation.id).accepted_by == bob


@pytest.mark.django_db
class TestCancel:

    def test_deletes_open_invitation(self, owner, workspace):
        invitation, _ = InvitationService.invite(owner, workspace, 'bob@x.com')

        assert InvitationService.cancel(owner, workspace, invitation.id) is True
        assert not Invitation.objects.filter(id=invitation.id).exists()
        assert AuditLog.objects.filter(action='invitation.cancelled').count() == 1

    def test_missing_invitation_is_a_noop(self, owner, workspace):
        invitation, _ = InvitationService.invite(owner, workspace, 'bob@x.com')
        InvitationService.cancel(owner, workspace, invitation.id)

        assert InvitationService.cancel(owner, workspace, invitation.id) is False

    def test_accepted_invitation_is_kept(self, owner, workspace, make_user):
        invitation, _ = InvitationService.invite(owner, workspace, 'bob@x.com')
        InvitationService.accept(make_user('bob@x.com'), invitation.token)

        assert InvitationService.cancel(owner, workspace, invitation.id) is False
        assert Invitation.objects.filter(id=invitation.id).exists()

    def test_requires_manage_invitations(self, owner, workspace, make_user, add_member):
        invitation, _ = InvitationService.invite(owner, workspace, 'bob@x.com')
        member = make_user('mo@x.com')
        add_member(workspace, member, Role.MEMBER)

        with pytest.raises(Forbidden):
            InvitationService.cancel(member, workspace, invitation.id)

    def test_cannot_cancel_another_workspaces_invitation(self, owner, workspace, make_user):
        from apps.workspaces.services import WorkspaceService

        other_owner = make_user('zed@x.com')
        other = WorkspaceService.create_workspace(owner=other_owner, name='Other')
        invitation, _ = InvitationService.invite(other_owner, other, 'bob@x.com')

        assert InvitationService.cancel(owner, workspace, invitation.id) is False
        assert Invitation.objects.filter(id=invitation.id).exists()
