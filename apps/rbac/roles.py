"""
Role permission table.

Capabilities are derived from the workspace role only. The grant table is
declared per capability so that intentional non-monotonic grants (for
example AI matching for members but not viewers) are written down
explicitly instead of being implied by a role rank.
"""
from types import MappingProxyType
from typing import Dict, FrozenSet, Iterable, Optional

from django.core.exceptions import ImproperlyConfigured
from django.db import models


class Role(models.TextChoices):
    OWNER = 'owner', 'Owner'
    ADMIN = 'admin', 'Admin'
    MEMBER = 'member', 'Member'
    VIEWER = 'viewer', 'Viewer'

    @classmethod
    def from_value(cls, value) -> Optional['Role']:
        """Parse a stored or submitted role; unknown values give None."""
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            return None


class Capability(models.TextChoices):
    # Designer management
    CREATE_DESIGNERS = 'canCreateDesigners'
    EDIT_DESIGNERS = 'canEditDesigners'
    DELETE_DESIGNERS = 'canDeleteDesigners'
    VIEW_DESIGNERS = 'canViewDesigners'
    EXPORT_DESIGNERS = 'canExportDesigners'
    IMPORT_DESIGNERS = 'canImportDesigners'
    BULK_EDIT_DESIGNERS = 'canBulkEditDesigners'

    # List management
    CREATE_LISTS = 'canCreateLists'
    EDIT_LISTS = 'canEditLists'
    DELETE_LISTS = 'canDeleteLists'
    VIEW_LISTS = 'canViewLists'
    SHARE_LISTS = 'canShareLists'
    PUBLISH_LISTS = 'canPublishLists'

    # Hiring & jobs
    CREATE_JOBS = 'canCreateJobs'
    EDIT_JOBS = 'canEditJobs'
    DELETE_JOBS = 'canDeleteJobs'
    VIEW_JOBS = 'canViewJobs'
    MANAGE_JOB_CANDIDATES = 'canManageJobCandidates'
    ACCESS_AI_MATCHING = 'canAccessAIMatching'

    # Workspace administration
    INVITE_MEMBERS = 'canInviteMembers'
    REMOVE_MEMBERS = 'canRemoveMembers'
    CHANGE_ROLES = 'canChangeRoles'
    MANAGE_WORKSPACE_SETTINGS = 'canManageWorkspaceSettings'
    DELETE_WORKSPACE = 'canDeleteWorkspace'
    VIEW_MEMBERS_LIST = 'canViewMembersList'
    MANAGE_INVITATIONS = 'canManageInvitations'

    # Data & analytics
    ACCESS_ANALYTICS = 'canAccessAnalytics'
    EXPORT_DATA = 'canExportData'
    VIEW_AUDIT_LOGS = 'canViewAuditLogs'

    # AI features
    USE_AI_ENRICHMENT = 'canUseAIEnrichment'
    CONFIGURE_AI = 'canConfigureAI'

    # Billing & admin
    MANAGE_BILLING = 'canManageBilling'
    VIEW_USAGE = 'canViewUsage'

    @classmethod
    def from_value(cls, value) -> Optional['Capability']:
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            return None


OWNER, ADMIN, MEMBER, VIEWER = Role.OWNER, Role.ADMIN, Role.MEMBER, Role.VIEWER

ALL_ROLES = frozenset(Role)

# Which roles hold each capability. Every capability must appear here.
CAPABILITY_GRANTS: Dict[Capability, FrozenSet[Role]] = {
    Capability.CREATE_DESIGNERS: frozenset({OWNER, ADMIN, MEMBER}),
    Capability.EDIT_DESIGNERS: frozenset({OWNER, ADMIN, MEMBER}),
    Capability.DELETE_DESIGNERS: frozenset({OWNER, ADMIN}),
    Capability.VIEW_DESIGNERS: ALL_ROLES,
    Capability.EXPORT_DESIGNERS: frozenset({OWNER, ADMIN, MEMBER}),
    Capability.IMPORT_DESIGNERS: frozenset({OWNER, ADMIN, MEMBER}),
    Capability.BULK_EDIT_DESIGNERS: frozenset({OWNER, ADMIN}),

    Capability.CREATE_LISTS: frozenset({OWNER, ADMIN, MEMBER}),
    Capability.EDIT_LISTS: frozenset({OWNER, ADMIN, MEMBER}),
    Capability.DELETE_LISTS: frozenset({OWNER, ADMIN}),
    Capability.VIEW_LISTS: ALL_ROLES,
    Capability.SHARE_LISTS: frozenset({OWNER, ADMIN, MEMBER}),
    Capability.PUBLISH_LISTS: frozenset({OWNER, ADMIN}),

    Capability.CREATE_JOBS: frozenset({OWNER, ADMIN, MEMBER}),
    Capability.EDIT_JOBS: frozenset({OWNER, ADMIN, MEMBER}),
    Capability.DELETE_JOBS: frozenset({OWNER, ADMIN}),
    Capability.VIEW_JOBS: ALL_ROLES,
    Capability.MANAGE_JOB_CANDIDATES: frozenset({OWNER, ADMIN}),
    # Granted to members, withheld from viewers
    Capability.ACCESS_AI_MATCHING: frozenset({OWNER, ADMIN, MEMBER}),

    Capability.INVITE_MEMBERS: frozenset({OWNER, ADMIN}),
    Capability.REMOVE_MEMBERS: frozenset({OWNER}),
    Capability.CHANGE_ROLES: frozenset({OWNER}),
    Capability.MANAGE_WORKSPACE_SETTINGS: frozenset({OWNER}),
    Capability.DELETE_WORKSPACE: frozenset({OWNER}),
    Capability.VIEW_MEMBERS_LIST: ALL_ROLES,
    Capability.MANAGE_INVITATIONS: frozenset({OWNER, ADMIN}),

    Capability.ACCESS_ANALYTICS: frozenset({OWNER, ADMIN}),
    Capability.EXPORT_DATA: frozenset({OWNER, ADMIN, MEMBER}),
    Capability.VIEW_AUDIT_LOGS: frozenset({OWNER}),

    Capability.USE_AI_ENRICHMENT: frozenset({OWNER, ADMIN, MEMBER}),
    Capability.CONFIGURE_AI: frozenset({OWNER}),

    Capability.MANAGE_BILLING: frozenset({OWNER}),
    Capability.VIEW_USAGE: frozenset({OWNER, ADMIN}),
}


def _check_grant_table(grants):
    missing = set(Capability) - set(grants)
    if missing:
        raise ImproperlyConfigured(
            f"Capabilities without a grant entry: {sorted(c.value for c in missing)}"
        )
    for capability, roles in grants.items():
        unknown = set(roles) - ALL_ROLES
        if unknown:
            raise ImproperlyConfigured(
                f"Capability {capability.value} granted to unknown roles: {sorted(unknown)}"
            )


_check_grant_table(CAPABILITY_GRANTS)


class CapabilitySet:
    """
    Immutable answer to "what may this role do", defined for every capability.
    """

    __slots__ = ('_granted',)

    def __init__(self, granted: Iterable[Capability] = ()):
        object.__setattr__(self, '_granted', frozenset(granted))

    def __setattr__(self, name, value):
        raise AttributeError('CapabilitySet is immutable')

    @property
    def granted(self) -> FrozenSet[Capability]:
        return self._granted

    def has(self, capability) -> bool:
        """Unknown capability names are never granted."""
        capability = Capability.from_value(capability)
        return capability is not None and capability in self._granted

    __contains__ = has

    def __getitem__(self, capability) -> bool:
        return self.has(capability)

    def as_dict(self) -> Dict[str, bool]:
        return {capability.value: capability in self._granted for capability in Capability}

    def __eq__(self, other):
        return isinstance(other, CapabilitySet) and self._granted == other._granted

    def __hash__(self):
        return hash(self._granted)

    def __repr__(self):
        return f"CapabilitySet({sorted(c.value for c in self._granted)})"


NO_CAPABILITIES = CapabilitySet()
ALL_CAPABILITIES = CapabilitySet(Capability)

_ROLE_CAPABILITIES = MappingProxyType({
    role: CapabilitySet(
        capability for capability, roles in CAPABILITY_GRANTS.items() if role in roles
    )
    for role in Role
})


def permissions_for(role) -> CapabilitySet:
    """
    Return the capability set for a role.

    Fails closed: None or an unrecognized role yields the all-false set.
    """
    role = Role.from_value(role)
    if role is None:
        return NO_CAPABILITIES
    return _ROLE_CAPABILITIES[role]
