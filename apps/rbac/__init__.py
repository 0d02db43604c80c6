"""
RBAC (Role-Based Access Control) application.

Provides workspace-scoped access control with:
- Global user identity
- Per-workspace role memberships and a fixed role permission table
- Invitation lifecycle (invite, lookup, accept, cancel)
- Authorization guard and audit logging
"""
