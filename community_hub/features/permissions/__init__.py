"""
Permission management feature module.

Implements tenant-scoped Role-Based Access Control: hierarchical roles,
scoped role-permission grants with expiry, user role assignments and
per-user permission overrides merged into an effective permission set.
"""
