"""
Tenant and branch scoping.

Every other feature is scoped by tenant id, and communities/members optionally by branch.
"""
