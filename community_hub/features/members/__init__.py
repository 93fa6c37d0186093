"""
Member profiles within a tenant.

Profile writes trigger community auto-assignment (see features.communities.sync).
"""
