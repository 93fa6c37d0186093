"""
Community management feature module.

Typed affinity groups (cell / tribe / profession / ministry) with type-specific
uniqueness rules, membership management and automatic assignment of members
based on their profile attributes.
"""
