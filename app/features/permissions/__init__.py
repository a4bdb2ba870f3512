"""
Role-based access control feature module.

Permissions, roles, the links between roles, permissions and users, and the
resolver every other module consults before allowing an action.
"""
