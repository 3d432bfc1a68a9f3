"""Authentication and admin permission helpers."""

PERMISSIONS = (
    'email:config:read',
    'email:config:write',
    'email:config:delete',
    'email:template:read',
    'email:template:write',
    'email:template:delete',
    'email:test:send',
    'email:analytics:read',
    'email:logs:read',
    'email:logs:export',
    'system:admin',
)
SYSTEM_ADMIN = 'system:admin'
DEFAULT_ADMIN_PERMISSIONS = (
    'email:config:read',
    'email:template:read',
    'email:analytics:read',
    'email:logs:read',
)


def verify_firebase_token(request, auth_module, logger):
    """Return decoded Firebase token dict, or None when invalid/missing."""
    auth_header = request.headers.get('Authorization', '')
    if not auth_header.startswith('Bearer '):
        return None
    token = auth_header.split('Bearer ', 1)[1]
    try:
        return auth_module.verify_id_token(token)
    except Exception as exc:
        if logger is not None:
            logger.info(f"Token verification failed: {exc}")
        return None


def is_env_admin(decoded_token, admin_uids, admin_emails):
    if not decoded_token:
        return False
    uid = decoded_token.get('uid', '')
    email = (decoded_token.get('email', '') or '').lower()
    return uid in admin_uids or email in admin_emails


def resolve_permissions(decoded_token, admin_record, admin_uids, admin_emails):
    """Return the permission set for a caller, empty when they are not an admin."""
    if is_env_admin(decoded_token, admin_uids, admin_emails):
        return {SYSTEM_ADMIN}
    if not admin_record:
        return set()
    if admin_record.get('role') == 'super_admin':
        return {SYSTEM_ADMIN}
    listed = [p for p in (admin_record.get('permissions') or []) if p in PERMISSIONS]
    return set(listed or DEFAULT_ADMIN_PERMISSIONS)


def has_permission(permissions, required):
    if not required:
        return bool(permissions)
    return SYSTEM_ADMIN in permissions or required in permissions
