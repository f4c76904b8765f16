from functools import wraps
from flask import abort, g
from flask_jwt_extended import verify_jwt_in_request
from facilityops.services.policy import has_permissions, current_permissions, current_user_id


def require_permissions(*codes: str, any_of: bool = False):
    """Gate a view on the JWT `perms` claim.

    any_of=True accepts a token holding at least one of codes. Issue-level authority
    (role, assignment, facility scope) is checked afterwards by the engine.
    """
    def outer(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            verify_jwt_in_request()
            if any_of:
                allowed = bool(current_permissions() & set(codes))
            else:
                allowed = has_permissions(*codes)
            if not allowed:
                abort(403, description='Missing permission')
            g.user_id = current_user_id()
            return fn(*args, **kwargs)
        return wrapper
    return outer
