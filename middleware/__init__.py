from middleware.errors import register_error_handlers
from middleware.auth import require_session, require_role

__all__ = ['register_error_handlers', 'require_session', 'require_role']
