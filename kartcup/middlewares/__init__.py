from kartcup.middlewares.db_middleware import DatabaseMiddleware
from kartcup.middlewares.auth_middleware import AdminMiddleware, IsAdmin
from kartcup.middlewares.rate_limit_middleware import RateLimitMiddleware

__all__ = ["DatabaseMiddleware", "AdminMiddleware", "IsAdmin", "RateLimitMiddleware"]
