"""Strava client components (session, rate limiter, retry, activities, hider)."""

from .activities import ActivitiesAPI, parse_activity  # noqa: F401
from .rate_limiter import RateLimiter  # noqa: F401
from .resources import ResourceAPI  # noqa: F401
from .retry import RetryPolicy  # noqa: F401
from .session import create_default_session  # noqa: F401
from .updates import ActivityHider  # noqa: F401
