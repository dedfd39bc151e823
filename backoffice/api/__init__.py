"""REST API for the back-office engine.

Example:
    from backoffice.api import create_app
    app = create_app()
"""

from backoffice.api.app import create_app
from backoffice.api.config import DEFAULT_API_CONFIG, APIConfig

__all__ = [
    "APIConfig",
    "DEFAULT_API_CONFIG",
    "create_app",
]
