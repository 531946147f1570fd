"""Browser-brokered access to a challenge-protected GraphQL API.

Queries are swapped into the web application's own requests from one
authenticated remote browser session.
"""

from pagebroker.executor import QueryExecutor
from pagebroker.session_manager import SessionManager

__all__ = ["QueryExecutor", "SessionManager"]
