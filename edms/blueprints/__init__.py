"""
EDMS Request Routing
Blueprint registry.
"""

from flask import current_app, request

from edms.services.request_repository import SqlAlchemyRequestRepository, SqlAlchemyUserDirectory


def paginate_list(items, default_limit=200, max_limit=1000):
    """Apply limit/offset pagination to an already-loaded list.

    Query params:
        limit  — max items (default 200, capped at max_limit)
        offset — starting position (default 0)

    Returns:
        (items_page, total_count)
    """
    total = len(items)
    try:
        limit = min(int(request.args.get("limit", default_limit)), max_limit)
    except (ValueError, TypeError):
        limit = default_limit
    try:
        offset = max(int(request.args.get("offset", 0)), 0)
    except (ValueError, TypeError):
        offset = 0
    return items[offset:offset + limit], total


def get_repositories():
    """Request repository and user directory bound to the app's database session.

    Tests may swap in other implementations via ``app.extensions["edms_repos"]``.
    """
    repos = current_app.extensions.get("edms_repos")
    if repos is None:
        repos = (SqlAlchemyRequestRepository(), SqlAlchemyUserDirectory())
        current_app.extensions["edms_repos"] = repos
    return repos


def routing_options() -> dict:
    """Lifecycle keyword arguments taken from app config."""
    return {"max_retries": current_app.config.get("PERSIST_MAX_RETRIES", 3)}
