"""Shared utility functions for blueprints.

parse_date_input:    raises ValueError on bad input (callers map to 400)
parse_version:       optimistic-concurrency token from a JSON body
db_commit_or_error:  commit with uniform error responses
"""
import logging
from datetime import date, datetime

from flask import jsonify

from edms.models import db

logger = logging.getLogger(__name__)


def parse_date_input(value):
    """Parse a date string, raising ValueError on bad input.

    Supports: YYYY-MM-DD, YYYY-MM-DDTHH:MM:SS, DD.MM.YYYY, date objects.
    Returns None for empty input.
    """
    if not value:
        return None
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(str(value)).date()
    except ValueError:
        pass
    try:
        return datetime.strptime(str(value), "%d.%m.%Y").date()
    except ValueError as exc:
        raise ValueError(
            "Invalid date format. Use YYYY-MM-DD or DD.MM.YYYY."
        ) from exc


def parse_version(data: dict):
    """Return ``data["version"]`` as int, None when absent.

    Raises ValueError for a non-integer value.
    """
    value = data.get("version")
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError("version must be an integer") from exc


# ── Database commit helper ───────────────────────────────────────────────────

def db_commit_or_error():
    """Commit the current SQLAlchemy session, returning an error response on failure.

    Returns:
        None on success.
        (response, status_code) tuple on failure — ready for ``return``.

    Usage::

        err = db_commit_or_error()
        if err:
            return err

    IntegrityError → 409 (duplicate / constraint violation)
    OperationalError → 500 (connection / lock issues)
    """
    from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError

    try:
        db.session.commit()
        return None
    except IntegrityError as exc:
        db.session.rollback()
        logger.warning("Integrity error on commit: %s", exc.orig)
        return jsonify({"error": "Duplicate or constraint violation", "code": "ERR_CONFLICT_DUPLICATE"}), 409
    except OperationalError:
        db.session.rollback()
        logger.exception("Database operational error on commit")
        return jsonify({"error": "Database error", "code": "ERR_DATABASE"}), 500
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Unexpected database error on commit")
        return jsonify({"error": "Database error", "code": "ERR_DATABASE"}), 500
