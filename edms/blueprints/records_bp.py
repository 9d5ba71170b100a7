"""
Records dashboard — filed requests grouped by disposal year, then SSIC bucket.

Endpoints:
    GET /api/v1/records?unit_uic=&view=originator|command[&uploaded_by_id=]

``view`` selects the year-group ordering: the originator view lists
Permanent first, the command view lists it after the numbered years.
"""

import logging

from flask import Blueprint, jsonify, request

from edms.blueprints import get_repositories
from edms.services.retention import (
    COMMAND_YEAR_ORDER,
    ORIGINATOR_YEAR_ORDER,
    RetentionInfo,
    compute_disposal,
    disposal_summary,
    format_cutoff,
    format_retention,
    group_filed_records,
)
from edms.utils.errors import E, api_error

logger = logging.getLogger(__name__)

records_bp = Blueprint("records", __name__, url_prefix="/api/v1")

_VIEWS = {
    "originator": ORIGINATOR_YEAR_ORDER,
    "command": COMMAND_YEAR_ORDER,
}


def _record_row(record) -> dict:
    disposal = compute_disposal(RetentionInfo.from_request(record))
    return {
        "id": record.id,
        "subject": record.subject,
        "ssic": record.ssic,
        "ssic_nomenclature": record.ssic_nomenclature,
        "filed_at": record.filed_at.isoformat() if record.filed_at else None,
        "final_status": record.final_status,
        "retention": format_retention(record.is_permanent, record.retention_value, record.retention_unit),
        "cutoff": format_cutoff(record.cutoff_trigger, record.cutoff_description),
        "disposal_summary": disposal_summary(record),
        "disposal_action": record.disposal_action,
        "disposal_date": disposal.date,
    }


@records_bp.route("/records", methods=["GET"])
def list_records():
    """Filed records grouped for the records dashboard."""
    view = request.args.get("view", "originator")
    if view not in _VIEWS:
        return api_error(E.VALIDATION_INVALID, f"Unknown view: {view}",
                         details={"allowed": sorted(_VIEWS)})

    repo, _ = get_repositories()
    records = repo.list(
        unit_uic=request.args.get("unit_uic") or None,
        uploaded_by_id=request.args.get("uploaded_by_id") or None,
        filed=True,
    )
    groups = group_filed_records(records, _VIEWS[view])

    return jsonify({
        "view": view,
        "total": len(records),
        "years": [
            {
                "year": g["year"],
                "buckets": [
                    {
                        "bucket": b["bucket"],
                        "title": b["title"],
                        "records": [_record_row(r) for r in b["records"]],
                    }
                    for b in g["buckets"]
                ],
            }
            for g in groups
        ],
    })
