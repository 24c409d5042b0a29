"""
Audit CAPA Platform
Finding Blueprint - categorization.

    POST /api/v1/findings/<id>/categorize
        {"category": "NON_CONFORMITY", "nc_type": "MINOR", "nc_severity": "LOW"}
"""

import logging

from flask import Blueprint, g, jsonify

from auditcapa.blueprints import json_body, register_error_handlers
from auditcapa.services.finding_service import categorize_finding

logger = logging.getLogger(__name__)

finding_bp = Blueprint("finding", __name__, url_prefix="/api/v1/findings")
register_error_handlers(finding_bp)


@finding_bp.route("/<int:finding_id>/categorize", methods=["POST"])
def categorize(finding_id):
    data = json_body()
    result = categorize_finding(
        finding_id,
        data.get("category"),
        tenant_id=g.tenant_id,
        actor_id=g.user_id,
        nc_type=data.get("nc_type"),
        nc_severity=data.get("nc_severity"),
    )
    case = result["case"]
    companion = result["companion"]
    return jsonify({
        "finding": result["finding"].to_dict(),
        "previous_category": result["previous_category"],
        "companion": companion.to_dict() if companion is not None else None,
        "case": case.to_dict() if case is not None else None,
        "archived_cases": result["archived"],
    }), 200
