"""
Audit CAPA Platform
Notification Blueprint - the acting user's inbox.

    GET  /api/v1/notifications                 ?unread_only=true&limit=&offset=
    GET  /api/v1/notifications/<id>
    GET  /api/v1/notifications/unread-count
    POST /api/v1/notifications/mark-read       {"ids": [1, 2]}
    POST /api/v1/notifications/mark-all-read
"""

from __future__ import annotations

import logging

from flask import Blueprint, g, jsonify, request

from auditcapa.blueprints import json_body, register_error_handlers
from auditcapa.core.exceptions import ValidationError
from auditcapa.services.notification import NotificationService

logger = logging.getLogger(__name__)

notification_bp = Blueprint("notification", __name__, url_prefix="/api/v1/notifications")
register_error_handlers(notification_bp)


@notification_bp.route("", methods=["GET"])
def list_notifications():
    unread_only = request.args.get("unread_only", "false").lower() == "true"
    limit = min(request.args.get("limit", 50, type=int), 200)
    offset = max(request.args.get("offset", 0, type=int), 0)
    items, total = NotificationService.list_for_user(
        g.tenant_id, g.user_id, unread_only=unread_only, limit=limit, offset=offset,
    )
    return jsonify({"items": [n.to_dict() for n in items], "total": total}), 200


@notification_bp.route("/unread-count", methods=["GET"])
def unread_count():
    return jsonify({"unread_count": NotificationService.unread_count(g.tenant_id, g.user_id)}), 200


@notification_bp.route("/<int:notification_id>", methods=["GET"])
def get_notification(notification_id):
    notif = NotificationService.get(notification_id, g.tenant_id, g.user_id)
    return jsonify(notif.to_dict()), 200


@notification_bp.route("/mark-read", methods=["POST"])
def mark_read():
    ids = json_body().get("ids")
    if not isinstance(ids, list) or not ids or not all(isinstance(i, int) for i in ids):
        raise ValidationError("ids must be a non-empty list of notification ids", details={"ids": ids})
    count = NotificationService.mark_read(ids, g.tenant_id, g.user_id)
    return jsonify({"marked": count}), 200


@notification_bp.route("/mark-all-read", methods=["POST"])
def mark_all_read():
    count = NotificationService.mark_all_read(g.tenant_id, g.user_id)
    return jsonify({"marked": count}), 200
