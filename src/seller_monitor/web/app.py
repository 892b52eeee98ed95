"""Flask JSON API for the seller monitor."""
from __future__ import annotations

import logging
from typing import Any

from flask import Blueprint, Flask, jsonify, request
from werkzeug.exceptions import HTTPException

from ..errors import SellerAlreadyMonitoredError, SellerNotFoundError, ValidationError
from ..services.seller_service import SellerMonitoringService, validate_username

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1/sellers"


def _error(message: str, status_code: int):
    return jsonify({"success": False, "error": message}), status_code


def _listing(items: list[Any], **extra: Any):
    return jsonify({"success": True, "data": [item.to_dict() for item in items], "total": len(items), **extra})


def create_app(service: SellerMonitoringService) -> Flask:
    app = Flask(__name__)
    app.config["seller_service"] = service
    api = Blueprint("sellers", __name__, url_prefix=API_PREFIX)

    @app.errorhandler(ValidationError)
    @app.errorhandler(SellerAlreadyMonitoredError)
    @app.errorhandler(SellerNotFoundError)
    def handle_bad_request(error: Exception):
        return _error(str(error), 400)

    @app.errorhandler(Exception)
    def handle_unexpected(error: Exception):
        if isinstance(error, HTTPException):
            return _error(error.description or error.name, error.code or 500)
        logger.exception("Unhandled error serving %s", request.path)
        return _error(str(error) or "Unknown error", 500)

    @api.get("")
    def list_sellers():
        return _listing(service.get_sellers())

    @api.post("")
    def add_seller():
        payload = request.get_json(silent=True) or {}
        display_name = payload.get("display_name", payload.get("displayName"))
        seller = service.add_seller(payload.get("username"), display_name)
        return jsonify({"success": True, "data": seller.to_dict()}), 201

    @api.get("/matches")
    def list_matches():
        if request.args.get("includeCacheInfo") == "true":
            result = service.get_all_matches_with_cache_info()
            return _listing(result.matches, cache_info=result.cache_info.to_dict() if result.cache_info else None)
        return _listing(service.get_all_matches())

    @api.post("/matches/cleanup")
    def remove_stale_matches():
        removed = service.remove_stale_matches()
        return jsonify({"success": True, "data": {"removed": removed}})

    @api.post("/matches/<match_id>/seen")
    def mark_seen(match_id: str):
        updated = service.mark_match_as_seen(match_id)
        return jsonify({"success": True, "data": {"updated": updated}})

    @api.post("/matches/<match_id>/notified")
    def mark_notified(match_id: str):
        updated = service.mark_match_as_notified(match_id)
        return jsonify({"success": True, "data": {"updated": updated}})

    @api.post("/matches/<match_id>/verify")
    def verify_match(match_id: str):
        result = service.verify_and_update_match(match_id)
        message = (
            f"Match status updated to {result.status}"
            if result.updated
            else f"Match status unchanged ({result.status})"
        )
        return jsonify({"success": True, "data": result.to_dict(), "message": message})

    @api.post("/scan")
    def start_scan():
        payload = request.get_json(silent=True) or {}
        status = service.start_scan(force_fresh=payload.get("force_fresh") is True)
        return jsonify({"success": True, "data": status.to_dict()}), 202

    @api.get("/scan/status")
    def scan_status():
        return jsonify({"success": True, "data": service.get_scan_status().to_dict()})

    @api.get("/settings")
    def get_settings():
        return jsonify({"success": True, "data": service.get_settings().to_dict()})

    @api.post("/settings")
    def save_settings():
        payload = request.get_json(silent=True)
        if not isinstance(payload, dict):
            return _error("Settings must be a JSON object", 400)
        payload.pop("schema_version", None)
        settings = service.save_settings(**payload)
        return jsonify({"success": True, "data": settings.to_dict()})

    @api.get("/cache/stats")
    def cache_stats():
        return jsonify({"success": True, "data": service.get_release_cache_stats().to_dict()})

    @api.post("/cache/refresh")
    def refresh_cache():
        result = service.refresh_release_cache()
        return jsonify({"success": True, "data": result.to_dict()})

    @api.delete("/<username>")
    def remove_seller(username: str):
        username = validate_username(username)
        if not service.remove_seller(username):
            return _error("Seller not found", 404)
        return jsonify({"success": True, "message": "Seller removed"})

    @api.get("/<username>/matches")
    def seller_matches(username: str):
        username = validate_username(username)
        return _listing(service.get_matches_by_seller(username))

    app.register_blueprint(api)
    return app
