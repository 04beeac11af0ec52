"""
Governance Routes

Flask routes exposing settings, boosts, admission and usage recording.
"""

import logging
from functools import wraps
from typing import Callable, Optional

from flask import Blueprint, jsonify, request
from werkzeug.exceptions import HTTPException

from generation_guard.core.admission import STATUS_MESSAGES, AdmissionController
from generation_guard.core.cooldown import format_cooldown_time
from generation_guard.core.errors import GovernanceError, InternalError, ValidationError
from generation_guard.core.identity import Identity, resolve_client_ip

logger = logging.getLogger(__name__)


def _json_body() -> dict:
    body = request.get_json(silent=True)
    if body is None:
        return {}
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")
    return body


def _identity_from_request(body: dict) -> Identity:
    return Identity(
        ip_address=resolve_client_ip(request.headers, request.remote_addr),
        user_id=body.get("userId") or None,
        session_id=body.get("sessionId") or None,
    )


def _require_user_id(value: Optional[str]) -> str:
    if not value:
        raise ValidationError("User ID required")
    return value


def create_governance_blueprint(controller: AdmissionController) -> Blueprint:
    """Create governance blueprint with routes.

    Args:
        controller: The admission controller instance

    Returns:
        Flask blueprint with governance routes
    """
    blueprint = Blueprint('governance', __name__, url_prefix='/api')

    def admin_required(f: Callable) -> Callable:
        """Decorator to require the X-Admin-Key header."""
        @wraps(f)
        def decorated_function(*args, **kwargs):
            controller.authorize_admin(request.headers.get('X-Admin-Key'))
            return f(*args, **kwargs)
        return decorated_function

    @blueprint.errorhandler(GovernanceError)
    def handle_governance_error(error: GovernanceError):
        return jsonify(error.to_dict()), error.http_status

    @blueprint.errorhandler(Exception)
    def handle_unexpected_error(error: Exception):
        if isinstance(error, HTTPException):
            return error
        logger.exception(f"Unhandled error in {request.method} {request.path}")
        body = InternalError("Internal server error").to_dict()
        return jsonify(body), InternalError.http_status

    @blueprint.route('/admin/settings', methods=['GET'])
    @admin_required
    def get_settings():
        """Current governance settings."""
        return jsonify({
            "success": True,
            "settings": controller.get_settings().to_dict(),
        })

    @blueprint.route('/admin/settings', methods=['PUT', 'PATCH'])
    @admin_required
    def update_settings():
        """Partial settings update; unknown keys are ignored."""
        settings = controller.update_settings(_json_body())
        return jsonify({
            "success": True,
            "message": "Settings updated successfully",
            "settings": settings.to_dict(),
            "version": settings.version,
        })

    @blueprint.route('/boosts', methods=['GET'])
    def boost_balance():
        """Boost balance for ?userId."""
        user_id = _require_user_id(request.args.get('userId'))
        return jsonify(controller.get_boost_balance(user_id).to_dict())

    @blueprint.route('/boosts', methods=['POST'])
    def boost_action():
        """Redeem a boost, or add boosts with an admin key."""
        body = _json_body()
        user_id = _require_user_id(body.get('userId'))
        action = body.get('action')

        if action == 'redeem':
            result = controller.redeem_boost(user_id)
            if not result.success:
                return jsonify({"error": result.error, "balance": result.new_balance}), 400
            return jsonify({
                "success": True,
                "message": f"Boost activated! {result.batches_granted} Tier A batches unlocked.",
                "new_balance": result.new_balance,
                "batches_granted": result.batches_granted,
                "active_boost_batches": result.active_boost_batches,
            })

        if action == 'add':
            controller.authorize_admin(body.get('adminKey'))
            amount = body.get('amount')
            new_balance = controller.add_boost(
                user_id,
                amount,
                reason=body.get('reason') or 'admin_add',
                admin_id=body.get('adminId'),
            )
            return jsonify({
                "success": True,
                "message": f"Added {amount} boost(s)",
                "new_balance": new_balance,
            })

        raise ValidationError('Invalid action. Use "redeem" or "add"')

    @blueprint.route('/admission', methods=['POST'])
    def check_admission():
        """Pre-generation admission check for the calling identity."""
        body = _json_body()
        identity = _identity_from_request(body)
        if 'weight' not in body:
            raise ValidationError("weight is required")
        result = controller.check_admission(
            identity,
            weight=body['weight'],
            use_boost=bool(body.get('useBoost', False)),
        )
        payload = result.to_dict()
        if not result.can_generate:
            message = STATUS_MESSAGES[result.status]
            if result.cooldown_seconds:
                message = f"{message} Try again in {format_cooldown_time(result.cooldown_seconds)}."
            payload.update({"error": "generation_blocked", "message": message})
            return jsonify(payload), 429
        return jsonify(payload)

    @blueprint.route('/admission/release', methods=['POST'])
    def release_admission():
        """Give back an admitted check that will not be followed by a generation."""
        body = _json_body()
        controller.release(_identity_from_request(body))
        return jsonify({"success": True})

    @blueprint.route('/usage', methods=['POST'])
    def record_usage():
        """Record a successful generation."""
        body = _json_body()
        identity = _identity_from_request(body)
        if 'weight' not in body or 'tier' not in body:
            raise ValidationError("weight and tier are required")
        receipt = controller.record_usage(
            identity,
            weight=body['weight'],
            tier=body['tier'],
            ideas_count=body.get('ideasCount', 0),
            user_agent=request.headers.get('User-Agent', ''),
            boost_applied=bool(body.get('boostApplied', False)),
            direction=body.get('direction'),
            is_campaign=bool(body.get('isCampaign', False)),
        )
        return jsonify({"success": True, **receipt.to_dict()})

    @blueprint.route('/stats', methods=['GET'])
    def usage_stats():
        """Rolling hourly and daily stats for ?userId."""
        user_id = _require_user_id(request.args.get('userId'))
        return jsonify({
            "hourly_stats": controller.get_hourly_stats(user_id).to_dict(),
            "daily_stats": controller.get_daily_stats(user_id).to_dict(),
        })

    return blueprint
