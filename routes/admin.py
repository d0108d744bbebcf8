import logging
from datetime import datetime

from flask import Blueprint, jsonify, g, request, current_app
from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError

from models import db
from models.audit_log import AuditLog
from models.vote import Vote
from security.ban_store import BanStoreUnavailable
from security.bruteforce import get_login_guard
from security.password import verify_admin_key
from security.session import create_session, revoke_session
from utils.audit import log_event
from utils.auth_context import admin_required
from utils.client_ip import client_ip

logger = logging.getLogger(__name__)

admin_bp = Blueprint("admin", __name__, url_prefix="/api/admin")


def _server_error(what: str):
    db.session.rollback()
    logger.exception("Error %s", what)
    return jsonify(success=False, error="Internal server error"), 500


def _admin_report_json(v: Vote) -> dict:
    return {
        "id": v.id,
        "player_name": v.player_name,
        "player_name_normalized": v.player_name_normalized,
        "message": v.message,
        "voted_at": v.voted_at.isoformat(),
    }


def _too_many_attempts(decision, error: str, **extra):
    resp = jsonify(success=False, error=error, retry_after_seconds=decision.retry_after, **extra)
    resp.headers["Retry-After"] = str(decision.retry_after)
    return resp, 429


@admin_bp.post("/login")
def login():
    data = request.get_json(silent=True) or {}
    key = data.get("key")
    ip = client_ip()
    guard = get_login_guard()

    blocked = guard.is_blocked(ip)
    if not blocked.allowed:
        log_event("ADMIN_LOGIN_BLOCKED", metadata={"retry_after": blocked.retry_after})
        return _too_many_attempts(
            blocked, f"Too many failed attempts. Try again in {blocked.retry_after} seconds."
        )

    if not verify_admin_key(key):
        outcome = guard.record_failure(ip)
        log_event(
            "ADMIN_LOGIN_FAIL",
            metadata={"should_block": outcome.should_block, "attempts_left": outcome.attempts_left},
        )
        decision = outcome.decision
        if not decision.allowed:
            return _too_many_attempts(
                decision,
                f"Too many failed attempts. Blocked for {decision.retry_after} seconds.",
                block_seconds=decision.retry_after,
            )
        return jsonify(
            success=False,
            error="Invalid credentials",
            attempts_left=outcome.attempts_left,
        ), 401

    guard.record_success(ip)
    try:
        token, sess = create_session()
    except SQLAlchemyError:
        return _server_error("creating admin session")

    log_event("ADMIN_LOGIN_SUCCESS", entity="admin_session", entity_id=sess.id)
    return jsonify(success=True, token=token, expiresAt=sess.expires_at.isoformat()), 200


@admin_bp.get("/session")
@admin_required
def session_info():
    return jsonify(success=True, valid=True, expiresAt=g.admin_session.expires_at.isoformat()), 200


@admin_bp.post("/logout")
@admin_required
def logout():
    revoke_session(g.admin_token)
    log_event("ADMIN_LOGOUT", entity="admin_session", entity_id=g.admin_session.id)
    return jsonify(success=True, message="Logged out"), 200


@admin_bp.get("/reports")
@admin_required
def list_reports():
    q = (request.args.get("q") or "").strip()
    try:
        if q:
            pattern = f"%{q}%"
            rows = (
                Vote.query
                .filter(or_(Vote.player_name.like(pattern), Vote.message.like(pattern)))
                .order_by(Vote.voted_at.desc(), Vote.id.desc())
                .limit(50)
                .all()
            )
        else:
            limit = request.args.get("limit", type=int) or 100
            limit = max(1, min(limit, 500))
            offset = max(0, request.args.get("offset", type=int) or 0)
            rows = (
                Vote.query
                .order_by(Vote.voted_at.desc(), Vote.id.desc())
                .limit(limit)
                .offset(offset)
                .all()
            )
    except SQLAlchemyError:
        return _server_error("fetching admin reports")

    return jsonify(success=True, reports=[_admin_report_json(v) for v in rows]), 200


@admin_bp.delete("/reports/<int:report_id>")
@admin_required
def delete_report(report_id):
    try:
        row = db.session.get(Vote, report_id)
        if not row:
            return jsonify(success=False, error="Report not found"), 404
        player_name = row.player_name
        db.session.delete(row)
        db.session.commit()
    except SQLAlchemyError:
        return _server_error("deleting report")

    log_event("REPORT_DELETE", entity="vote", entity_id=report_id, metadata={"player_name": player_name})
    return jsonify(success=True, message="Report deleted"), 200


@admin_bp.delete("/player/<path:player_name>")
@admin_required
def delete_player_reports(player_name):
    player_name = player_name.strip()
    if not player_name:
        return jsonify(success=False, error="Player name required"), 400

    try:
        deleted = Vote.query.filter_by(player_name=player_name).delete()
        db.session.commit()
    except SQLAlchemyError:
        return _server_error("deleting player reports")

    log_event("PLAYER_REPORTS_DELETE", entity="player", entity_id=player_name, metadata={"deleted": deleted})
    return jsonify(success=True, message="Player reports deleted", deleted=deleted), 200


@admin_bp.get("/bans")
@admin_required
def list_bans():
    now = datetime.utcnow()
    try:
        bans = current_app.extensions["ban_store"].list()
    except BanStoreUnavailable:
        return jsonify(success=False, error="Internal server error"), 500

    return jsonify(success=True, bans=[
        {
            "ip": b.ip,
            "bannedUntil": b.banned_until.isoformat(),
            "active": b.banned_until > now,
        }
        for b in bans
    ]), 200


@admin_bp.delete("/bans/<path:ip>")
@admin_required
def revoke_ban(ip):
    ip = ip.strip()
    if not ip:
        return jsonify(success=False, error="IP required"), 400

    try:
        current_app.extensions["ban_store"].delete(ip)
    except BanStoreUnavailable:
        return jsonify(success=False, error="Internal server error"), 500

    log_event("BAN_REVOKE", entity="ban", entity_id=ip)
    return jsonify(success=True, message="Ban revoked"), 200


@admin_bp.get("/audit-logs")
@admin_required
def list_audit_logs():
    limit = request.args.get("limit", type=int) or 200
    limit = max(1, min(limit, 500))
    action = request.args.get("action")

    q = AuditLog.query
    if action:
        q = q.filter(AuditLog.action == action)

    try:
        rows = q.order_by(AuditLog.timestamp.desc(), AuditLog.id.desc()).limit(limit).all()
    except SQLAlchemyError:
        return _server_error("fetching audit logs")

    return jsonify(success=True, logs=[
        {
            "id": r.id,
            "timestamp": r.timestamp.isoformat(),
            "action": r.action,
            "entity": r.entity,
            "entity_id": r.entity_id,
            "ip": r.ip,
            "user_agent": r.user_agent,
            "metadata": r.metadata_json,
        }
        for r in rows
    ]), 200
