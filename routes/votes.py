import logging

from flask import Blueprint, request, jsonify, current_app
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError

from models import db
from models.vote import Vote
from security.rate_limit import get_vote_guard
from utils.audit import log_event
from utils.client_ip import client_ip
from utils.text import normalize_name, clean_player_name, clean_message

logger = logging.getLogger(__name__)

votes_bp = Blueprint("votes", __name__, url_prefix="/api")


def _report_json(v: Vote) -> dict:
    return {
        "id": v.id,
        "playerName": v.player_name,
        "message": v.message,
        "votedAt": v.voted_at.isoformat(),
    }


def _vote_counts():
    votes = func.count(Vote.id).label("votes")
    return (
        db.session.query(Vote.player_name, votes)
        .group_by(Vote.player_name)
        .order_by(votes.desc(), Vote.player_name.asc())
    )


def _total_votes(player_name: str) -> int:
    return Vote.query.filter_by(player_name=player_name).count()


def _server_error(what: str):
    db.session.rollback()
    logger.exception("Error %s", what)
    return jsonify(success=False, error="Internal server error"), 500


def _deny_vote(decision, ip: str):
    if not decision.is_banned:
        resp = jsonify(
            success=False,
            error=f"Please wait {decision.retry_after} seconds before voting again.",
            retry_after_seconds=decision.retry_after,
        )
        resp.headers["Retry-After"] = str(decision.retry_after)
        return resp, 429

    hours = current_app.config.get("VOTE_BAN_HOURS", 12)
    if decision.retry_after is None:
        # escalated but the ban row could not be written
        log_event(
            "VOTE_BAN_NOT_PERSISTED", entity="ban", entity_id=ip,
            metadata={"hours": hours, "retry_after": None},
        )
        error = "You have been temporarily blocked due to suspicious activity. Try again later."
    elif decision.escalated:
        log_event(
            "VOTE_BANNED", entity="ban", entity_id=ip,
            metadata={"hours": hours, "retry_after": decision.retry_after},
        )
        error = f"You have been banned for {hours} hours due to suspicious activity."
    else:
        error = f"You are banned from voting for {hours} hours due to excessive activity."

    resp = jsonify(success=False, error=error, retry_after_seconds=decision.retry_after)
    if decision.retry_after is not None:
        resp.headers["Retry-After"] = str(decision.retry_after)
    return resp, 403


@votes_bp.post("/vote")
def vote():
    ip = client_ip()
    decision = get_vote_guard().check_and_record(ip)
    if not decision.allowed:
        return _deny_vote(decision, ip)

    data = request.get_json(silent=True) or {}
    raw_name = data.get("playerName")
    if not raw_name or not isinstance(raw_name, str):
        return jsonify(success=False, error="Player name is required"), 400

    player_name = clean_player_name(raw_name)
    if player_name is None:
        return jsonify(success=False, error="Player name cannot be empty"), 400

    max_len = current_app.config.get("MAX_MESSAGE_LENGTH", 1000)
    message = clean_message(data.get("message"), max_len)

    try:
        db.session.add(Vote(
            player_name=player_name,
            player_name_normalized=normalize_name(player_name),
            message=message,
        ))
        db.session.commit()
        total = _total_votes(player_name)
    except SQLAlchemyError:
        return _server_error(f"registering vote for {player_name!r}")

    return jsonify(
        success=True,
        message="Vote registered",
        playerName=player_name,
        totalVotes=total,
    ), 200


@votes_bp.get("/leaderboard")
def leaderboard():
    size = current_app.config.get("LEADERBOARD_SIZE", 20)
    try:
        rows = _vote_counts().limit(size).all()
    except SQLAlchemyError:
        return _server_error("fetching leaderboard")

    return jsonify(
        success=True,
        leaderboard=[
            {"playerName": name, "votes": votes, "rank": i + 1}
            for i, (name, votes) in enumerate(rows)
        ],
    ), 200


@votes_bp.get("/recent")
def recent_reports():
    limit = request.args.get("limit", type=int) or 50
    limit = max(1, min(limit, 200))
    try:
        rows = (
            Vote.query
            .order_by(Vote.voted_at.desc(), Vote.id.desc())
            .limit(limit)
            .all()
        )
    except SQLAlchemyError:
        return _server_error("fetching recent reports")

    return jsonify(success=True, recentReports=[_report_json(v) for v in rows]), 200


@votes_bp.get("/player/<path:player_name>")
def player_details(player_name):
    try:
        total = _total_votes(player_name)
        if total == 0:
            return jsonify(success=False, error="Player not found"), 404

        ranked = [name for name, _ in _vote_counts().all()]
        rank = ranked.index(player_name) + 1 if player_name in ranked else None

        reports = (
            Vote.query
            .filter_by(player_name=player_name)
            .order_by(Vote.voted_at.desc(), Vote.id.desc())
            .all()
        )
    except SQLAlchemyError:
        return _server_error("fetching player details")

    return jsonify(
        success=True,
        player={
            "playerName": player_name,
            "totalVotes": total,
            "rank": rank,
            "reports": [_report_json(v) for v in reports],
        },
    ), 200


@votes_bp.get("/search")
def search_players():
    q = request.args.get("q")
    if not q or not q.strip():
        return jsonify(success=True, results=[]), 200

    pattern = f"%{normalize_name(q.strip())}%"
    try:
        rows = (
            _vote_counts()
            .filter(Vote.player_name_normalized.like(pattern))
            .limit(10)
            .all()
        )
    except SQLAlchemyError:
        return _server_error("searching players")

    return jsonify(
        success=True,
        results=[{"playerName": name, "votes": votes} for name, votes in rows],
    ), 200
