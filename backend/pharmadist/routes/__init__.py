import logging

from flask import jsonify, request

from ..extensions import db

logger = logging.getLogger(__name__)


def unexpected_error(exc: Exception):
    """Roll back and answer 500 for anything that is not a DomainError."""
    db.session.rollback()
    logger.exception("Unexpected error in %s %s", request.method, request.path)
    return jsonify({"error": "Unexpected error"}), 500
