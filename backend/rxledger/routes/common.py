# Overview: Shared pieces of the JSON routes; ledger settings from app config and typed error responses.

from flask import current_app, jsonify, request

from ..config import LedgerSettings
from ..errors import LedgerError
from ..validation import require_mapping


def ledger_settings() -> LedgerSettings:
    return LedgerSettings.from_config(current_app.config)


def json_body() -> dict:
    return require_mapping(request.get_json(silent=True))


def error_response(exc: LedgerError):
    return jsonify(exc.to_dict()), exc.http_status


def server_error(message: str):
    current_app.logger.exception(message)
    return jsonify({"error": "Internal server error"}), 500


def optional_json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    return require_mapping(data)
