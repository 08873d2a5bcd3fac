from __future__ import annotations

import hmac
from typing import Any, Dict

from flask import Blueprint, current_app, jsonify, request

from .datastore import DataStore
from .installer import BBCodesInstaller


bp = Blueprint("admin", __name__)


def get_datastore() -> DataStore:
    return current_app.extensions["datastore"]


def get_installer() -> BBCodesInstaller:
    return current_app.extensions["bbcodes_installer"]


def _error(message: str, status: int):
    return jsonify({"error": message}), status


@bp.before_request
def check_admin():
    token = current_app.config.get("ADMIN_TOKEN")
    if not token:
        return None
    supplied = request.headers.get("X-Admin-Token", "")
    if not hmac.compare_digest(supplied, token):
        return _error("需要管理员权限", 403)
    return None


@bp.route("/bbcodes", methods=["GET"])
def list_bbcodes():
    bbcodes = get_datastore().list_bbcodes()
    return jsonify({"bbcodes": bbcodes, "count": len(bbcodes)})


@bp.route("/bbcodes/<int:bbcode_id>", methods=["GET"])
def show_bbcode(bbcode_id: int):
    bbcode = get_datastore().get_bbcode(bbcode_id)
    if bbcode is None:
        return _error("BBCode 不存在", 404)
    return jsonify(bbcode)


@bp.route("/bbcodes", methods=["POST"])
def install_bbcodes():
    installer = get_installer()
    if installer.regex_builder is None:
        return _error("未配置 BBCode 正则构建器", 503)

    payload = request.get_json(silent=True)
    if not isinstance(payload, dict) or not payload:
        return _error("请求体必须是非空的 JSON 对象", 400)
    definitions: Dict[str, Any] = payload
    for name, data in definitions.items():
        if not isinstance(data, dict):
            return _error(f"BBCode {name!r} 的定义必须是对象", 400)

    try:
        installer.install_bbcodes(definitions)
    except ValueError as exc:
        return _error(str(exc), 400)
    current_app.logger.info("管理员安装了 %s 个 BBCode：%s", len(definitions), ", ".join(definitions))
    bbcodes = get_datastore().list_bbcodes()
    return jsonify({"bbcodes": bbcodes, "count": len(bbcodes)})


@bp.route("/bbcodes/resync", methods=["POST"])
def resync_bbcodes():
    get_installer().resynchronize_bbcode_order()
    bbcodes = get_datastore().list_bbcodes()
    return jsonify({"bbcodes": bbcodes, "count": len(bbcodes)})
