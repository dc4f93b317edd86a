from __future__ import annotations

from flask import Blueprint, abort, current_app, jsonify, request

from app.modhub.auth import current_owner_id, login_required
from app.modhub.constants import DEFAULT_FOLDER_NAME, MAX_DESCRIPTION_LENGTH, MAX_NAME_LENGTH
from app.modhub.modules.hierarchy.nodes import ForestFormatError, UnknownHierarchyType, check_hierarchy_type, forest_from_json
from app.modhub.modules.hierarchy.service import HierarchySession, NodeNotFound, get_registry

bp = Blueprint("hierarchy", __name__)


def _session(hierarchy_type: str) -> HierarchySession:
    try:
        htype = check_hierarchy_type(hierarchy_type)
    except UnknownHierarchyType:
        abort(404)
    return get_registry(current_app).get(current_owner_id(), htype)


def _body() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        abort(400, description="JSON object body required.")
    return data


def _str_field(data: dict, name: str, *, required: bool = True, max_len: int | None = None) -> str:
    value = data.get(name)
    if value is None and not required:
        return ""
    if not isinstance(value, str) or (required and not value.strip()):
        abort(400, description=f"{name} is required.")
    value = value.strip()
    if max_len is not None and len(value) > max_len:
        abort(400, description=f"{name} must be at most {max_len} characters.")
    return value


def _int_field(data: dict, name: str) -> int:
    value = data.get(name)
    if isinstance(value, bool) or not isinstance(value, int):
        abort(400, description=f"{name} must be an integer.")
    return value


def _snapshot(session: HierarchySession):
    return jsonify({"ok": True, **session.snapshot()})


@bp.errorhandler(400)
def _err_400(e):
    return jsonify({"ok": False, "error": getattr(e, "description", "Bad request.")}), 400


@bp.errorhandler(404)
def _err_404(e):
    return jsonify({"ok": False, "error": getattr(e, "description", "Not found.")}), 404


# ---------- Read ----------
@bp.get("/hierarchy/<hierarchy_type>")
@login_required
def hierarchy_get(hierarchy_type: str):
    session = _session(hierarchy_type)
    session.refresh_catalog()
    return _snapshot(session)


@bp.get("/modules/<module_key>/info")
@login_required
def module_info(module_key: str):
    default_name = (request.args.get("default_name") or "").strip()
    default_description = (request.args.get("default_description") or "").strip()
    name, description = default_name, default_description
    # Customizations on the available hierarchy take precedence over the assigned one.
    for htype in ("assigned", "available"):
        name, description = _session(htype).module_info(module_key, name, description)
    return jsonify({"ok": True, "moduleKey": module_key, "moduleName": name, "moduleDescription": description})


# ---------- Drag and drop ----------
@bp.post("/hierarchy/<hierarchy_type>/drag-start")
@login_required
def drag_start(hierarchy_type: str):
    session = _session(hierarchy_type)
    node_id = _str_field(_body(), "id")
    try:
        session.drag_start(node_id)
    except NodeNotFound as e:
        abort(404, description=str(e))
    return _snapshot(session)


@bp.post("/hierarchy/<hierarchy_type>/drag-end")
@login_required
def drag_end(hierarchy_type: str):
    session = _session(hierarchy_type)
    session.drag_end()
    return _snapshot(session)


@bp.post("/hierarchy/<hierarchy_type>/drop")
@login_required
def drop(hierarchy_type: str):
    session = _session(hierarchy_type)
    session.drop(_str_field(_body(), "targetId"))
    return _snapshot(session)


@bp.post("/hierarchy/<hierarchy_type>/drop-between")
@login_required
def drop_between(hierarchy_type: str):
    session = _session(hierarchy_type)
    session.drop_between(_int_field(_body(), "index"))
    return _snapshot(session)


# ---------- Structure ----------
@bp.post("/hierarchy/<hierarchy_type>/toggle")
@login_required
def toggle(hierarchy_type: str):
    session = _session(hierarchy_type)
    session.toggle_folder(_str_field(_body(), "id"))
    return _snapshot(session)


@bp.post("/hierarchy/<hierarchy_type>/move-up")
@login_required
def move_up(hierarchy_type: str):
    session = _session(hierarchy_type)
    session.move_up(_str_field(_body(), "id"))
    return _snapshot(session)


@bp.post("/hierarchy/<hierarchy_type>/move-down")
@login_required
def move_down(hierarchy_type: str):
    session = _session(hierarchy_type)
    session.move_down(_str_field(_body(), "id"))
    return _snapshot(session)


@bp.post("/hierarchy/<hierarchy_type>/reorder")
@login_required
def reorder(hierarchy_type: str):
    session = _session(hierarchy_type)
    data = _body()
    session.reorder(_str_field(data, "sourceId"), _str_field(data, "targetId"))
    return _snapshot(session)


@bp.post("/hierarchy/<hierarchy_type>/add-to-folder")
@login_required
def add_to_folder(hierarchy_type: str):
    session = _session(hierarchy_type)
    data = _body()
    session.add_to_folder(_str_field(data, "id"), _str_field(data, "folderId"))
    return _snapshot(session)


@bp.post("/hierarchy/<hierarchy_type>/remove-from-folder")
@login_required
def remove_from_folder(hierarchy_type: str):
    session = _session(hierarchy_type)
    session.remove_from_folder(_str_field(_body(), "id"))
    return _snapshot(session)


@bp.post("/hierarchy/<hierarchy_type>/folders")
@login_required
def create_folder(hierarchy_type: str):
    session = _session(hierarchy_type)
    data = _body()
    name = _str_field(data, "name", required=False, max_len=MAX_NAME_LENGTH) or DEFAULT_FOLDER_NAME
    description = _str_field(data, "description", required=False, max_len=MAX_DESCRIPTION_LENGTH)
    folder = session.create_folder(name, description)
    return jsonify({"ok": True, "folderId": folder.id, **session.snapshot()}), 201


@bp.post("/hierarchy/<hierarchy_type>/rename")
@login_required
def rename(hierarchy_type: str):
    session = _session(hierarchy_type)
    data = _body()
    node_id = _str_field(data, "id")
    name = _str_field(data, "name", max_len=MAX_NAME_LENGTH)
    description = _str_field(data, "description", required=False, max_len=MAX_DESCRIPTION_LENGTH)
    try:
        session.rename(node_id, name, description)
    except NodeNotFound as e:
        abort(404, description=str(e))
    return _snapshot(session)


@bp.put("/hierarchy/<hierarchy_type>")
@login_required
def replace(hierarchy_type: str):
    session = _session(hierarchy_type)
    data = _body()
    try:
        forest = forest_from_json(data.get("hierarchy"))
    except ForestFormatError as e:
        abort(400, description=str(e))
    session.replace(forest)
    return _snapshot(session)
