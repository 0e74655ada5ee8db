"""HTTP entrypoint hosting headless registration sessions and geocode lookups."""

from __future__ import annotations

import logging
import os
import threading
import uuid
from typing import Any, Dict, Optional, Tuple

from flask import Flask, jsonify, request

from company_locator.core.config import get_settings
from company_locator.core.geocoding import GeocodeNotFound, GeocodeServiceUnavailable, GeocodingClient
from company_locator.core.markers import InMemoryMapSurface
from company_locator.core.registration import RegistrationController
from company_locator.vendors.directory_api import SessionContext

# ---------- Logging ----------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s - %(message)s",
)
logger = logging.getLogger(__name__)

# ---------- App & sessions ----------
app = Flask(__name__)
_sessions: Dict[str, Tuple[RegistrationController, InMemoryMapSurface]] = {}
_sessions_lock = threading.Lock()


def _session_context() -> SessionContext:
    header = request.headers.get("Authorization", "")
    token = header[len("Bearer "):].strip() if header.startswith("Bearer ") else ""
    return SessionContext(token=token or None)


def _get_session(session_id: str) -> Optional[Tuple[RegistrationController, InMemoryMapSurface]]:
    with _sessions_lock:
        return _sessions.get(session_id)


def _session_payload(session_id: str, controller: RegistrationController, surface: InMemoryMapSurface) -> Dict[str, Any]:
    return {"id": session_id, **controller.snapshot(), "map": surface.snapshot()}


def _coordinates(payload: Dict[str, Any]) -> Optional[Tuple[float, float]]:
    try:
        lat = float(payload["lat"])
        lng = float(payload["lng"])
    except (KeyError, TypeError, ValueError):
        return None
    if not (-90.0 <= lat <= 90.0 and -180.0 <= lng <= 180.0):
        return None
    return lat, lng


# ---------- Routes ----------


@app.get("/healthz")
def healthcheck() -> Any:
    settings = get_settings()
    with _sessions_lock:
        active = len(_sessions)
    return jsonify({"status": "ok", "geocoder": settings.geocoder_base_url, "sessions": active}), 200


@app.post("/sessions")
def create_session() -> Any:
    surface = InMemoryMapSurface()
    controller = RegistrationController(surface, client=GeocodingClient(), session=_session_context())
    controller.on_mount()
    session_id = uuid.uuid4().hex
    with _sessions_lock:
        _sessions[session_id] = (controller, surface)
    logger.info("Opened registration session %s", session_id)
    return jsonify({"data": _session_payload(session_id, controller, surface)}), 201


@app.get("/sessions/<session_id>")
def get_session(session_id: str) -> Any:
    found = _get_session(session_id)
    if found is None:
        return jsonify({"error": "session not found"}), 404
    return jsonify({"data": _session_payload(session_id, *found)}), 200


@app.delete("/sessions/<session_id>")
def close_session(session_id: str) -> Any:
    with _sessions_lock:
        found = _sessions.pop(session_id, None)
    if found is None:
        return jsonify({"error": "session not found"}), 404
    found[0].on_unmount()
    logger.info("Closed registration session %s", session_id)
    return "", 204


@app.post("/sessions/<session_id>/address")
def change_address(session_id: str) -> Any:
    found = _get_session(session_id)
    if found is None:
        return jsonify({"error": "session not found"}), 404
    payload: Dict[str, Any] = request.get_json(silent=True) or {}
    text = payload.get("text")
    if not isinstance(text, str):
        return jsonify({"error": "text must be a string"}), 400
    found[0].on_address_text_change(text)
    return jsonify({"data": _session_payload(session_id, *found)}), 200


@app.post("/sessions/<session_id>/email")
def change_email(session_id: str) -> Any:
    found = _get_session(session_id)
    if found is None:
        return jsonify({"error": "session not found"}), 404
    payload: Dict[str, Any] = request.get_json(silent=True) or {}
    text = payload.get("text")
    if not isinstance(text, str):
        return jsonify({"error": "text must be a string"}), 400
    found[0].on_email_change(text)
    return jsonify({"data": _session_payload(session_id, *found)}), 200


@app.post("/sessions/<session_id>/fields")
def change_fields(session_id: str) -> Any:
    found = _get_session(session_id)
    if found is None:
        return jsonify({"error": "session not found"}), 404
    payload: Dict[str, Any] = request.get_json(silent=True) or {}
    if not payload:
        return jsonify({"error": "no fields given"}), 400
    controller = found[0]
    try:
        for name, value in payload.items():
            controller.on_field_change(name, value)
    except ValueError as exc:
        return jsonify({"error": str(exc)}), 400
    return jsonify({"data": _session_payload(session_id, *found)}), 200


@app.post("/sessions/<session_id>/drag")
def drag_marker(session_id: str) -> Any:
    found = _get_session(session_id)
    if found is None:
        return jsonify({"error": "session not found"}), 404
    controller, surface = found
    coords = _coordinates(request.get_json(silent=True) or {})
    if coords is None:
        return jsonify({"error": "lat and lng must be valid coordinates"}), 400
    marker_id = controller.synchronizer.marker_id
    if marker_id is None:
        return jsonify({"error": "there is no marker to drag"}), 409
    surface.drag_marker(marker_id, *coords)
    return jsonify({"data": _session_payload(session_id, *found)}), 200


@app.post("/sessions/<session_id>/click")
def click_map(session_id: str) -> Any:
    found = _get_session(session_id)
    if found is None:
        return jsonify({"error": "session not found"}), 404
    coords = _coordinates(request.get_json(silent=True) or {})
    if coords is None:
        return jsonify({"error": "lat and lng must be valid coordinates"}), 400
    found[1].click(*coords)
    return jsonify({"data": _session_payload(session_id, *found)}), 200


@app.post("/sessions/<session_id>/submit")
def submit_session(session_id: str) -> Any:
    found = _get_session(session_id)
    if found is None:
        return jsonify({"error": "session not found"}), 404
    controller = found[0]
    if request.headers.get("Authorization"):
        controller.session = _session_context()
    try:
        result = controller.submit()
    except Exception as exc:  # noqa: BLE001
        logger.exception("Submission failed for session %s: %s", session_id, exc)
        return jsonify({"error": "submission failed"}), 500

    body = {"ok": result.ok, "errors": result.errors, "focus": result.focus, "message": result.message}
    if result.ok:
        body["company"] = result.company
        return jsonify({"data": body}), 201
    if result.errors:
        status = 400
    elif not controller.session.authenticated:
        status = 401
    else:
        status = 502
    return jsonify({"data": body}), status


@app.get("/geocode")
def geocode() -> Any:
    query = (request.args.get("q") or "").strip()
    if len(query) < get_settings().min_address_length:
        return jsonify({"error": "q is too short"}), 400
    try:
        coords = GeocodingClient().forward_geocode(query)
    except GeocodeNotFound:
        return jsonify({"error": "address not found"}), 404
    except GeocodeServiceUnavailable as exc:
        logger.warning("Geocode lookup failed for %r: %s", query, exc)
        return jsonify({"error": "map service unavailable"}), 502
    return jsonify({"data": {"lat": coords.latitude, "lng": coords.longitude}}), 200


@app.get("/reverse")
def reverse_geocode() -> Any:
    coords = _coordinates(request.args)
    if coords is None:
        return jsonify({"error": "lat and lng must be valid coordinates"}), 400
    try:
        label = GeocodingClient().reverse_geocode(*coords)
    except GeocodeNotFound:
        return jsonify({"error": "no place at these coordinates"}), 404
    except GeocodeServiceUnavailable as exc:
        logger.warning("Reverse lookup failed for %s: %s", coords, exc)
        return jsonify({"error": "map service unavailable"}), 502
    return jsonify({"data": {"display_name": label}}), 200


def main() -> None:
    port = int(os.getenv("PORT") or get_settings().port)
    logger.info("[BOOT] Binding on 0.0.0.0:%d", port)
    app.run(host="0.0.0.0", port=port)


if __name__ == "__main__":
    main()
