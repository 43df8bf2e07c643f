"""
API routes for the Protect live viewer.
Session management, camera listing, bootstrap, codec lookup and video relay.
"""
import threading
import traceback
from datetime import datetime, timezone

from flask import Blueprint, Response, current_app, jsonify, request
from flask_login import current_user, login_required
from werkzeug.exceptions import HTTPException

from ..auth import clear_session_cookie, end_session, set_session_cookie, start_session
from ..errors import InvalidRequest, LoginFailed, ViewerError
from ..security import audit_log, get_client_ip
from ..services import memory

api_bp = Blueprint("api", __name__)


def _nvr():
    return current_app.extensions["nvr"]


def _run(coro, timeout=None):
    """Run a coroutine on the NVR event loop from this request thread"""
    if timeout is None:
        config = current_app.config
        # Worst case: login + bootstrap fetch + stream start
        timeout = config["LOGIN_TIMEOUT"] * 2 + config["STREAM_START_TIMEOUT"] + 5
    return current_app.extensions["protect_bridge"].run(coro, timeout)


def _current_session():
    return current_user._get_current_object()


@api_bp.errorhandler(ViewerError)
def handle_viewer_error(error):
    print(f"[API] {request.method} {request.path} failed ({error.status_code}): {error}")
    if isinstance(error, LoginFailed):
        user = current_user.username if current_user.is_authenticated else "-"
        audit_log("LOGIN_FAILURE", get_client_ip(), user, error.message)
    return jsonify({"error": error.message}), error.status_code


@api_bp.errorhandler(Exception)
def handle_unexpected_error(error):
    if isinstance(error, HTTPException):
        return jsonify({"error": error.description}), error.code
    print(f"[API] {request.method} {request.path} failed: {error}")
    traceback.print_exc()
    return jsonify({"error": str(error) or "Internal error"}), 500


@api_bp.route("/health")
def health_check():
    """Health check endpoint for system monitoring"""
    return jsonify({"status": "healthy", "service": "Protect Live Viewer"})


@api_bp.route("/env")
def get_env_defaults():
    """Connection defaults from the environment, for pre-filling the login form"""
    config = current_app.config
    return jsonify(
        {
            "baseUrl": config["PROTECT_BASE_URL"],
            "username": config["PROTECT_USERNAME"],
            "allowSelfSigned": config["PROTECT_ALLOW_SELF_SIGNED"],
            "hasPassword": bool(config["PROTECT_PASSWORD"]),
            "hasAccessKey": bool(config["PROTECT_ACCESS_KEY"]),
        }
    )


# =============================================================================
# SESSION ENDPOINTS
# =============================================================================


@api_bp.route("/session", methods=["POST"])
def create_session():
    """Store NVR credentials server-side and hand the browser a session cookie"""
    data = request.get_json(silent=True)
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise InvalidRequest("JSON object body required")

    config = current_app.config
    base_url = str(data.get("baseUrl") or config["PROTECT_BASE_URL"] or "").strip()
    access_key = data.get("accessKey") or config["PROTECT_ACCESS_KEY"] or None
    username = data.get("username") or config["PROTECT_USERNAME"] or None
    password = data.get("password")
    if not password and username == config["PROTECT_USERNAME"]:
        password = config["PROTECT_PASSWORD"] or None
    if "allowSelfSigned" in data:
        allow_self_signed = bool(data["allowSelfSigned"])
    else:
        allow_self_signed = config["PROTECT_ALLOW_SELF_SIGNED"]

    if not base_url:
        audit_log("SESSION_REJECTED", get_client_ip(), username, "baseUrl missing")
        return jsonify({"error": "baseUrl required"}), 400
    if not access_key and not (username and password):
        audit_log("SESSION_REJECTED", get_client_ip(), username, "credentials missing")
        return jsonify({"error": "accessKey or username/password required"}), 400

    session = start_session(
        base_url,
        username=username,
        password=password,
        access_key=access_key,
        allow_self_signed=allow_self_signed,
    )
    return set_session_cookie(jsonify({"ok": True}), session.id)


@api_bp.route("/session", methods=["DELETE"])
def delete_session():
    """Forget the session and clear the cookie"""
    end_session()
    return clear_session_cookie(jsonify({"ok": True}))


# =============================================================================
# NVR ENDPOINTS
# =============================================================================


@api_bp.route("/cameras")
@login_required
def get_cameras():
    """Simplified camera list: id, name, isOnline"""
    cameras = _run(_nvr().list_cameras(_current_session()))
    print(f"[API] Returning {len(cameras)} cameras")
    return jsonify(cameras)


@api_bp.route("/bootstrap")
@api_bp.route("/protect/bootstrap")
@login_required
def get_bootstrap():
    """Full NVR bootstrap (cameras, lights, sensors, chimes, viewers, ...)"""
    return jsonify(_run(_nvr().get_bootstrap(_current_session())))


@api_bp.route("/stream/<camera_id>/codec")
@login_required
def get_codec(camera_id):
    """Codec string the browser needs to set up its SourceBuffer"""
    codec = _run(_nvr().get_codec(_current_session(), camera_id))
    return jsonify({"codec": codec})


@api_bp.route("/stream/<camera_id>")
@login_required
def stream_camera(camera_id):
    """Relay the camera's fragmented MP4 as a chunked response"""
    nvr = _nvr()
    bridge = current_app.extensions["protect_bridge"]
    read_timeout = current_app.config["STREAM_READ_TIMEOUT"]

    subscription = _run(nvr.open_stream(_current_session(), camera_id))
    print(f"[Stream] Client {get_client_ip()} watching {camera_id}")

    release_lock = threading.Lock()
    released = []

    def release():
        """Give the subscription back exactly once (body finished, or response closed)"""
        with release_lock:
            if released:
                return
            released.append(True)
        try:
            bridge.run(nvr.close_stream(subscription), 10)
        except Exception as e:
            print(f"[Stream] Failed to release stream for {camera_id}: {e}")
        print(f"[Stream] Relay for {camera_id} closed")

    def generate():
        try:
            while True:
                # One segment at a time: the next read waits for this write
                chunk = bridge.run(subscription.next_chunk(read_timeout), read_timeout + 5)
                if chunk is None:
                    break
                yield chunk
        except ViewerError as e:
            print(f"[Stream] Relay for {camera_id} ended early: {e}")
        finally:
            release()

    response = Response(generate(), mimetype="video/mp4")
    # HEAD requests and clients gone before the first chunk never run the generator
    response.call_on_close(release)
    response.headers["Cache-Control"] = "no-cache, no-store, must-revalidate"
    response.headers["Pragma"] = "no-cache"
    response.headers["Expires"] = "0"
    return response


# =============================================================================
# SYSTEM ENDPOINTS
# =============================================================================


@api_bp.route("/system/memory", methods=["GET"])
def get_memory():
    """Current process memory usage"""
    return jsonify(
        {
            "memory": memory.get_memory_snapshot(),
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "message": "Memory usage retrieved successfully",
        }
    )


@api_bp.route("/system/memory", methods=["POST"])
def memory_action():
    """Run a memory maintenance action ('gc')"""
    data = request.get_json(silent=True) or {}
    if data.get("action") != "gc":
        return jsonify({"error": "Invalid action. Use 'gc' to force garbage collection"}), 400

    collected = memory.force_garbage_collection()
    return jsonify(
        {
            "memory": memory.get_memory_snapshot(),
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "collected": collected,
            "message": "Garbage collection triggered",
        }
    )
