"""
Authentication handlers for the Protect live viewer.
Uses Flask-Login with a request loader over the bp_sess cookie, so every
request resolves its ViewerSession without touching Flask's own session.
"""
from flask import current_app, jsonify, request
from flask_login import LoginManager

from ..security import audit_log, get_client_ip, is_secure_request
from .sessions import SessionStore

# Initialize Flask-Login
login_manager = LoginManager()


def init_auth(app, clock=None):
    """Initialize authentication for the Flask app"""
    login_manager.init_app(app)

    store_options = {'max_age': app.config['VIEWER_SESSION_MAX_AGE']}
    if clock is not None:
        store_options['clock'] = clock
    app.extensions['viewer_sessions'] = SessionStore(**store_options)

    print("[Auth] Cookie session authentication enabled")
    print(f"[Auth] Session lifetime: {app.config['VIEWER_SESSION_MAX_AGE'] // 60} minutes")


def get_session_store() -> SessionStore:
    return current_app.extensions['viewer_sessions']


@login_manager.request_loader
def load_session_from_cookie(req):
    """Resolve the viewer session from the bp_sess cookie"""
    session_id = req.cookies.get(current_app.config['VIEWER_COOKIE_NAME'])
    return get_session_store().get(session_id)


@login_manager.unauthorized_handler
def unauthorized():
    """API clients get JSON, never a redirect"""
    return jsonify({'error': 'No session'}), 401


def set_session_cookie(response, session_id: str):
    response.set_cookie(
        current_app.config['VIEWER_COOKIE_NAME'],
        session_id,
        max_age=current_app.config['VIEWER_SESSION_MAX_AGE'],
        path='/',
        httponly=True,
        samesite='Lax',
        secure=is_secure_request(),
    )
    return response


def clear_session_cookie(response):
    response.set_cookie(
        current_app.config['VIEWER_COOKIE_NAME'],
        '',
        max_age=0,
        path='/',
        httponly=True,
        samesite='Lax',
    )
    return response


def start_session(base_url: str, username: str = None, password: str = None,
                  access_key: str = None, allow_self_signed: bool = False):
    """Create a session for the current request and audit it"""
    session = get_session_store().create(
        base_url,
        username=username,
        password=password,
        access_key=access_key,
        allow_self_signed=allow_self_signed,
    )
    method = 'credentials' if session.has_login_credentials else 'access key'
    audit_log('SESSION_CREATED', get_client_ip(), username,
              f'Session {session.short_id} for {base_url} ({method})')
    return session


def end_session() -> bool:
    """Delete the session named by the request cookie, if any"""
    session_id = request.cookies.get(current_app.config['VIEWER_COOKIE_NAME'])
    session = get_session_store().get(session_id)
    removed = get_session_store().delete(session_id)
    if removed:
        audit_log('SESSION_DELETED', get_client_ip(),
                  session.username if session else '-', f'Session {session_id[:8]}... deleted')
    return removed
