"""
Authentication module for the Protect live viewer.
"""
from .handlers import (
    login_manager,
    init_auth,
    get_session_store,
    set_session_cookie,
    clear_session_cookie,
    start_session,
    end_session,
)
from .sessions import SessionStore, ViewerSession
