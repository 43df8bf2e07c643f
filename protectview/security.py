"""
Security middleware and utilities for the Protect live viewer.
Implements security headers, the viewer cookie settings and audit logging.
"""
import logging
import secrets
from pathlib import Path

from flask import request

AUDIT_LOGGER_NAME = 'protectview.audit'


# ============================================================================
# AUDIT LOGGING
# ============================================================================

def init_audit_log(app):
    """
    Attach file and console handlers to the audit logger.

    Records go to AUDIT_LOG_DIR/audit.log, or to ./logs when that directory
    does not exist. Called once per app; later apps reuse the handlers.
    """
    logger = logging.getLogger(AUDIT_LOGGER_NAME)
    logger.setLevel(logging.INFO)
    logger.propagate = False
    if logger.handlers:
        return logger

    log_dir = Path(app.config.get('AUDIT_LOG_DIR') or '/var/log/protectview')
    if not log_dir.is_dir():
        log_dir = Path(app.root_path).parent / 'logs'
        log_dir.mkdir(exist_ok=True)
    audit_file = log_dir / 'audit.log'

    # timestamp | event | ip | user | details
    handlers = [
        (logging.FileHandler(audit_file), '%(asctime)s | %(message)s'),
        (logging.StreamHandler(), '[Audit] %(message)s'),
    ]
    for handler, fmt in handlers:
        handler.setFormatter(logging.Formatter(fmt, datefmt='%Y-%m-%d %H:%M:%S'))
        logger.addHandler(handler)

    print(f"[Security] Audit log: {audit_file}")
    return logger


def audit_log(event_type: str, ip: str, user: str = '-', details: str = ''):
    """Record a session or login event; never pass secrets in `details`"""
    logging.getLogger(AUDIT_LOGGER_NAME).info(
        '%s | %s | %s | %s', event_type, ip, user or '-', details)


# ============================================================================
# SECURITY HEADERS
# ============================================================================

# MediaSource playback needs blob: media URLs
CONTENT_SECURITY_POLICY = {
    'default-src': "'self'",
    'script-src': "'self'",
    'style-src': "'self' 'unsafe-inline'",
    'img-src': "'self' data: blob:",
    'media-src': "'self' blob:",
    'connect-src': "'self'",
    'frame-ancestors': "'none'",
    'form-action': "'self'",
    'base-uri': "'self'",
}

SECURITY_HEADERS = {
    'X-Frame-Options': 'DENY',
    'X-Content-Type-Options': 'nosniff',
    'Referrer-Policy': 'strict-origin-when-cross-origin',
    'Permissions-Policy': 'geolocation=(), microphone=(), camera=()',
    'Content-Security-Policy': '; '.join(f'{k} {v}' for k, v in CONTENT_SECURITY_POLICY.items()),
}


def add_security_headers(response):
    """after_request hook: security headers, plus no-store unless the route set caching"""
    response.headers.update(SECURITY_HEADERS)
    if 'Cache-Control' not in response.headers:
        response.headers['Cache-Control'] = 'no-store, no-cache, must-revalidate, private'
        response.headers['Pragma'] = 'no-cache'
    return response


# ============================================================================
# SECRET KEY GENERATION
# ============================================================================

def generate_secret_key():
    """Ephemeral key; nothing signed with it outlives the process"""
    return secrets.token_hex(32)


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def get_client_ip() -> str:
    """Client address, honouring X-Forwarded-For / X-Real-IP from a proxy"""
    forwarded = request.headers.get('X-Forwarded-For')
    if forwarded:
        return forwarded.split(',')[0].strip()
    return request.headers.get('X-Real-IP') or request.remote_addr or '127.0.0.1'


def is_secure_request() -> bool:
    """Whether the browser reached us over HTTPS (directly or via a proxy)"""
    proto = request.headers.get('X-Forwarded-Proto') or request.scheme
    return proto == 'https'


# ============================================================================
# COOKIE SECURITY
# ============================================================================

def configure_session_security(app):
    """Log the viewer cookie settings"""
    if app.config.get('HTTPS_ENABLED', True):
        print("[Security] 🔒 HTTPS mode: Secure cookies on HTTPS requests")
    else:
        print("[Security] ⚠️  HTTP mode: viewer cookie sent without Secure")
    print(f"[Security] Viewer cookie: {app.config['VIEWER_COOKIE_NAME']}, "
          f"HttpOnly=True, SameSite=Lax, Max-Age={app.config['VIEWER_SESSION_MAX_AGE']}s")
