"""
Configuration classes for the Protect live viewer.
"""
import os


def _env_flag(name: str, default: str = 'false') -> bool:
    return os.environ.get(name, default).lower() == 'true'


class Config:
    """Base configuration class"""

    # Flask
    SECRET_KEY = os.environ.get('SECRET_KEY')
    DEBUG = _env_flag('DEBUG')
    HTTPS_ENABLED = _env_flag('HTTPS_ENABLED', 'true')

    # Flask-Login only reads our own cookie, it never writes Flask's session
    SESSION_PROTECTION = None

    # NVR connection defaults (used when the login form leaves a field blank)
    PROTECT_BASE_URL = os.environ.get('PROTECT_BASE_URL') or os.environ.get('NVR_IP', '')
    PROTECT_USERNAME = os.environ.get('PROTECT_USERNAME', '')
    PROTECT_PASSWORD = os.environ.get('PROTECT_PASSWORD', '')
    PROTECT_ACCESS_KEY = os.environ.get('PROTECT_ACCESS_KEY', '')
    PROTECT_ALLOW_SELF_SIGNED = _env_flag('PROTECT_ALLOW_SELF_SIGNED')

    # Viewer session cookie
    VIEWER_COOKIE_NAME = 'bp_sess'
    VIEWER_SESSION_MAX_AGE = int(os.environ.get('VIEWER_SESSION_MAX_AGE', '3600'))

    # Connection cache
    LOGIN_TIMEOUT = float(os.environ.get('PROTECT_LOGIN_TIMEOUT', '60'))
    HEALTH_CHECK_INTERVAL = 60

    # Bootstrap / codec caches (seconds)
    BOOTSTRAP_TTL = 30
    CODEC_TTL = 300

    # Live streams
    STREAM_REUSE_WINDOW = 5
    STREAM_CHANNEL = int(os.environ.get('PROTECT_STREAM_CHANNEL', '0'))
    STREAM_START_TIMEOUT = 20
    STREAM_READ_TIMEOUT = 30
    FFMPEG_PATH = os.environ.get('FFMPEG_PATH', 'ffmpeg')

    # Audit log (falls back to ./logs when the directory is missing)
    AUDIT_LOG_DIR = os.environ.get('AUDIT_LOG_DIR', '/var/log/protectview')

    # Memory monitor
    MEMORY_CHECK_INTERVAL = int(os.environ.get('MEMORY_CHECK_INTERVAL', '300'))


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False


class TestingConfig(Config):
    """Configuration used by the test suite"""
    TESTING = True
    HTTPS_ENABLED = False
    SECRET_KEY = 'testing'
    PROTECT_BASE_URL = ''
    PROTECT_USERNAME = ''
    PROTECT_PASSWORD = ''
    PROTECT_ACCESS_KEY = ''
    PROTECT_ALLOW_SELF_SIGNED = False
    LOGIN_TIMEOUT = 2
    STREAM_START_TIMEOUT = 2
    STREAM_READ_TIMEOUT = 2
