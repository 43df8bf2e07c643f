"""
Protect Live Viewer - Flask Application Factory
"""
import atexit

from flask import Flask

from .config import Config
from .security import (
    add_security_headers,
    configure_session_security,
    generate_secret_key,
    init_audit_log,
)


def create_app(config_class=Config, client_factory=None, stream_factory=None, clock=None,
               session_clock=None):
    """
    Application factory pattern for Flask app creation.

    `client_factory`, `stream_factory` and `clock` replace the uiprotect
    client, the ffmpeg live stream and the monotonic clock of the NVR service;
    `session_clock` replaces the wall clock of the session store.
    """
    app = Flask(__name__,
                static_folder='static',
                template_folder='templates')

    # Load configuration
    app.config.from_object(config_class)

    # Generate proper secret key if not set
    if not app.config.get('SECRET_KEY'):
        app.config['SECRET_KEY'] = generate_secret_key()

    configure_session_security(app)
    init_audit_log(app)

    # Add security headers to all responses
    app.after_request(add_security_headers)

    # Initialize authentication (viewer session cookie)
    from .auth import init_auth
    init_auth(app, clock=session_clock)

    # NVR service and the event loop it runs on
    from .services import NvrService, ProtectBridge
    nvr = NvrService.from_config(
        app.config,
        client_factory=client_factory,
        stream_factory=stream_factory,
        clock=clock,
    )
    bridge = ProtectBridge()
    app.extensions['nvr'] = nvr
    app.extensions['protect_bridge'] = bridge

    # Register blueprints
    from .routes import main_bp, api_bp
    app.register_blueprint(main_bp)
    app.register_blueprint(api_bp, url_prefix='/api')

    def cleanup():
        """Graceful shutdown - stop all streams and NVR connections"""
        if not bridge.running:
            return
        print("\n[System] Shutting down...")
        bridge.stop(nvr.shutdown())
        print("[System] Shutdown complete")

    app.extensions['protect_cleanup'] = cleanup
    if not app.config.get('TESTING'):
        atexit.register(cleanup)

    return app
