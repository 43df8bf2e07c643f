#!/usr/bin/env python3
"""
Protect Live Viewer - Entry Point
"""
import os
import ssl
from dotenv import load_dotenv

# Load environment variables before importing app
load_dotenv()

from protectview import create_app
from protectview.services import memory


def main():
    """Main entry point"""
    app = create_app()

    # Start background services
    app.extensions['protect_bridge'].start()
    memory.start(app.config['MEMORY_CHECK_INTERVAL'])

    debug_mode = app.config['DEBUG']
    if debug_mode:
        print("[Flask] ⚠️  WARNING: Debug mode is ENABLED (not for production!)")

    port = int(os.environ.get('PORT', '5000'))

    # Check for HTTPS certificates
    https_enabled = app.config['HTTPS_ENABLED']
    cert_file = '/app/certs/server.crt'
    key_file = '/app/certs/server.key'

    # Fallback to local certs directory for non-Docker runs
    if not os.path.exists(cert_file):
        cert_file = os.path.join(os.path.dirname(__file__), 'certs', 'server.crt')
        key_file = os.path.join(os.path.dirname(__file__), 'certs', 'server.key')

    try:
        if https_enabled and os.path.exists(cert_file) and os.path.exists(key_file):
            # HTTPS mode
            print(f"[Flask] 🔒 Starting HTTPS web server on https://0.0.0.0:{port}")
            ssl_context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
            ssl_context.minimum_version = ssl.TLSVersion.TLSv1_2
            ssl_context.load_cert_chain(cert_file, key_file)
            app.run(host='0.0.0.0', port=port, debug=debug_mode, threaded=True,
                    use_reloader=False, ssl_context=ssl_context)
        else:
            # HTTP mode (fallback)
            if https_enabled:
                print("[Flask] ⚠️  WARNING: HTTPS enabled but certificates not found!")
                print("[Flask] ⚠️  Falling back to HTTP (insecure)")
            print(f"[Flask] Starting web server on http://0.0.0.0:{port}")
            app.run(host='0.0.0.0', port=port, debug=debug_mode, threaded=True, use_reloader=False)
    finally:
        memory.stop()
        app.extensions['protect_cleanup']()


if __name__ == '__main__':
    main()
