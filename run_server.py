#!/usr/bin/env python3
"""
Flask Application Runner
========================

Entry point for running the credential service.

Usage:
    python run_server.py           # Run with default settings
    python run_server.py --debug   # Run in debug mode
    python run_server.py --port 8000  # Run on custom port

Environment Variables:
    PORT         - Server port (default: 5000)
    FLASK_DEBUG  - Enable debug mode (default: False)
    FLASK_HOST   - Interface to bind (default: 0.0.0.0)
    DATABASE_URL - SQLAlchemy database URL (default: sqlite:///credentials.db)
"""

import os
import sys
import argparse

from database import init_schema
from settings import get_server_config


def main():
    """Main entry point for the Flask application"""
    parser = argparse.ArgumentParser(description='Run the certificate issuance and verification service')
    parser.add_argument('--port', type=int, default=None, help='Port to run on')
    parser.add_argument('--debug', action='store_true', help='Enable debug mode')
    parser.add_argument('--host', default=None, help='Host to bind to')
    parser.add_argument('--routes', action='store_true', help='Print the route map and exit')

    args = parser.parse_args()
    server = get_server_config()

    try:
        from app import create_app
        app = create_app()
    except ImportError as e:
        print(f"❌ Failed to import Flask app: {e}")
        sys.exit(1)

    if not init_schema(app):
        print("❌ Database is not reachable or the schema is incomplete")
        sys.exit(1)

    if args.routes:
        for rule in sorted(app.url_map.iter_rules(), key=lambda r: r.rule):
            methods = ','.join(sorted(m for m in rule.methods if m not in ('HEAD', 'OPTIONS')))
            print(f"  • {rule.rule} -> {methods}")
        return

    port = args.port or server['port']
    debug = args.debug or server['debug']
    host = args.host or server['host']

    print("=" * 60)
    print("CREDENTIAL SERVICE")
    print("=" * 60)
    print(f"🌐 Server: http://{host}:{port}")
    print(f"🔧 Debug Mode: {debug}")
    print(f"🔗 Verification links: {app.config['PUBLIC_BASE_URL']}/verify/<id>")
    print(f"📁 Working Directory: {os.getcwd()}")
    print("=" * 60)

    try:
        app.run(
            host=host,
            port=port,
            debug=debug,
            threaded=server['threaded'],
            use_reloader=debug  # Only use reloader in debug mode
        )
    except KeyboardInterrupt:
        print("\n👋 Server stopped by user")


if __name__ == '__main__':
    main()
