from flask import Flask, jsonify
from flask_login import LoginManager
import logging

from models import db, User
from settings import get_config
from database import normalize_pg_url_for_sqlalchemy
from errors import register_error_handlers
from notifications import mail
from activity_log import ActivityLogSink
from anchoring import build_anchor_service
from certificate_image import FontRegistry
from generate_certificate import PdfFontSet


def create_app(config_overrides=None):
    """Build the credential service app.

    Long-lived collaborators (image and PDF fonts, anchor service, activity sink) are
    created once here and shared through app.extensions.
    """
    app = Flask(__name__)
    app.config.update(get_config())
    if config_overrides:
        app.config.update(config_overrides)
    app.config['SQLALCHEMY_DATABASE_URI'] = normalize_pg_url_for_sqlalchemy(app.config['SQLALCHEMY_DATABASE_URI'])
    # Request bodies larger than the upload limit plus form overhead are refused by werkzeug
    if not app.config.get('MAX_CONTENT_LENGTH'):
        app.config['MAX_CONTENT_LENGTH'] = app.config['MAX_UPLOAD_BYTES'] + 1024 * 1024

    logging.basicConfig(
        level=getattr(logging, str(app.config.get('LOG_LEVEL', 'INFO')).upper(), logging.INFO),
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )
    logging.info(f"Using database: {app.config['SQLALCHEMY_DATABASE_URI'].split('@')[-1]}")

    # Initialize extensions
    db.init_app(app)
    mail.init_app(app)
    login_manager = LoginManager()
    login_manager.init_app(app)

    @login_manager.user_loader
    def load_user(user_id):
        try:
            return db.session.get(User, int(user_id))
        except (TypeError, ValueError):
            return None

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({'success': False, 'message': 'Authentication required'}), 401

    app.extensions['certificate_fonts'] = FontRegistry(app.config.get('FONT_DIRS'))
    app.extensions['certificate_pdf_fonts'] = PdfFontSet(app.config.get('FONT_DIRS'))
    app.extensions['anchor_service'] = build_anchor_service(app.config.get('ANCHOR_BACKEND'))
    ActivityLogSink(app)

    register_error_handlers(app)

    from routes import main_bp
    from verify_routes import verify_bp
    from admin_routes import admin_bp
    from approval_routes import approval_bp
    app.register_blueprint(main_bp)
    app.register_blueprint(verify_bp)
    app.register_blueprint(admin_bp)
    app.register_blueprint(approval_bp)

    # Create database tables if they don't exist
    with app.app_context():
        db.create_all()

    return app


if __name__ == '__main__':
    create_app().run(host='127.0.0.1', port=5000, debug=True)
