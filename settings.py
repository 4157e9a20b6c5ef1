"""
Configuration for the credential service
========================================

Defaults live in DEFAULT_CONFIG and are overridden by environment
variables in get_config(). Server settings used by run_server.py come
from get_server_config().
"""

import os

_TRUE_VALUES = ('true', '1', 'yes', 'on')

DEFAULT_CONFIG = {
    'SECRET_KEY': 'change-me-in-production',
    'SQLALCHEMY_DATABASE_URI': 'sqlite:///credentials.db',
    'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    'SQLALCHEMY_ENGINE_OPTIONS': {'pool_pre_ping': True},
    'PUBLIC_BASE_URL': 'http://localhost:5000',
    # pdf or png, used when the caller supplies neither a file nor a design
    'ARTIFACT_FORMAT': 'pdf',
    'LOGO_FETCH_TIMEOUT': 5.0,
    # extra directories searched for TrueType fonts before the system ones
    'FONT_DIRS': (),
    'MAX_UPLOAD_BYTES': 10 * 1024 * 1024,
    'ALLOWED_UPLOAD_EXTENSIONS': ('pdf', 'jpg', 'jpeg', 'png', 'json'),
    'ANCHOR_BACKEND': 'none',
    'NOTIFY_RECIPIENTS': False,
    'MAIL_SERVER': 'localhost',
    'MAIL_PORT': 1025,
    'MAIL_USE_TLS': False,
    'MAIL_USE_SSL': False,
    'MAIL_DEFAULT_SENDER': 'no-reply@localhost',
    'LOG_LEVEL': 'INFO',
}

DEV_SERVER = {
    'host': '0.0.0.0',
    'port': 5000,
    'debug': False,
    'threaded': True,
}


def _env_bool(name, default):
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in _TRUE_VALUES


def get_config():
    """Return application configuration with environment overrides."""
    config = dict(DEFAULT_CONFIG)

    if 'SECRET_KEY' in os.environ:
        config['SECRET_KEY'] = os.environ['SECRET_KEY']
    if os.environ.get('DATABASE_URL'):
        config['SQLALCHEMY_DATABASE_URI'] = os.environ['DATABASE_URL']
    if 'PUBLIC_BASE_URL' in os.environ:
        config['PUBLIC_BASE_URL'] = os.environ['PUBLIC_BASE_URL']
    if 'ARTIFACT_FORMAT' in os.environ:
        config['ARTIFACT_FORMAT'] = os.environ['ARTIFACT_FORMAT'].strip().lower()
    if 'LOGO_FETCH_TIMEOUT' in os.environ:
        config['LOGO_FETCH_TIMEOUT'] = float(os.environ['LOGO_FETCH_TIMEOUT'])
    if os.environ.get('FONT_DIRS'):
        config['FONT_DIRS'] = tuple(d for d in os.environ['FONT_DIRS'].split(os.pathsep) if d)
    if 'MAX_UPLOAD_BYTES' in os.environ:
        config['MAX_UPLOAD_BYTES'] = int(os.environ['MAX_UPLOAD_BYTES'])
    if 'ANCHOR_BACKEND' in os.environ:
        config['ANCHOR_BACKEND'] = os.environ['ANCHOR_BACKEND'].strip().lower()
    if 'LOG_LEVEL' in os.environ:
        config['LOG_LEVEL'] = os.environ['LOG_LEVEL'].upper()

    config['NOTIFY_RECIPIENTS'] = _env_bool('NOTIFY_RECIPIENTS', config['NOTIFY_RECIPIENTS'])

    for key in ('MAIL_SERVER', 'MAIL_DEFAULT_SENDER', 'MAIL_USERNAME', 'MAIL_PASSWORD'):
        if key in os.environ:
            config[key] = os.environ[key]
    if 'MAIL_PORT' in os.environ:
        config['MAIL_PORT'] = int(os.environ['MAIL_PORT'])
    config['MAIL_USE_TLS'] = _env_bool('MAIL_USE_TLS', config['MAIL_USE_TLS'])
    config['MAIL_USE_SSL'] = _env_bool('MAIL_USE_SSL', config['MAIL_USE_SSL'])

    return config


def get_server_config():
    """Returns development server settings with environment overrides"""
    config = DEV_SERVER.copy()

    if 'PORT' in os.environ:
        config['port'] = int(os.environ['PORT'])

    if 'FLASK_DEBUG' in os.environ:
        config['debug'] = os.environ['FLASK_DEBUG'].lower() in _TRUE_VALUES

    if 'FLASK_HOST' in os.environ:
        config['host'] = os.environ['FLASK_HOST']

    return config
