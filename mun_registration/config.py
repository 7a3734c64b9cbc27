"""
Configuration for MUN Registration Application

Defaults live in DEFAULT_CONFIG; environment variables override them and
an explicit dictionary passed to the app factory overrides both.
"""

import json
import os
from datetime import timedelta
from typing import Dict, Optional

DEFAULT_CONFIG = {
    'SECRET_KEY': 'dev-secret-key-change-in-production',
    'PERMANENT_SESSION_LIFETIME': timedelta(days=1),
    'DEBUG': True,
    'LOG_LEVEL': 'INFO',

    # Backends: 'firestore' / 'redis' in production, 'memory' for development
    'DATA_BACKEND': 'memory',
    'CACHE_BACKEND': 'memory',

    'FIREBASE_SERVICE_ACCOUNT_JSON': None,
    'FIREBASE_PROJECT_ID': None,
    'FIREBASE_API_KEY': None,

    'SUPABASE_URL': None,
    'SUPABASE_KEY': None,
    'SUPABASE_BUCKET': 'receipts',

    'SENDGRID_API_KEY': None,
    'SENDGRID_FROM_EMAIL': None,

    'REDIS_HOST': 'localhost',
    'REDIS_PORT': 6379,

    'CONFERENCE_NAME': 'XVII ROBLESMUN',
    'CONTACT_EMAIL': 'mun@losroblesenlinea.com.ve',
    'DEFAULT_EXCHANGE_RATE': 180.0,
    'SEAT_REVISION_CHECK': True,
    'IP_LOOKUP_TIMEOUT': 3.5,
}

_BOOL_KEYS = {'DEBUG', 'SEAT_REVISION_CHECK'}
_INT_KEYS = {'REDIS_PORT'}
_FLOAT_KEYS = {'DEFAULT_EXCHANGE_RATE', 'IP_LOOKUP_TIMEOUT'}


def _coerce(key: str, raw: str):
    if key in _BOOL_KEYS:
        return raw.strip().lower() in ('1', 'true', 'yes', 'on')
    if key in _INT_KEYS:
        return int(raw)
    if key in _FLOAT_KEYS:
        return float(raw)
    return raw


def load_config(overrides: Optional[Dict] = None, environ: Optional[Dict] = None) -> Dict:
    """
    Build the application configuration

    Args:
        overrides: Optional configuration dictionary applied last
        environ: Environment mapping, defaults to os.environ

    Returns:
        Configuration dictionary
    """
    environ = os.environ if environ is None else environ
    config = dict(DEFAULT_CONFIG)

    for key in DEFAULT_CONFIG:
        if key in environ and key != 'PERMANENT_SESSION_LIFETIME':
            config[key] = _coerce(key, environ[key])

    # Flask's conventional variable name wins over our default
    if 'FLASK_SECRET_KEY' in environ and 'SECRET_KEY' not in environ:
        config['SECRET_KEY'] = environ['FLASK_SECRET_KEY']

    if overrides:
        config.update(overrides)
    return config


def service_account_info(config: Dict) -> Optional[Dict]:
    """Parse the Firebase service account JSON, if configured"""
    raw = config.get('FIREBASE_SERVICE_ACCOUNT_JSON')
    if not raw:
        return None
    if isinstance(raw, dict):
        return raw
    return json.loads(raw)
