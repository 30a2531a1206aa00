import json
import logging
import os

import firebase_admin
from firebase_admin import credentials

from core.config import PlatformConfig

logger = logging.getLogger(__name__)


def _app_options(config: PlatformConfig) -> dict:
    options = {}
    if config.bucket_id:
        options["storageBucket"] = config.bucket_id
    if config.project_id:
        options["projectId"] = config.project_id
    return options


def initialize_firebase(config: PlatformConfig) -> firebase_admin.App:
    """Initialize Firebase Admin SDK with production-ready credential handling"""

    # Reuse An Already Initialized App (reloads, multiple platforms in one process)
    try:
        return firebase_admin.get_app()
    except ValueError:
        pass

    options = _app_options(config)

    # Method 1: Service Account Key from config / environment (Recommended for production)
    if config.service_account_key:
        try:
            service_account_info = json.loads(config.service_account_key)
            cred = credentials.Certificate(service_account_info)
            app = firebase_admin.initialize_app(cred, options)
            logger.info("Firebase Admin SDK initialized with Service Account Key from environment variable.")
            return app
        except (json.JSONDecodeError, ValueError) as e:
            logger.error(f"Error parsing FIREBASE_SERVICE_ACCOUNT_KEY: {e}")

    # Method 2: Service Account Key File (for local development only)
    key_path = config.service_account_key_path
    if key_path and os.path.exists(key_path):
        cred = credentials.Certificate(key_path)
        app = firebase_admin.initialize_app(cred, options)
        logger.info("Firebase Admin SDK initialized with Service Account Key from file path.")
        return app

    # Method 3: GOOGLE_APPLICATION_CREDENTIALS (Cloud environments)
    if os.getenv("GOOGLE_APPLICATION_CREDENTIALS"):
        app = firebase_admin.initialize_app(options=options)
        logger.info("Firebase Admin SDK initialized with GOOGLE_APPLICATION_CREDENTIALS.")
        return app

    # Method 4: Default Application Default Credentials (fallback)
    app = firebase_admin.initialize_app(options=options)
    logger.info("Firebase Admin SDK initialized with default Application Default Credentials.")
    logger.warning("Signed URL generation might fail if credentials don't include private key.")
    return app
