import logging

import firebase_admin
from firebase_admin import credentials

from pushengine.config import Settings, get_settings

logger = logging.getLogger(__name__)


def initialize_firebase(settings: Settings | None = None) -> firebase_admin.App | None:
  """Initialize the Firebase Admin SDK and return the default app, or None when unconfigured."""
  if firebase_admin._apps:
    return firebase_admin.get_app()

  settings = settings or get_settings()
  if not settings.firebase_project_id:
    logger.warning("Firebase Project ID not set. Firebase Admin SDK not initialized.")
    return None

  try:
    if settings.firebase_service_account_json_path:
      cred = credentials.Certificate(settings.firebase_service_account_json_path)
      app = firebase_admin.initialize_app(cred, {"projectId": settings.firebase_project_id})
    else:
      # Application Default Credentials
      app = firebase_admin.initialize_app(options={"projectId": settings.firebase_project_id})
  except (ValueError, OSError) as exc:
    logger.error("Failed to initialize Firebase Admin SDK: %s", exc)
    return None

  logger.info("Firebase Admin SDK initialized for project %s.", settings.firebase_project_id)
  return app
