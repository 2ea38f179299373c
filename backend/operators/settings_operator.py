import logging
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ValidationError
from sqlalchemy.orm import Session as DBSession

from database.models import AppSettingRecord
from utils.notifications import Notifier

logger = logging.getLogger(__name__)

SETTINGS_KEY = "app"


class ThemePreference(str, Enum):
    LIGHT = "light"
    DARK = "dark"


class AppSettings(BaseModel):
    theme: ThemePreference = ThemePreference.LIGHT
    notifications_enabled: bool = False


def load_settings(db: DBSession) -> AppSettings:
    record = db.get(AppSettingRecord, SETTINGS_KEY)
    if record is None:
        return AppSettings()
    try:
        return AppSettings.model_validate(record.data or {})
    except ValidationError as exc:
        logger.warning("Stored settings are invalid, using defaults: %s", exc)
        return AppSettings()


def save_settings(db: DBSession, settings: AppSettings) -> AppSettings:
    record = db.get(AppSettingRecord, SETTINGS_KEY)
    if record is None:
        record = AppSettingRecord(key=SETTINGS_KEY)
        db.add(record)
    record.data = settings.model_dump(mode="json")
    record.updated_at = datetime.now(timezone.utc)
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise
    return settings


def set_theme(db: DBSession, theme: ThemePreference) -> AppSettings:
    settings = load_settings(db)
    settings.theme = theme
    return save_settings(db, settings)


def set_notifications_enabled(db: DBSession, enabled: bool, notifier: Notifier) -> AppSettings:
    """Enabling only sticks when the notifier grants permission."""
    settings = load_settings(db)
    if enabled and not notifier.request_permission():
        logger.info("Notification permission denied; leaving notifications disabled")
        enabled = False
    settings.notifications_enabled = enabled
    return save_settings(db, settings)
