"""Storage-location configuration.

Every logical storage location (``StorageKey``) resolves to a folder ID
through three tiers, first hit wins:

  1. persisted override (ConfigStore, keyed by the key's stable ID)
  2. environment variable
  3. built-in default

Resolution never fails for a defined key. A failing persisted store is
logged and skipped.
"""

import logging
import os
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Mapping, Optional, Union

logger = logging.getLogger(__name__)

CONFIG_CACHE_PREFIX = "config"
DEFAULT_FOLDER = "root"


class StorageKey(str, Enum):
    """Logical storage locations. Values are the IDs used in the override store."""
    SIGNATURES = 'google_drive_signatures_folder_id'
    PASSPORTS = 'google_drive_passport_folder_id'
    ID_CARDS = 'google_drive_id_card_folder_id'
    BANKBOOKS = 'google_drive_bankbook_folder_id'
    B2B_BACKUP = 'google_drive_b2b_backup_folder_id'
    MEETING_RECORDINGS = 'google_drive_meeting_recordings_folder_id'
    PROFILES = 'google_drive_profiles_folder_id'
    PRODUCTS = 'google_drive_products_folder_id'
    CONTRACTS = 'google_drive_contracts_folder_id'
    AFFILIATE_DOCUMENTS = 'google_drive_affiliate_documents_folder_id'
    APIS_BACKUP = 'google_drive_apis_backup_folder_id'
    LEADS_BACKUP = 'google_drive_leads_backup_folder_id'
    SALES_BACKUP = 'google_drive_sales_backup_folder_id'
    SETTLEMENTS_BACKUP = 'google_drive_settlements_backup_folder_id'
    TRAVEL_GUIDES = 'google_drive_travel_guides_folder_id'
    UPLOADS_IMAGES = 'google_drive_uploads_images_folder_id'
    UPLOADS_REVIEWS = 'google_drive_uploads_reviews_folder_id'
    UPLOADS_VIDEOS = 'google_drive_uploads_videos_folder_id'
    UPLOADS_FONTS = 'google_drive_uploads_fonts_folder_id'
    UPLOADS_DOCUMENTS = 'google_drive_uploads_documents_folder_id'
    UPLOADS_SALES_AUDIO = 'google_drive_uploads_sales_audio_folder_id'
    UPLOADS_AUDIO = 'google_drive_uploads_audio_folder_id'
    CRUISE_IMAGES = 'google_drive_cruise_images_folder_id'
    APIS_MAIN = 'google_drive_apis_main_folder_id'
    APIS_TEMPLATE_ID = 'google_drive_apis_template_id'
    ROOT = 'google_drive_root_folder_id'
    CASHFLOW = 'google_drive_cashflow_folder_id'
    TOTALCASH = 'google_drive_totalcash_folder_id'
    BACKUP_LOGS = 'google_drive_backup_logs_folder_id'


class ConfigSource(str, Enum):
    PERSISTED = 'persisted'
    ENVIRONMENT = 'environment'
    DEFAULT = 'default'


# Everything lands in the store root until a deployment points keys elsewhere.
DEFAULTS: Dict[StorageKey, str] = {key: DEFAULT_FOLDER for key in StorageKey}

ENV_VARS: Dict[StorageKey, str] = {
    StorageKey.SIGNATURES: 'GOOGLE_DRIVE_SIGNATURES_FOLDER_ID',
    StorageKey.PASSPORTS: 'GOOGLE_DRIVE_PASSPORT_FOLDER_ID',
    StorageKey.ID_CARDS: 'GOOGLE_DRIVE_ID_CARD_FOLDER_ID',
    StorageKey.BANKBOOKS: 'GOOGLE_DRIVE_BANKBOOK_FOLDER_ID',
    StorageKey.B2B_BACKUP: 'GOOGLE_DRIVE_B2B_BACKUP_FOLDER_ID',
    StorageKey.MEETING_RECORDINGS: 'GOOGLE_DRIVE_MEETING_RECORDINGS_FOLDER_ID',
    StorageKey.PROFILES: 'GOOGLE_DRIVE_UPLOADS_PROFILES_FOLDER_ID',
    StorageKey.PRODUCTS: 'GOOGLE_DRIVE_PRODUCTS_FOLDER_ID',
    StorageKey.CONTRACTS: 'GOOGLE_DRIVE_CONTRACTS_FOLDER_ID',
    StorageKey.AFFILIATE_DOCUMENTS: 'GOOGLE_DRIVE_AFFILIATE_INFO_FOLDER_ID',
    StorageKey.APIS_BACKUP: 'GOOGLE_DRIVE_APIS_BACKUP_FOLDER_ID',
    StorageKey.LEADS_BACKUP: 'GOOGLE_DRIVE_LEADS_BACKUP_FOLDER_ID',
    StorageKey.SALES_BACKUP: 'GOOGLE_DRIVE_SALES_BACKUP_FOLDER_ID',
    StorageKey.SETTLEMENTS_BACKUP: 'GOOGLE_DRIVE_SETTLEMENTS_BACKUP_FOLDER_ID',
    StorageKey.TRAVEL_GUIDES: 'GOOGLE_DRIVE_TRAVEL_GUIDES_FOLDER_ID',
    StorageKey.UPLOADS_IMAGES: 'GOOGLE_DRIVE_UPLOADS_IMAGES_FOLDER_ID',
    StorageKey.UPLOADS_REVIEWS: 'GOOGLE_DRIVE_UPLOADS_REVIEWS_FOLDER_ID',
    StorageKey.UPLOADS_VIDEOS: 'GOOGLE_DRIVE_UPLOADS_VIDEOS_FOLDER_ID',
    StorageKey.UPLOADS_FONTS: 'GOOGLE_DRIVE_UPLOADS_FONTS_FOLDER_ID',
    StorageKey.UPLOADS_DOCUMENTS: 'GOOGLE_DRIVE_UPLOADS_DOCUMENTS_FOLDER_ID',
    StorageKey.UPLOADS_SALES_AUDIO: 'GOOGLE_DRIVE_UPLOADS_SALES_AUDIO_FOLDER_ID',
    StorageKey.UPLOADS_AUDIO: 'GOOGLE_DRIVE_UPLOADS_AUDIO_FOLDER_ID',
    StorageKey.CRUISE_IMAGES: 'GOOGLE_DRIVE_CRUISE_IMAGES_FOLDER_ID',
    StorageKey.APIS_MAIN: 'GOOGLE_DRIVE_APIS_MAIN_FOLDER_ID',
    StorageKey.APIS_TEMPLATE_ID: 'GOOGLE_DRIVE_APIS_TEMPLATE_ID',
    StorageKey.ROOT: 'GOOGLE_DRIVE_ROOT_FOLDER_ID',
    StorageKey.CASHFLOW: 'GOOGLE_DRIVE_CASHFLOW_FOLDER_ID',
    StorageKey.TOTALCASH: 'GOOGLE_DRIVE_TOTALCASH_FOLDER_ID',
    StorageKey.BACKUP_LOGS: 'GOOGLE_DRIVE_BACKUP_LOGS_FOLDER_ID',
}


@dataclass(frozen=True)
class ConfigEntry:
    key: StorageKey
    value: str
    source: ConfigSource


def validate_defaults(defaults: Mapping[StorageKey, str] = DEFAULTS,
                      env_vars: Mapping[StorageKey, str] = ENV_VARS) -> None:
    """Check every StorageKey has a non-empty default and an env var.

    Raises:
        ValueError: Listing the keys that are missing either
    """
    missing_defaults = [k.name for k in StorageKey if not defaults.get(k)]
    missing_env = [k.name for k in StorageKey if not env_vars.get(k)]
    if missing_defaults or missing_env:
        raise ValueError(
            f"Incomplete storage key table: no default for {missing_defaults}, "
            f"no environment variable for {missing_env}"
        )


def coerce_key(key: Union[StorageKey, str]) -> StorageKey:
    """Accept a StorageKey, its name ('PASSPORTS') or its stored ID."""
    if isinstance(key, StorageKey):
        return key
    try:
        return StorageKey(key)
    except ValueError:
        pass
    try:
        return StorageKey[key.upper()]
    except KeyError:
        raise ValueError(f"Unknown storage key: {key}") from None


class ConfigResolver:
    """Resolves storage keys to folder IDs.

    Args:
        store: Persisted override store (ConfigStore or compatible), optional
        cache: Cache used to memoise resolutions, optional
        environ: Environment mapping (defaults to os.environ)
        cache_ttl: Seconds a memoised resolution stays valid
    """

    def __init__(self, store=None, cache=None,
                 environ: Optional[Mapping[str, str]] = None,
                 cache_ttl: int = 300,
                 defaults: Mapping[StorageKey, str] = DEFAULTS) -> None:
        validate_defaults(defaults)
        self.store = store
        self.cache = cache
        self.environ = os.environ if environ is None else environ
        self.cache_ttl = cache_ttl
        self.defaults = defaults

    def _cache_key(self, key: StorageKey) -> str:
        return f"{CONFIG_CACHE_PREFIX}:{key.value}"

    def _read_persisted(self, key: StorageKey) -> Optional[str]:
        if self.store is None:
            return None
        try:
            return self.store.get(key.value)
        except Exception as e:
            logger.warning("Persisted config read failed for %s, using environment/default: %s",
                           key.name, e)
            return None

    def _lookup(self, key: StorageKey) -> ConfigEntry:
        value = self._read_persisted(key)
        if value:
            return ConfigEntry(key, value, ConfigSource.PERSISTED)

        value = self.environ.get(ENV_VARS[key])
        if value:
            return ConfigEntry(key, value, ConfigSource.ENVIRONMENT)

        return ConfigEntry(key, self.defaults[key], ConfigSource.DEFAULT)

    def resolve(self, key: Union[StorageKey, str]) -> ConfigEntry:
        """Resolve a key to its folder ID and the tier it came from."""
        key = coerce_key(key)

        if self.cache is not None:
            cached = self.cache.get(self._cache_key(key))
            if isinstance(cached, dict) and cached.get('value'):
                return ConfigEntry(key, cached['value'], ConfigSource(cached['source']))

        entry = self._lookup(key)
        logger.debug("%s from %s: %s", key.name, entry.source.value, entry.value)

        if self.cache is not None:
            self.cache.set(self._cache_key(key),
                           {'value': entry.value, 'source': entry.source.value},
                           self.cache_ttl)
        return entry

    def resolve_value(self, key: Union[StorageKey, str]) -> str:
        return self.resolve(key).value

    def resolve_all(self) -> List[ConfigEntry]:
        """Resolve every key without touching the cache (admin listing)."""
        return [self._lookup(key) for key in StorageKey]

    def invalidate(self, key: Optional[Union[StorageKey, str]] = None) -> int:
        """Drop memoised resolutions for one key, or all keys."""
        if self.cache is None:
            return 0
        suffix = coerce_key(key).value if key is not None else ""
        return self.cache.delete_pattern(f"{CONFIG_CACHE_PREFIX}:{suffix}*")

    def set_override(self, key: Union[StorageKey, str], value: str) -> ConfigEntry:
        """Persist an override and drop any cached resolution for it.

        Raises:
            RuntimeError: If no persisted store is configured
            ValueError: If value is empty
        """
        key = coerce_key(key)
        if self.store is None:
            raise RuntimeError("No persisted config store configured")
        if not value:
            raise ValueError("Override value must not be empty")
        self.store.set(key.value, value)
        self.invalidate(key)
        logger.info("Config override set: %s = %s", key.name, value)
        return self.resolve(key)

    def clear_override(self, key: Union[StorageKey, str]) -> ConfigEntry:
        """Remove an override and return the resolution that now applies."""
        key = coerce_key(key)
        if self.store is None:
            raise RuntimeError("No persisted config store configured")
        self.store.delete(key.value)
        self.invalidate(key)
        logger.info("Config override cleared: %s", key.name)
        return self.resolve(key)
