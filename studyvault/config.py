# config.py
# Description: Settings loading and factories for the offline store and the services built on it
#
# Imports
import copy
import os
import tomllib
from pathlib import Path
from typing import Any, Dict, Optional
#
# 3rd-Party Imports
import toml
from loguru import logger
#
# Local Imports
from studyvault.DB.Offline_Storage_DB import OfflineStorageDB
from studyvault.Notifications.Notification_Service import NotificationService
from studyvault.Quiz.Quiz_AutoSave import QuizAutoSaver
from studyvault.Sync.Sync_Client import OfflineSyncEngine, RestRemoteBackend
from studyvault.edge_api.client import EdgeFunctionClient
#
#######################################################################################################################
#
# Functions:

DEFAULT_CONFIG_PATH = Path.home() / ".config" / "studyvault" / "config.toml"
CONFIG_PATH_ENV_VAR = "STUDYVAULT_CONFIG_PATH"
ANON_KEY_ENV_VAR = "STUDYVAULT_ANON_KEY"
BACKEND_URL_ENV_VAR = "STUDYVAULT_BACKEND_URL"

CONFIG_TOML_CONTENT = """
# Configuration for StudyVault offline services
# This file is created with defaults on first run. Edit values as needed.

[general]
client_id = "studyvault_client"
log_level = "INFO"

[logging]
log_filename = "studyvault.log"
log_to_console = true
rotation = "10 MB"
retention = "7 days"

[database]
offline_db_path = "~/.local/share/studyvault/offline_store.db"

[autosave]
debounce_seconds = 2.0
interval_seconds = 30.0
saved_reset_seconds = 2.0
error_reset_seconds = 3.0
progress_notify_every = 5

[sync]
# Backend base URL, e.g. "https://<project>.example.co". STUDYVAULT_BACKEND_URL overrides it.
backend_url = ""
max_retries = 3
batch_size = 50
request_timeout_seconds = 30.0

[edge_functions]
# Defaults to [sync].backend_url when empty.
base_url = ""
timeout_seconds = 30.0
"""

DEFAULT_CONFIG_FROM_TOML: Dict[str, Any] = tomllib.loads(CONFIG_TOML_CONTENT)


def get_config_path() -> Path:
    env_path = os.environ.get(CONFIG_PATH_ENV_VAR)
    return Path(env_path).expanduser() if env_path else DEFAULT_CONFIG_PATH


# --- Helper for deep merging dictionaries ---
def deep_merge_dicts(base: Dict, update: Dict) -> Dict:
    """Recursively merges update into a copy of base."""
    merged = copy.deepcopy(base)
    for key, value in update.items():
        if isinstance(value, dict) and key in merged and isinstance(merged[key], dict):
            merged[key] = deep_merge_dicts(merged[key], value)
        else:
            merged[key] = value
    return merged


_CONFIG_CACHE: Optional[Dict[str, Any]] = None


def load_settings(force_reload: bool = False) -> Dict[str, Any]:
    """
    Loads settings from the user config file merged over the built-in defaults.
    If the file doesn't exist, it's created with default values.
    """
    global _CONFIG_CACHE
    if _CONFIG_CACHE is not None and not force_reload:
        return _CONFIG_CACHE

    config_path = get_config_path()
    loaded_config = copy.deepcopy(DEFAULT_CONFIG_FROM_TOML)

    if not config_path.exists():
        logger.info(f"Config file not found at {config_path}. Creating with default values.")
        try:
            config_path.parent.mkdir(parents=True, exist_ok=True)
            with open(config_path, "w", encoding="utf-8") as f:
                f.write(CONFIG_TOML_CONTENT)
        except OSError as e:
            logger.error(f"Could not create default config file {config_path}: {e}. Using internal defaults.")
    else:
        try:
            with open(config_path, "rb") as f:
                user_config_from_file = tomllib.load(f)
            loaded_config = deep_merge_dicts(loaded_config, user_config_from_file)
            logger.debug(f"Loaded and merged config from {config_path}")
        except tomllib.TOMLDecodeError as e:
            logger.error(f"Error decoding TOML config file {config_path}: {e}. Using internal defaults.")
        except OSError as e:
            logger.error(f"Could not read config file {config_path}: {e}. Using internal defaults.")

    _CONFIG_CACHE = loaded_config
    return _CONFIG_CACHE


def get_setting(section: str, key: str, default: Any = None) -> Any:
    """Helper to get a specific setting from the loaded configuration."""
    section_data = load_settings().get(section)
    if isinstance(section_data, dict):
        return section_data.get(key, default)
    return default


def save_setting(section: str, key: str, value: Any):
    """Writes one value into the user config file and reloads the cache."""
    config_path = get_config_path()
    user_config: Dict[str, Any] = {}
    if config_path.exists():
        try:
            with open(config_path, "rb") as f:
                user_config = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            logger.error(f"Config file {config_path} is not valid TOML; rewriting it from defaults: {e}")
            user_config = copy.deepcopy(DEFAULT_CONFIG_FROM_TOML)
    user_config.setdefault(section, {})[key] = value
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, "w", encoding="utf-8") as f:
        toml.dump(user_config, f)
    logger.info(f"Saved setting [{section}].{key} to {config_path}")
    load_settings(force_reload=True)


# --- Paths ---
def get_offline_db_path() -> Path:
    db_path_str = get_setting("database", "offline_db_path",
                              DEFAULT_CONFIG_FROM_TOML["database"]["offline_db_path"])
    return Path(db_path_str).expanduser().resolve()


def get_log_file_path() -> Path:
    log_filename = get_setting("logging", "log_filename", DEFAULT_CONFIG_FROM_TOML["logging"]["log_filename"])
    return get_offline_db_path().parent / log_filename


def get_backend_url() -> str:
    return os.environ.get(BACKEND_URL_ENV_VAR) or get_setting("sync", "backend_url", "")


def get_anon_key() -> str:
    return os.environ.get(ANON_KEY_ENV_VAR, "")


# --- Factories ---
def create_offline_storage(db_path: Optional[Path] = None, client_id: Optional[str] = None,
                           raise_on_error: bool = False) -> OfflineStorageDB:
    """
    Builds and initializes the process's offline store. Callers keep the returned
    instance and pass it to the services that need it.

    If initialization fails the store is still returned; check `is_initialized`.
    """
    db_path = db_path or get_offline_db_path()
    client_id = client_id or get_setting("general", "client_id", "studyvault_client")
    store = OfflineStorageDB(db_path=db_path, client_id=client_id)
    if store.initialize(raise_on_error=raise_on_error):
        logger.success(f"Offline store initialized at {db_path}")
    else:
        logger.error(f"Offline store at {db_path} is unavailable; offline features are disabled.")
    return store


def create_quiz_autosaver(store: OfflineStorageDB, quiz_id: str,
                          notifier: Optional[NotificationService] = None) -> QuizAutoSaver:
    return QuizAutoSaver(
        store, quiz_id, notifier=notifier,
        debounce_seconds=float(get_setting("autosave", "debounce_seconds", 2.0)),
        interval_seconds=float(get_setting("autosave", "interval_seconds", 30.0)),
        saved_reset_seconds=float(get_setting("autosave", "saved_reset_seconds", 2.0)),
        error_reset_seconds=float(get_setting("autosave", "error_reset_seconds", 3.0)),
        progress_notify_every=int(get_setting("autosave", "progress_notify_every", 5)),
    )


def create_sync_engine(store: OfflineStorageDB, access_token: Optional[str] = None,
                       notifier: Optional[NotificationService] = None) -> OfflineSyncEngine:
    backend = RestRemoteBackend(
        base_url=get_backend_url(),
        anon_key=get_anon_key(),
        access_token=access_token,
        timeout=float(get_setting("sync", "request_timeout_seconds", 30.0)),
    )
    return OfflineSyncEngine(
        store, backend,
        max_retries=int(get_setting("sync", "max_retries", 3)),
        batch_size=int(get_setting("sync", "batch_size", 50)),
        notifier=notifier,
    )


def create_edge_client(access_token: Optional[str] = None,
                       notifier: Optional[NotificationService] = None) -> EdgeFunctionClient:
    base_url = get_setting("edge_functions", "base_url", "") or get_backend_url()
    return EdgeFunctionClient(
        base_url=base_url,
        anon_key=get_anon_key(),
        access_token=access_token,
        timeout=float(get_setting("edge_functions", "timeout_seconds", 30.0)),
        notifier=notifier,
    )

#
# End of config.py
#######################################################################################################################
