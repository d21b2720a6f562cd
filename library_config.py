"""Settings and factories for embedding the beatmap library."""
from __future__ import annotations

import importlib
import importlib.util
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Mapping, Optional, Union

from pymongo import MongoClient
from redis import Redis

from history import HistoryManager
from library_cache import (
    DEFAULT_CACHE_NAME,
    DEFAULT_REDIS_KEY,
    MemoryLibraryCacheStore,
    MongoLibraryCacheStore,
    RedisLibraryCacheStore,
)
from library_scanner import LibraryScanner
from osu_parser import OsuMetadataExtractor


LOGGER = logging.getLogger(__name__)


ENV_PREFIX = "BEATMAP_LIBRARY_"
CACHE_BACKENDS = ("mongo", "redis", "memory", "none")
DEFAULT_MONGO_HOST = "127.0.0.1:27017"
DEFAULT_MONGO_DATABASE = "beatmap_library"
DEFAULT_MONGO_COLLECTION = "library_cache"
DEFAULT_CONFIG_MODULE = "config"


def _module_from_file(config_path: Path):
    spec = importlib.util.spec_from_file_location("beatmap_library_config", config_path)
    if spec is None or spec.loader is None:
        return None
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)  # type: ignore[attr-defined]
    return module


def load_config_module(environ: Optional[Mapping[str, str]] = None):
    """Return the user's config module, or ``None`` to run on defaults.

    ``BEATMAP_LIBRARY_CONFIG_PATH`` names a file and wins over
    ``BEATMAP_LIBRARY_CONFIG_MODULE``, which names an importable module.
    """

    env = os.environ if environ is None else environ
    config_path = env.get(ENV_PREFIX + "CONFIG_PATH")
    if config_path:
        path = Path(config_path).expanduser()
        if path.is_file():
            return _module_from_file(path)
        LOGGER.warning("Config file %s does not exist; using defaults", path)
        return None

    module_name = env.get(ENV_PREFIX + "CONFIG_MODULE") or DEFAULT_CONFIG_MODULE
    try:
        return importlib.import_module(module_name)
    except ModuleNotFoundError:
        LOGGER.debug("No config module %s; using defaults and environment", module_name)
        return None


def take_config(config, name, required=False):
    if config is not None and hasattr(config, name):
        return getattr(config, name)
    if required:
        raise ValueError('Required option is not defined in the config.py file: {}'.format(name))
    return None


@dataclass
class LibrarySettings:
    cache_backend: str = "memory"
    mongo_uri: Optional[str] = None
    mongo_host: Union[str, List[str]] = field(default_factory=lambda: [DEFAULT_MONGO_HOST])
    mongo_database: str = DEFAULT_MONGO_DATABASE
    mongo_collection: str = DEFAULT_MONGO_COLLECTION
    redis_host: str = "127.0.0.1"
    redis_port: int = 6379
    redis_password: Optional[str] = None
    redis_db: int = 0
    redis_key: str = DEFAULT_REDIS_KEY
    cache_name: str = DEFAULT_CACHE_NAME
    songs_dir: Optional[Path] = None
    log_level: str = "INFO"


def load_settings(config=None, environ: Optional[Mapping[str, str]] = None) -> LibrarySettings:
    """Resolve settings from the environment, then the config module, then defaults."""

    if config is None:
        config = load_config_module(environ)
    env = os.environ if environ is None else environ
    settings = LibrarySettings()

    backend = env.get(ENV_PREFIX + "CACHE_BACKEND") or take_config(config, "CACHE_BACKEND")
    if backend:
        settings.cache_backend = str(backend).strip().lower()

    mongo_config = dict(take_config(config, "MONGO") or {})
    settings.mongo_uri = env.get(ENV_PREFIX + "MONGO_URI") or mongo_config.get("uri")
    mongo_host = env.get(ENV_PREFIX + "MONGO_HOST") or mongo_config.get("host")
    if mongo_host:
        settings.mongo_host = mongo_host
    settings.mongo_database = (
        env.get(ENV_PREFIX + "MONGO_DB") or mongo_config.get("database") or DEFAULT_MONGO_DATABASE
    )
    settings.mongo_collection = mongo_config.get("collection") or DEFAULT_MONGO_COLLECTION
    settings.cache_name = mongo_config.get("cache_name") or DEFAULT_CACHE_NAME

    redis_config = dict(take_config(config, "REDIS") or {})
    settings.redis_host = env.get(ENV_PREFIX + "REDIS_HOST") or redis_config.get("host") or settings.redis_host
    redis_port_env = env.get(ENV_PREFIX + "REDIS_PORT")
    if redis_port_env:
        settings.redis_port = int(redis_port_env)
    elif redis_config.get("port") is not None:
        settings.redis_port = int(redis_config["port"])
    redis_password_env = env.get(ENV_PREFIX + "REDIS_PASSWORD")
    if redis_password_env is not None:
        settings.redis_password = redis_password_env or None
    else:
        settings.redis_password = redis_config.get("password")
    redis_db_env = env.get(ENV_PREFIX + "REDIS_DB")
    if redis_db_env is not None:
        settings.redis_db = int(redis_db_env)
    elif redis_config.get("db") is not None:
        settings.redis_db = int(redis_config["db"])
    settings.redis_key = redis_config.get("key") or DEFAULT_REDIS_KEY

    songs_dir = env.get(ENV_PREFIX + "SONGS_DIR") or take_config(config, "SONGS_DIR")
    if songs_dir:
        settings.songs_dir = Path(songs_dir).expanduser().resolve()

    log_level = env.get(ENV_PREFIX + "LOG_LEVEL") or take_config(config, "LOG_LEVEL")
    if log_level:
        settings.log_level = str(log_level).strip().upper()
    return settings


def configure_logging(settings: LibrarySettings) -> None:
    level = logging.getLevelName(settings.log_level)
    if not isinstance(level, int):
        level = logging.INFO
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


def create_cache_store(settings: LibrarySettings):
    backend = (settings.cache_backend or "none").lower()
    if backend == "none":
        return None
    if backend == "memory":
        return MemoryLibraryCacheStore()
    if backend == "mongo":
        if settings.mongo_uri:
            client = MongoClient(settings.mongo_uri)
        else:
            client = MongoClient(host=settings.mongo_host)
        collection = client[settings.mongo_database][settings.mongo_collection]
        return MongoLibraryCacheStore(collection, settings.cache_name)
    if backend == "redis":
        client = Redis(
            host=settings.redis_host,
            port=settings.redis_port,
            password=settings.redis_password,
            db=settings.redis_db,
        )
        return RedisLibraryCacheStore(client, settings.redis_key)
    raise ValueError('Unknown cache backend: {} (expected one of {})'.format(backend, ", ".join(CACHE_BACKENDS)))


def create_library_scanner(settings: Optional[LibrarySettings] = None) -> LibraryScanner:
    if settings is None:
        settings = load_settings()
    return LibraryScanner(
        cache_store=create_cache_store(settings),
        extractor=OsuMetadataExtractor(),
        history=HistoryManager(),
    )
