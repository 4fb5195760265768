from typing import Optional

from pakete.core.config import IndexerConfig
from pakete.storage.db_manager import DatabaseManager
from pakete.storage.sqlite_db_manager import SqliteDatabaseManager

_config: Optional[IndexerConfig] = None
_db_manager: Optional[DatabaseManager] = None


def configure(config: IndexerConfig) -> None:
    """Install the configuration built at process entry."""
    global _config, _db_manager
    _config = config
    if _db_manager is not None:
        _db_manager.close()
        _db_manager = None


def get_config() -> IndexerConfig:
    global _config
    if _config is None:
        _config = IndexerConfig.load()
    return _config


def get_db_manager() -> DatabaseManager:
    global _db_manager
    if _db_manager is None:
        _db_manager = SqliteDatabaseManager(get_config().database_path)
        _db_manager.initialize()
    return _db_manager


def shutdown() -> None:
    global _db_manager
    if _db_manager is not None:
        _db_manager.close()
        _db_manager = None
