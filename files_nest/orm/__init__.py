from files_nest.orm.base_repository import BaseRepository
from files_nest.orm.schema import create_schema
from files_nest.orm.session import create_engine
from files_nest.orm.session import create_session_factory
from files_nest.orm.session import get_session_factory
from files_nest.orm.session import initialize_engine
from files_nest.orm.transaction import transactional


__all__ = [
    "create_engine",
    "create_schema",
    "create_session_factory",
    "get_session_factory",
    "initialize_engine",
    "BaseRepository",
    "transactional",
]
