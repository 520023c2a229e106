from bursary.core.database.session import async_session, engine, get_db
from bursary.core.database.base import Base, BaseModel, BigIntPK
from bursary.core.database.unit_of_work import UnitOfWork

__all__ = ["async_session", "engine", "get_db", "Base", "BaseModel", "BigIntPK", "UnitOfWork"]
