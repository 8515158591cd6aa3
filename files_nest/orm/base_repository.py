from typing import Any
from typing import Generic
from typing import Iterable
from typing import List
from typing import Optional
from typing import Type
from typing import TypeVar

from sqlalchemy.ext.asyncio import AsyncSession


T = TypeVar("T")


class BaseRepository(Generic[T]):
    """Shared add/get/delete plumbing for the record stores.

    Repositories never commit; callers own the transaction (see ``transactional``).
    """

    def __init__(self, session: AsyncSession, model: Type[T]):
        self.session = session
        self.model = model

    async def get(self, id: Any, *, for_update: bool = False) -> Optional[T]:
        # Row locks are honoured on Postgres and ignored by SQLite.
        return await self.session.get(self.model, id, with_for_update=for_update or None)

    async def create(self, obj: T) -> T:
        self.session.add(obj)
        await self.session.flush()
        await self.session.refresh(obj)
        return obj

    async def create_many(self, objs: Iterable[T]) -> List[T]:
        items = list(objs)
        self.session.add_all(items)
        await self.session.flush()
        return items

    async def save(self, obj: T) -> T:
        await self.session.flush()
        await self.session.refresh(obj)
        return obj

    async def remove(self, obj: T) -> None:
        await self.session.delete(obj)
        await self.session.flush()
