from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from filevault.models.file import File

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100
# keeps (page - 1) * page_size inside a signed 64-bit OFFSET
MAX_PAGE = (2**63 - 1) // MAX_PAGE_SIZE

# literal columns for each accepted sort key; anything else sorts by name
SORT_COLUMNS = {
    "name": File.original_name,
    "size": File.size_bytes,
    "date": File.created_at,
}


class FileConflictError(Exception):
    pass


def clamp_page(page: int | None) -> int:
    if page is None:
        return 1
    return min(max(page, 1), MAX_PAGE)


def clamp_page_size(page_size: int | None) -> int:
    if page_size is None:
        return DEFAULT_PAGE_SIZE
    return min(max(page_size, 1), MAX_PAGE_SIZE)


class FileRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    def _owned(self, owner_id: str, search: str | None = None):
        query = select(File).where(File.user_id == owner_id)
        if search:
            query = query.where(File.original_name.contains(search, autoescape=True))
        return query

    async def create(self, db_file: File) -> File:
        self.session.add(db_file)
        try:
            await self.session.commit()
        except IntegrityError as e:
            await self.session.rollback()
            raise FileConflictError(db_file.id) from e
        return db_file

    async def list(
        self,
        owner_id: str,
        search: str | None = None,
        sort: str | None = None,
        direction: str | None = None,
        page: int | None = 1,
        page_size: int | None = DEFAULT_PAGE_SIZE,
    ) -> list[File]:
        page = clamp_page(page)
        page_size = clamp_page_size(page_size)

        column = SORT_COLUMNS.get(sort or "name", File.original_name)
        if direction == "desc":
            order = (column.desc(), File.id.desc())
        else:
            order = (column.asc(), File.id.asc())

        query = (
            self._owned(owner_id, search)
            .order_by(*order)
            .limit(page_size)
            .offset((page - 1) * page_size)
        )
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def count(self, owner_id: str, search: str | None = None) -> int:
        query = select(func.count()).select_from(self._owned(owner_id, search).subquery())
        result = await self.session.execute(query)
        return result.scalar_one()

    async def aggregate(self, owner_id: str) -> tuple[int, int]:
        """Return ``(file_count, total_bytes)`` for one owner."""
        query = select(
            func.count(File.id),
            func.coalesce(func.sum(File.size_bytes), 0),
        ).where(File.user_id == owner_id)
        result = await self.session.execute(query)
        count, total = result.one()
        return int(count), int(total)

    async def get(self, file_id: str, owner_id: str) -> File | None:
        result = await self.session.execute(
            select(File).where(File.id == file_id, File.user_id == owner_id)
        )
        return result.scalar_one_or_none()

    async def delete(self, file_id: str, owner_id: str) -> bool:
        result = await self.session.execute(
            delete(File).where(File.id == file_id, File.user_id == owner_id)
        )
        await self.session.commit()
        return result.rowcount > 0
