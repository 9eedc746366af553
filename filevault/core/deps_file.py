from fastapi import Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from filevault.database import get_async_session
from filevault.core.deps import get_current_claims
from filevault.core.security import Claims
from filevault.models.file import File
from filevault.repositories.files import FileRepository


async def get_file_or_404(
        file_id: str,
        session: AsyncSession = Depends(get_async_session),
        claims: Claims = Depends(get_current_claims),
) -> File:
    # other owners' files are reported as missing, not forbidden
    db_file = await FileRepository(session).get(file_id, claims.user_id)

    if not db_file:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="File not found")

    return db_file
