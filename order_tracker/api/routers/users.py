from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ... import schemas
from .. import models
from ..deps import get_session

router = APIRouter()


@router.get("", response_model=list[schemas.User])
async def list_users(session: AsyncSession = Depends(get_session)) -> list[schemas.User]:
    result = await session.execute(select(models.User).order_by(models.User.name.asc()).limit(10))
    return [schemas.User(id=row.id, name=row.name, role=row.role) for row in result.scalars().all()]
