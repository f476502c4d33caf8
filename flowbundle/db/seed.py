"""Default sector rows inserted at startup."""

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from flowbundle.db.models import Sector

logger = logging.getLogger(__name__)

# (code, name, description)
DEFAULT_SECTORS: list[tuple[str, str, str]] = [
    ("TI", "Tecnologia da Informação", "Departamento de TI"),
    ("RH", "Recursos Humanos", "Departamento de RH"),
    ("FIN", "Financeiro", "Departamento Financeiro"),
    ("ADM", "Administrativo", "Departamento Administrativo"),
    ("COM", "Comercial", "Departamento Comercial"),
    ("OPS", "Operacional", "Departamento Operacional"),
]


async def seed_sectors(session: AsyncSession) -> int:
    """Insert any default sector whose code is missing. Returns the count added."""
    result = await session.execute(select(Sector.code))
    existing = set(result.scalars().all())

    added = 0
    for code, name, description in DEFAULT_SECTORS:
        if code in existing:
            continue
        session.add(Sector(code=code, name=name, description=description))
        logger.info("Created sector %s (%s)", name, code)
        added += 1

    await session.flush()
    return added
