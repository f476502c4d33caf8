"""Model integration tests using an in-memory SQLite database.

Covers the ownership cascade, uniqueness rules and sector seeding.
"""

import pytest
from sqlalchemy import func, select, text
from sqlalchemy.exc import IntegrityError

from flowbundle.db.models import File, Flow, Sector, Version
from flowbundle.db.seed import DEFAULT_SECTORS, seed_sectors
from flowbundle.db.session import build_engine


def _file(version: Version, path: str, position: int = 0) -> File:
    return File(
        version_id=version.id,
        original_path=path,
        position=position,
        storage_path=f"fluxos-arquivos/fluxos/TI-001/{path}",
        kind="page",
        mime_type="text/html",
    )


class TestSeedSectors:
    async def test_default_sectors_present(self, db_session) -> None:
        codes = (await db_session.execute(select(Sector.code))).scalars().all()
        assert sorted(codes) == sorted(code for code, _, _ in DEFAULT_SECTORS)

    async def test_seeding_twice_adds_nothing(self, db_session) -> None:
        assert await seed_sectors(db_session) == 0


class TestConstraints:
    async def test_version_numbers_unique_per_flow(self, db_session, version) -> None:
        db_session.add(Version(flow_id=version.flow_id, number=1))
        with pytest.raises(IntegrityError):
            await db_session.flush()

    async def test_one_file_per_path_in_a_version(self, db_session, version) -> None:
        db_session.add(_file(version, "index.html"))
        await db_session.flush()
        db_session.add(_file(version, "index.html", position=1))
        with pytest.raises(IntegrityError):
            await db_session.flush()

    async def test_flow_codes_are_unique(self, db_session, version) -> None:
        db_session.add(Flow(title="Dup", code="TI-001"))
        with pytest.raises(IntegrityError):
            await db_session.flush()


class TestCascade:
    async def test_deleting_flow_removes_versions_and_files(self, db_session, version) -> None:
        db_session.add_all([_file(version, "index.html"), _file(version, "a.css", 1)])
        await db_session.flush()

        flow = await db_session.get(Flow, version.flow_id)
        await db_session.delete(flow)
        await db_session.flush()

        assert (await db_session.execute(select(func.count(Version.id)))).scalar_one() == 0
        assert (await db_session.execute(select(func.count(File.id)))).scalar_one() == 0


async def test_sqlite_engine_enforces_foreign_keys() -> None:
    engine = build_engine("sqlite+aiosqlite:///:memory:")
    try:
        async with engine.connect() as conn:
            result = await conn.execute(text("PRAGMA foreign_keys"))
            assert result.scalar_one() == 1
    finally:
        await engine.dispose()
