"""
Tests for the operator commands.
"""
from datetime import timedelta

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker

from templegiving.helpers import utcnow
from templegiving.manage import (
    cmd_create_admin, cmd_cleanup, cmd_reset_email_settings, main,
)
from templegiving.model.orm import Admin, Base, Donation, EmailSetting


@pytest.fixture
def db_url(tmp_path):
    return f"sqlite+aiosqlite:///{tmp_path}/manage.db"


async def fetch_all(db_url, model):
    engine = create_async_engine(db_url)
    try:
        async with async_sessionmaker(engine)() as db:
            return (await db.execute(select(model))).scalars().all()
    finally:
        await engine.dispose()


class TestManage:

    @pytest.mark.asyncio
    async def test_create_admin(self, db_url):
        assert await cmd_create_admin(db_url, "Trustee@Example.com",
                                      name="Trustee") == 0
        admins = await fetch_all(db_url, Admin)
        assert [a.email for a in admins] == ["trustee@example.com"]
        # second time is a duplicate
        assert await cmd_create_admin(db_url, "trustee@example.com") == 1

    @pytest.mark.asyncio
    async def test_reset_email_settings(self, db_url):
        assert await cmd_reset_email_settings(db_url) == 0
        rows = await fetch_all(db_url, EmailSetting)
        assert {r.setting_key for r in rows} >= {"smtp_host", "smtp_port"}

    @pytest.mark.asyncio
    async def test_cleanup(self, db_url, capsys):
        engine = create_async_engine(db_url)
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        stamp = utcnow() - timedelta(hours=3)
        async with async_sessionmaker(engine)() as db:
            db.add(Donation(amount=10.0, payment_status="pending",
                            created_at=stamp, updated_at=stamp))
            await db.commit()
        await engine.dispose()

        assert await cmd_cleanup(db_url, 3600) == 0
        assert capsys.readouterr().out.strip() == "1"
        rows = await fetch_all(db_url, Donation)
        assert rows[0].payment_status == "failed"

    def test_requires_database_url(self):
        assert main(["--database-url", "", "cleanup"]) == 1
