"""Focused tests for startup migration runner and probes."""

from __future__ import annotations

import httpx
import pytest
from unittest.mock import patch

from app.main import app, run_merge_suggestion_migration


def test_run_merge_suggestion_migration_is_fatal_on_error():
    with patch(
        "app.db_migrations.merge_suggestion_migration.migrate_merge_suggestions",
        side_effect=RuntimeError("migration failed"),
    ):
        with pytest.raises(RuntimeError, match="migration failed"):
            run_merge_suggestion_migration()


@pytest.mark.asyncio
async def test_liveness_probe():
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        resp = await client.get("/livez")

    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}
