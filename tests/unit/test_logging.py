"""Unit tests for task-id log correlation."""

import asyncio
import logging

import pytest

from utils.logging import (
    add_task_id,
    clear_task_context,
    current_task_id,
    set_task_context,
    setup_logging,
)


@pytest.mark.unit
def test_processor_adds_task_id_when_set():
    token = set_task_context("c-1234")
    try:
        assert add_task_id(None, "info", {"event": "x"}) == {"event": "x", "task_id": "c-1234"}
    finally:
        clear_task_context(token)

    assert add_task_id(None, "info", {"event": "x"}) == {"event": "x"}


@pytest.mark.unit
def test_clear_restores_previous_task():
    outer = set_task_context("export")
    inner = set_task_context("f-0")

    clear_task_context(inner)
    assert current_task_id.get() == "export"

    clear_task_context(outer)
    assert current_task_id.get() is None


@pytest.mark.unit
@pytest.mark.asyncio
async def test_concurrent_tasks_keep_their_own_id():
    async def work(task_id):
        token = set_task_context(task_id)
        try:
            await asyncio.sleep(0)
            return current_task_id.get()
        finally:
            clear_task_context(token)

    assert await asyncio.gather(work("c-a"), work("e-b")) == ["c-a", "e-b"]


@pytest.mark.unit
def test_setup_logging_sets_level_and_quiets_http():
    setup_logging("debug")

    assert logging.getLogger().level == logging.DEBUG
    assert logging.getLogger("httpx").level == logging.WARNING

    setup_logging("not-a-level")
    assert logging.getLogger().level == logging.INFO
