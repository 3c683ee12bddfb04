"""Unit tests for the batch queue facade and dispatchers."""

from types import SimpleNamespace
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
from celery.signals import task_failure, task_success

from catalog_sync.services.batch_worker import BatchOutcome, BatchPayload
from catalog_sync.services.queue import CeleryDispatcher, InlineDispatcher, SyncQueue
from shared.constants import PROCESS_BATCH_TASK, RUN_PRODUCT_SYNC_TASK


@pytest.fixture
def payload() -> BatchPayload:
    return BatchPayload(
        run_id="run-1",
        store_id="shop",
        batch_id="run-1-00001",
        item_ids=["1", "2"],
        credentials={"shop_domain": "shop", "access_token": "t"},
    )


@pytest.fixture
def celery_app() -> MagicMock:
    app = MagicMock()
    app.send_task.return_value = SimpleNamespace(id="task-123")
    return app


def test_enqueue_sends_batch_task(celery_app: MagicMock, payload: BatchPayload) -> None:
    task_id = SyncQueue(celery_app).enqueue(payload)

    assert task_id == "task-123"
    celery_app.send_task.assert_called_once_with(
        PROCESS_BATCH_TASK, kwargs={"payload": payload.model_dump(mode="json")}, queue="sync"
    )


def test_enqueue_run(celery_app: MagicMock) -> None:
    ticket = {"run_id": "run-1"}
    credentials = {"shop_domain": "shop", "access_token": "t"}

    assert SyncQueue(celery_app, queue_name="bulk").enqueue_run(ticket, credentials) == "task-123"
    celery_app.send_task.assert_called_once_with(
        RUN_PRODUCT_SYNC_TASK, kwargs={"ticket": ticket, "credentials": credentials}, queue="bulk"
    )


def test_broker_stats_survive_inspection_failure(celery_app: MagicMock) -> None:
    celery_app.connection_for_read.side_effect = ConnectionError("no broker")
    inspect = celery_app.control.inspect.return_value
    inspect.active.return_value = None
    inspect.reserved.return_value = None

    assert SyncQueue(celery_app).broker_stats() == {"waiting": 0, "active": 0}


def test_broker_stats_survive_unreachable_workers(celery_app: MagicMock) -> None:
    channel = celery_app.connection_for_read.return_value.__enter__.return_value.default_channel
    channel.queue_declare.return_value = SimpleNamespace(message_count=4)
    inspect = celery_app.control.inspect.return_value
    inspect.active.side_effect = ConnectionError("broker went away")
    inspect.reserved.side_effect = ConnectionError("broker went away")

    assert SyncQueue(celery_app).broker_stats() == {"waiting": 4, "active": 0}


def test_clear_purges_only_its_queue(celery_app: MagicMock) -> None:
    channel = celery_app.connection_for_write.return_value.__enter__.return_value.default_channel
    channel.queue_purge.return_value = 3

    assert SyncQueue(celery_app).clear() == 3
    channel.queue_purge.assert_called_once_with("sync")
    celery_app.control.purge.assert_not_called()


async def test_inline_dispatcher_runs_worker(payload: BatchPayload) -> None:
    worker = MagicMock()
    worker.run = AsyncMock(return_value=BatchOutcome(batch_id=payload.batch_id))

    assert await InlineDispatcher(worker).dispatch(payload) is None
    worker.run.assert_awaited_once_with(payload)


async def test_celery_dispatcher_returns_task_id(celery_app: MagicMock, payload: BatchPayload) -> None:
    dispatcher = CeleryDispatcher(SyncQueue(celery_app))

    assert dispatcher.dispatch_mode == "queue"
    assert await dispatcher.dispatch(payload) == "task-123"


class TestCallbacks:
    @staticmethod
    def _sender(name: str, kwargs: dict[str, Any]) -> Any:
        return SimpleNamespace(name=name, request=SimpleNamespace(kwargs=kwargs))

    def test_on_completed_filters_batch_tasks(self, celery_app: MagicMock) -> None:
        seen: list[tuple[dict, Any]] = []
        SyncQueue(celery_app).on_completed(lambda p, r: seen.append((p, r)))

        task_success.send(
            sender=self._sender(PROCESS_BATCH_TASK, {"payload": {"batch_id": "b1"}}),
            result={"processed": 2},
        )
        task_success.send(sender=self._sender("other.task", {}), result=None)

        assert seen == [({"batch_id": "b1"}, {"processed": 2})]

    def test_on_failed_receives_exception(self, celery_app: MagicMock) -> None:
        seen: list[tuple[dict, BaseException]] = []
        SyncQueue(celery_app).on_failed(lambda p, e: seen.append((p, e)))
        error = RuntimeError("boom")

        task_failure.send(
            sender=self._sender(PROCESS_BATCH_TASK, {}),
            task_id="t1",
            exception=error,
            args=(),
            kwargs={"payload": {"batch_id": "b2"}},
            traceback=None,
            einfo=None,
        )

        assert seen == [({"batch_id": "b2"}, error)]
