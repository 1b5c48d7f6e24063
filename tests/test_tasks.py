import asyncio

from core.config import settings
from infrastructure.database import build_engine, create_tables
from infrastructure.tasks.tasks.affiliates import auto_approve_commissions, run_payout_batch
from infrastructure.tasks.tasks.conversions import report_refund_conversion
from infrastructure.tasks.utils.dispatcher import CeleryConversionNotifier, TaskDispatcher


def _prepare_database(tmp_path, monkeypatch) -> None:
    url = f"sqlite+aiosqlite:///{tmp_path / 'tasks.db'}"

    async def _create():
        engine = build_engine(url)
        await create_tables(engine)
        await engine.dispose()

    asyncio.run(_create())
    monkeypatch.setattr(settings.database, "url", url)


def test_notifier_enqueues_conversion_task(monkeypatch):
    sent = []
    monkeypatch.setattr(
        "infrastructure.tasks.utils.dispatcher.celery_app.send_task",
        lambda name, **kw: sent.append((name, kw)),
    )
    CeleryConversionNotifier(TaskDispatcher()).notify_refund_processed("r1", "o1", 2500)
    assert sent == [
        (
            "infrastructure.tasks.tasks.conversions.report_refund_conversion",
            {"kwargs": {"refund_id": "r1", "order_id": "o1", "amount": 2500}},
        )
    ]


def test_conversion_task_reports_negative_value():
    result = report_refund_conversion.apply(kwargs={"refund_id": "r1", "order_id": "o1", "amount": 2500}).get()
    assert result == {"refund_id": "r1", "order_id": "o1", "amount": -2500}


def test_payout_batch_task_uses_its_own_engine(tmp_path, monkeypatch):
    _prepare_database(tmp_path, monkeypatch)
    result = run_payout_batch.apply(kwargs={"dry_run": True, "batch_id": "BATCH-TASK"}).get()
    assert result["batch_id"] == "BATCH-TASK"
    assert result["dry_run"] is True
    assert result["success_count"] == 0
    assert "results" not in result


def test_auto_approve_task_with_nothing_due(tmp_path, monkeypatch):
    _prepare_database(tmp_path, monkeypatch)
    assert auto_approve_commissions.apply().get() == {"approved": 0}
