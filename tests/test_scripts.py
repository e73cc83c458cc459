"""Tests for the operational entry points."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from sphere_delivery.scripts import run_worker


@pytest.fixture
def fake_coordinator(mocker) -> MagicMock:
    coordinator = MagicMock()
    coordinator.recover = AsyncMock(return_value=2)
    coordinator.run_once = AsyncMock(return_value=5)
    coordinator.dispatcher.close = AsyncMock()
    coordinator.durability_alarms = 0
    mocker.patch.object(run_worker, "build_coordinator", return_value=coordinator)
    return coordinator


def test_run_once_recovers_then_delivers(fake_coordinator: MagicMock, capsys) -> None:
    assert run_worker.main(["--once"]) == 0

    fake_coordinator.recover.assert_awaited_once()
    fake_coordinator.run_once.assert_awaited_once()
    fake_coordinator.dispatcher.close.assert_awaited_once()
    assert "processed 5 deliveries" in capsys.readouterr().out


def test_recover_only(fake_coordinator: MagicMock, capsys) -> None:
    assert run_worker.main(["--recover"]) == 0

    fake_coordinator.run_once.assert_not_awaited()
    assert "released 2 stale claim(s)" in capsys.readouterr().out


def test_durability_alarm_sets_exit_code(fake_coordinator: MagicMock) -> None:
    fake_coordinator.durability_alarms = 1
    assert run_worker.main(["--once"]) == 1


def test_modes_are_exclusive() -> None:
    with pytest.raises(SystemExit):
        run_worker.main(["--once", "--recover"])
