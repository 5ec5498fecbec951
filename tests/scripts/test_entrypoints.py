from __future__ import annotations

from types import SimpleNamespace

from memory_graph.domain.exceptions import DataAccessError


def _settings() -> SimpleNamespace:
    return SimpleNamespace(
        log_level="INFO",
        metrics_enabled=False,
        metrics_port=9000,
        full_sweep_hour_utc=4,
        incremental_sweep_interval_hours=6,
    )


def test_run_collision_scheduler_once(mocker) -> None:
    module = __import__("scripts.run_collision_scheduler", fromlist=["main"])

    mocker.patch.object(
        module,
        "parse_args",
        return_value=SimpleNamespace(run_once="full", json_logs=False),
    )
    mocker.patch.object(module, "get_settings", return_value=_settings())
    repository = mocker.Mock()
    mocker.patch.object(module, "create_repository", return_value=repository)
    scheduler = mocker.Mock()
    scheduler.run_full_sweep.return_value = SimpleNamespace(pairs_failed=0)
    mocker.patch.object(module, "build_scheduler", return_value=scheduler)
    mocker.patch.object(module.pipeline_runtime, "initialize_logging")
    run_jobs = mocker.patch.object(module.pipeline_runtime, "run_scheduled_jobs")

    exit_code = module.main([])

    assert exit_code == 0
    scheduler.run_full_sweep.assert_called_once_with()
    run_jobs.assert_not_called()
    repository.close.assert_called_once()


def test_run_collision_scheduler_once_reports_failed_pairs(mocker) -> None:
    module = __import__("scripts.run_collision_scheduler", fromlist=["main"])

    mocker.patch.object(
        module,
        "parse_args",
        return_value=SimpleNamespace(run_once="incremental", json_logs=True),
    )
    mocker.patch.object(module, "get_settings", return_value=_settings())
    mocker.patch.object(module, "create_repository", return_value=mocker.Mock())
    scheduler = mocker.Mock()
    scheduler.run_incremental_sweep.return_value = SimpleNamespace(pairs_failed=2)
    mocker.patch.object(module, "build_scheduler", return_value=scheduler)
    mocker.patch.object(module.pipeline_runtime, "initialize_logging")

    assert module.main([]) == 1


def test_run_collision_scheduler_loop(mocker) -> None:
    module = __import__("scripts.run_collision_scheduler", fromlist=["main"])

    mocker.patch.object(
        module,
        "parse_args",
        return_value=SimpleNamespace(run_once=None, json_logs=False),
    )
    settings = _settings()
    mocker.patch.object(module, "get_settings", return_value=settings)
    repository = mocker.Mock()
    mocker.patch.object(module, "create_repository", return_value=repository)
    mocker.patch.object(module.pipeline_runtime, "initialize_logging")
    controller = mocker.Mock()
    mocker.patch.object(
        module.pipeline_runtime,
        "create_shutdown_controller",
        return_value=controller,
    )
    install = mocker.patch.object(module.pipeline_runtime, "install_signal_handlers")
    run_jobs = mocker.patch.object(module.pipeline_runtime, "run_scheduled_jobs")

    exit_code = module.main([])

    assert exit_code == 0
    install.assert_called_once_with(controller)
    run_jobs.assert_called_once()
    jobs, passed_controller = run_jobs.call_args.args
    assert passed_controller is controller
    assert [job.name for job in jobs] == ["full_sweep", "incremental_sweep"]
    repository.close.assert_called_once()


def test_detect_for_user(mocker) -> None:
    module = __import__("scripts.detect_for_user", fromlist=["main"])

    mocker.patch.object(
        module,
        "parse_args",
        return_value=SimpleNamespace(user_id="alice", json_logs=False),
    )
    mocker.patch.object(module, "get_settings", return_value=_settings())
    repository = mocker.Mock()
    mocker.patch.object(module, "create_repository", return_value=repository)
    scheduler = mocker.Mock()
    scheduler.detect_for_user.return_value = 3
    mocker.patch.object(module, "CollisionSweepScheduler", return_value=scheduler)
    mocker.patch.object(module.pipeline_runtime, "initialize_logging")

    assert module.main([]) == 0
    scheduler.detect_for_user.assert_called_once_with("alice")
    repository.close.assert_called_once()


def test_detect_for_user_failure(mocker) -> None:
    module = __import__("scripts.detect_for_user", fromlist=["main"])

    mocker.patch.object(
        module,
        "parse_args",
        return_value=SimpleNamespace(user_id="alice", json_logs=False),
    )
    mocker.patch.object(module, "get_settings", return_value=_settings())
    repository = mocker.Mock()
    mocker.patch.object(module, "create_repository", return_value=repository)
    scheduler = mocker.Mock()
    scheduler.detect_for_user.side_effect = DataAccessError("db down")
    mocker.patch.object(module, "CollisionSweepScheduler", return_value=scheduler)
    mocker.patch.object(module.pipeline_runtime, "initialize_logging")

    assert module.main([]) == 1
    repository.close.assert_called_once()
