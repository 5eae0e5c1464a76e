"""Unit tests for ContainerController.

The controller runs against FakeRuntimeClient/FakeNetwork, which log every
call in order, so the tests can check both outcomes and call ordering.
"""

import asyncio

import pytest

from devserver.core.exceptions import ImagePullError, RuntimeClientError, RuntimeNotFoundError
from devserver.services.container_controller import ContainerController
from devserver.services.lifecycle import ExitState
from devserver.tests.fakes import TEST_IMAGE, FakeRuntimeClient, frame

# Fixtures


@pytest.fixture
def make_controller(fake_runtime, fake_network, settings):
    def factory(friendly_name="api", type="service", **kwargs):
        controller = ContainerController(
            runtime=fake_runtime,
            network=fake_network,
            friendly_name=friendly_name,
            type=type,
            image=kwargs.pop("image", TEST_IMAGE),
            settings=kwargs.pop("settings", settings),
            **kwargs,
        )
        return controller

    return factory


@pytest.fixture
def controller(make_controller):
    return make_controller()


async def settle():
    """Let background tasks (watchers, restarts) run."""
    for _ in range(20):
        await asyncio.sleep(0)


# Test: identity and creation options


def test_resource_scenario(make_controller):
    controller = make_controller("worker-1", "resource")
    assert controller.identity.runtime_name == "noop-dev-resource-worker-1"


def test_router_options_include_ports(make_controller):
    router = make_controller("edge", "router")

    options = router.build_create_options()

    assert router.identity.runtime_name == "localapp"
    assert options.port_bindings == {"443/tcp": [{"HostPort": "4443"}]}
    assert options.exposed_ports == {"443/tcp": {}, "80/tcp": {}}


@pytest.mark.parametrize("type", ["resource", "service", "worker"])
def test_non_router_options_have_no_ports(make_controller, type):
    options = make_controller("x", type).build_create_options()
    assert options.port_bindings == {}
    assert options.exposed_ports == {}
    assert "HostConfig" not in options.to_payload()


def test_create_options_name_and_environment(make_controller):
    controller = make_controller(environment={"DEBUG": "1", "PORT": "8080"})

    options = controller.build_create_options()

    assert options.name == options.hostname == "noop-dev-service-api"
    assert options.image == TEST_IMAGE
    assert options.environment == ["DEBUG=1", "PORT=8080"]


def test_command_override(make_controller):
    options = make_controller(command=["sleep", "infinity"]).build_create_options()
    assert options.to_payload()["Cmd"] == ["sleep", "infinity"]


def test_environment_is_empty_by_default(controller):
    assert controller.get_environment() == {}
    assert "Env" not in controller.build_create_options().to_payload()
    assert "Cmd" not in controller.build_create_options().to_payload()


def test_subclass_overrides_environment_and_image(fake_runtime, fake_network, settings):
    class RedisController(ContainerController):
        def get_image(self):
            return "redis:7"

        def get_environment(self):
            return {"REDIS_ARGS": "--appendonly yes"}

    controller = RedisController(fake_runtime, fake_network, "cache", "resource", "unused", settings)

    options = controller.build_create_options()

    assert options.image == "redis:7"
    assert options.environment == ["REDIS_ARGS=--appendonly yes"]


# Test: start


@pytest.mark.asyncio
async def test_start_runs_steps_in_dependency_order(controller, fake_runtime):
    results = await controller.start()

    ops = fake_runtime.operations()
    assert ops.index("create_container") > ops.index("inspect_container")
    assert ops.index("create_container") > ops.index("inspect_image")
    assert ops.index("start_container") > ops.index("attach_network")
    assert ops.index("start_container") > ops.index("attach_output")
    assert controller.state.desired_running is True
    assert controller.state.container_handle == results["container"] == "cid-1"
    assert controller.state.exit_state is ExitState.WATCHING
    await controller.close()


@pytest.mark.asyncio
async def test_start_call_never_precedes_network_and_output(make_controller, fake_runtime):
    """Ordering holds across repeated cycles, not just the first one."""
    controller = make_controller()
    for _ in range(3):
        await controller.start()

    ops = fake_runtime.operations()
    starts = [i for i, op in enumerate(ops) if op == "start_container"]
    assert len(starts) == 3
    for start in starts:
        window = ops[:start]
        last_create = max(i for i, op in enumerate(window) if op == "create_container")
        assert "attach_network" in window[last_create:]
        assert "attach_output" in window[last_create:]
    await controller.close()


@pytest.mark.asyncio
async def test_start_logs_confirmation(controller, caplog):
    with caplog.at_level("INFO"):
        await controller.start()
    assert "Starting 'api' service container" in caplog.text
    await controller.close()


@pytest.mark.asyncio
async def test_remove_existing_skips_remove_when_not_found(controller, fake_runtime):
    results = await controller.start()

    assert results["remove_existing"] is False
    assert fake_runtime.count("remove_container") == 0
    await controller.close()


@pytest.mark.asyncio
async def test_remove_existing_removes_found_container_once(controller, fake_runtime):
    fake_runtime.containers.add("noop-dev-service-api")

    results = await controller.start()

    assert results["remove_existing"] is True
    ops = fake_runtime.operations()
    assert ops.count("remove_container") == 1
    assert ops.index("remove_container") < ops.index("create_container")
    await controller.close()


@pytest.mark.asyncio
async def test_remove_existing_propagates_other_inspect_errors(controller, fake_runtime):
    fake_runtime.failures["inspect_container"] = RuntimeClientError("daemon busy", status_code=500)

    with pytest.raises(RuntimeClientError, match="daemon busy"):
        await controller.start()

    assert fake_runtime.count("create_container") == 0


@pytest.mark.asyncio
async def test_missing_image_is_pulled_once_before_create(controller, fake_runtime, caplog):
    fake_runtime.images.clear()

    with caplog.at_level("INFO"):
        results = await controller.start()

    ops = fake_runtime.operations()
    assert ops.count("pull_image") == 1
    assert ops.index("pull_image") < ops.index("create_container")
    assert results["inspect_image"] is True
    assert f"Pulling container image '{TEST_IMAGE}'" in caplog.text
    assert f"Completed pull of container image '{TEST_IMAGE}'" in caplog.text
    await controller.close()


@pytest.mark.asyncio
async def test_present_image_is_not_pulled(controller, fake_runtime):
    await controller.start()
    assert fake_runtime.count("pull_image") == 0
    await controller.close()


@pytest.mark.asyncio
async def test_failed_pull_raises_image_pull_error(controller, fake_runtime, caplog):
    fake_runtime.images.clear()
    fake_runtime.pull_error = "manifest unknown"

    with pytest.raises(ImagePullError) as exc_info:
        await controller.start()

    assert exc_info.value.image == TEST_IMAGE
    assert not isinstance(exc_info.value, RuntimeClientError)
    assert fake_runtime.count("create_container") == 0
    assert f"Error pulling container image {TEST_IMAGE}" in caplog.text


@pytest.mark.asyncio
async def test_resource_kind_skips_output_attachment(make_controller, fake_runtime):
    controller = make_controller("worker-1", "resource")

    await controller.start()

    assert fake_runtime.count("attach_output") == 0
    assert fake_runtime.count("start_container") == 1
    await controller.close()


@pytest.mark.asyncio
async def test_output_is_streamed_with_label(make_controller, fake_runtime, caplog):
    fake_runtime.output = [frame("server ready\n"), frame("  \n")]
    controller = make_controller()

    with caplog.at_level("INFO", logger="devserver.output"):
        await controller.start()
        await settle()

    output = [r.getMessage() for r in caplog.records if r.name == "devserver.output"]
    assert output == [" api              server ready"]
    await controller.close()


@pytest.mark.asyncio
async def test_failed_step_leaves_partial_state(controller, fake_runtime):
    fake_runtime.failures["start_container"] = RuntimeClientError("cannot start")

    with pytest.raises(RuntimeClientError, match="cannot start"):
        await controller.start()

    # Created container is left for the next remove_existing pass
    assert "noop-dev-service-api" in fake_runtime.containers
    assert fake_runtime.count("wait_container") == 0

    fake_runtime.failures.clear()
    await controller.start()
    assert fake_runtime.count("remove_container") == 1
    await controller.close()


@pytest.mark.asyncio
async def test_concurrent_starts_are_serialized(controller, fake_runtime):
    await asyncio.gather(controller.start(), controller.start())

    ops = fake_runtime.operations()
    assert ops.count("start_container") == 2
    first_watch = ops.index("wait_container")
    second_create = [i for i, op in enumerate(ops) if op == "create_container"][1]
    assert first_watch < second_create
    await controller.close()


@pytest.mark.asyncio
async def test_start_and_watch_receive_container_handle(controller, fake_runtime):
    await controller.start()
    await settle()

    assert ("start_container", "cid-1") in fake_runtime.calls
    assert ("wait_container", "cid-1") in fake_runtime.calls
    assert fake_runtime.count("start_container") == 1
    await controller.close()


@pytest.mark.asyncio
async def test_refused_pull_request_raises_image_pull_error(controller, fake_runtime, caplog):
    """The daemon rejecting the pull before any progress event is still a pull failure."""
    fake_runtime.images.clear()
    fake_runtime.failures["pull_image"] = RuntimeNotFoundError(
        "pull access denied for example/app", resource=TEST_IMAGE
    )

    with pytest.raises(ImagePullError) as exc_info:
        await controller.start()

    assert exc_info.value.image == TEST_IMAGE
    assert isinstance(exc_info.value.cause, RuntimeNotFoundError)
    assert fake_runtime.count("create_container") == 0
    assert f"Error pulling container image {TEST_IMAGE}" in caplog.text


@pytest.mark.asyncio
async def test_new_cycle_replaces_previous_output_and_watch(controller, fake_runtime, monkeypatch):
    async def endless_output():
        await asyncio.Event().wait()
        yield b""

    monkeypatch.setattr(fake_runtime, "_stream", endless_output)

    await controller.start()
    await settle()
    first_output = controller._output_task
    first_watcher = controller._watcher

    await controller.start()

    assert first_output.cancelled()
    assert not first_watcher.is_watching
    assert controller._output_task is not first_output
    assert not controller._output_task.done()
    assert controller._watcher is not first_watcher
    await controller.close()


# Test: stop


@pytest.mark.asyncio
async def test_stop_removes_container_and_logs(controller, fake_runtime, caplog):
    await controller.start()

    with caplog.at_level("INFO"):
        await controller.stop()

    assert controller.state.desired_running is False
    assert "noop-dev-service-api" not in fake_runtime.containers
    assert "Stopped service 'api' container" in caplog.text
    await controller.close()


@pytest.mark.asyncio
async def test_stop_propagates_removal_failure(controller):
    with pytest.raises(RuntimeNotFoundError):
        await controller.stop()
    assert controller.state.desired_running is False


@pytest.mark.asyncio
async def test_exit_after_stop_never_restarts(controller, fake_runtime):
    await controller.start()

    await controller.stop()
    await settle()

    assert controller.state.restart_attempts == 0
    assert fake_runtime.count("start_container") == 1
    await controller.close()


@pytest.mark.asyncio
async def test_stop_during_start_waits_for_start_to_settle(controller, fake_runtime):
    """A stop issued mid-start does not abort the start; removal happens after it."""
    start = asyncio.create_task(controller.start())
    await asyncio.sleep(0)

    await controller.stop()
    await start

    ops = fake_runtime.operations()
    assert ops.index("start_container") < ops.index("remove_container")
    assert controller.state.desired_running is False
    await settle()
    assert controller.state.restart_attempts == 0
    await controller.close()


# Test: exits and restarts


@pytest.mark.asyncio
async def test_unexpected_exit_restarts(controller, fake_runtime, caplog):
    caplog.set_level("INFO")
    await controller.start()

    fake_runtime.crash("cid-1", status_code=2)
    await settle()
    await controller.wait_for_restarts()

    assert controller.state.restart_attempts == 1
    assert controller.state.last_exit_code == 2
    assert fake_runtime.count("start_container") == 2
    assert controller.state.container_handle == "cid-2"
    assert "Service container 'api' exited with status code 2" in caplog.text
    assert "Restarting service 'api' container attempt #1" in caplog.text
    await controller.close()


@pytest.mark.asyncio
async def test_handle_exit_while_desired_calls_restart_once(controller, monkeypatch):
    controller.state.desired_running = True
    calls = []
    monkeypatch.setattr(controller, "restart", lambda: calls.append(1) or True)

    state = await controller.handle_exit(1)

    assert calls == [1]
    assert state is ExitState.EXITED_UNEXPECTED_RESTART


@pytest.mark.asyncio
@pytest.mark.parametrize("attempts", [0, 10, 25])
async def test_handle_exit_after_stop_never_restarts(controller, monkeypatch, attempts):
    controller.state.desired_running = False
    controller.state.restart_attempts = attempts
    calls = []
    monkeypatch.setattr(controller, "restart", lambda: calls.append(1) or True)

    state = await controller.handle_exit(0)

    assert calls == []
    assert state is ExitState.EXITED_EXPECTED


@pytest.mark.asyncio
async def test_handle_exit_at_ceiling_gives_up(controller, fake_runtime):
    controller.state.desired_running = True
    controller.state.restart_attempts = 10

    state = await controller.handle_exit(1)

    assert state is ExitState.EXITED_UNEXPECTED_GIVEUP
    assert controller.state.restart_attempts == 11
    await settle()
    assert fake_runtime.count("start_container") == 0


@pytest.mark.asyncio
async def test_restart_ceiling(controller, fake_runtime, caplog):
    controller.state.desired_running = True

    scheduled = [controller.restart() for _ in range(11)]
    await controller.wait_for_restarts()

    assert scheduled == [True] * 10 + [False]
    assert controller.state.restart_attempts == 11
    assert fake_runtime.count("start_container") <= 10
    assert "Giving up on service 'api' container after 10 restart attempts" in caplog.text
    await controller.close()


@pytest.mark.asyncio
async def test_restart_attempts_never_reset(controller, fake_runtime):
    """Attempts accumulate across crashes and successful restarts."""
    await controller.start()

    for n in range(1, 4):
        fake_runtime.crash(f"cid-{n}")
        await settle()
        await controller.wait_for_restarts()

    assert controller.state.restart_attempts == 3
    await controller.start()
    assert controller.state.restart_attempts == 3
    await controller.close()


@pytest.mark.asyncio
async def test_crash_loop_stops_after_ten_restarts(controller, fake_runtime):
    await controller.start()

    for n in range(1, 13):
        fake_runtime.crash(f"cid-{n}")
        await settle()
        await controller.wait_for_restarts()

    assert fake_runtime.count("start_container") == 11
    assert controller.state.restart_attempts == 11
    assert controller.state.exit_state is ExitState.EXITED_UNEXPECTED_GIVEUP
    await controller.close()


@pytest.mark.asyncio
async def test_restart_failure_is_logged_not_raised(controller, fake_runtime, caplog):
    controller.state.desired_running = True
    fake_runtime.failures["create_container"] = RuntimeClientError("no space left")

    assert controller.restart() is True
    await controller.wait_for_restarts()

    assert "Unable to restart service 'api' container" in caplog.text


@pytest.mark.asyncio
async def test_restart_skipped_when_stopped_meanwhile(controller, fake_runtime):
    await controller.start()
    assert controller.restart() is True

    # stop() runs before the scheduled restart gets the loop
    await controller.stop()
    await settle()
    await controller.wait_for_restarts()

    assert fake_runtime.count("start_container") == 1
    await controller.close()


# Test: status snapshot


@pytest.mark.asyncio
async def test_status_snapshot(controller):
    await controller.start()

    status = controller.status()

    assert status["name"] == "noop-dev-service-api"
    assert status["desired_running"] is True
    assert status["restart_attempts"] == 0
    assert status["exit_state"] == "watching"
    assert status["container_id"] == "cid-1"
    await controller.close()


def test_controller_uses_process_settings_by_default(fake_runtime, fake_network, monkeypatch):
    monkeypatch.setenv("DEVSERVER_NAMESPACE", "team")

    controller = ContainerController(fake_runtime, fake_network, "api", "service", TEST_IMAGE)

    assert controller.identity.runtime_name == "noop-team-service-api"


def test_fake_runtime_starts_empty():
    assert FakeRuntimeClient().operations() == []
