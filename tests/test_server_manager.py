from helpers import make_manager


def test_concurrent_requests_share_one_process(tmp_path):
    manager, factory = make_manager(tmp_path)
    first = manager.request_server("http://hugolive.localhost")
    second = manager.request_server("http://hugolive.localhost")
    assert first is second
    assert len(factory.processes) == 1
    assert factory.last.started == 1

    server = factory.last.become_ready()
    assert first.is_finished()
    assert first.server is server
    assert first.error is None
    assert manager.request_server("http://hugolive.localhost") is first


def test_origins_get_separate_processes(tmp_path):
    manager, factory = make_manager(tmp_path)
    manager.request_server("http://one.localhost")
    manager.request_server("http://two.localhost")
    assert [p.embedder_origin for p in factory.processes] == ["http://one.localhost", "http://two.localhost"]


def test_failed_start_is_not_reused(tmp_path):
    manager, factory = make_manager(tmp_path)
    request = manager.request_server("http://hugolive.localhost")
    settled = []
    request.finished.connect(lambda: settled.append(request.error))
    factory.last.fail()
    assert settled == ["Failed to launch 'hugo': No such file or directory"]
    assert request.server is None

    retry = manager.request_server("http://hugolive.localhost")
    assert retry is not request
    assert len(factory.processes) == 2


def test_terminated_server_is_replaced(tmp_path):
    manager, factory = make_manager(tmp_path)
    request = manager.request_server("http://hugolive.localhost")
    server = factory.last.become_ready()
    factory.last.terminate(server)
    assert manager.request_server("http://hugolive.localhost") is not request
    assert len(factory.processes) == 2


def test_output_is_relayed(tmp_path):
    manager, factory = make_manager(tmp_path)
    seen = []
    manager.output.connect(seen.append)
    manager.request_server("http://hugolive.localhost")
    factory.last.output.emit("Built in 5 ms\n")
    assert seen == ["Built in 5 ms\n"]


def test_shutdown_stops_tracked_processes(tmp_path):
    manager, factory = make_manager(tmp_path)
    manager.request_server("http://one.localhost")
    manager.request_server("http://two.localhost")
    manager.shutdown()
    assert [p.stopped for p in factory.processes] == [1, 1]
    manager.request_server("http://one.localhost")
    assert len(factory.processes) == 3
