from PySide6.QtTest import QTest

from hugolive.display import DisplayService
from hugolive.stext import EMPTY_STEXT

TREE = {"id": 0, "children": [{"id": 1, "text": "Hello "}, {"id": 2, "children": [{"id": 3, "text": "world"}]}]}


def _service(timeout_ms=1000):
    sent = []
    service = DisplayService(sent.append, timeout_ms=timeout_ms)
    loads = []
    service.loaded.connect(lambda: loads.append(service.checkin_timed_out))
    return service, sent, loads


def test_set_url_posts_navigation_and_arms_timer():
    service, sent, _ = _service()
    service.set_url("http://localhost:1313/post/")
    service.replace_url("http://localhost:1313/renamed/")
    assert sent == [
        {"msg": "setUrl", "url": "http://localhost:1313/post/"},
        {"msg": "replaceUrl", "url": "http://localhost:1313/renamed/"},
    ]
    assert service._checkin_timer.isActive()


def test_checkin_updates_display_and_disarms_timer():
    service, _, loads = _service()
    service.set_url("http://localhost:1313/post/")
    service.handle_checkin("http://localhost:1313/post/", TREE)
    assert not service._checkin_timer.isActive()
    assert service.display.url == "http://localhost:1313/post/"
    assert service.display.content.plain_text() == "Hello world"
    assert service.checkin_timed_out is False
    assert loads == [False]


def test_missing_checkin_times_out():
    service, _, loads = _service(timeout_ms=10)
    service.set_url("http://localhost:1313/post/")
    QTest.qWait(100)
    assert service.checkin_timed_out is True
    assert loads == [True]
    assert service.display is None


def test_late_checkin_clears_timeout():
    service, _, loads = _service(timeout_ms=10)
    service.set_url("http://localhost:1313/post/")
    QTest.qWait(100)
    service.handle_checkin("http://localhost:1313/post/", TREE)
    assert service.checkin_timed_out is False
    assert loads == [True, False]


def test_malformed_structured_text_becomes_empty():
    service, _, _ = _service()
    service.handle_checkin("http://localhost:1313/", {"id": 0, "children": [{"text": "no id"}]})
    assert service.display.content is EMPTY_STEXT


def test_intersections_track_visible_nodes():
    service, _, _ = _service()
    service.handle_checkin("http://localhost:1313/", TREE)
    service.handle_intersections([], [1, 3])
    service.handle_intersections([1], [2])
    assert service.visible_node_ids == {2, 3}
    service.handle_checkin("http://localhost:1313/other/", TREE)
    assert service.visible_node_ids == set()


def test_reset_forgets_display():
    service, _, loads = _service()
    service.set_url("http://localhost:1313/")
    service.handle_checkin("http://localhost:1313/", TREE)
    service.reset()
    assert service.display is None
    assert service.checkin_timed_out is None
    assert not service._checkin_timer.isActive()
