"""Fakes shared by the panel, registry and page directory tests."""

from pathlib import Path

from PySide6.QtCore import QObject, Signal

from hugolive.config import PreviewSettings
from hugolive.pagedir import PageDirectoryService, PageInfo
from hugolive.server import HugoServer, HugoServerManager


class FakeProcess(QObject):
    output = Signal(str)
    server_ready = Signal(object)
    start_failed = Signal(str)

    def __init__(self, project_root, embedder_origin, settings):
        super().__init__()
        self.project_root = project_root
        self.embedder_origin = embedder_origin
        self.settings = settings
        self.started = 0
        self.stopped = 0

    def start(self):
        self.started += 1

    def stop(self):
        self.stopped += 1

    def become_ready(self, urls=("http://localhost:1313/",)):
        server = HugoServer(list(urls), self)
        self.server_ready.emit(server)
        return server

    def fail(self, message="Failed to launch 'hugo': No such file or directory"):
        self.start_failed.emit(message)

    def terminate(self, server, message="Hugo process terminated with exit code: 1"):
        server.terminated = True
        server.server_terminated.emit(message)


class FakeProcessFactory:
    def __init__(self):
        self.processes = []

    def __call__(self, project_root, embedder_origin, settings):
        process = FakeProcess(project_root, embedder_origin, settings)
        self.processes.append(process)
        return process

    @property
    def last(self):
        return self.processes[-1]


class RecordingPageDirectory(PageDirectoryService):
    """Page directory whose fetches are recorded and completed by the test."""

    def __init__(self, server, **kwargs):
        super().__init__(server, **kwargs)
        self.dispatched = []

    def _dispatch(self, request_id, url):
        self.dispatched.append((request_id, url))

    def complete(self, pages=None, error=None, request_id=None):
        if request_id is None:
            request_id = self.dispatched[-1][0]
        self._on_fetch_finished(request_id, pages, error)


def make_manager(tmp_path: Path, factory=None, **settings):
    factory = factory or FakeProcessFactory()
    manager = HugoServerManager(tmp_path, PreviewSettings(**settings), process_factory=factory)
    return manager, factory


def page(url, source=None, lang="en", aliases=()):
    return PageInfo(url=url, lang=lang, source=Path(source) if source else None, aliases=tuple(aliases))
