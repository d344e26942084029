"""Hugo server processes: output analysis, server handles and the per-origin registry."""

from __future__ import annotations

import codecs
import re
from enum import Enum
from functools import partial
from pathlib import Path
from typing import Callable

from loguru import logger
from PySide6.QtCore import QObject, QProcess, QProcessEnvironment, QUrl, Signal

from hugolive.config import PreviewSettings
from hugolive.payload import PAYLOAD_ENV_VAR, encode_payload

SERVER_URL_RE = re.compile(r"Web Server is available at (http\S+)")
SERVER_READY_RE = re.compile(r"Press Ctrl\+C to stop")
REBUILD_STARTED_RE = re.compile(r"Change detected, rebuilding site")
REBUILD_FINISHED_RE = re.compile(r"Total in \d+ ms")
# Error: command error: Unable to locate config file or config directory.
# Error: error building site: assemble: ...
# ERROR Rebuild failed: assemble: ...
BUILD_ERROR_RE = re.compile(r"(?:Error|ERROR)[^:]*:\s+(.*)")


def url_origin(url: str) -> str:
    """scheme://authority of a URL, the unit used for origin checks."""
    parsed = QUrl(url)
    return f"{parsed.scheme()}://{parsed.authority()}"


class SupervisorState(Enum):
    INIT = "init"
    READY = "ready"
    REBUILDING = "rebuilding"
    TERMINATED = "terminated"


class LineSplitter:
    """Accumulate text chunks and hand complete lines to a callback."""

    def __init__(self, on_line: Callable[[str], None]):
        self._on_line = on_line
        self._leftover = ""

    def feed(self, chunk: str) -> None:
        lines = chunk.split("\n")
        lines[0] = self._leftover + lines[0]
        self._leftover = lines.pop()
        for line in lines:
            self._on_line(line.rstrip("\r"))


class HugoServer(QObject):
    """A running Hugo server. Multilingual sites may expose several URLs."""

    server_terminated = Signal(str)
    rebuilt = Signal()

    def __init__(self, urls: list[str], process: "HugoServerProcess | None" = None):
        super().__init__()
        if not urls:
            raise ValueError("a Hugo server needs at least one URL")
        self.urls = list(urls)
        self.terminated = False
        # Errors reported by the most recent build only.
        self.build_errors: list[str] = []
        self._process = process

    def can_serve_url(self, url: str) -> bool:
        parsed = QUrl(url)
        for server_url in self.urls:
            candidate = QUrl(server_url)
            if candidate.scheme() == parsed.scheme() and candidate.authority() == parsed.authority():
                return True
        return False

    def content_origins(self) -> list[str]:
        return [url_origin(url) for url in self.urls]

    def stop(self) -> None:
        if self._process is not None:
            self._process.stop()


class HugoServerProcess(QObject):
    """Run `hugo server` and turn its console output into lifecycle events.

    INIT -> READY -> REBUILDING -> READY -> ... -> TERMINATED.
    `server_ready` or `start_failed` is emitted exactly once; after that the
    handle's own signals report rebuilds and termination.
    """

    output = Signal(str)
    server_ready = Signal(object)
    start_failed = Signal(str)

    def __init__(self, project_root: Path, embedder_origin: str, settings: PreviewSettings | None = None):
        super().__init__()
        self.project_root = project_root
        self.embedder_origin = embedder_origin
        self.settings = settings or PreviewSettings()
        self.state = SupervisorState.INIT
        self.server: HugoServer | None = None
        self._collected_urls: list[str] = []
        self._collected_errors: list[str] = []
        self._start_settled = False
        self._process: QProcess | None = None
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._splitter = LineSplitter(self._analyse_line)

    def command(self) -> list[str]:
        return [self.settings.hugo, "server", "--buildDrafts", *self.settings.hugo_args]

    def start(self) -> None:
        program, *arguments = self.command()
        process = QProcess(self)
        process.setProgram(program)
        process.setArguments(arguments)
        process.setWorkingDirectory(str(self.project_root))
        process.setProcessChannelMode(QProcess.ProcessChannelMode.MergedChannels)
        process.setStandardInputFile(QProcess.nullDevice())
        env = QProcessEnvironment.systemEnvironment()
        env.insert(PAYLOAD_ENV_VAR, encode_payload(self.embedder_origin))
        process.setProcessEnvironment(env)
        process.readyReadStandardOutput.connect(self._on_ready_read)
        process.errorOccurred.connect(self._on_process_error)
        process.finished.connect(self._on_process_finished)
        self._process = process
        logger.info("Starting Hugo server (cwd={}, origin={})", self.project_root, self.embedder_origin)
        process.start()

    def stop(self) -> None:
        process = self._process
        if process is not None and process.state() != QProcess.ProcessState.NotRunning:
            logger.info("Stopping Hugo server for {}", self.embedder_origin)
            process.kill()

    def feed_output(self, data: bytes) -> None:
        """Relay raw process output and analyse it line by line."""
        text = self._decoder.decode(data)
        if not text:
            return
        self.output.emit(text)
        self._splitter.feed(text)

    def _on_ready_read(self) -> None:
        if self._process is None:
            return
        self.feed_output(bytes(self._process.readAllStandardOutput()))

    def _on_process_error(self, error: QProcess.ProcessError) -> None:
        if error == QProcess.ProcessError.FailedToStart:
            reason = self._process.errorString() if self._process is not None else "unknown error"
            message = f"Failed to launch '{self.settings.hugo}': {reason}"
            self.output.emit(f"{message}\n")
            self._server_gone(message)
        elif error != QProcess.ProcessError.Crashed:
            # Crashes are reported through finished().
            logger.warning("Hugo process error: {}", error)

    def _on_process_finished(self, exit_code: int, exit_status: QProcess.ExitStatus) -> None:
        if exit_status == QProcess.ExitStatus.NormalExit:
            message = f"Hugo process terminated with exit code: {exit_code}"
        else:
            message = "Hugo process crashed"
        self.output.emit(f"{message}.\n")
        self._server_gone(message)

    def _server_gone(self, message: str) -> None:
        if self.state is SupervisorState.TERMINATED:
            return
        self.state = SupervisorState.TERMINATED
        logger.info("Hugo server for {} is gone: {}", self.embedder_origin, message)
        if self.server is None:
            self._fail_start(message)
        else:
            self.server.terminated = True
            self.server.server_terminated.emit(message)

    def _fail_start(self, message: str) -> None:
        if self._start_settled:
            return
        self._start_settled = True
        self.start_failed.emit(message)

    def _analyse_line(self, line: str) -> None:
        error = BUILD_ERROR_RE.search(line)
        if error is not None:
            self._collected_errors.append(error.group(1))

        if self.state is SupervisorState.INIT:
            url = SERVER_URL_RE.search(line)
            if url is not None:
                self._collected_urls.append(url.group(1))
            if SERVER_READY_RE.search(line):
                self._finish_init()
        elif self.state is SupervisorState.READY:
            if REBUILD_STARTED_RE.search(line):
                self.state = SupervisorState.REBUILDING
                self._collected_errors = []
        elif self.state is SupervisorState.REBUILDING:
            if REBUILD_FINISHED_RE.search(line):
                self.state = SupervisorState.READY
                if self.server is not None:
                    self.server.build_errors = list(self._collected_errors)
                    self.server.rebuilt.emit()

    def _finish_init(self) -> None:
        if not self._collected_urls:
            message = "didn't find webserver URL in Hugo output"
            self.output.emit(f"{message}.\nTerminating Hugo server.\n")
            self.state = SupervisorState.TERMINATED
            self.stop()
            self._fail_start(message)
            return
        self.state = SupervisorState.READY
        server = HugoServer(self._collected_urls, self)
        server.build_errors = list(self._collected_errors)
        self.server = server
        self._start_settled = True
        logger.info("Hugo server ready at {}", ", ".join(server.urls))
        self.server_ready.emit(server)


class ServerRequest(QObject):
    """Pending or settled outcome of starting a server for one embedder origin."""

    finished = Signal()

    def __init__(self, origin: str, process: HugoServerProcess):
        super().__init__()
        self.origin = origin
        self.process = process
        self.server: HugoServer | None = None
        self.error: str | None = None
        self._finished = False

    def is_finished(self) -> bool:
        return self._finished

    def settle(self, server: HugoServer | None, error: str | None) -> None:
        if self._finished:
            return
        self._finished = True
        self.server = server
        self.error = error
        self.finished.emit()


ProcessFactory = Callable[[Path, str, PreviewSettings], HugoServerProcess]


class HugoServerManager(QObject):
    """At most one live Hugo process per embedder origin.

    Concurrent requests for an origin share one ServerRequest. Failed and
    terminated entries are dropped so the next request starts afresh.
    """

    output = Signal(str)

    def __init__(
        self,
        project_root: Path,
        settings: PreviewSettings | None = None,
        process_factory: ProcessFactory | None = None,
    ):
        super().__init__()
        self.project_root = project_root
        self.settings = settings or PreviewSettings()
        self._process_factory = process_factory or HugoServerProcess
        self._requests: dict[str, ServerRequest] = {}

    def request_server(self, embedder_origin: str) -> ServerRequest:
        existing = self._requests.get(embedder_origin)
        if existing is not None:
            return existing

        process = self._process_factory(self.project_root, embedder_origin, self.settings)
        request = ServerRequest(embedder_origin, process)
        self._requests[embedder_origin] = request
        process.output.connect(self.output.emit)
        process.server_ready.connect(partial(self._on_server_ready, request))
        process.start_failed.connect(partial(self._on_start_failed, request))
        process.start()
        return request

    def shutdown(self) -> None:
        """Kill every process this registry still tracks."""
        for request in list(self._requests.values()):
            request.process.stop()
        self._requests.clear()

    def _on_server_ready(self, request: ServerRequest, server: HugoServer) -> None:
        server.server_terminated.connect(partial(self._forget, request))
        request.settle(server, None)

    def _on_start_failed(self, request: ServerRequest, message: str) -> None:
        self._forget(request)
        request.settle(None, message)

    def _forget(self, request: ServerRequest, *_args) -> None:
        if self._requests.get(request.origin) is request:
            del self._requests[request.origin]
