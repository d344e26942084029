from pathlib import Path

import pytest
from PySide6.QtCore import QProcess

from hugolive.server import HugoServerProcess, LineSplitter, SupervisorState, url_origin

STARTUP = (
    "Start building sites … \n"
    "Built in 12 ms\n"
    "Environment: \"development\"\n"
    "Web Server is available at http://localhost:1313/ (bind address 127.0.0.1)\n"
    "Press Ctrl+C to stop\n"
)
REBUILD_WITH_ERROR = (
    "Change detected, rebuilding site.\n"
    "ERROR Rebuild failed: assemble: \"/site/content/post.md:3:1\": unmarshal failed\n"
    "Total in 7 ms\n"
)
REBUILD_CLEAN = "Change detected, rebuilding site.\nTotal in 5 ms\n"


class Recorder:
    def __init__(self, process):
        self.ready = []
        self.failed = []
        self.output = []
        process.server_ready.connect(self.ready.append)
        process.start_failed.connect(self.failed.append)
        process.output.connect(self.output.append)


def _process():
    process = HugoServerProcess(Path("/site"), "http://hugolive.localhost")
    return process, Recorder(process)


def _events(chunks):
    process, recorder = _process()
    events = []

    def on_ready(server):
        events.append("ready")
        server.rebuilt.connect(lambda: events.append(list(server.build_errors)))

    process.server_ready.connect(on_ready)
    for chunk in chunks:
        process.feed_output(chunk)
    return process, recorder, events


def test_line_splitter_buffers_partial_lines():
    lines = []
    splitter = LineSplitter(lines.append)
    splitter.feed("Web Server is avail")
    assert lines == []
    splitter.feed("able\r\nPress Ctrl")
    splitter.feed("+C to stop\n")
    assert lines == ["Web Server is available", "Press Ctrl+C to stop"]


def test_startup_yields_server_with_urls():
    process, recorder = _process()
    process.feed_output(STARTUP.encode("utf-8"))
    assert process.state is SupervisorState.READY
    assert len(recorder.ready) == 1
    server = recorder.ready[0]
    assert server.urls == ["http://localhost:1313/"]
    assert server.build_errors == []
    assert server.content_origins() == ["http://localhost:1313"]


def test_multilingual_server_collects_every_url():
    process, recorder = _process()
    process.feed_output(
        b"Web Server is available at http://localhost:1313/ (bind address 127.0.0.1)\n"
        b"Web Server is available at http://localhost:1314/ (bind address 127.0.0.1)\n"
        b"Press Ctrl+C to stop\n"
    )
    server = recorder.ready[0]
    assert server.urls == ["http://localhost:1313/", "http://localhost:1314/"]
    assert server.can_serve_url("http://localhost:1314/fr/")
    assert not server.can_serve_url("http://localhost:1315/")
    assert not server.can_serve_url("https://localhost:1313/")


def _session(newline):
    return (STARTUP + REBUILD_WITH_ERROR + REBUILD_CLEAN).replace("\n", newline).encode("utf-8")


@pytest.mark.parametrize("newline", ["\n", "\r\n"])
@pytest.mark.parametrize("size", range(1, 41))
def test_chunking_does_not_change_events(size, newline):
    data = _session(newline)
    _, whole_recorder, whole = _events([data])
    _, split_recorder, split = _events([data[i:i + size] for i in range(0, len(data), size)])
    assert whole == split == ["ready", ["assemble: \"/site/content/post.md:3:1\": unmarshal failed"], []]
    assert "".join(whole_recorder.output) == "".join(split_recorder.output)


def test_cut_between_carriage_return_and_newline():
    data = _session("\r\n")
    cuts = [i + 1 for i in range(len(data)) if data[i:i + 2] == b"\r\n"]
    chunks = [data[start:end] for start, end in zip([0] + cuts, cuts + [len(data)])]
    assert all(chunk.endswith(b"\r") for chunk in chunks[:-1])
    _, _, events = _events(chunks)
    assert events == ["ready", ["assemble: \"/site/content/post.md:3:1\": unmarshal failed"], []]


def test_multibyte_character_split_across_chunks():
    process, recorder = _process()
    data = STARTUP.encode("utf-8")
    cut = data.index("…".encode("utf-8")) + 1
    process.feed_output(data[:cut])
    process.feed_output(data[cut:])
    assert "".join(recorder.output) == STARTUP
    assert len(recorder.ready) == 1


def test_build_errors_persist_without_rebuild():
    process, recorder = _process()
    process.feed_output(STARTUP.encode("utf-8"))
    process.feed_output(REBUILD_WITH_ERROR.encode("utf-8"))
    server = recorder.ready[0]
    assert len(server.build_errors) == 1
    process.feed_output(b"some unrelated chatter\n")
    assert len(server.build_errors) == 1
    process.feed_output(REBUILD_CLEAN.encode("utf-8"))
    assert server.build_errors == []


def test_errors_during_initial_build_are_kept():
    process, recorder = _process()
    process.feed_output(b"ERROR render of \"page\" failed: boom\n" + STARTUP.encode("utf-8"))
    assert recorder.ready[0].build_errors == ["boom"]


def test_ready_without_url_fails_start():
    process, recorder = _process()
    process.feed_output(b"Built in 3 ms\nPress Ctrl+C to stop\n")
    assert recorder.ready == []
    assert recorder.failed == ["didn't find webserver URL in Hugo output"]
    assert process.state is SupervisorState.TERMINATED
    assert "Terminating Hugo server." in "".join(recorder.output)


def test_exit_before_ready_fails_start_once():
    process, recorder = _process()
    process.feed_output(b"Error: command error: Unable to locate config file or config directory.\n")
    process._on_process_finished(1, QProcess.ExitStatus.NormalExit)
    process._on_process_finished(1, QProcess.ExitStatus.NormalExit)
    assert recorder.failed == ["Hugo process terminated with exit code: 1"]
    assert "Hugo process terminated with exit code: 1.\n" in recorder.output


def test_crash_after_ready_terminates_server():
    process, recorder = _process()
    process.feed_output(STARTUP.encode("utf-8"))
    server = recorder.ready[0]
    reasons = []
    server.server_terminated.connect(reasons.append)
    process._on_process_finished(0, QProcess.ExitStatus.CrashExit)
    assert server.terminated
    assert reasons == ["Hugo process crashed"]
    assert recorder.failed == []


def test_command_includes_drafts_and_extra_args():
    from hugolive.config import PreviewSettings

    process = HugoServerProcess(Path("/site"), "http://x", PreviewSettings(hugo="/opt/hugo", hugo_args=("--port", "1400")))
    assert process.command() == ["/opt/hugo", "server", "--buildDrafts", "--port", "1400"]


def test_url_origin():
    assert url_origin("http://localhost:1313/fr/about/") == "http://localhost:1313"
