"""Preview window: hosts the embedder page and wires it to the PreviewPanel."""

from __future__ import annotations

import argparse
import json
import subprocess
import sys
from pathlib import Path

from loguru import logger
from PySide6.QtCore import QFile, QIODevice, QObject, Qt, QUrl, Signal, Slot
from PySide6.QtGui import QAction, QDesktopServices, QKeySequence, QTextCursor
from PySide6.QtWebChannel import QWebChannel
from PySide6.QtWebEngineWidgets import QWebEngineView
from PySide6.QtWidgets import (
    QApplication,
    QDockWidget,
    QFileDialog,
    QMainWindow,
    QMessageBox,
    QPlainTextEdit,
)

from hugolive.clickmap import offset_to_line_column
from hugolive.config import PreviewSettings, editor_command, find_hugo_config, load_settings
from hugolive.panel import DEFAULT_TITLE, PreviewPanel
from hugolive.payload import write_live_preview_partial
from hugolive.server import HugoServerManager

QWEBCHANNEL_JS_TOKEN = "__HUGOLIVE_QWEBCHANNEL_JS__"
OUTPUT_MAX_BLOCKS = 5000

EMBEDDER_HTML_TEMPLATE = """<!doctype html>
<html lang="en">
<head>
<meta charset="utf-8">
<style>
  html, body { margin: 0; height: 100%; font-family: sans-serif; background: #1e2127; color: #e6e6e6; }
  #stage { position: absolute; inset: 0; }
  #stage iframe { border: 0; width: 100%; height: 100%; background: #fff; }
  #status { position: absolute; inset: 0; display: flex; flex-direction: column;
            align-items: center; justify-content: center; text-align: center; padding: 24px; }
  #status pre { white-space: pre-wrap; max-width: 90%; color: #f0a0a0; }
  #banner { position: absolute; left: 0; right: 0; top: 0; padding: 6px 12px;
            background: #3b4252; color: #e6e6e6; font-size: 13px; }
  button { margin-top: 12px; padding: 6px 14px; }
  .hidden { display: none !important; }
</style>
</head>
<body>
<div id="stage"></div>
<div id="status"></div>
<div id="banner" class="hidden"></div>
<script>__HUGOLIVE_QWEBCHANNEL_JS__</script>
<script>
(() => {
  const CONTENT_MESSAGE_TYPES = ["checkin", "updateIntersections", "navigateTo", "click"];
  const stage = document.getElementById("stage");
  const status = document.getElementById("status");
  const banner = document.getElementById("banner");
  let host = null;
  let allowedContentOrigins = [];
  let contentFrame = null;
  let emergencyFrame = null;

  const tellHost = (msg) => {
    if (host !== null) {
      host.post(JSON.stringify(msg));
    }
  };

  // Frames stay attached while hidden so they keep their page and history.
  const makeFrame = (url) => {
    const frame = document.createElement("iframe");
    frame.setAttribute("src", url);
    frame.classList.add("hidden");
    stage.appendChild(frame);
    return frame;
  };

  const showFrame = (frame) => {
    for (const child of Array.from(stage.children)) {
      child.classList.toggle("hidden", child !== frame);
    }
  };

  const showStatus = (nodes) => {
    status.replaceChildren(...nodes);
    status.classList.toggle("hidden", nodes.length === 0);
  };

  const text = (tag, value) => {
    const el = document.createElement(tag);
    el.textContent = value;
    return el;
  };

  const button = (label, msg) => {
    const el = text("button", label);
    el.addEventListener("click", () => tellHost({ msg }));
    return el;
  };

  const renderState = (state) => {
    banner.classList.add("hidden");
    switch (state.type) {
      case "initialising":
      case "serverStarting":
        showStatus([text("p", "Starting Hugo server...")]);
        break;
      case "serverFailed":
        showStatus([
          text("h3", "Hugo server failed to start or terminated unexpectedly"),
          text("pre", state.err || ""),
          button("Restart server", "restartServer"),
        ]);
        break;
      case "buildFailed":
        if (contentFrame === null && emergencyFrame === null && allowedContentOrigins.length > 0) {
          // Any page shows Hugo's error report; keep it out of the content history.
          emergencyFrame = makeFrame(allowedContentOrigins[0]);
        }
        showFrame(contentFrame || emergencyFrame);
        showStatus([]);
        break;
      case "siteMisconfigured": {
        const items = [text("h3", "The site is not set up for live preview")];
        if (state.pageDirectoryNotAvailable) {
          items.push(text("p", "The page directory is missing from rendered pages."));
        }
        if (state.checkinTimedOut) {
          items.push(text("p", "The preview script did not report back from the page."));
        }
        items.push(text("p", "Include the hugo-live-preview.html partial in your base template."));
        items.push(button("Create partial", "createLivePreviewPartial"));
        showStatus(items);
        break;
      }
      case "ready":
        if (state.previewStatus === "showingPreview") {
          showFrame(contentFrame);
          showStatus([]);
        } else if (state.previewStatus === "noPreviewAvailableBanner") {
          showFrame(contentFrame);
          showStatus([]);
          banner.textContent = "No preview available for " + state.sourcePath;
          banner.classList.remove("hidden");
        } else {
          showFrame(null);
          showStatus([text("p", state.sourcePath ? "No preview available for " + state.sourcePath
                                                 : "Select a content file to preview")]);
        }
        break;
      default:
        showStatus([]);
    }
  };

  const onHostMessage = (message) => {
    switch (message.msg) {
      case "navigateBack":
        history.back();
        break;
      case "navigateForward":
        history.forward();
        break;
      case "setUrl":
        if (contentFrame === null) {
          contentFrame = makeFrame(message.url);
        } else {
          contentFrame.setAttribute("src", message.url);
        }
        break;
      case "replaceUrl":
        if (contentFrame !== null && contentFrame.contentWindow) {
          contentFrame.contentWindow.location.replace(message.url);
        }
        break;
      case "setState":
        renderState(message.state);
        break;
      case "setAllowedContentOrigins":
        // Server URLs may have changed; drop frames and their history.
        allowedContentOrigins = message.origins;
        contentFrame = null;
        emergencyFrame = null;
        stage.replaceChildren();
        break;
    }
  };

  window.addEventListener("message", (event) => {
    if (contentFrame === null || event.source !== contentFrame.contentWindow) {
      return;
    }
    if (!allowedContentOrigins.includes(event.origin)) {
      return;
    }
    if (event.data && CONTENT_MESSAGE_TYPES.includes(event.data.msg)) {
      tellHost(event.data);
    }
  });

  new QWebChannel(qt.webChannelTransport, (channel) => {
    host = channel.objects.host;
    host.deliver.connect((payload) => onHostMessage(JSON.parse(payload)));
    tellHost({ msg: "discloseOrigin", origin: window.origin });
  });
})();
</script>
</body>
</html>
"""


def _load_qwebchannel_js() -> str:
    resource = QFile(":/qtwebchannel/qwebchannel.js")
    if not resource.open(QIODevice.OpenModeFlag.ReadOnly):
        raise RuntimeError("qwebchannel.js resource is not available")
    try:
        return bytes(resource.readAll()).decode("utf-8")
    finally:
        resource.close()


def build_embedder_html() -> str:
    return EMBEDDER_HTML_TEMPLATE.replace(QWEBCHANNEL_JS_TOKEN, _load_qwebchannel_js())


class EmbedderBridge(QObject):
    """Web channel object shared with the embedder page as `host`."""

    deliver = Signal(str)
    received = Signal(object)

    @Slot(str)
    def post(self, payload: str) -> None:
        try:
            message = json.loads(payload)
        except ValueError:
            logger.warning("Dropping undecodable message from the embedder")
            return
        self.received.emit(message)

    def send(self, message: dict) -> None:
        self.deliver.emit(json.dumps(message, separators=(",", ":"), ensure_ascii=False))


class PreviewWindow(QMainWindow):
    def __init__(
        self,
        project_root: Path,
        settings: PreviewSettings,
        manager: HugoServerManager,
        initial_source: Path | None = None,
    ):
        super().__init__()
        self.project_root = project_root
        self.settings = settings
        self.manager = manager
        # Source file the user wants to follow; handed out on content_wanted.
        self._intent_path: Path | None = initial_source

        self.setWindowTitle(DEFAULT_TITLE)
        self.resize(1200, 900)

        self.preview = QWebEngineView()
        self.setCentralWidget(self.preview)

        self.output_view = QPlainTextEdit()
        self.output_view.setReadOnly(True)
        self.output_view.setMaximumBlockCount(OUTPUT_MAX_BLOCKS)
        self.output_dock = QDockWidget("Hugo Output", self)
        self.output_dock.setWidget(self.output_view)
        self.addDockWidget(Qt.DockWidgetArea.BottomDockWidgetArea, self.output_dock)
        self.output_dock.hide()

        self.bridge = EmbedderBridge(self)
        self.channel = QWebChannel(self.preview.page())
        self.channel.registerObject("host", self.bridge)
        self.preview.page().setWebChannel(self.channel)

        self.panel = PreviewPanel(manager, settings)
        self.bridge.received.connect(self.panel.handle_message)
        self.panel.message_to_embedder.connect(self.bridge.send)
        self.panel.title_changed.connect(self.setWindowTitle)
        self.panel.content_wanted.connect(self._supply_source_path)
        self.panel.external_link_clicked.connect(self._open_external_url)
        self.panel.create_partial_requested.connect(self.create_live_preview_partial)
        self.panel.reveal_source_requested.connect(self._reveal_source)
        self.panel.preview_status_changed.connect(self._update_actions)
        self.manager.output.connect(self._append_output)

        self._build_actions()
        self._update_actions()
        self.preview.setHtml(build_embedder_html(), QUrl(f"{settings.embedder_origin}/"))

    def _build_actions(self) -> None:
        self.preview_file_action = QAction("Preview File...", self)
        self.preview_file_action.setShortcut(QKeySequence.StandardKey.Open)
        self.preview_file_action.triggered.connect(self.choose_source_file)
        self.back_action = QAction("Back", self)
        self.back_action.setShortcut(QKeySequence.StandardKey.Back)
        self.back_action.triggered.connect(self.panel.navigate_back)
        self.forward_action = QAction("Forward", self)
        self.forward_action.setShortcut(QKeySequence.StandardKey.Forward)
        self.forward_action.triggered.connect(self.panel.navigate_forward)
        self.show_source_action = QAction("Show Source", self)
        self.show_source_action.triggered.connect(self.show_source)
        self.open_external_action = QAction("Open in Browser", self)
        self.open_external_action.triggered.connect(self.open_external)
        self.create_partial_action = QAction("Create Live Preview Partial", self)
        self.create_partial_action.triggered.connect(self.create_live_preview_partial)
        self.toggle_output_action = self.output_dock.toggleViewAction()
        self.toggle_output_action.setText("Hugo Output")

        file_menu = self.menuBar().addMenu("&File")
        file_menu.addAction(self.preview_file_action)
        file_menu.addAction(self.create_partial_action)
        go_menu = self.menuBar().addMenu("&Go")
        go_menu.addAction(self.back_action)
        go_menu.addAction(self.forward_action)
        go_menu.addSeparator()
        go_menu.addAction(self.show_source_action)
        go_menu.addAction(self.open_external_action)
        view_menu = self.menuBar().addMenu("&View")
        view_menu.addAction(self.toggle_output_action)

    def _update_actions(self) -> None:
        showing = self.panel.showing_preview()
        for action in (self.back_action, self.forward_action, self.show_source_action, self.open_external_action):
            action.setEnabled(showing)

    def choose_source_file(self) -> None:
        start_dir = self.project_root / "content"
        if not start_dir.is_dir():
            start_dir = self.project_root
        file_name, _ = QFileDialog.getOpenFileName(self, "Preview File", str(start_dir))
        if not file_name:
            return
        self._intent_path = Path(file_name)
        self.panel.set_source_path(self._intent_path)

    def show_source(self) -> None:
        source = self.panel.source_path()
        if source is not None:
            self._launch_editor(source)

    def open_external(self) -> None:
        url = self.panel.content_url()
        if url is not None:
            self._open_external_url(url)

    def create_live_preview_partial(self) -> None:
        try:
            path, created = write_live_preview_partial(self.project_root)
        except OSError as exc:
            QMessageBox.critical(self, "Live preview partial", f"Could not write the partial:\n{exc}")
            return
        verb = "Created" if created else "Already present:"
        self.statusBar().showMessage(f"{verb} {path}", 5000)
        self._launch_editor(path)

    def _supply_source_path(self) -> None:
        self.panel.set_source_path(self._intent_path)

    def _open_external_url(self, url: str) -> None:
        QDesktopServices.openUrl(QUrl(url))

    def _reveal_source(self, path_text: str, offset: int) -> None:
        path = Path(path_text)
        try:
            text = path.read_text(encoding="utf-8", errors="replace")
        except OSError as exc:
            logger.warning("Cannot read {}: {}", path, exc)
            return
        line, column = offset_to_line_column(text, offset)
        self._launch_editor(path, line, column)

    def _launch_editor(self, path: Path, line: int = 1, column: int = 1) -> None:
        command = editor_command(self.settings.editor, path, line, column)
        try:
            subprocess.Popen(command)
        except FileNotFoundError:
            QMessageBox.critical(
                self,
                "Editor not found",
                f"Could not run '{command[0]}'. Set \"editor\" in ~/.hugolive.json.",
            )

    def _append_output(self, text: str) -> None:
        cursor = self.output_view.textCursor()
        cursor.movePosition(QTextCursor.MoveOperation.End)
        cursor.insertText(text)
        self.output_view.setTextCursor(cursor)
        self.output_view.ensureCursorVisible()

    def closeEvent(self, event) -> None:  # noqa: N802
        self.panel.dispose()
        super().closeEvent(event)


def main() -> int:
    parser = argparse.ArgumentParser(
        prog="hugolive",
        description="Live preview of a Hugo site that follows the content file you edit.",
    )
    parser.add_argument(
        "path",
        nargs="?",
        default=None,
        help="Hugo project root (default: current directory).",
    )
    parser.add_argument("--source", default=None, help="Content file to preview first.")
    parser.add_argument("--hugo", default=None, help="Hugo binary (default: ~/.hugolive.json, or 'hugo').")
    parser.add_argument("--origin", default=None, help="Origin of the embedding page.")
    parser.add_argument("--verbose", action="store_true", help="Log debug messages.")
    args = parser.parse_args()

    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if args.verbose else "INFO")

    root = Path(args.path).expanduser() if args.path is not None else Path.cwd()
    if not root.is_dir():
        print(f"Path is not a directory: {root}", file=sys.stderr)
        return 2
    root = root.resolve()
    if find_hugo_config(root) is None:
        print(f"No Hugo configuration found in {root}", file=sys.stderr)
        return 2
    source = Path(args.source).expanduser().resolve() if args.source else None

    settings = load_settings().with_overrides(hugo=args.hugo, embedder_origin=args.origin)

    app = QApplication(sys.argv)
    app.setApplicationName("hugolive")
    manager = HugoServerManager(root, settings)
    app.aboutToQuit.connect(manager.shutdown)

    window = PreviewWindow(root, settings, manager, source)
    window.show()
    return app.exec()
