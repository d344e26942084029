"""Instrumentation injected into rendered pages, and the site partial that loads it."""

from __future__ import annotations

import base64
from pathlib import Path

PAYLOAD_ENV_VAR = "HUGO_LIVE_PREVIEW_SCRIPT"
EMBEDDER_ORIGIN_TOKEN = "${EMBEDDER-ORIGIN}"
PARTIAL_RELATIVE_PATH = Path("layouts") / "partials" / "hugo-live-preview.html"

# Runs inside every rendered page. Stays inert unless framed by the embedder.
PAYLOAD_TEMPLATE = r"""
(() => {
  const embedderOrigin = "${EMBEDDER-ORIGIN}";
  if (window.parent === window) {
    return;
  }
  const tellEmbedder = (msg) => window.parent.postMessage(msg, embedderOrigin);

  const nodes = [];
  const nodeInfo = new Map();
  const toSText = (text) => text.trim();

  // Number kept nodes once, in preorder; ids travel with the tree.
  const domToSText = (root) => {
    const walk = (node) => {
      if (node.nodeType === Node.ELEMENT_NODE) {
        // Hidden elements are kept on purpose (tabbed code listings etc).
        if (node.nodeName === "SCRIPT" || node.nodeName === "STYLE") {
          return null;
        }
        const id = nodes.length;
        nodes.push(node);
        const children = [];
        for (const child of Array.from(node.childNodes)) {
          const item = walk(child);
          if (item !== null) {
            children.push(item);
          }
        }
        if (children.length === 0) {
          nodes.pop();
          return null;
        }
        return { id, children };
      }
      if (node.nodeType === Node.TEXT_NODE) {
        const text = toSText(node.textContent || "");
        if (text === "") {
          return null;
        }
        const id = nodes.length;
        nodes.push(node);
        return { id, text };
      }
      return null;
    };
    return walk(root) || { id: 0, children: [] };
  };

  const intersectionObserver = new IntersectionObserver((entries) => {
    const hidden = [];
    const revealed = [];
    for (const entry of entries) {
      const info = nodeInfo.get(entry.target);
      if (info !== undefined) {
        (entry.isIntersecting ? revealed : hidden).push(info.id);
      }
    }
    tellEmbedder({ msg: "updateIntersections", hidden, revealed });
  });

  const onDOMReady = () => {
    const stext = domToSText(document.body);
    let offset = 0;
    const visit = (item) => {
      const info = { id: item.id, offset, text: "" };
      if (typeof item.text === "string") {
        info.text = item.text;
        offset += item.text.length;
      }
      nodeInfo.set(nodes[item.id], info);
      (item.children || []).forEach(visit);
    };
    visit(stext);
    for (const node of nodes) {
      if (node.nodeType === Node.ELEMENT_NODE) {
        intersectionObserver.observe(node);
      }
    }
    tellEmbedder({ msg: "checkin", href: document.location.href, stext });
  };

  if (document.readyState === "loading") {
    document.addEventListener("DOMContentLoaded", onDOMReady);
  } else {
    onDOMReady();
  }

  const shouldHandleClick = (event) => {
    if (event.defaultPrevented) {
      return false;
    }
    for (let el = event.target; el && el !== event.currentTarget; el = el.parentNode) {
      if (el.nodeName === "A" && el.hasAttribute("href")) {
        return false;
      }
    }
    return true;
  };

  document.addEventListener("click", (event) => {
    if (!shouldHandleClick(event)) {
      return;
    }
    const range = document.caretRangeFromPoint(event.clientX, event.clientY);
    if (!range) {
      return;
    }
    const info = nodeInfo.get(range.startContainer);
    if (info === undefined) {
      return;
    }
    let offset = info.offset;
    const text = range.startContainer.textContent || "";
    if (info.text === toSText(text)) {
      offset += toSText(text.substring(0, range.startOffset)).length;
    }
    tellEmbedder({ msg: "click", offset });
  });

  // Many sites refuse to be framed; hand cross-origin links to the host.
  if (window.navigation !== undefined) {
    window.navigation.addEventListener("navigate", (event) => {
      if (window.location.origin !== new URL(event.destination.url).origin) {
        event.preventDefault();
        tellEmbedder({ msg: "navigateTo", url: event.destination.url });
      }
    });
  }
})();
"""

LIVE_PREVIEW_PARTIAL = r"""{{- /*
  Live preview integration. Include from the <head> or the end of <body>
  of your base template:

    {{ partial "hugo-live-preview.html" . }}

  Emits nothing unless the site is served by the live preview.
*/ -}}
{{- with getenv "HUGO_LIVE_PREVIEW_SCRIPT" -}}
{{- $groups := slice -}}
{{- range $.Sites -}}
  {{- $pages := slice -}}
  {{- range .Pages -}}
    {{- $page := dict "rel" .RelPermalink -}}
    {{- with .File }}{{ $page = merge $page (dict "file" .Filename) }}{{ end -}}
    {{- with .Aliases }}{{ $page = merge $page (dict "aliases" .) }}{{ end -}}
    {{- $pages = $pages | append $page -}}
  {{- end -}}
  {{- $groups = $groups | append (dict "lang" .Language.Lang "base" .BaseURL "pages" $pages) -}}
{{- end -}}
<script type="application/json">{{ dict "pageDirectory" $groups | jsonify | safeJS }}</script>
<script>{{ . | base64Decode | safeJS }}</script>
{{- end -}}
"""


def prepare_payload(embedder_origin: str) -> str:
    """Bind the instrumentation script to the origin allowed to receive its messages."""
    return PAYLOAD_TEMPLATE.replace(EMBEDDER_ORIGIN_TOKEN, embedder_origin)


def encode_payload(embedder_origin: str) -> str:
    """Base64 form handed to Hugo through the environment."""
    return base64.b64encode(prepare_payload(embedder_origin).encode("utf-8")).decode("ascii")


def write_live_preview_partial(project_root: Path) -> tuple[Path, bool]:
    """Create the site partial unless it already exists; returns (path, created)."""
    target = project_root / PARTIAL_RELATIVE_PATH
    if target.exists():
        return target, False
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(LIVE_PREVIEW_PARTIAL, encoding="utf-8")
    return target, True
