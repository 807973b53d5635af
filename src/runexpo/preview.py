"""Native preview window for the running dev server."""

from __future__ import annotations

import logging

from .config import PreviewConfig


def show_preview(url: str, config: PreviewConfig | None = None) -> None:
    """Open ``url`` in a phone-sized native web view.

    Blocks until the window is closed. Must run on the main thread.
    """
    import webview

    config = config or PreviewConfig()
    webview.create_window(
        title=config.title,
        url=url,
        width=config.width,
        height=config.height,
        resizable=True,
    )
    logging.info("[runexpo] Opening preview window for %s", url)
    webview.start(debug=False)
    logging.info("[runexpo] Preview window closed")
