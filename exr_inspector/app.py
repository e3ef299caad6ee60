"""Command line entry point for the EXR inspector desktop application."""

from __future__ import annotations

import argparse
import importlib
import logging
import sys
import threading
from pathlib import Path
from typing import Any, Callable, List, Optional

from exr_inspector import get_version
from exr_inspector.core.bridge import attach_host
from exr_inspector.core.logging_config import LoggingConfigurator, LoggingOptions
from exr_inspector.core.settings_manager import ControllerConfig, SettingsManager


LOGGER = logging.getLogger(__name__)


def load_bridge_factory(target_path: str) -> Callable[[], Any]:
    """Resolve ``package.module:factory`` into a callable returning a bridge host."""

    module_name, separator, attribute = target_path.partition(":")
    if not separator or not module_name or not attribute:
        raise ValueError(f"Bridge factory must look like 'package.module:factory', got {target_path!r}")
    target: Any = importlib.import_module(module_name)
    for part in attribute.split("."):
        target = getattr(target, part)
    if not callable(target):
        raise ValueError(f"Bridge factory {target_path!r} is not callable")
    return target


def attach_in_background(factory: Callable[[], Any]) -> threading.Thread:
    """Build and attach the bridge host off the GUI thread.

    The controller's readiness polling covers the window between startup and
    the host becoming available.
    """

    def _attach() -> None:
        try:
            host = factory()
        except Exception:
            LOGGER.exception("Bridge factory failed", extra={"component": "app"})
            return
        attach_host(host)

    thread = threading.Thread(target=_attach, name="exr-bridge-attach", daemon=True)
    thread.start()
    return thread


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="exr-inspector", description="Inspect and export OpenEXR previews.")
    parser.add_argument("path", nargs="?", help="EXR file to open on startup")
    parser.add_argument("--bridge", help="backend bridge factory as package.module:callable")
    parser.add_argument("--log-dir", type=Path, default=None, help="directory for the rotating log file")
    parser.add_argument("--debug", action="store_true", help="enable developer diagnostics logging")
    parser.add_argument("--version", action="version", version=f"%(prog)s {get_version()}")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    log_path = LoggingConfigurator(
        LoggingOptions(log_directory=args.log_dir, developer_diagnostics=args.debug)
    ).configure()
    LOGGER.info("EXR inspector %s starting (log: %s)", get_version(), log_path)

    factory: Optional[Callable[[], Any]] = None
    if args.bridge:
        try:
            factory = load_bridge_factory(args.bridge)
        except (ImportError, AttributeError, ValueError) as exc:
            parser.error(str(exc))

    from PyQt5 import QtWidgets  # type: ignore

    from exr_inspector.ui import InspectorWindow, PreviewController

    app = QtWidgets.QApplication.instance() or QtWidgets.QApplication(sys.argv[:1])
    settings = SettingsManager()
    controller = PreviewController(config=ControllerConfig.from_settings(settings))
    window = InspectorWindow(controller, settings=settings)
    logging.getLogger().addHandler(window.log_handler())
    controller.initialize()
    window.show()

    if factory is not None:
        attach_in_background(factory)
    else:
        LOGGER.warning("No --bridge given; backend commands will time out until a host is attached")
    if args.path:
        controller.open_image(args.path)
    return app.exec_()


__all__ = ["attach_in_background", "build_parser", "load_bridge_factory", "main"]
