from __future__ import annotations

import os
import threading
from typing import List, Tuple

import pytest

os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")

QtCore = pytest.importorskip("PyQt5.QtCore", exc_type=ImportError)

from exr_inspector.core.bridge import attach_host  # noqa: E402
from exr_inspector.core.cancellation import OperationKind  # noqa: E402
from exr_inspector.core.commands import SequenceFpsRequest  # noqa: E402
from exr_inspector.core.settings_manager import ControllerConfig  # noqa: E402
from exr_inspector.processing import ExportTaskState  # noqa: E402
from exr_inspector.rendering import ArrayPaintTarget, ChannelMode  # noqa: E402
from exr_inspector.ui.preview_controller import PreviewController  # noqa: E402
from tests._fakes import FakeBridge, preview_payload  # noqa: E402


RED = (255, 0, 0, 255)
BLUE = (0, 0, 255, 128)
GREEN = (0, 255, 0, 255)


def _histogram_payload():
    counts = [0] * 256
    counts[128] = 500
    return {"hist_r": counts, "hist_g": counts, "hist_b": counts}


def _waveform_payload():
    return {"x_bins": 2, "y_bins": 2, "r": [10, 0, 0, 0], "g": [0, 0, 0, 0], "b": [0, 0, 0, 0]}


@pytest.fixture()
def bridge() -> FakeBridge:
    bridge = FakeBridge(
        {
            "open_image": lambda args: preview_payload(4, 2, RED),
            "update_preview": lambda args: preview_payload(4, 2, BLUE),
            "image_stats": lambda args: _histogram_payload(),
            "image_waveform": lambda args: _waveform_payload(),
            "read_metadata": lambda args: [("owner", "lighting"), ("FramesPerSecond", "24")],
            "probe_pixel": lambda args: (0.5, 0.25, 0.125, 1.0),
        }
    )
    attach_host(bridge)
    return bridge


@pytest.fixture()
def targets():
    return ArrayPaintTarget(), ArrayPaintTarget(), ArrayPaintTarget()


@pytest.fixture()
def controller(qtbot, bridge, targets):
    preview, histogram, waveform = targets
    config = ControllerConfig(debounce_ms=30, ready_timeout=1.0, poll_interval=0.005)
    controller = PreviewController(
        config=config,
        preview_target=preview,
        histogram_target=histogram,
        waveform_target=waveform,
    )
    controller.initialize(load_presets=False)
    yield controller
    controller.dispose()


def _open(qtbot, controller: PreviewController, path: str = "/shots/a.exr") -> None:
    with qtbot.waitSignal(controller.previewUpdated, timeout=3000):
        controller.open_image(path)


def _record(signal) -> List[Tuple]:
    received: List[Tuple] = []
    signal.connect(lambda *args: received.append(args))
    return received


def test_open_installs_preview_scopes_and_attributes(qtbot, controller, bridge, targets) -> None:
    preview, histogram, waveform = targets
    attributes = _record(controller.attributesLoaded)
    errors_cleared = _record(controller.errorCleared)

    _open(qtbot, controller)

    state = controller.state
    assert (state.width, state.height) == (4, 2)
    assert state.previous is None
    assert preview.pixels[0, 0].tolist() == list(RED)
    assert histogram.pixels.shape == (128, 256, 4)
    assert (histogram.pixels[:, 128, 3] == 255).all()
    assert waveform.pixels[127, 0, 3] == 255
    assert controller.document_path == "/shots/a.exr"
    assert [row.name for row in attributes[0][0].rows] == ["owner", "FramesPerSecond"]
    assert errors_cleared
    open_args = bridge.calls_for("open_image")[0]
    assert open_args["path"] == "/shots/a.exr"
    assert open_args["maxSize"] == 2048
    assert bridge.commands()[:3] == ["open_image", "image_stats", "image_waveform"]


def test_open_progress_is_shown_then_hidden(qtbot, controller, bridge) -> None:
    progress = _record(controller.progressChanged)
    visibility = _record(controller.progressVisibilityChanged)

    def open_image(args):
        bridge.emit("open-progress", 55)
        return preview_payload(4, 2, RED)

    bridge.handlers["open_image"] = open_image
    _open(qtbot, controller)
    qtbot.waitUntil(lambda: visibility and visibility[-1] == ("OPEN", False), timeout=2000)

    assert visibility[0] == ("OPEN", True)
    assert ("OPEN", 55) in progress
    assert bridge.listeners["open-progress"] == []
    assert not controller.is_busy(OperationKind.OPEN)


def test_parameter_changes_are_debounced(qtbot, controller, bridge) -> None:
    _open(qtbot, controller)

    for value in (0.5, 1.0, 1.5):
        controller.set_exposure(value)
    controller.set_gamma(2.2)

    qtbot.waitUntil(lambda: len(bridge.calls_for("update_preview")) == 1, timeout=2000)
    qtbot.wait(150)

    updates = bridge.calls_for("update_preview")
    assert len(updates) == 1
    assert updates[0]["exposure"] == 1.5
    assert updates[0]["gamma"] == 2.2
    qtbot.waitUntil(lambda: controller.state.current_raster[0, 0].tolist() == list(BLUE), timeout=2000)
    assert controller.state.previous_raster[0, 0].tolist() == list(RED)


def test_updates_without_an_image_are_skipped(qtbot, controller, bridge) -> None:
    assert controller.request_preview_update() is None
    controller.set_exposure(1.0)
    qtbot.wait(120)
    assert bridge.calls_for("update_preview") == []


def test_stale_preview_response_is_discarded(qtbot, controller, bridge) -> None:
    _open(qtbot, controller)
    entered = threading.Event()
    gate = threading.Event()

    def update_preview(args):
        entered.set()
        gate.wait(5.0)
        return preview_payload(4, 2, GREEN)

    bridge.handlers["update_preview"] = update_preview
    bridge.handlers["open_image"] = lambda args: preview_payload(4, 2, BLUE)
    controller.request_preview_update()
    assert entered.wait(2.0)
    controller.open_image("/shots/b.exr")
    gate.set()

    qtbot.waitUntil(lambda: controller.state.current_raster[0, 0].tolist() == list(BLUE), timeout=3000)
    qtbot.wait(100)

    # The slow update response never reached the buffers.
    assert controller.state.current_raster[0, 0].tolist() == list(BLUE)
    assert controller.state.previous_raster[0, 0].tolist() == list(RED)
    assert controller.latest_sequence == 3
    assert controller.document_path == "/shots/b.exr"


def test_updates_requested_while_one_runs_are_coalesced(qtbot, controller, bridge) -> None:
    _open(qtbot, controller)
    entered = threading.Event()
    gate = threading.Event()
    calls = []

    def update_preview(args):
        calls.append(args)
        if len(calls) == 1:
            entered.set()
            gate.wait(5.0)
            return preview_payload(4, 2, GREEN)
        return preview_payload(4, 2, BLUE)

    bridge.handlers["update_preview"] = update_preview
    controller.request_preview_update()
    assert entered.wait(2.0)
    for exposure in (0.5, 1.0, 2.0):
        controller.parameters.exposure = exposure
        assert controller.request_preview_update() is None
    gate.set()

    qtbot.waitUntil(lambda: controller.state.current_raster[0, 0].tolist() == list(BLUE), timeout=3000)
    qtbot.wait(100)

    assert len(calls) == 2
    assert calls[1]["exposure"] == 2.0
    assert controller.state.previous_raster[0, 0].tolist() == list(GREEN)


def test_cancelled_open_keeps_previous_state(qtbot, controller, bridge) -> None:
    _open(qtbot, controller)
    before = controller.state
    errors = _record(controller.errorRaised)
    visibility = _record(controller.progressVisibilityChanged)
    entered = threading.Event()
    cancelled = threading.Event()

    def open_image(args):
        entered.set()
        cancelled.wait(5.0)
        raise RuntimeError("Open cancelled")

    bridge.handlers["open_image"] = open_image
    bridge.handlers["cancel_open"] = lambda args: cancelled.set()

    controller.open_image("/shots/b.exr")
    assert entered.wait(2.0)
    controller.cancel_open()

    qtbot.waitUntil(lambda: ("OPEN", False) in visibility, timeout=3000)
    assert "cancel_open" in bridge.commands()
    assert errors == []
    assert controller.state is before


def test_result_arriving_after_cancel_is_dropped(qtbot, controller, bridge) -> None:
    _open(qtbot, controller)
    before = controller.state
    visibility = _record(controller.progressVisibilityChanged)
    entered = threading.Event()
    cancelled = threading.Event()

    def open_image(args):
        entered.set()
        cancelled.wait(5.0)
        return preview_payload(4, 2, GREEN)

    bridge.handlers["open_image"] = open_image
    bridge.handlers["cancel_open"] = lambda args: cancelled.set()

    controller.open_image("/shots/b.exr")
    assert entered.wait(2.0)
    controller.cancel_open()

    qtbot.waitUntil(lambda: ("OPEN", False) in visibility, timeout=3000)
    assert controller.state is before
    assert controller.document_path == "/shots/a.exr"


def test_cancel_during_scope_fetch_keeps_previous_state(qtbot, controller, bridge) -> None:
    _open(qtbot, controller)
    before = controller.state
    attributes = _record(controller.attributesLoaded)
    visibility = _record(controller.progressVisibilityChanged)
    entered = threading.Event()
    cancelled = threading.Event()

    def image_stats(args):
        entered.set()
        cancelled.wait(5.0)
        return _histogram_payload()

    bridge.handlers["open_image"] = lambda args: preview_payload(4, 2, GREEN)
    bridge.handlers["image_stats"] = image_stats
    bridge.handlers["cancel_open"] = lambda args: cancelled.set()

    controller.open_image("/shots/b.exr")
    assert entered.wait(2.0)
    controller.cancel_open()

    qtbot.waitUntil(lambda: ("OPEN", False) in visibility, timeout=3000)
    qtbot.wait(50)
    assert controller.state is before
    assert controller.document_path == "/shots/a.exr"
    assert attributes == []


def test_finished_open_cancelled_before_delivery_is_dropped(qtbot, controller, bridge) -> None:
    _open(qtbot, controller)
    before = controller.state
    visibility = _record(controller.progressVisibilityChanged)
    updates = _record(controller.previewUpdated)
    bridge.handlers["open_image"] = lambda args: preview_payload(4, 2, GREEN)

    future = controller.open_image("/shots/b.exr")
    # The work is done but its completion has not reached the GUI thread yet.
    future.result(timeout=2.0)
    controller.cancel_open()

    qtbot.waitUntil(lambda: ("OPEN", False) in visibility, timeout=3000)
    assert updates == []
    assert controller.state is before
    assert controller.document_path == "/shots/a.exr"


def test_overlapping_opens_hide_progress_once(qtbot, controller, bridge) -> None:
    _open(qtbot, controller)
    visibility = _record(controller.progressVisibilityChanged)
    entered = threading.Event()
    gate = threading.Event()

    def open_image(args):
        if args["path"] == "/shots/b.exr":
            entered.set()
            gate.wait(5.0)
        return preview_payload(4, 2, GREEN)

    bridge.handlers["open_image"] = open_image
    controller.open_image("/shots/b.exr")
    assert entered.wait(2.0)
    controller.open_image("/shots/c.exr")
    gate.set()

    qtbot.waitUntil(lambda: controller.document_path == "/shots/c.exr", timeout=3000)
    qtbot.waitUntil(lambda: ("OPEN", False) in visibility, timeout=3000)
    qtbot.wait(100)

    assert visibility.count(("OPEN", False)) == 1
    assert visibility[-1] == ("OPEN", False)
    assert not controller.is_busy(OperationKind.OPEN)


def test_open_failure_raises_error_indicator(qtbot, controller, bridge) -> None:
    bridge.handlers["open_image"] = RuntimeError("unsupported compression")

    with qtbot.waitSignal(controller.errorRaised, timeout=3000) as blocker:
        controller.open_image("/shots/broken.exr")

    assert "unsupported compression" in blocker.args[0]
    assert controller.state.current is None


def test_channel_mode_and_compare_are_client_side(qtbot, controller, bridge, targets) -> None:
    preview = targets[0]
    _open(qtbot, controller)
    bridge.handlers["open_image"] = lambda args: preview_payload(4, 2, BLUE)
    _open(qtbot, controller, "/shots/b.exr")
    backend_calls = len(bridge.calls)

    assert controller.toggle_compare() is True
    assert preview.pixels[0, 0].tolist() == list(RED)

    controller.set_channel_mode(ChannelMode.ALPHA)
    assert preview.pixels[0, 0].tolist() == [255, 255, 255, 255]

    controller.toggle_compare()
    assert preview.pixels[0, 0].tolist() == [128, 128, 128, 255]
    assert len(bridge.calls) == backend_calls


def test_scope_view_changes_redraw_without_backend(qtbot, controller, bridge, targets) -> None:
    histogram = targets[1]
    _open(qtbot, controller)
    backend_calls = len(bridge.calls)

    controller.set_scope_channel("g")
    assert histogram.pixels[127, 128].tolist() == [0, 128, 0, 255]

    controller.set_scope_scale(0)
    assert controller.scope_config.scale == 1.0
    assert len(bridge.calls) == backend_calls


def test_probe_and_pipette(qtbot, controller, bridge) -> None:
    _open(qtbot, controller)

    with qtbot.waitSignal(controller.probeUpdated, timeout=2000) as blocker:
        controller.probe_pixel(1, 1)
    sample, pinned = blocker.args
    assert pinned is False
    assert sample.readout().startswith("x:1, y:1  linear: R 0.500000")

    with qtbot.waitSignal(controller.probeUpdated, timeout=2000) as blocker:
        controller.toggle_pipette(3, 0)
    assert blocker.args[1] is True
    assert controller.pipette_fixed

    assert controller.probe_pixel(2, 1) is None
    controller.toggle_pipette(0, 0)
    assert not controller.pipette_fixed
    assert len(bridge.calls_for("probe_pixel")) == 2


def test_transforms_load_and_apply(qtbot, controller, bridge) -> None:
    bridge.handlers["transform_presets"] = lambda args: [
        {"label": "ACEScg to sRGB", "src_space": "acescg", "dst_space": "srgb", "size": 80},
        "garbage",
    ]
    bridge.handlers["get_default_transform"] = lambda args: "ACEScg to sRGB"

    with qtbot.waitSignal(controller.transformsLoaded, timeout=2000) as blocker:
        controller.load_transforms()
    assert blocker.args == [["NonTransform", "ACEScg to sRGB"], "ACEScg to sRGB"]

    qtbot.waitUntil(lambda: bool(bridge.calls_for("set_lut_3d")), timeout=2000)
    assert bridge.calls_for("set_lut_3d")[0]["size"] == 65
    qtbot.waitUntil(lambda: controller.parameters.use_state_lut is True, timeout=2000)

    controller.apply_transform("NonTransform")
    qtbot.waitUntil(lambda: controller.parameters.use_state_lut is False, timeout=2000)
    assert "clear_lut" in bridge.commands()

    assert controller.apply_transform("Unknown") is None


def test_export_queue_runs_and_restores_document(qtbot, controller, bridge) -> None:
    _open(qtbot, controller)
    tasks = controller.enqueue_exports(["/shots/x.exr", "/shots/y.exr"])
    changes = _record(controller.exportTasksChanged)

    with qtbot.waitSignal(controller.exportsFinished, timeout=3000) as blocker:
        controller.start_exports()

    assert [task.state for task in blocker.args[0]] == [ExportTaskState.COMPLETED] * 2
    assert [args["outPath"] for args in bridge.calls_for("export_preview_png")] == [
        "/shots/x.png",
        "/shots/y.png",
    ]
    qtbot.waitUntil(lambda: bridge.calls_for("open_image")[-1]["path"] == "/shots/a.exr", timeout=2000)
    assert len(bridge.calls_for("open_image")) == 4
    assert any(args[0] is tasks[0] for args in changes)


def _blocking_export_open(bridge: FakeBridge, path: str) -> threading.Event:
    """Make opening ``path`` block until ``cancel_open`` arrives, then fail as cancelled."""

    entered = threading.Event()
    cancelled = threading.Event()

    def open_image(args):
        if args["path"] == path:
            entered.set()
            cancelled.wait(5.0)
            raise RuntimeError("Open cancelled")
        return preview_payload(4, 2, RED)

    bridge.handlers["open_image"] = open_image
    bridge.handlers["cancel_open"] = lambda args: cancelled.set()
    return entered


def test_export_cancel_is_not_starved_by_hover_sampling(qtbot, controller, bridge) -> None:
    _open(qtbot, controller)
    entered = _blocking_export_open(bridge, "/shots/x.exr")
    (task,) = controller.enqueue_exports(["/shots/x.exr"])

    with qtbot.waitSignal(controller.exportsFinished, timeout=5000) as blocker:
        controller.start_exports()
        assert entered.wait(2.0)
        for x in range(6):
            controller.probe_pixel(x, 1)
        assert controller.cancel_export(task.id)
        qtbot.waitUntil(lambda: "cancel_open" in bridge.commands(), timeout=3000)

    assert [t.state for t in blocker.args[0]] == [ExportTaskState.CANCELLED]
    qtbot.waitUntil(lambda: bridge.calls_for("probe_pixel")[-1:] == [{"px": 5, "py": 1}], timeout=3000)
    qtbot.wait(50)
    # One sample for the first position, one for the newest.
    assert [args["px"] for args in bridge.calls_for("probe_pixel")] == [0, 5]


def test_running_export_cancel_leaves_queued_tasks(qtbot, controller, bridge) -> None:
    _open(qtbot, controller)
    entered = _blocking_export_open(bridge, "/shots/x.exr")
    open_other = bridge.handlers["open_image"]

    def open_image(args):
        if args["path"] == "/shots/y.exr":
            bridge.emit("export-progress", 40)
        return open_other(args)

    bridge.handlers["open_image"] = open_image
    visibility = _record(controller.progressVisibilityChanged)
    progress = _record(controller.progressChanged)

    with qtbot.waitSignal(controller.exportsFinished, timeout=5000) as blocker:
        controller.enqueue_exports(["/shots/x.exr", "/shots/y.exr"])
        controller.start_exports()
        assert entered.wait(2.0)
        assert controller.cancel_running_export()

    states = [task.state for task in blocker.args[0]]
    assert states == [ExportTaskState.CANCELLED, ExportTaskState.COMPLETED]
    assert [args["outPath"] for args in bridge.calls_for("export_preview_png")] == ["/shots/y.png"]
    assert visibility[0] == ("EXPORT", True)
    assert visibility[-1] == ("EXPORT", False)
    assert ("EXPORT", 40) in progress
    assert controller.cancel_running_export() is False


def test_dispose_cancels_running_export_off_the_gui_thread(qtbot, controller, bridge) -> None:
    _open(qtbot, controller)
    entered = _blocking_export_open(bridge, "/shots/x.exr")
    cancel_threads = []
    release = bridge.handlers["cancel_open"]

    def cancel_open(args):
        cancel_threads.append(threading.current_thread())
        release(args)

    bridge.handlers["cancel_open"] = cancel_open
    controller.enqueue_exports(["/shots/x.exr"])
    controller.start_exports()
    assert entered.wait(2.0)

    controller.dispose()

    qtbot.waitUntil(lambda: bool(cancel_threads), timeout=3000)
    assert cancel_threads[0] is not threading.main_thread()


def test_png_export(qtbot, controller, bridge) -> None:
    with qtbot.waitSignal(controller.pngExported, timeout=2000) as blocker:
        controller.export_preview_png("/out/frame.png")
    assert blocker.args == ["/out/frame.png"]
    assert bridge.calls_for("export_preview_png") == [{"outPath": "/out/frame.png"}]


def test_sequence_fps_reports_summary(qtbot, controller, bridge) -> None:
    progress = _record(controller.progressChanged)

    def seq_fps(args):
        bridge.emit("seq-progress", 30)
        return {"success": 3, "failure": 1}

    bridge.handlers["seq_fps"] = seq_fps

    with qtbot.waitSignal(controller.sequenceFinished, timeout=2000) as blocker:
        controller.apply_sequence_fps(SequenceFpsRequest("/seq", fps=25, dry_run=True))

    summary = blocker.args[0]
    assert summary.total == 4
    assert summary.dry_run is True
    assert bridge.calls_for("seq_fps")[0]["dryRun"] is True
    qtbot.waitUntil(lambda: ("SEQUENCE", 30) in progress, timeout=2000)


def test_missing_bridge_is_reported(qtbot) -> None:
    controller = PreviewController(config=ControllerConfig(ready_timeout=0.05, poll_interval=0.005))
    controller.initialize(load_presets=False)
    try:
        with qtbot.waitSignal(controller.errorRaised, timeout=3000) as blocker:
            controller.open_image("/shots/a.exr")
        assert "not available" in blocker.args[0]
    finally:
        controller.dispose()


def test_dispose_ignores_late_work(qtbot, controller, bridge) -> None:
    controller.dispose()
    assert controller.open_image("/shots/a.exr") is None
    controller.set_exposure(1.0)
    assert controller.request_preview_update() is None
    qtbot.wait(80)
    assert bridge.calls_for("open_image") == []


def _ocio_handlers(bridge: FakeBridge) -> None:
    views = {"sRGB": ["Raw", "ACES 1.0 SDR"], "Rec.709": ["Raw", "Film"]}
    bridge.handlers["ocio_displays"] = lambda args: ["sRGB", "Rec.709"]
    bridge.handlers["ocio_selection"] = lambda args: ["Rec.709", "Film"]
    bridge.handlers["ocio_views"] = lambda args: views[args["display"]]


def test_ocio_state_is_loaded(qtbot, controller, bridge) -> None:
    _ocio_handlers(bridge)

    with qtbot.waitSignal(controller.ocioLoaded, timeout=2000) as blocker:
        controller.load_ocio()

    state = blocker.args[0]
    assert state.available
    assert state.displays == ("sRGB", "Rec.709")
    assert (state.display, state.view) == ("Rec.709", "Film")
    assert state.views == ("Raw", "Film")
    assert bridge.calls_for("ocio_views") == [{"display": "Rec.709"}]
    assert controller.ocio == state

    with qtbot.waitSignal(controller.ocioViewsLoaded, timeout=2000) as blocker:
        controller.load_ocio_views("sRGB")
    assert blocker.args == ["sRGB", ["Raw", "ACES 1.0 SDR"]]


def test_ocio_is_unavailable_without_displays(qtbot, controller, bridge) -> None:
    bridge.handlers["ocio_displays"] = lambda args: []

    with qtbot.waitSignal(controller.ocioLoaded, timeout=2000) as blocker:
        controller.load_ocio()

    assert not blocker.args[0].available
    assert "ocio_selection" not in bridge.commands()


def test_applying_ocio_refreshes_the_preview(qtbot, controller, bridge) -> None:
    _ocio_handlers(bridge)
    _open(qtbot, controller)

    controller.apply_ocio("sRGB", "ACES 1.0 SDR")

    qtbot.waitUntil(lambda: len(bridge.calls_for("update_preview")) == 1, timeout=2000)
    assert bridge.calls_for("set_ocio_display_view") == [{"display": "sRGB", "view": "ACES 1.0 SDR"}]
    assert (controller.ocio.display, controller.ocio.view) == ("sRGB", "ACES 1.0 SDR")
    assert controller.apply_ocio("sRGB", "") is None


def test_progress_config_round_trip(qtbot, controller, bridge) -> None:
    bridge.handlers["get_progress_config"] = lambda args: [250, 1.5]

    with qtbot.waitSignal(controller.progressConfigLoaded, timeout=2000) as blocker:
        controller.load_progress_config()
    assert (blocker.args[0].interval_ms, blocker.args[0].pct_threshold) == (250, 1.5)

    controller.set_progress_config(50, 2.0)
    qtbot.waitUntil(lambda: controller.progress_config.interval_ms == 50, timeout=2000)
    assert bridge.calls_for("set_progress_config") == [{"intervalMs": 50, "pctThreshold": 2.0}]

    assert controller.set_progress_config(-1, 0.5) is None
    assert controller.set_progress_config(100, 150.0) is None


def test_initialize_loads_presets(qtbot, bridge) -> None:
    _ocio_handlers(bridge)
    bridge.handlers["transform_presets"] = lambda args: []
    bridge.handlers["get_progress_config"] = lambda args: {"intervalMs": 200, "pctThreshold": 1.0}
    controller = PreviewController(config=ControllerConfig(ready_timeout=1.0, poll_interval=0.005))
    try:
        with qtbot.waitSignals(
            [controller.transformsLoaded, controller.ocioLoaded, controller.progressConfigLoaded], timeout=3000
        ):
            controller.initialize()
        assert controller.progress_config.interval_ms == 200
        assert controller.ocio.display == "Rec.709"
    finally:
        controller.dispose()
