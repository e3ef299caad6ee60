"""Preview and scope orchestration for one open document.

:class:`PreviewController` is the seam between the Qt user interface and the
backend engine.  Every backend call runs on a :class:`ThreadController`
worker; its outcome travels back to the GUI thread through a queued signal so
that all controller state (preview buffers, scope stats, parameters) is only
ever touched from one thread.

Preview requests (``open_image`` and ``update_preview``) carry a
monotonically increasing sequence number.  When responses overlap, only the
one matching the most recently dispatched request is rendered; older ones are
dropped instead of overwriting newer pixels.

Updates and pixel probes are coalesced: at most one of each is in flight and
a request made meanwhile replaces any earlier waiting one.  Cancel commands
go through their own single worker and never take the gateway lock, so they
reach the engine while the operation they target still holds it.
"""

from __future__ import annotations

import concurrent.futures
import logging
from dataclasses import dataclass, replace
from functools import partial
from typing import Any, Callable, Dict, List, Optional, Tuple

import numpy as np
from PyQt5 import QtCore  # type: ignore

from exr_inspector.core.cancellation import CancellationToken, OperationKind, ProgressChannel
from exr_inspector.core.commands import (
    NON_TRANSFORM_LABEL,
    CommandValidationError,
    DefaultTransformRequest,
    ExportPreviewRequest,
    OcioDisplayViewRequest,
    OcioState,
    OcioViewsRequest,
    PixelSample,
    PreviewParameters,
    PreviewResult,
    ProbePixelRequest,
    ProgressConfig,
    ProResExportRequest,
    ReadMetadataRequest,
    SequenceFpsRequest,
    SequenceSummary,
    TransformPreset,
    label_list,
)
from exr_inspector.core.gateway import BridgeUnavailableError, CommandGateway, is_cancellation_error
from exr_inspector.core.settings_manager import ControllerConfig
from exr_inspector.core.threading import ThreadController
from exr_inspector.data import AttributeTable, ScopeStats, WaveformStats, decode_raster
from exr_inspector.processing import ExportQueue, ExportTask, ExportTaskState
from exr_inspector.rendering import (
    ChannelMode,
    PaintTarget,
    PreviewCompositor,
    PreviewState,
    ScopeChannel,
    ScopeRenderer,
    ScopeViewConfig,
)

from .scheduler import DebouncedUpdateScheduler


LOGGER = logging.getLogger(__name__)


@dataclass
class _Completion:
    on_success: Callable[[Any], None]
    on_error: Callable[[BaseException], None]
    finalizer: Optional[Callable[[], None]] = None
    result: Any = None
    error: Optional[BaseException] = None


@dataclass(frozen=True)
class _PreviewPayload:
    sequence: int
    width: int
    height: int
    pixels: np.ndarray
    stats: Optional[ScopeStats]
    waveform: Optional[WaveformStats]
    path: Optional[str] = None
    attributes: Optional[AttributeTable] = None


class PreviewController(QtCore.QObject):
    """Coordinates backend calls, preview buffers and scopes for one document."""

    statusChanged = QtCore.pyqtSignal(str)
    errorRaised = QtCore.pyqtSignal(str)
    errorCleared = QtCore.pyqtSignal()
    logMessage = QtCore.pyqtSignal(str)
    progressChanged = QtCore.pyqtSignal(str, int)
    progressVisibilityChanged = QtCore.pyqtSignal(str, bool)
    previewUpdated = QtCore.pyqtSignal(object)
    scopesUpdated = QtCore.pyqtSignal()
    probeUpdated = QtCore.pyqtSignal(object, bool)
    attributesLoaded = QtCore.pyqtSignal(object)
    transformsLoaded = QtCore.pyqtSignal(list, str)
    ocioLoaded = QtCore.pyqtSignal(object)
    ocioViewsLoaded = QtCore.pyqtSignal(str, list)
    progressConfigLoaded = QtCore.pyqtSignal(object)
    exportTasksChanged = QtCore.pyqtSignal(object)
    exportsFinished = QtCore.pyqtSignal(list)
    sequenceFinished = QtCore.pyqtSignal(object)
    videoFinished = QtCore.pyqtSignal(str)
    pngExported = QtCore.pyqtSignal(str)

    _completed = QtCore.pyqtSignal(object)

    def __init__(
        self,
        gateway: Optional[CommandGateway] = None,
        *,
        config: Optional[ControllerConfig] = None,
        preview_target: Optional[PaintTarget] = None,
        histogram_target: Optional[PaintTarget] = None,
        waveform_target: Optional[PaintTarget] = None,
        thread_controller: Optional[ThreadController] = None,
        parent: Optional[QtCore.QObject] = None,
    ) -> None:
        super().__init__(parent)
        self._config = config or ControllerConfig()
        self._gateway = gateway or CommandGateway(
            poll_interval=self._config.poll_interval,
            ready_timeout=self._config.ready_timeout,
        )
        self._channel = ProgressChannel(self._gateway)
        self._threads = thread_controller or ThreadController(max_workers=4, name="exr-preview")
        self._export_threads = ThreadController(max_workers=1, name="exr-export")
        self._cancel_threads = ThreadController(max_workers=1, name="exr-cancel")

        self._compositor = PreviewCompositor(preview_target, status_sink=self.statusChanged.emit)
        self._scopes = ScopeRenderer(histogram_target=histogram_target, waveform_target=waveform_target)
        self._scope_config = ScopeViewConfig(ScopeChannel(self._config.scope_channel), self._config.scope_scale)
        self._stats: Optional[ScopeStats] = None
        self._waveform: Optional[WaveformStats] = None

        self._params = PreviewParameters(
            max_size=self._config.preview_max_size,
            high_quality=self._config.high_quality,
        )
        self._scheduler = DebouncedUpdateScheduler(
            self.request_preview_update,
            quiet_period_ms=self._config.debounce_ms,
            parent=self,
        )
        self._export_queue = ExportQueue(
            self._gateway,
            channel=self._channel,
            max_size=self._config.export_max_size,
            ready_timeout=self._config.ready_timeout,
        )

        self._tokens: Dict[OperationKind, CancellationToken] = {}
        self._transforms: Dict[str, TransformPreset] = {}
        self._attributes = AttributeTable()
        self._document_path: Optional[str] = None
        self._ocio = OcioState()
        self._progress_config = ProgressConfig()
        self._latest_sequence = 0
        self._update_in_flight = False
        self._update_requested = False
        self._probe_in_flight = False
        self._probe_next: Optional[Tuple[ProbePixelRequest, bool]] = None
        self._pipette_fixed = False
        self._initialized = False
        self._disposed = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def initialize(self, *, load_presets: bool = True) -> None:
        """Connect the completion signal; optionally fetch transforms, OCIO and progress settings."""

        if self._initialized:
            return
        self._initialized = True
        self._completed.connect(self._on_completed, QtCore.Qt.QueuedConnection)
        self._export_queue.add_listener(self._on_export_task)
        if load_presets:
            self.load_transforms()
            self.load_ocio()
            self.load_progress_config()
        LOGGER.info("Preview controller ready", extra={"component": "PreviewController"})

    def dispose(self) -> None:
        if self._disposed:
            return
        self._disposed = True
        self._scheduler.cancel()
        for token in list(self._tokens.values()):
            token.cancel()
        self._tokens.clear()
        self._probe_next = None
        self._update_requested = False
        # Export cancellation may call into the engine; queued work on this
        # pool still runs after shutdown.
        self._cancel_threads.submit(self._export_queue.cancel_all)
        self._export_queue.remove_listener(self._on_export_task)
        self._threads.shutdown(wait=False)
        self._export_threads.shutdown(wait=False)
        self._cancel_threads.shutdown(wait=False, cancel_pending=False)
        LOGGER.info("Preview controller disposed", extra={"component": "PreviewController"})

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------
    @property
    def gateway(self) -> CommandGateway:
        return self._gateway

    @property
    def state(self) -> PreviewState:
        return self._compositor.state

    @property
    def compositor(self) -> PreviewCompositor:
        return self._compositor

    @property
    def scope_renderer(self) -> ScopeRenderer:
        return self._scopes

    @property
    def scheduler(self) -> DebouncedUpdateScheduler:
        return self._scheduler

    @property
    def parameters(self) -> PreviewParameters:
        return self._params

    @property
    def scope_config(self) -> ScopeViewConfig:
        return self._scope_config

    @property
    def stats(self) -> Optional[ScopeStats]:
        return self._stats

    @property
    def waveform(self) -> Optional[WaveformStats]:
        return self._waveform

    @property
    def attributes(self) -> AttributeTable:
        return self._attributes

    @property
    def export_queue(self) -> ExportQueue:
        return self._export_queue

    @property
    def transforms(self) -> List[str]:
        return list(self._transforms)

    @property
    def document_path(self) -> Optional[str]:
        return self._document_path

    @property
    def has_image(self) -> bool:
        return self._compositor.state.current is not None

    @property
    def pipette_fixed(self) -> bool:
        return self._pipette_fixed

    @property
    def latest_sequence(self) -> int:
        return self._latest_sequence

    def is_busy(self, kind: OperationKind) -> bool:
        return kind in self._tokens

    # ------------------------------------------------------------------
    # Opening and updating the preview
    # ------------------------------------------------------------------
    def open_image(self, path: str) -> Optional[concurrent.futures.Future]:
        """Open ``path`` in the backend and install the decoded preview."""

        try:
            request = self._params.open_request(path)
        except CommandValidationError as exc:
            LOGGER.warning("Open rejected: %s", exc)
            self.errorRaised.emit(self.tr("Open failed: {error}").format(error=exc))
            return None

        sequence = self._next_sequence()
        token = CancellationToken()
        self._tokens[OperationKind.OPEN] = token
        self._show_progress(OperationKind.OPEN)
        LOGGER.info("Opening %s", request.path)

        def work() -> _PreviewPayload:
            with self._channel.tracked(
                OperationKind.OPEN, partial(self._emit_progress, OperationKind.OPEN), token=token
            ):
                with self._gateway.exclusive():
                    result = PreviewResult.from_payload(self._gateway.invoke(request))
                    token.raise_if_cancelled()
                    stats, waveform = self._fetch_scopes()
                    token.raise_if_cancelled()
            attributes = self._read_attributes(request.path)
            pixels = decode_raster(result.raster, expected_size=(result.width, result.height))
            token.raise_if_cancelled()
            return _PreviewPayload(
                sequence, result.width, result.height, pixels, stats, waveform, request.path, attributes
            )

        return self._run(
            work,
            partial(self._apply_preview, token=token),
            on_error=partial(self._handle_failure, "Open", alert=True),
            finalizer=partial(self._finish_tracked, OperationKind.OPEN, token),
            token=token,
        )

    def cancel_open(self) -> None:
        self._cancel_tracked(OperationKind.OPEN)

    def request_preview_update(self) -> Optional[concurrent.futures.Future]:
        """Ask the backend for a new preview using the parameters current right now."""

        if self._disposed:
            return None
        if not self.has_image:
            LOGGER.debug("Preview update skipped: no image open")
            return None
        if self._update_in_flight:
            # Re-issued with the parameters current when the running one lands.
            self._update_requested = True
            return None
        try:
            request = self._params.update_request()
        except CommandValidationError as exc:
            LOGGER.warning("Preview update rejected: %s", exc)
            return None
        sequence = self._next_sequence()

        def work() -> _PreviewPayload:
            with self._gateway.exclusive():
                result = PreviewResult.from_payload(self._gateway.invoke(request))
                stats, waveform = self._fetch_scopes()
            pixels = decode_raster(result.raster, expected_size=(result.width, result.height))
            return _PreviewPayload(sequence, result.width, result.height, pixels, stats, waveform)

        self._update_in_flight = True
        return self._run(
            work,
            self._apply_preview,
            on_error=partial(self._handle_failure, "Update", alert=True),
            finalizer=self._finish_update,
        )

    def _finish_update(self) -> None:
        self._update_in_flight = False
        if self._update_requested and not self._disposed:
            self._update_requested = False
            self.request_preview_update()

    def set_exposure(self, exposure: float) -> None:
        self._params.exposure = float(exposure)
        self._scheduler.trigger()

    def set_gamma(self, gamma: float) -> None:
        if not float(gamma) > 0:
            LOGGER.warning("Ignoring non-positive gamma %s", gamma)
            return
        self._params.gamma = float(gamma)
        self._scheduler.trigger()

    def set_use_state_lut(self, enabled: bool) -> None:
        self._params.use_state_lut = bool(enabled)
        self._scheduler.trigger()

    def _apply_preview(self, payload: _PreviewPayload, token: Optional[CancellationToken] = None) -> None:
        if token is not None and token.cancelled:
            LOGGER.info("Open of %s cancelled; result discarded", payload.path)
            return
        if payload.path is not None:
            self._document_path = payload.path
            if payload.attributes is not None:
                self._attributes = payload.attributes
                self.attributesLoaded.emit(self._attributes)
        if payload.sequence != self._latest_sequence:
            LOGGER.debug("Discarding stale preview #%s (latest #%s)", payload.sequence, self._latest_sequence)
            return
        self._compositor.on_decode_success(payload.width, payload.height, payload.pixels)
        self._install_scopes(payload.stats, payload.waveform)
        self.errorCleared.emit()
        self.previewUpdated.emit(self._compositor.state)
        LOGGER.info("Preview #%s: %sx%s", payload.sequence, payload.width, payload.height)

    def _next_sequence(self) -> int:
        self._latest_sequence += 1
        return self._latest_sequence

    # ------------------------------------------------------------------
    # Client side presentation
    # ------------------------------------------------------------------
    def set_channel_mode(self, mode: ChannelMode | str) -> None:
        self._compositor.set_channel_mode(ChannelMode(mode))
        self.previewUpdated.emit(self._compositor.state)

    def toggle_compare(self) -> bool:
        active = self._compositor.toggle_compare()
        self.previewUpdated.emit(self._compositor.state)
        return active

    def set_scope_channel(self, channel: ScopeChannel | str) -> None:
        self._scope_config = replace(self._scope_config, channel_filter=ScopeChannel(channel))
        self._draw_scopes()

    def set_scope_scale(self, scale: float) -> None:
        try:
            self._scope_config = replace(self._scope_config, scale=float(scale))
        except (TypeError, ValueError):
            LOGGER.warning("Ignoring invalid scope scale %r", scale)
            return
        self._draw_scopes()

    # ------------------------------------------------------------------
    # Scopes
    # ------------------------------------------------------------------
    def refresh_scopes(self) -> Optional[concurrent.futures.Future]:
        if not self.has_image:
            return None

        def work() -> Tuple[Optional[ScopeStats], Optional[WaveformStats]]:
            with self._gateway.exclusive():
                return self._fetch_scopes()

        return self._run(
            work,
            lambda scopes: self._install_scopes(*scopes),
            on_error=partial(self._handle_failure, "Scope refresh", alert=False),
        )

    def _fetch_scopes(self) -> Tuple[Optional[ScopeStats], Optional[WaveformStats]]:
        stats: Optional[ScopeStats] = None
        waveform: Optional[WaveformStats] = None
        try:
            stats = ScopeStats.from_payload(self._gateway.invoke("image_stats"))
        except Exception as exc:
            LOGGER.warning("Histogram statistics unavailable: %s", exc)
        try:
            waveform = WaveformStats.from_payload(self._gateway.invoke("image_waveform"))
        except Exception as exc:
            LOGGER.warning("Waveform statistics unavailable: %s", exc)
        return stats, waveform

    def _install_scopes(self, stats: Optional[ScopeStats], waveform: Optional[WaveformStats]) -> None:
        self._stats = stats
        self._waveform = waveform
        self._draw_scopes()

    def _draw_scopes(self) -> None:
        self._scopes.draw_histogram(self._stats, self._scope_config)
        self._scopes.draw_waveform(self._waveform, self._scope_config)
        self.scopesUpdated.emit()

    # ------------------------------------------------------------------
    # Pixel probing
    # ------------------------------------------------------------------
    def probe_pixel(self, x: int, y: int) -> Optional[concurrent.futures.Future]:
        """Sample the linear pixel under the cursor unless the pipette is pinned."""

        if not self.has_image or self._pipette_fixed:
            return None
        return self._start_probe(x, y, pinned=False)

    def toggle_pipette(self, x: int, y: int) -> Optional[concurrent.futures.Future]:
        """Pin the readout to ``(x, y)``, or release a pinned readout."""

        if not self.has_image:
            return None
        if self._pipette_fixed:
            self._pipette_fixed = False
            return None
        self._pipette_fixed = True
        return self._start_probe(x, y, pinned=True)

    def _start_probe(self, x: int, y: int, *, pinned: bool) -> Optional[concurrent.futures.Future]:
        try:
            request = ProbePixelRequest(int(x), int(y))
        except CommandValidationError:
            return None
        if self._probe_in_flight:
            # Only the newest cursor position is worth sampling.
            self._probe_next = (request, pinned)
            return None
        self._probe_next = None

        def work() -> PixelSample:
            with self._gateway.exclusive():
                return PixelSample.from_payload(request.x, request.y, self._gateway.invoke(request))

        def apply(sample: PixelSample) -> None:
            if self._probe_next is None:
                self.probeUpdated.emit(sample, pinned)

        def ignore(error: BaseException) -> None:
            LOGGER.debug("Pixel probe failed: %s", error)
            if pinned:
                self._pipette_fixed = False

        self._probe_in_flight = True
        return self._run(work, apply, on_error=ignore, finalizer=self._finish_probe)

    def _finish_probe(self) -> None:
        self._probe_in_flight = False
        waiting, self._probe_next = self._probe_next, None
        if waiting is None or self._disposed or not self.has_image:
            return
        request, pinned = waiting
        if self._pipette_fixed != pinned:
            return
        self._start_probe(request.x, request.y, pinned=pinned)

    # ------------------------------------------------------------------
    # PNG export
    # ------------------------------------------------------------------
    def export_preview_png(self, output_path: str) -> Optional[concurrent.futures.Future]:
        try:
            request = ExportPreviewRequest(output_path)
        except CommandValidationError as exc:
            self.errorRaised.emit(self.tr("Save failed: {error}").format(error=exc))
            return None

        def work() -> str:
            with self._gateway.exclusive():
                self._gateway.invoke(request)
            return request.output_path

        def done(path: str) -> None:
            LOGGER.info("PNG saved: %s", path)
            self.pngExported.emit(path)

        return self._run(work, done, on_error=partial(self._handle_failure, "Save", alert=True))

    def _on_export_task(self, task: ExportTask) -> None:
        # Runs on the export worker as well as the GUI thread.
        self.exportTasksChanged.emit(task)
        if task.state is ExportTaskState.RUNNING:
            self.progressChanged.emit(OperationKind.EXPORT.name, task.progress_percent)

    def enqueue_exports(self, paths: List[str]) -> List[ExportTask]:
        return [self._export_queue.enqueue(path) for path in paths if path]

    def cancel_export(self, task_id: str) -> bool:
        # The running task's cancel command may block, so it never runs on the GUI thread.
        if self._disposed or self._export_queue.get(task_id) is None:
            return False
        self._cancel_threads.submit(self._export_queue.cancel, task_id)
        return True

    def cancel_running_export(self) -> bool:
        """Cancel the task being exported now; queued tasks are left alone."""

        task = self._export_queue.active_task
        if task is None:
            LOGGER.debug("No export running")
            return False
        return self.cancel_export(task.id)

    def start_exports(self) -> Optional[concurrent.futures.Future]:
        if self._export_queue.is_processing or not len(self._export_queue):
            return None
        self._show_progress(OperationKind.EXPORT)

        def restore(finished: List[ExportTask]) -> None:
            self.exportsFinished.emit(finished)
            if finished and self._document_path is not None:
                self._restore_document()

        return self._run(
            self._export_queue.run_pending,
            restore,
            on_error=partial(self._handle_failure, "Export queue", alert=True),
            finalizer=partial(self.progressVisibilityChanged.emit, OperationKind.EXPORT.name, False),
            controller=self._export_threads,
        )

    def _restore_document(self) -> None:
        """Re-open the current document so probes and updates target it again."""

        path = self._document_path
        try:
            request = self._params.open_request(path or "")
        except CommandValidationError:
            return

        def work() -> None:
            with self._gateway.exclusive():
                self._gateway.invoke(request)

        self._run(
            work,
            lambda _result: LOGGER.debug("Backend document restored: %s", path),
            on_error=partial(self._handle_failure, "Restore", alert=False),
        )

    # ------------------------------------------------------------------
    # Transforms
    # ------------------------------------------------------------------
    def load_transforms(self) -> Optional[concurrent.futures.Future]:
        def work() -> Tuple[List[TransformPreset], Optional[str]]:
            presets = []
            for entry in self._gateway.invoke("transform_presets") or []:
                try:
                    presets.append(TransformPreset.from_payload(entry))
                except (AttributeError, CommandValidationError, TypeError, ValueError):
                    LOGGER.debug("Skipping malformed transform preset %r", entry)
            try:
                default = self._gateway.invoke("get_default_transform")
            except Exception as exc:
                LOGGER.debug("No default transform: %s", exc)
                default = None
            return presets, default

        return self._run(work, self._apply_transforms, on_error=partial(self._handle_failure, "Transform list", alert=False))

    def _apply_transforms(self, loaded: Tuple[List[TransformPreset], Optional[str]]) -> None:
        presets, default = loaded
        self._transforms = {preset.label: preset for preset in presets}
        labels = [NON_TRANSFORM_LABEL, *self._transforms]
        if default in labels:
            selected = str(default)
        elif self._config.default_transform in labels:
            selected = self._config.default_transform
        else:
            selected = labels[0]
        LOGGER.info("Loaded %d transform presets", len(presets))
        self.transformsLoaded.emit(labels, selected)
        self.apply_transform(selected)

    def apply_transform(self, label: str) -> Optional[concurrent.futures.Future]:
        if label == NON_TRANSFORM_LABEL:

            def work() -> bool:
                try:
                    self._gateway.invoke("clear_lut")
                except BridgeUnavailableError:
                    raise
                except Exception as exc:
                    LOGGER.debug("clear_lut failed: %s", exc)
                return False

        else:
            preset = self._transforms.get(label)
            if preset is None:
                LOGGER.warning("Unknown transform %s", label)
                return None
            request = preset.lut_request()

            def work() -> bool:
                with self._gateway.exclusive():
                    self._gateway.invoke(request)
                return True

        def applied(use_state_lut: bool) -> None:
            self._params.use_state_lut = use_state_lut
            LOGGER.info("Transform applied: %s", label)
            self._scheduler.trigger()

        return self._run(work, applied, on_error=partial(self._handle_failure, "Transform", alert=False))

    def set_default_transform(self, label: str) -> Optional[concurrent.futures.Future]:
        try:
            request = DefaultTransformRequest(label)
        except CommandValidationError:
            return None
        return self._run(
            lambda: self._gateway.invoke(request),
            lambda _result: LOGGER.info("Default transform saved: %s", label),
            on_error=partial(self._handle_failure, "Default transform", alert=False),
        )

    # ------------------------------------------------------------------
    # OCIO display/view
    # ------------------------------------------------------------------
    @property
    def ocio(self) -> OcioState:
        return self._ocio

    def load_ocio(self) -> Optional[concurrent.futures.Future]:
        """Fetch the OCIO displays, the active pair and that display's views.

        An engine without an OCIO config reports no displays; the result is
        then an empty :class:`OcioState` and callers hide their OCIO controls.
        """

        def work() -> OcioState:
            displays = label_list(self._gateway.invoke("ocio_displays"))
            if not displays:
                return OcioState()
            try:
                selection = label_list(self._gateway.invoke("ocio_selection"))
            except BridgeUnavailableError:
                raise
            except Exception as exc:
                LOGGER.debug("No OCIO selection: %s", exc)
                selection = ()
            display = selection[0] if selection and selection[0] in displays else displays[0]
            view = selection[1] if len(selection) > 1 else ""
            views = label_list(self._gateway.invoke(OcioViewsRequest(display)))
            if view not in views:
                view = views[0] if views else ""
            return OcioState(displays, display, views, view)

        def loaded(state: OcioState) -> None:
            self._ocio = state
            if state.available:
                LOGGER.info("OCIO: %d displays, active %s / %s", len(state.displays), state.display, state.view)
            else:
                LOGGER.info("OCIO not available")
            self.ocioLoaded.emit(state)

        return self._run(work, loaded, on_error=partial(self._handle_failure, "OCIO", alert=False))

    def load_ocio_views(self, display: str) -> Optional[concurrent.futures.Future]:
        try:
            request = OcioViewsRequest(display)
        except CommandValidationError:
            return None

        def loaded(views: Tuple[str, ...]) -> None:
            self.ocioViewsLoaded.emit(request.display, list(views))

        return self._run(
            lambda: label_list(self._gateway.invoke(request)),
            loaded,
            on_error=partial(self._handle_failure, "OCIO views", alert=False),
        )

    def apply_ocio(self, display: str, view: str) -> Optional[concurrent.futures.Future]:
        """Select an OCIO display/view pair and refresh the preview."""

        try:
            request = OcioDisplayViewRequest(display, view)
        except CommandValidationError as exc:
            LOGGER.warning("OCIO selection rejected: %s", exc)
            return None

        def work() -> None:
            with self._gateway.exclusive():
                self._gateway.invoke(request)

        def applied(_result: None) -> None:
            self._ocio = replace(self._ocio, display=request.display, view=request.view)
            LOGGER.info("OCIO applied: %s / %s", request.display, request.view)
            self._scheduler.trigger()

        return self._run(work, applied, on_error=partial(self._handle_failure, "OCIO", alert=False))

    # ------------------------------------------------------------------
    # Progress event rate
    # ------------------------------------------------------------------
    @property
    def progress_config(self) -> ProgressConfig:
        return self._progress_config

    def load_progress_config(self) -> Optional[concurrent.futures.Future]:
        def loaded(config: ProgressConfig) -> None:
            self._progress_config = config
            self.progressConfigLoaded.emit(config)

        return self._run(
            lambda: ProgressConfig.from_payload(self._gateway.invoke("get_progress_config")),
            loaded,
            on_error=partial(self._handle_failure, "Progress settings", alert=False),
        )

    def set_progress_config(self, interval_ms: int, pct_threshold: float) -> Optional[concurrent.futures.Future]:
        try:
            config = ProgressConfig(interval_ms, pct_threshold)
        except CommandValidationError as exc:
            LOGGER.warning("Progress settings rejected: %s", exc)
            return None

        def saved(_result: Any) -> None:
            self._progress_config = config
            LOGGER.info("Progress events: every %d ms, %.2f%% step", config.interval_ms, config.pct_threshold)

        return self._run(
            lambda: self._gateway.invoke(config),
            saved,
            on_error=partial(self._handle_failure, "Progress settings", alert=False),
        )

    # ------------------------------------------------------------------
    # Metadata
    # ------------------------------------------------------------------
    def load_attributes(self, path: str) -> Optional[concurrent.futures.Future]:
        def work() -> Optional[AttributeTable]:
            return self._read_attributes(path)

        def loaded(table: Optional[AttributeTable]) -> None:
            if table is None:
                return
            self._attributes = table
            self.attributesLoaded.emit(table)

        return self._run(work, loaded, on_error=partial(self._handle_failure, "Metadata", alert=False))

    def _read_attributes(self, path: str) -> Optional[AttributeTable]:
        try:
            entries = self._gateway.invoke(ReadMetadataRequest(path))
        except Exception as exc:
            LOGGER.warning("Metadata read failed for %s: %s", path, exc)
            return None
        table = AttributeTable()
        try:
            table.load(entries or [])
        except (TypeError, ValueError) as exc:
            LOGGER.warning("Malformed metadata for %s: %s", path, exc)
            return None
        return table

    # ------------------------------------------------------------------
    # Sequence and video workflows
    # ------------------------------------------------------------------
    def apply_sequence_fps(self, request: SequenceFpsRequest) -> Optional[concurrent.futures.Future]:
        if OperationKind.SEQUENCE in self._tokens:
            LOGGER.warning("Sequence frame-rate update already running")
            return None
        token = CancellationToken()
        self._tokens[OperationKind.SEQUENCE] = token
        self._show_progress(OperationKind.SEQUENCE)
        LOGGER.info(
            "seq_fps: dir=%s fps=%s attr=%s recursive=%s dryRun=%s",
            request.directory, request.fps, request.attribute, request.recursive, request.dry_run,
        )

        def work() -> SequenceSummary:
            with self._channel.tracked(
                OperationKind.SEQUENCE, partial(self._emit_progress, OperationKind.SEQUENCE), token=token
            ):
                payload = self._gateway.invoke(request)
            return SequenceSummary.from_payload(payload, dry_run=request.dry_run)

        def done(summary: SequenceSummary) -> None:
            LOGGER.info(
                "seq_fps result: success=%s failure=%s total=%s%s",
                summary.success, summary.failure, summary.total, " (dry-run)" if summary.dry_run else "",
            )
            self.sequenceFinished.emit(summary)

        return self._run(
            work,
            done,
            on_error=partial(self._handle_failure, "Sequence frame rate", alert=True),
            finalizer=partial(self._finish_tracked, OperationKind.SEQUENCE, token),
            token=token,
        )

    def cancel_sequence_fps(self) -> None:
        self._cancel_tracked(OperationKind.SEQUENCE)

    def export_prores(self, request: ProResExportRequest) -> Optional[concurrent.futures.Future]:
        if OperationKind.VIDEO in self._tokens:
            LOGGER.warning("ProRes export already running")
            return None
        token = CancellationToken()
        self._tokens[OperationKind.VIDEO] = token
        self._show_progress(OperationKind.VIDEO)
        LOGGER.info("export_prores: dir=%s out=%s fps=%s profile=%s", request.directory, request.output_path, request.fps, request.profile)

        def work() -> str:
            with self._channel.tracked(
                OperationKind.VIDEO, partial(self._emit_progress, OperationKind.VIDEO), token=token
            ):
                self._gateway.invoke(request)
            return request.output_path

        def done(path: str) -> None:
            LOGGER.info("ProRes export finished: %s", path)
            self.videoFinished.emit(path)

        return self._run(
            work,
            done,
            on_error=partial(self._handle_failure, "ProRes export", alert=True),
            finalizer=partial(self._finish_tracked, OperationKind.VIDEO, token),
            token=token,
        )

    # ------------------------------------------------------------------
    # Tracked operation helpers
    # ------------------------------------------------------------------
    def _show_progress(self, kind: OperationKind) -> None:
        self.progressChanged.emit(kind.name, 0)
        self.progressVisibilityChanged.emit(kind.name, True)

    def _emit_progress(self, kind: OperationKind, percent: int) -> None:
        # Called from the bridge's event thread; signal emission is thread safe.
        self.progressChanged.emit(kind.name, int(percent))

    def _finish_tracked(self, kind: OperationKind, token: CancellationToken) -> None:
        # A newer operation of the same kind owns the progress bar now.
        if self._tokens.get(kind) is not token:
            return
        del self._tokens[kind]
        self.progressVisibilityChanged.emit(kind.name, False)

    def _cancel_tracked(self, kind: OperationKind) -> None:
        token = self._tokens.get(kind)
        if token is None:
            LOGGER.debug("Nothing to cancel for %s", kind.name)
            return
        token.cancel()
        if self._disposed:
            return
        self._cancel_threads.submit(self._channel.request_cancel, kind)

    # ------------------------------------------------------------------
    # Execution plumbing
    # ------------------------------------------------------------------
    def _run(
        self,
        work: Callable[[], Any],
        on_success: Callable[[Any], None],
        *,
        on_error: Optional[Callable[[BaseException], None]] = None,
        finalizer: Optional[Callable[[], None]] = None,
        token: Optional[CancellationToken] = None,
        controller: Optional[ThreadController] = None,
    ) -> Optional[concurrent.futures.Future]:
        if self._disposed:
            LOGGER.debug("Controller disposed; ignoring request")
            if finalizer is not None:
                finalizer()
            return None
        if not self._initialized:
            self.initialize(load_presets=False)
        completion_template = _Completion(
            on_success=on_success,
            on_error=on_error or partial(self._handle_failure, "Operation", alert=False),
            finalizer=finalizer,
        )

        def job() -> Any:
            if not self._gateway.ensure_ready():
                raise BridgeUnavailableError("Backend bridge is not available")
            return work()

        def done(future: concurrent.futures.Future) -> None:
            completion = replace(completion_template)
            if future.cancelled():
                completion.error = concurrent.futures.CancelledError()
            else:
                completion.error = future.exception()
                if completion.error is None:
                    completion.result = future.result()
            self._completed.emit(completion)

        target = controller or self._threads
        return target.submit(job, callback=done, cancel_token=token)

    @QtCore.pyqtSlot(object)
    def _on_completed(self, completion: _Completion) -> None:
        try:
            if self._disposed:
                return
            if completion.error is None:
                completion.on_success(completion.result)
            else:
                completion.on_error(completion.error)
        except Exception:
            LOGGER.exception("Completion handler failed", extra={"component": "PreviewController"})
        finally:
            if completion.finalizer is not None:
                completion.finalizer()

    def _handle_failure(self, operation: str, error: BaseException, *, alert: bool) -> None:
        if isinstance(error, concurrent.futures.CancelledError) or is_cancellation_error(error):
            LOGGER.info("%s cancelled", operation)
            return
        if isinstance(error, BridgeUnavailableError):
            LOGGER.warning("%s skipped: %s", operation, error)
        else:
            LOGGER.error("%s failed: %s", operation, error, exc_info=error)
        if alert:
            self.errorRaised.emit(self.tr("{operation} failed: {error}").format(operation=operation, error=error))


__all__ = ["PreviewController"]
