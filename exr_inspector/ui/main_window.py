"""Desktop window composition for the EXR inspector."""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional

from PyQt5 import QtCore, QtGui, QtWidgets  # type: ignore

from exr_inspector.core.commands import (
    CommandValidationError,
    OcioState,
    PixelSample,
    ProgressConfig,
    ProResExportRequest,
    SequenceFpsRequest,
    SequenceSummary,
)
from exr_inspector.core.logging_config import LogRelayHandler
from exr_inspector.core.settings_manager import SettingsManager
from exr_inspector.rendering import ChannelMode, ScopeChannel

from .preview_controller import PreviewController
from .scheduler import DebouncedUpdateScheduler
from .widgets import AttributeTableView, ExportQueueView, RasterView


EXR_FILTER = "OpenEXR (*.exr);;All files (*)"
SETTINGS_SAVE_DELAY_MS = 500


class InspectorWindow(QtWidgets.QMainWindow):
    """Main window: preview, scopes, export queue, attributes and log."""

    def __init__(
        self,
        controller: PreviewController,
        parent: Optional[QtWidgets.QWidget] = None,
        *,
        settings: Optional[SettingsManager] = None,
    ) -> None:
        super().__init__(parent)
        self._logger = logging.getLogger(__name__)
        self._controller = controller
        self._settings = settings
        self._log_handler: Optional[LogRelayHandler] = None
        self._progress_bars: Dict[str, QtWidgets.QProgressBar] = {}
        self._settings_saver = DebouncedUpdateScheduler(
            self._persist_settings, quiet_period_ms=SETTINGS_SAVE_DELAY_MS, parent=self
        )
        self._progress_config_saver = DebouncedUpdateScheduler(
            self._push_progress_config, quiet_period_ms=SETTINGS_SAVE_DELAY_MS, parent=self
        )

        self.setWindowTitle(self.tr("EXR Inspector"))

        self.preview_view = RasterView(self)
        self.setCentralWidget(self.preview_view)
        self.histogram_view = RasterView(self, minimum_size=(256, 128))
        self.waveform_view = RasterView(self, minimum_size=(256, 128))
        self._controller.compositor.set_target(self.preview_view)
        self._controller.scope_renderer.histogram_target = self.histogram_view
        self._controller.scope_renderer.waveform_target = self.waveform_view

        self._build_actions()
        self._build_toolbar()
        self._build_menus()
        self._build_docks()
        self._build_status_bar()
        self._connect_controller()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    @property
    def controller(self) -> PreviewController:
        return self._controller

    def log_handler(self) -> LogRelayHandler:
        """Handler mirroring log records into the log box.  Install it on the root logger."""

        if self._log_handler is None:
            # Signal emission keeps records from worker threads off the widget.
            self._log_handler = LogRelayHandler(self._controller.logMessage.emit)
        return self._log_handler

    def show_error(self, message: str) -> None:
        self.error_label.setText(message)
        self.error_label.setVisible(bool(message))

    def clear_error(self) -> None:
        self.show_error("")

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------
    def _build_actions(self) -> None:
        self.open_action = QtWidgets.QAction(self.tr("&Open EXR…"), self)
        self.open_action.setShortcut(QtGui.QKeySequence.Open)
        self.open_action.triggered.connect(self._on_open)

        self.save_action = QtWidgets.QAction(self.tr("&Save PNG…"), self)
        self.save_action.setShortcut(QtGui.QKeySequence.Save)
        self.save_action.triggered.connect(self._on_save)

        self.compare_action = QtWidgets.QAction(self.tr("A/B Compare"), self)
        self.compare_action.setShortcut(QtGui.QKeySequence(self.tr("B")))
        self.compare_action.triggered.connect(self._on_toggle_compare)

        self.queue_add_action = QtWidgets.QAction(self.tr("Add to Export Queue…"), self)
        self.queue_add_action.triggered.connect(self._on_queue_add)
        self.queue_start_action = QtWidgets.QAction(self.tr("Start Exports"), self)
        self.queue_start_action.triggered.connect(self._controller.start_exports)

        self.sequence_fps_action = QtWidgets.QAction(self.tr("Set Sequence Frame Rate…"), self)
        self.sequence_fps_action.triggered.connect(self._on_sequence_fps)
        self.prores_action = QtWidgets.QAction(self.tr("Export ProRes…"), self)
        self.prores_action.triggered.connect(self._on_export_prores)

        self.exit_action = QtWidgets.QAction(self.tr("E&xit"), self)
        self.exit_action.setShortcut(QtGui.QKeySequence.Quit)
        self.exit_action.triggered.connect(self.close)

    def _build_toolbar(self) -> None:
        toolbar = self.addToolBar(self.tr("Preview"))
        toolbar.setObjectName("previewToolbar")
        toolbar.addAction(self.open_action)
        toolbar.addAction(self.save_action)
        toolbar.addSeparator()

        toolbar.addWidget(QtWidgets.QLabel(self.tr("Exposure"), toolbar))
        self.exposure_spin = QtWidgets.QDoubleSpinBox(toolbar)
        self.exposure_spin.setRange(-20.0, 20.0)
        self.exposure_spin.setSingleStep(0.1)
        self.exposure_spin.setDecimals(2)
        self.exposure_spin.valueChanged.connect(self._controller.set_exposure)
        toolbar.addWidget(self.exposure_spin)

        toolbar.addWidget(QtWidgets.QLabel(self.tr("Gamma"), toolbar))
        self.gamma_spin = QtWidgets.QDoubleSpinBox(toolbar)
        self.gamma_spin.setRange(0.1, 5.0)
        self.gamma_spin.setSingleStep(0.05)
        self.gamma_spin.setValue(self._controller.parameters.gamma)
        self.gamma_spin.valueChanged.connect(self._controller.set_gamma)
        toolbar.addWidget(self.gamma_spin)

        self.channel_combo = QtWidgets.QComboBox(toolbar)
        for mode in ChannelMode:
            self.channel_combo.addItem(mode.label, mode.value)
        self.channel_combo.currentIndexChanged.connect(self._on_channel_changed)
        toolbar.addWidget(self.channel_combo)
        toolbar.addAction(self.compare_action)
        toolbar.addSeparator()

        self.transform_combo = QtWidgets.QComboBox(toolbar)
        self.transform_combo.setMinimumContentsLength(16)
        self.transform_combo.activated.connect(self._on_transform_activated)
        toolbar.addWidget(self.transform_combo)
        self.default_transform_button = QtWidgets.QPushButton(self.tr("Set Default"), toolbar)
        self.default_transform_button.clicked.connect(self._on_set_default_transform)
        toolbar.addWidget(self.default_transform_button)

        ocio = QtWidgets.QWidget(toolbar)
        ocio_layout = QtWidgets.QHBoxLayout(ocio)
        ocio_layout.setContentsMargins(0, 0, 0, 0)
        ocio_layout.addWidget(QtWidgets.QLabel(self.tr("OCIO"), ocio))
        self.ocio_display_combo = QtWidgets.QComboBox(ocio)
        self.ocio_display_combo.activated.connect(self._on_ocio_display_activated)
        self.ocio_view_combo = QtWidgets.QComboBox(ocio)
        self.ocio_apply_button = QtWidgets.QPushButton(self.tr("Apply"), ocio)
        self.ocio_apply_button.clicked.connect(self._on_ocio_apply)
        for widget in (self.ocio_display_combo, self.ocio_view_combo, self.ocio_apply_button):
            ocio_layout.addWidget(widget)
        self.ocio_action = toolbar.addWidget(ocio)
        self.ocio_action.setVisible(False)

    def _build_menus(self) -> None:
        menu_bar = self.menuBar()
        self.file_menu = menu_bar.addMenu(self.tr("&File"))
        self.file_menu.addAction(self.open_action)
        self.file_menu.addAction(self.save_action)
        self.file_menu.addSeparator()
        self.file_menu.addAction(self.queue_add_action)
        self.file_menu.addAction(self.queue_start_action)
        self.file_menu.addSeparator()
        self.file_menu.addAction(self.exit_action)

        self.view_menu = menu_bar.addMenu(self.tr("&View"))
        self.view_menu.addAction(self.compare_action)

        self.tools_menu = menu_bar.addMenu(self.tr("&Tools"))
        self.tools_menu.addAction(self.sequence_fps_action)
        self.tools_menu.addAction(self.prores_action)

    def _build_docks(self) -> None:
        scopes = QtWidgets.QWidget(self)
        scopes_layout = QtWidgets.QVBoxLayout(scopes)
        controls = QtWidgets.QHBoxLayout()
        self.scope_channel_combo = QtWidgets.QComboBox(scopes)
        for channel in ScopeChannel:
            self.scope_channel_combo.addItem(channel.value.upper(), channel.value)
        self.scope_channel_combo.setCurrentIndex(
            self.scope_channel_combo.findData(self._controller.scope_config.channel_filter.value)
        )
        self.scope_channel_combo.currentIndexChanged.connect(self._on_scope_channel_changed)
        self.scope_scale_spin = QtWidgets.QDoubleSpinBox(scopes)
        self.scope_scale_spin.setRange(0.1, 20.0)
        self.scope_scale_spin.setSingleStep(0.5)
        self.scope_scale_spin.setValue(self._controller.scope_config.scale)
        self.scope_scale_spin.valueChanged.connect(self._on_scope_scale_changed)
        controls.addWidget(self.scope_channel_combo)
        controls.addWidget(QtWidgets.QLabel(self.tr("Scale"), scopes))
        controls.addWidget(self.scope_scale_spin)
        scopes_layout.addLayout(controls)
        scopes_layout.addWidget(self.histogram_view)
        scopes_layout.addWidget(self.waveform_view)
        self.probe_label = QtWidgets.QLabel(scopes)
        self.probe_label.setTextInteractionFlags(QtCore.Qt.TextSelectableByMouse)
        scopes_layout.addWidget(self.probe_label)
        self.scopes_dock = self._create_dock(self.tr("Scopes"), scopes, object_name="scopesDock")
        self.addDockWidget(QtCore.Qt.RightDockWidgetArea, self.scopes_dock)

        queue = QtWidgets.QWidget(self)
        queue_layout = QtWidgets.QVBoxLayout(queue)
        self.export_queue_view = ExportQueueView(queue)
        self.export_queue_view.cancelRequested.connect(self._controller.cancel_export)
        queue_layout.addWidget(self.export_queue_view)
        buttons = QtWidgets.QHBoxLayout()
        add_button = QtWidgets.QPushButton(self.tr("Add…"), queue)
        add_button.clicked.connect(self._on_queue_add)
        start_button = QtWidgets.QPushButton(self.tr("Start"), queue)
        start_button.clicked.connect(self._controller.start_exports)
        clear_button = QtWidgets.QPushButton(self.tr("Clear Finished"), queue)
        clear_button.clicked.connect(self.export_queue_view.clear_finished)
        for button in (add_button, start_button, clear_button):
            buttons.addWidget(button)
        queue_layout.addLayout(buttons)
        self.queue_dock = self._create_dock(self.tr("Export Queue"), queue, object_name="exportQueueDock")
        self.addDockWidget(QtCore.Qt.LeftDockWidgetArea, self.queue_dock)

        attributes = QtWidgets.QWidget(self)
        attributes_layout = QtWidgets.QVBoxLayout(attributes)
        self.attribute_view = AttributeTableView(attributes)
        attributes_layout.addWidget(self.attribute_view)
        attribute_buttons = QtWidgets.QHBoxLayout()
        add_row_button = QtWidgets.QPushButton(self.tr("Add"), attributes)
        add_row_button.clicked.connect(self.attribute_view.add_row)
        delete_row_button = QtWidgets.QPushButton(self.tr("Delete / Restore"), attributes)
        delete_row_button.clicked.connect(self.attribute_view.toggle_delete_selected)
        attribute_buttons.addWidget(add_row_button)
        attribute_buttons.addWidget(delete_row_button)
        attributes_layout.addLayout(attribute_buttons)
        self.attributes_dock = self._create_dock(self.tr("Attributes"), attributes, object_name="attributesDock")
        self.addDockWidget(QtCore.Qt.LeftDockWidgetArea, self.attributes_dock)

        log = QtWidgets.QWidget(self)
        log_layout = QtWidgets.QVBoxLayout(log)
        self.error_label = QtWidgets.QLabel(log)
        self.error_label.setStyleSheet("color: #c0392b; font-weight: bold;")
        self.error_label.setWordWrap(True)
        self.error_label.setVisible(False)
        self.log_box = QtWidgets.QPlainTextEdit(log)
        self.log_box.setReadOnly(True)
        self.log_box.setMaximumBlockCount(2000)
        progress_row = QtWidgets.QHBoxLayout()
        progress_row.addWidget(QtWidgets.QLabel(self.tr("Progress events every"), log))
        self.progress_interval_spin = QtWidgets.QSpinBox(log)
        self.progress_interval_spin.setRange(0, 10000)
        self.progress_interval_spin.setSuffix(" ms")
        self.progress_interval_spin.setValue(self._controller.progress_config.interval_ms)
        progress_row.addWidget(self.progress_interval_spin)
        progress_row.addWidget(QtWidgets.QLabel(self.tr("or"), log))
        self.progress_threshold_spin = QtWidgets.QDoubleSpinBox(log)
        self.progress_threshold_spin.setRange(0.0, 100.0)
        self.progress_threshold_spin.setSingleStep(0.1)
        self.progress_threshold_spin.setSuffix(" %")
        self.progress_threshold_spin.setValue(self._controller.progress_config.pct_threshold)
        progress_row.addWidget(self.progress_threshold_spin)
        progress_row.addStretch(1)
        self.progress_interval_spin.valueChanged.connect(lambda _value: self._progress_config_saver.trigger())
        self.progress_threshold_spin.valueChanged.connect(lambda _value: self._progress_config_saver.trigger())
        log_layout.addWidget(self.error_label)
        log_layout.addLayout(progress_row)
        log_layout.addWidget(self.log_box)
        self.log_dock = self._create_dock(self.tr("Log"), log, object_name="logDock")
        self.addDockWidget(QtCore.Qt.BottomDockWidgetArea, self.log_dock)

        for dock in (self.scopes_dock, self.queue_dock, self.attributes_dock, self.log_dock):
            self.view_menu.addAction(dock.toggleViewAction())

    def _create_dock(self, title: str, content: QtWidgets.QWidget, *, object_name: str) -> QtWidgets.QDockWidget:
        dock = QtWidgets.QDockWidget(title, self)
        dock.setObjectName(object_name)
        dock.setAllowedAreas(
            QtCore.Qt.LeftDockWidgetArea
            | QtCore.Qt.RightDockWidgetArea
            | QtCore.Qt.BottomDockWidgetArea
        )
        dock.setWidget(content)
        return dock

    def _build_status_bar(self) -> None:
        status_bar = QtWidgets.QStatusBar(self)
        status_bar.setSizeGripEnabled(True)
        self.setStatusBar(status_bar)
        for kind in ("OPEN", "EXPORT", "SEQUENCE", "VIDEO"):
            bar = QtWidgets.QProgressBar(status_bar)
            bar.setRange(0, 100)
            bar.setMaximumWidth(160)
            bar.setFormat(f"{kind.title()} %p%")
            bar.setVisible(False)
            status_bar.addPermanentWidget(bar)
            self._progress_bars[kind] = bar
        self.cancel_button = QtWidgets.QPushButton(self.tr("Cancel"), status_bar)
        self.cancel_button.setVisible(False)
        self.cancel_button.clicked.connect(self._on_cancel_clicked)
        status_bar.addPermanentWidget(self.cancel_button)

    def _connect_controller(self) -> None:
        controller = self._controller
        controller.statusChanged.connect(self.statusBar().showMessage)
        controller.errorRaised.connect(self.show_error)
        controller.errorCleared.connect(self.clear_error)
        controller.logMessage.connect(self.log_box.appendPlainText)
        controller.progressChanged.connect(self._on_progress)
        controller.progressVisibilityChanged.connect(self._on_progress_visibility)
        controller.probeUpdated.connect(self._on_probe)
        controller.attributesLoaded.connect(self.attribute_view.set_table)
        controller.transformsLoaded.connect(self._on_transforms_loaded)
        controller.ocioLoaded.connect(self._on_ocio_loaded)
        controller.ocioViewsLoaded.connect(self._on_ocio_views_loaded)
        controller.progressConfigLoaded.connect(self._on_progress_config_loaded)
        controller.exportTasksChanged.connect(self.export_queue_view.update_task)
        controller.sequenceFinished.connect(self._on_sequence_finished)
        controller.videoFinished.connect(self._on_video_finished)
        controller.pngExported.connect(
            lambda path: self.statusBar().showMessage(self.tr("Saved {path}").format(path=path), 5000)
        )
        self.preview_view.pixelHovered.connect(controller.probe_pixel)
        self.preview_view.pixelClicked.connect(controller.toggle_pipette)

    # ------------------------------------------------------------------
    # Slots
    # ------------------------------------------------------------------
    def _on_open(self) -> None:
        path, _ = QtWidgets.QFileDialog.getOpenFileName(self, self.tr("Open EXR"), "", EXR_FILTER)
        if path:
            self._controller.open_image(path)

    def _on_save(self) -> None:
        if len(self._controller.export_queue):
            self._controller.start_exports()
            return
        path, _ = QtWidgets.QFileDialog.getSaveFileName(self, self.tr("Save PNG"), "", "PNG (*.png)")
        if path:
            self._controller.export_preview_png(path)

    def _on_queue_add(self) -> None:
        paths, _ = QtWidgets.QFileDialog.getOpenFileNames(self, self.tr("Queue EXR files"), "", EXR_FILTER)
        if paths and self._controller.document_path is None:
            self._controller.open_image(paths[0])
        self._controller.enqueue_exports(paths)

    def _on_toggle_compare(self) -> None:
        self._controller.toggle_compare()

    def _on_channel_changed(self, index: int) -> None:
        self._controller.set_channel_mode(self.channel_combo.itemData(index))

    def _on_scope_channel_changed(self, index: int) -> None:
        self._controller.set_scope_channel(self.scope_channel_combo.itemData(index))
        self._settings_saver.trigger()

    def _on_scope_scale_changed(self, scale: float) -> None:
        self._controller.set_scope_scale(scale)
        self._settings_saver.trigger()

    def _persist_settings(self) -> None:
        if self._settings is None:
            return
        config = self._controller.scope_config
        self._settings.set("scopes/channel", config.channel_filter.value)
        self._settings.set("scopes/scale", config.scale)
        self._logger.debug("Scope settings saved")

    def _on_transforms_loaded(self, labels: List[str], selected: str) -> None:
        self.transform_combo.blockSignals(True)
        try:
            self.transform_combo.clear()
            self.transform_combo.addItems(labels)
            self.transform_combo.setCurrentIndex(max(0, self.transform_combo.findText(selected)))
        finally:
            self.transform_combo.blockSignals(False)

    def _on_transform_activated(self, index: int) -> None:
        self._controller.apply_transform(self.transform_combo.itemText(index))

    def _on_set_default_transform(self) -> None:
        label = self.transform_combo.currentText()
        if not label:
            return
        self._controller.set_default_transform(label)
        if self._settings is not None:
            self._settings.set("transform/default", label)

    def _on_ocio_loaded(self, state: OcioState) -> None:
        self.ocio_action.setVisible(state.available)
        if not state.available:
            return
        self._fill_combo(self.ocio_display_combo, state.displays, state.display)
        self._fill_combo(self.ocio_view_combo, state.views, state.view)

    def _on_ocio_display_activated(self, index: int) -> None:
        self._controller.load_ocio_views(self.ocio_display_combo.itemText(index))

    def _on_ocio_views_loaded(self, display: str, views: List[str]) -> None:
        if display != self.ocio_display_combo.currentText():
            return
        self._fill_combo(self.ocio_view_combo, views, self.ocio_view_combo.currentText())

    def _on_ocio_apply(self) -> None:
        display = self.ocio_display_combo.currentText()
        view = self.ocio_view_combo.currentText()
        if display and view:
            self._controller.apply_ocio(display, view)

    @staticmethod
    def _fill_combo(combo: QtWidgets.QComboBox, items: Iterable[str], selected: str) -> None:
        combo.blockSignals(True)
        try:
            combo.clear()
            combo.addItems(list(items))
            combo.setCurrentIndex(max(0, combo.findText(selected)))
        finally:
            combo.blockSignals(False)

    def _on_progress_config_loaded(self, config: ProgressConfig) -> None:
        for spin, value in (
            (self.progress_interval_spin, config.interval_ms),
            (self.progress_threshold_spin, config.pct_threshold),
        ):
            spin.blockSignals(True)
            try:
                spin.setValue(value)
            finally:
                spin.blockSignals(False)

    def _push_progress_config(self) -> None:
        self._controller.set_progress_config(
            self.progress_interval_spin.value(), self.progress_threshold_spin.value()
        )

    def _on_probe(self, sample: PixelSample, pinned: bool) -> None:
        text = sample.readout()
        self.probe_label.setText(text + (self.tr("  [fixed]") if pinned else ""))
        if pinned:
            QtWidgets.QApplication.clipboard().setText(text)

    def _on_progress(self, kind: str, percent: int) -> None:
        bar = self._progress_bars.get(kind)
        if bar is not None:
            bar.setValue(percent)

    def _on_progress_visibility(self, kind: str, visible: bool) -> None:
        bar = self._progress_bars.get(kind)
        if bar is not None:
            bar.setVisible(visible)
        self.cancel_button.setVisible(any(b.isVisible() for k, b in self._progress_bars.items() if k != "VIDEO"))

    def _on_cancel_clicked(self) -> None:
        if self._progress_bars["OPEN"].isVisible():
            self._controller.cancel_open()
        if self._progress_bars["SEQUENCE"].isVisible():
            self._controller.cancel_sequence_fps()
        # Queued exports are cancelled one by one from the queue dock.
        if self._progress_bars["EXPORT"].isVisible():
            self._controller.cancel_running_export()

    def _on_sequence_fps(self) -> None:
        directory = QtWidgets.QFileDialog.getExistingDirectory(self, self.tr("EXR sequence folder"))
        if not directory:
            return
        default_fps = self._settings.get_float("video/fps") if self._settings is not None else 24.0
        fps, accepted = QtWidgets.QInputDialog.getDouble(
            self, self.tr("Frame rate"), self.tr("Frames per second"), default_fps, 0.001, 1000.0, 3
        )
        if not accepted:
            return
        answer = QtWidgets.QMessageBox.question(
            self,
            self.tr("Dry run"),
            self.tr("Only count the files that would change?"),
            QtWidgets.QMessageBox.Yes | QtWidgets.QMessageBox.No,
        )
        try:
            request = SequenceFpsRequest(
                directory=directory,
                fps=fps,
                recursive=True,
                dry_run=answer == QtWidgets.QMessageBox.Yes,
            )
        except CommandValidationError as exc:
            self.show_error(str(exc))
            return
        self._controller.apply_sequence_fps(request)

    def _on_export_prores(self) -> None:
        directory = QtWidgets.QFileDialog.getExistingDirectory(self, self.tr("EXR sequence folder"))
        if not directory:
            return
        output, _ = QtWidgets.QFileDialog.getSaveFileName(self, self.tr("ProRes output"), "", "QuickTime (*.mov)")
        if not output:
            return
        settings = self._settings
        try:
            request = ProResExportRequest(
                directory=directory,
                output_path=output,
                fps=settings.get_float("video/fps") if settings is not None else 24.0,
                profile=settings.get_str("video/profile") if settings is not None else "422hq",
                max_size=settings.get_int("video/max_size") if settings is not None else 2048,
                exposure=self._controller.parameters.exposure,
            )
        except CommandValidationError as exc:
            self.show_error(str(exc))
            return
        self._controller.export_prores(request)

    def _on_sequence_finished(self, summary: SequenceSummary) -> None:
        if summary.dry_run:
            message = self.tr("Dry run: {count} file(s) would be updated").format(count=summary.success)
        else:
            message = self.tr("Updated {success} file(s), {failure} failed").format(
                success=summary.success, failure=summary.failure
            )
        self.statusBar().showMessage(message, 8000)

    def _on_video_finished(self, path: str) -> None:
        self.statusBar().showMessage(self.tr("ProRes written: {path}").format(path=path), 8000)

    def closeEvent(self, event: QtGui.QCloseEvent) -> None:  # noqa: N802 - Qt naming
        self._settings_saver.flush()
        self._progress_config_saver.flush()
        if self._log_handler is not None:
            logging.getLogger().removeHandler(self._log_handler)
        self._controller.dispose()
        super().closeEvent(event)


__all__ = ["InspectorWindow"]
