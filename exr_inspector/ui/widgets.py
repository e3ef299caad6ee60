"""Widgets that display controller output."""

from __future__ import annotations

from typing import Dict, Optional, Tuple

import numpy as np
from PyQt5 import QtCore, QtGui, QtWidgets  # type: ignore

from exr_inspector.data import AttributeTable, RowState
from exr_inspector.processing import ExportTask, ExportTaskState


def to_qimage(image: np.ndarray) -> Tuple[QtGui.QImage, np.ndarray]:
    """Wrap an RGBA ``uint8`` array in a :class:`QImage`.

    The returned array owns the memory the image points at and must be kept
    alive for as long as the image is used.
    """

    if image.ndim != 3 or image.shape[2] != 4:
        raise ValueError(
            QtCore.QCoreApplication.translate("RasterView", "Expected an (H, W, 4) RGBA array")
        )
    array = np.ascontiguousarray(image)
    if array.dtype != np.uint8:
        array = np.clip(array, 0, 255).astype(np.uint8)
    height, width, _ = array.shape
    qimage = QtGui.QImage(array.data, width, height, 4 * width, QtGui.QImage.Format_RGBA8888)
    return qimage, array


class RasterView(QtWidgets.QLabel):
    """Label that paints RGBA arrays and reports the image pixel under the cursor."""

    pixelHovered = QtCore.pyqtSignal(int, int)
    pixelClicked = QtCore.pyqtSignal(int, int)

    def __init__(self, parent: Optional[QtWidgets.QWidget] = None, *, minimum_size: Tuple[int, int] = (320, 240)) -> None:
        super().__init__(parent)
        self.setAlignment(QtCore.Qt.AlignCenter)
        self.setMinimumSize(*minimum_size)
        self.setMouseTracking(True)
        self._buffer: Optional[np.ndarray] = None
        self._source: Optional[QtGui.QPixmap] = None

    @property
    def image_size(self) -> Tuple[int, int]:
        if self._buffer is None:
            return (0, 0)
        return (self._buffer.shape[1], self._buffer.shape[0])

    def paint(self, pixels: np.ndarray) -> None:
        qimage, self._buffer = to_qimage(pixels)
        self._source = QtGui.QPixmap.fromImage(qimage)
        self._refresh_pixmap()

    def resizeEvent(self, event: QtGui.QResizeEvent) -> None:  # noqa: N802 - Qt naming
        super().resizeEvent(event)
        self._refresh_pixmap()

    def mouseMoveEvent(self, event: QtGui.QMouseEvent) -> None:  # noqa: N802 - Qt naming
        position = self.map_to_image(event.pos())
        if position is not None:
            self.pixelHovered.emit(*position)
        super().mouseMoveEvent(event)

    def mousePressEvent(self, event: QtGui.QMouseEvent) -> None:  # noqa: N802 - Qt naming
        if event.button() == QtCore.Qt.LeftButton:
            position = self.map_to_image(event.pos())
            if position is not None:
                self.pixelClicked.emit(*position)
        super().mousePressEvent(event)

    def map_to_image(self, point: QtCore.QPoint) -> Optional[Tuple[int, int]]:
        """Map widget coordinates to integer image coordinates, or ``None`` outside the image."""

        pixmap = self.pixmap()
        image_width, image_height = self.image_size
        if pixmap is None or pixmap.isNull() or image_width == 0:
            return None
        left = (self.width() - pixmap.width()) / 2.0
        top = (self.height() - pixmap.height()) / 2.0
        rel_x = (point.x() - left) / pixmap.width()
        rel_y = (point.y() - top) / pixmap.height()
        if not (0.0 <= rel_x < 1.0 and 0.0 <= rel_y < 1.0):
            return None
        return (int(rel_x * image_width), int(rel_y * image_height))

    def _refresh_pixmap(self) -> None:
        if self._source is None:
            return
        scaled = self._source.scaled(self.size(), QtCore.Qt.KeepAspectRatio, QtCore.Qt.FastTransformation)
        self.setPixmap(scaled)


class ExportQueueView(QtWidgets.QListWidget):
    """One row per export task; double clicking a row requests cancellation."""

    cancelRequested = QtCore.pyqtSignal(str)

    def __init__(self, parent: Optional[QtWidgets.QWidget] = None) -> None:
        super().__init__(parent)
        self._items: Dict[str, QtWidgets.QListWidgetItem] = {}
        self.itemDoubleClicked.connect(self._on_item_double_clicked)

    def update_task(self, task: ExportTask) -> None:
        item = self._items.get(task.id)
        if item is None:
            item = QtWidgets.QListWidgetItem(self)
            item.setData(QtCore.Qt.UserRole, task.id)
            self._items[task.id] = item
        item.setText(self.describe(task))
        item.setData(QtCore.Qt.UserRole + 1, task.state.terminal)

    def clear_finished(self) -> None:
        for task_id, item in list(self._items.items()):
            if item.data(QtCore.Qt.UserRole + 1):
                self.takeItem(self.row(item))
                del self._items[task_id]

    def describe(self, task: ExportTask) -> str:
        if task.state is ExportTaskState.RUNNING:
            status = self.tr("{percent}%").format(percent=task.progress_percent)
        elif task.state is ExportTaskState.FAILED:
            status = self.tr("failed: {error}").format(error=task.error or "")
        else:
            status = task.state.value
        if task.cancel_requested and not task.state.terminal:
            status += self.tr(" (cancelling)")
        return f"{task.source_path} -> {task.output_path}  [{status}]"

    def _on_item_double_clicked(self, item: QtWidgets.QListWidgetItem) -> None:
        task_id = item.data(QtCore.Qt.UserRole)
        if task_id:
            self.cancelRequested.emit(str(task_id))


class AttributeTableView(QtWidgets.QTableWidget):
    """Editable view over an :class:`AttributeTable`."""

    _STATE_COLORS = {
        RowState.ADDED: QtGui.QColor(220, 245, 220),
        RowState.MODIFIED: QtGui.QColor(255, 245, 200),
        RowState.DELETED: QtGui.QColor(245, 215, 215),
    }

    def __init__(self, parent: Optional[QtWidgets.QWidget] = None) -> None:
        super().__init__(0, 2, parent)
        self.setHorizontalHeaderLabels([self.tr("Attribute"), self.tr("Value")])
        self.horizontalHeader().setStretchLastSection(True)
        self._table = AttributeTable()
        self._populating = False
        self.itemChanged.connect(self._on_item_changed)

    @property
    def table(self) -> AttributeTable:
        return self._table

    def set_table(self, table: AttributeTable) -> None:
        self._table = table
        self.refresh()

    def refresh(self) -> None:
        self._populating = True
        try:
            rows = self._table.rows
            self.setRowCount(len(rows))
            for index, row in enumerate(rows):
                name_item = QtWidgets.QTableWidgetItem(row.name)
                value_item = QtWidgets.QTableWidgetItem(row.value)
                for item in (name_item, value_item):
                    font = item.font()
                    font.setStrikeOut(row.deleted)
                    item.setFont(font)
                    color = self._STATE_COLORS.get(row.state)
                    if color is not None:
                        item.setBackground(color)
                self.setItem(index, 0, name_item)
                self.setItem(index, 1, value_item)
        finally:
            self._populating = False

    def add_row(self) -> None:
        self._table.add_row()
        self.refresh()
        self.setCurrentCell(self.rowCount() - 1, 0)

    def toggle_delete_selected(self) -> None:
        index = self.currentRow()
        if index < 0:
            return
        self._table.toggle_delete(index)
        self.refresh()

    def _on_item_changed(self, item: QtWidgets.QTableWidgetItem) -> None:
        if self._populating:
            return
        if item.column() == 0:
            self._table.edit(item.row(), name=item.text())
        else:
            self._table.edit(item.row(), value=item.text())
        # Rebuilding items inside itemChanged is unsafe; defer it.
        QtCore.QTimer.singleShot(0, self.refresh)


__all__ = ["AttributeTableView", "ExportQueueView", "RasterView", "to_qimage"]
