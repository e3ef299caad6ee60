"""User interface layer.

Applications create a :class:`~exr_inspector.ui.preview_controller.PreviewController`,
call :meth:`~exr_inspector.ui.preview_controller.PreviewController.initialize`
and hand it to an :class:`~exr_inspector.ui.main_window.InspectorWindow`.
"""

from .main_window import InspectorWindow
from .preview_controller import PreviewController
from .scheduler import DebouncedUpdateScheduler
from .widgets import AttributeTableView, ExportQueueView, RasterView

__all__ = [
    "AttributeTableView",
    "DebouncedUpdateScheduler",
    "ExportQueueView",
    "InspectorWindow",
    "PreviewController",
    "RasterView",
]
