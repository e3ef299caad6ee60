"""Batch processing helpers built on the command gateway."""

from .export_queue import ExportQueue, ExportTask, ExportTaskState, derive_output_path

__all__ = ["ExportQueue", "ExportTask", "ExportTaskState", "derive_output_path"]
