"""
Fingerprint optimization, size validation and screenshot export.
"""

from visual_replay.optimizer.file_export import (
    ExportReport,
    SavedScreenshot,
    externalize_recording_file,
    externalize_screenshots,
    screenshot_filename,
)
from visual_replay.optimizer.image import (
    estimate_image_bytes,
    image_size_kb,
    is_inline_image,
    is_path_reference,
    load_screenshot_bytes,
    optimize_image,
)
from visual_replay.optimizer.visual_data import (
    calculate_visual_data_size,
    ensure_persistable,
    optimize_visual_data,
    prepare_actions_for_storage,
    validate_total_size,
    validate_visual_data_size,
)

__all__ = [
    "ExportReport",
    "SavedScreenshot",
    "externalize_recording_file",
    "externalize_screenshots",
    "screenshot_filename",
    "estimate_image_bytes",
    "image_size_kb",
    "is_inline_image",
    "is_path_reference",
    "load_screenshot_bytes",
    "optimize_image",
    "calculate_visual_data_size",
    "ensure_persistable",
    "optimize_visual_data",
    "prepare_actions_for_storage",
    "validate_total_size",
    "validate_visual_data_size",
]
