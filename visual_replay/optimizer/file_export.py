"""
Externalize inline screenshots of a recording to standalone image files.

Inline data is written under ``<output_dir>/<recording id>/`` and the
fingerprint fields are rewritten to forward-slash paths relative to
``base_dir``. Consumers read either form through ``load_screenshot_bytes``.
"""

import json
import os
import re
from pathlib import Path, PurePath
from typing import Any, Dict, List, Optional, Tuple, Union

from pydantic import BaseModel, Field

from visual_replay.config.settings import get_settings
from visual_replay.core.types import RecordingDocument
from visual_replay.error_handling.exceptions import OptimizationFault
from visual_replay.monitoring.logger import get_logger
from visual_replay.optimizer.image import decode_inline_image, is_inline_image

logger = get_logger(__name__)

_MIME_PATTERN = re.compile(r"^data:image/([\w+.-]+);base64,", re.IGNORECASE)
_EXTENSIONS = {"jpeg": "jpg", "jpg": "jpg", "png": "png", "webp": "webp", "gif": "gif"}


class SavedScreenshot(BaseModel):
    """One action whose screenshots were written to disk."""

    action_index: int
    action_type: Optional[str] = None
    paths: List[str] = Field(default_factory=list)


class ExportReport(BaseModel):
    """Outcome of externalizing a recording's screenshots."""

    screenshots_dir: Path
    base_dir: Path
    total_saved: int = 0
    saved_files: List[SavedScreenshot] = Field(default_factory=list)
    errors: List[Dict[str, Any]] = Field(default_factory=list)
    document: RecordingDocument


def screenshot_filename(
    recording_id: str, action_index: int, field_name: str = "screenshot", extension: str = "png"
) -> str:
    """Build ``screenshot_<id>_action<index>[_context].<ext>``."""
    sanitized_id = re.sub(r"[^a-zA-Z0-9\-_]", "_", recording_id)
    suffix = "_context" if field_name == "contextScreenshot" else ""
    return f"screenshot_{sanitized_id}_action{action_index}{suffix}.{extension}"


def _extension_for(value: str) -> str:
    match = _MIME_PATTERN.match(value)
    if not match:
        return "png"
    return _EXTENSIONS.get(match.group(1).lower(), "png")


def _fingerprint_slot(entry: Dict[str, Any]) -> Tuple[Dict[str, Any], Optional[Dict[str, Any]]]:
    """Copy an entry down to its fingerprint, which sits at the top level or in params."""
    updated = dict(entry)
    if isinstance(entry.get("visual"), dict):
        updated["visual"] = dict(entry["visual"])
        return updated, updated["visual"]
    params = entry.get("params")
    if isinstance(params, dict) and isinstance(params.get("visual"), dict):
        updated["params"] = dict(params)
        updated["params"]["visual"] = dict(params["visual"])
        return updated, updated["params"]["visual"]
    return updated, None


def _relative_path(path: Path, base_dir: Path) -> str:
    return PurePath(os.path.relpath(path, base_dir)).as_posix()


def externalize_screenshots(
    document: Union[RecordingDocument, Dict[str, Any]],
    output_dir: Optional[Union[str, Path]] = None,
    base_dir: Optional[Union[str, Path]] = None,
) -> ExportReport:
    """
    Write every inline screenshot of a recording to a file.

    Args:
        document: Recording to process
        output_dir: Parent directory for per-recording folders (defaults to settings)
        base_dir: Directory rewritten paths are relative to (defaults to the
            parent of ``output_dir``)

    Returns:
        Report with the rewritten document; entries that failed keep their
        original data and are listed in ``errors``
    """
    if not isinstance(document, RecordingDocument):
        document = RecordingDocument.model_validate(document)

    output_dir = Path(output_dir) if output_dir else get_settings().screenshots_dir
    base_dir = Path(base_dir) if base_dir else output_dir.parent

    recording_id = document.session_name or document.recorded_at.strftime("%Y-%m-%dT%H-%M-%S")
    screenshots_dir = output_dir / re.sub(r"[^a-zA-Z0-9\-_]", "_", recording_id)
    screenshots_dir.mkdir(parents=True, exist_ok=True)

    report = ExportReport(
        screenshots_dir=screenshots_dir,
        base_dir=base_dir,
        document=document.model_copy(update={"actions": []}),
    )

    updated_actions: List[Dict[str, Any]] = []
    for index, entry in enumerate(document.actions):
        try:
            updated, fingerprint = _fingerprint_slot(entry)
            saved: List[str] = []
            for field_name in ("screenshot", "contextScreenshot"):
                value = fingerprint.get(field_name) if fingerprint else None
                if not isinstance(value, str) or not is_inline_image(value):
                    continue
                filename = screenshot_filename(
                    recording_id, index, field_name, _extension_for(value)
                )
                file_path = screenshots_dir / filename
                file_path.write_bytes(decode_inline_image(value))
                fingerprint[field_name] = _relative_path(file_path, base_dir)
                saved.append(fingerprint[field_name])
        except (OSError, OptimizationFault) as e:
            logger.warning(
                "Keeping inline screenshot, export failed",
                extra={"action_index": index, "error": str(e)},
            )
            report.errors.append({"action_index": index, "error": str(e)})
            updated_actions.append(entry)
            continue

        updated_actions.append(updated)
        if saved:
            report.total_saved += len(saved)
            report.saved_files.append(
                SavedScreenshot(action_index=index, action_type=entry.get("type"), paths=saved)
            )

    report.document = document.model_copy(update={"actions": updated_actions})

    logger.info(
        "Screenshots externalized",
        extra={
            "session_name": document.session_name,
            "total_saved": report.total_saved,
            "error_count": len(report.errors),
        },
    )
    return report


def externalize_recording_file(
    recording_path: Union[str, Path],
    output_dir: Optional[Union[str, Path]] = None,
    update_file: bool = True,
) -> ExportReport:
    """
    Externalize the screenshots of a saved recording file.

    Rewritten paths are relative to the recording file's directory, so the
    file keeps loading after the folder is moved.
    """
    recording_path = Path(recording_path)
    document = RecordingDocument.model_validate(
        json.loads(recording_path.read_text(encoding="utf-8"))
    )

    output_dir = Path(output_dir) if output_dir else recording_path.parent / "screenshots"
    report = externalize_screenshots(document, output_dir, base_dir=recording_path.parent)

    if update_file:
        recording_path.write_text(
            json.dumps(report.document.to_document(), indent=2), encoding="utf-8"
        )

    return report
