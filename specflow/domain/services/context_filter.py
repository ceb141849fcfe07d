"""Context file filter - select and trim attachments before prompt embedding."""

import logging
import re

from specflow.domain.entities.workflow_state import ContextFile
from specflow.domain.ports.config import ContextFilesConfig

logger = logging.getLogger(__name__)

FILE_TRUNCATION_NOTE = "\n\n[File truncated due to size limits]"

_IMAGE_EXT_RE = re.compile(r"\.(jpg|jpeg|png|gif|svg|webp|bmp|ico|tiff?|heic|avif)$", re.IGNORECASE)


def is_image_like(file: ContextFile) -> bool:
    """Detect image files by type, MIME type, extension or data URL content."""
    kind = (file.type or "").lower()
    if kind == "image" or kind.startswith("image/"):
        return True
    if file.mime_type and file.mime_type.lower().startswith("image/"):
        return True
    if file.name and _IMAGE_EXT_RE.search(file.name):
        return True
    return bool(file.content) and file.content.lstrip().startswith("data:image/")


class ContextFileFilter:
    """Filter context files by type and size.

    Files are evaluated in their original order: images are dropped, files
    larger than the per-file ceiling are dropped, and files are accepted
    first-fit while the aggregate ceiling allows (a later, smaller file can
    still fit after a larger one was skipped).
    """

    def __init__(self, config: ContextFilesConfig | None = None) -> None:
        self._config = config or ContextFilesConfig()

    def filter(
        self,
        files: list[ContextFile],
        max_file_chars: int | None = None,
        max_total_chars: int | None = None,
    ) -> list[ContextFile]:
        """Return files safe to embed as prompt text."""
        per_file = max_file_chars if max_file_chars is not None else self._config.max_file_chars
        aggregate = max_total_chars if max_total_chars is not None else self._config.max_total_chars

        accepted: list[ContextFile] = []
        total = 0
        for file in files:
            if is_image_like(file):
                logger.debug("Skipping image context file %s", file.name)
                continue
            size = len(file.content or "")
            if size > per_file:
                logger.debug("Skipping oversized context file %s (%d chars)", file.name, size)
                continue
            if total + size > aggregate:
                logger.debug("Skipping context file %s: aggregate limit %d reached", file.name, aggregate)
                continue
            total += size
            accepted.append(self._truncate(file, per_file))
        return accepted

    @staticmethod
    def _truncate(file: ContextFile, max_chars: int) -> ContextFile:
        content = file.content or ""
        if len(content) <= max_chars:
            return file
        return file.model_copy(update={"content": content[:max_chars] + FILE_TRUNCATION_NOTE})
