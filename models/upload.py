"""Ephemeral upload value held by the analysis orchestrator"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from core.cache import calculate_image_hash


class CaptureSource(str, Enum):
    FILE_PICKER = "file_picker"
    CAMERA = "camera"


@dataclass(frozen=True)
class UploadAttempt:
    """One user-submitted image; never persisted"""
    image_data: bytes = field(repr=False)
    mime_type: str
    size_bytes: int
    source: CaptureSource = CaptureSource.FILE_PICKER
    budget: Optional[int] = None

    @property
    def image_hash(self) -> str:
        return calculate_image_hash(self.image_data)

    def describe(self) -> dict:
        return {
            "mime_type": self.mime_type,
            "size_bytes": self.size_bytes,
            "source": self.source.value,
            "budget": self.budget,
            "image_hash": self.image_hash[:16],
        }
