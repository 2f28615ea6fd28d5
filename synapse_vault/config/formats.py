"""
Format Definitions
==================

Maps file extensions to the human-readable format names shown for
stored files.
"""

from enum import Enum
from dataclasses import dataclass, field
from pathlib import PurePath
from typing import Dict, Optional


class FormatFamily(Enum):
    """Broad families used for grouping formats."""
    DOCUMENTS = "Documents"
    IMAGES = "Images"
    VIDEO = "Video"
    AUDIO = "Audio"
    ARCHIVES = "Archives"
    CODE = "Code"
    UNKNOWN = "Unknown"


@dataclass
class FormatMapping:
    """Mapping of lowercase extensions to (family, display name)."""

    FORMATS: Dict[str, tuple] = field(default_factory=dict)

    def __post_init__(self):
        """Initialize all extension mappings."""
        documents = {
            ".pdf": "PDF Document",
            ".doc": "Word Document",
            ".docx": "Word Document",
            ".txt": "Text File",
            ".md": "Markdown",
            ".rtf": "Rich Text",
        }
        images = {
            ".jpg": "JPEG Image",
            ".jpeg": "JPEG Image",
            ".png": "PNG Image",
            ".gif": "GIF Image",
            ".bmp": "Bitmap Image",
            ".svg": "SVG Image",
            ".webp": "WebP Image",
        }
        video = {
            ".mp4": "MP4 Video",
            ".avi": "AVI Video",
            ".mov": "MOV Video",
            ".mkv": "MKV Video",
            ".webm": "WebM Video",
        }
        audio = {
            ".mp3": "MP3 Audio",
            ".wav": "WAV Audio",
            ".ogg": "OGG Audio",
            ".flac": "FLAC Audio",
        }
        archives = {
            ".zip": "ZIP Archive",
            ".rar": "RAR Archive",
            ".7z": "7-Zip Archive",
            ".tar": "TAR Archive",
            ".gz": "GZip Archive",
        }
        code = {
            ".js": "JavaScript",
            ".py": "Python",
            ".java": "Java",
            ".cpp": "C++",
            ".c": "C",
            ".html": "HTML",
            ".css": "CSS",
            ".json": "JSON",
            ".xml": "XML",
        }
        for family, table in (
            (FormatFamily.DOCUMENTS, documents),
            (FormatFamily.IMAGES, images),
            (FormatFamily.VIDEO, video),
            (FormatFamily.AUDIO, audio),
            (FormatFamily.ARCHIVES, archives),
            (FormatFamily.CODE, code),
        ):
            for ext, name in table.items():
                self.FORMATS[ext] = (family, name)

    @staticmethod
    def get_extension(filename: str) -> str:
        """Return the extension including the dot, or "" if there is none."""
        return PurePath(filename).suffix

    def get_format(self, filename: str) -> str:
        """Get the display format for a filename.

        Unknown extensions render as "<EXT> File"; no extension is "Unknown".
        """
        ext = self.get_extension(filename).lower()
        if not ext:
            return "Unknown"
        entry = self.FORMATS.get(ext)
        if entry:
            return entry[1]
        return ext[1:].upper() + " File"

    def get_family(self, filename: str) -> FormatFamily:
        """Get the broad family for a filename."""
        entry = self.FORMATS.get(self.get_extension(filename).lower())
        return entry[0] if entry else FormatFamily.UNKNOWN

    def lookup(self, filename: str) -> Optional[tuple]:
        """Return (family, display name) for known extensions."""
        return self.FORMATS.get(self.get_extension(filename).lower())


# Global mapping instance
FORMAT_MAPPING = FormatMapping()
