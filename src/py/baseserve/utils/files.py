import os.path
from pathlib import Path
from types import MappingProxyType
from typing import Mapping

# --
# The content types that the file service knows about, keyed by the
# lowercased extension (including the leading dot). Anything else is served
# as an opaque byte stream.

DEFAULT_CONTENT_TYPE: str = "application/octet-stream"

MIME_TYPES: Mapping[str, str] = MappingProxyType(
	{
		".html": "text/html",
		".js": "text/javascript",
		".css": "text/css",
		".json": "application/json",
		".png": "image/png",
		".jpg": "image/jpeg",
		".jpeg": "image/jpeg",
		".gif": "image/gif",
		".svg": "image/svg+xml",
		".webp": "image/webp",
		".ico": "image/x-icon",
		".mp4": "video/mp4",
		".webm": "video/webm",
		".woff": "font/woff",
		".woff2": "font/woff2",
		".ttf": "font/ttf",
		".eot": "application/vnd.ms-fontobject",
	}
)


def extension(path: Path | str) -> str:
	"""Returns the lowercased extension of the path, with its leading dot,
	or an empty string. Dotfiles like `.bashrc` have no extension."""
	return os.path.splitext(os.path.basename(str(path)))[1].lower()


def contentType(
	path: Path | str,
	types: Mapping[str, str] = MIME_TYPES,
	default: str = DEFAULT_CONTENT_TYPE,
) -> str:
	"""Guesses the content type from the given path's extension"""
	return types.get(extension(path), default)


# EOF
