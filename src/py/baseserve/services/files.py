import asyncio
import os
import posixpath
import stat
from types import MappingProxyType
from typing import Mapping
from urllib.parse import quote, unquote, urlsplit

from ..config import PREFIX as DEFAULT_PREFIX, ROOT
from ..http.model import HTTPRequest, HTTPResponse
from ..model import Service
from ..utils.files import MIME_TYPES
from ..utils.htmpl import H, Node, html, raw
from ..utils.logging import debug, warning

FILE_CSS: str = """
body { font-family: Arial, sans-serif; margin: 40px; }
h1 { color: #333; }
ul { list-style-type: none; padding: 0; }
li { margin: 5px 0; }
a { text-decoration: none; color: #0066cc; }
a:hover { text-decoration: underline; }
.parent { font-weight: bold; }
"""


def readBytes(path: str) -> bytes:
	with open(path, "rb") as f:
		return f.read()


def displayName(name: str) -> str:
	"""Returns a printable version of a file name, where the bytes that are
	not valid UTF-8 are replaced."""
	return name.encode("utf8", "surrogateescape").decode("utf8", "replace")


class FileService(Service):
	"""Serves the files below `root` for the paths starting with `prefix`.
	Directories are served through their `index.html` when they have one,
	and as a generated listing otherwise."""

	PREFIX = DEFAULT_PREFIX

	def __init__(
		self,
		root: str | os.PathLike[str] | None = None,
		*,
		prefix: str | None = None,
		types: Mapping[str, str] = MIME_TYPES,
		index: str = "index.html",
	):
		super().__init__(prefix=prefix)
		if not self.prefix.startswith("/") or not self.prefix.endswith("/"):
			raise ValueError(f"Prefix must start and end with '/', got: {self.prefix}")
		self.root: str = os.path.normpath(os.path.abspath(root or ROOT))
		self.types: Mapping[str, str] = MappingProxyType(dict(types))
		self.index: str = index

	@property
	def base(self) -> str:
		"""The prefix without its trailing slash, which is what relative
		paths are appended to."""
		return self.prefix[:-1]

	def requestPath(self, request: HTTPRequest) -> str:
		"""Returns the path of the request target, still percent-encoded,
		without query or fragment."""
		path = request.path
		if not path.startswith("/"):
			# Absolute form, as sent to proxies
			path = urlsplit(path).path or "/"
		return path.split("#", 1)[0]

	def relativePath(self, path: str) -> str | None:
		"""Strips the prefix from the encoded `path` and decodes the rest,
		keeping the leading slash. Returns `None` when the path is not under
		the prefix. The prefix must appear literally, so `/base%2F` is not
		a match."""
		if not path.startswith(self.prefix):
			return None
		# Names that are not valid UTF-8 are kept as surrogates, which is
		# how `os.listdir` returns them.
		return unquote(path[len(self.base) :], errors="surrogateescape")

	def resolvePath(self, relative: str) -> str | None:
		"""Returns the normalized local path for the `relative` path, or
		`None` when it falls outside of the root directory."""
		local: str = os.path.normpath(os.path.join(self.root, relative.lstrip("/")))
		try:
			common: str = os.path.commonpath((self.root, local))
		except ValueError:
			return None
		return local if common == self.root else None

	async def process(self, request: HTTPRequest) -> HTTPResponse:
		path: str = self.requestPath(request)
		relative: str | None = self.relativePath(path)
		if relative is None:
			return request.notFound(
				f"Not Found - Only {self.prefix} prefix is supported"
			)
		local: str | None = self.resolvePath(relative)
		if local is None:
			warning("Path traversal rejected", Path=path, Root=self.root)
			return request.notAuthorized("Forbidden - Path traversal not allowed")
		debug("Resolved path", Path=path, Local=local)
		try:
			stats = await asyncio.to_thread(os.stat, local)
		except (OSError, ValueError):
			# ValueError is raised for paths with embedded null bytes
			return request.notFound("File not found")
		is_dir: bool = stat.S_ISDIR(stats.st_mode)
		if relative.endswith("/") and not is_dir:
			# A trailing slash only resolves to directories
			return request.notFound("File not found")
		elif is_dir:
			index_path: str = os.path.join(local, self.index)
			if await asyncio.to_thread(os.path.exists, index_path):
				return await self.serveFile(request, index_path)
			else:
				return await self.serveDirectory(request, relative, local)
		else:
			return await self.serveFile(request, local)

	async def serveFile(self, request: HTTPRequest, localPath: str) -> HTTPResponse:
		try:
			data: bytes = await asyncio.to_thread(readBytes, localPath)
		except OSError as e:
			warning("Could not read file", Path=localPath, Error=str(e))
			return request.fail("Internal Server Error")
		return request.respondFile(localPath, data, types=self.types)

	async def serveDirectory(
		self, request: HTTPRequest, relative: str, localPath: str
	) -> HTTPResponse:
		try:
			names: list[str] = await asyncio.to_thread(os.listdir, localPath)
		except OSError as e:
			warning("Could not list directory", Path=localPath, Error=str(e))
			return request.fail("Internal Server Error")
		return request.respondHTML(self.renderListing(relative, names))

	def renderListing(self, relative: str, names: list[str]) -> str:
		title: str = f"Directory listing for {self.base}{displayName(relative)}"
		items: list[Node] = []
		if relative != "/":
			parent: str = posixpath.dirname(relative.rstrip("/") or "/")
			items.append(
				H.li(
					H.a(
						"../",
						href=f"{self.base}/"
						if parent == "/"
						else f"{self.base}{quote(parent, errors='surrogateescape')}/",
					),
					_="parent",
				)
			)
		for name in sorted(names):
			href: str = self.base + quote(
				posixpath.join(relative, name), errors="surrogateescape"
			)
			items.append(H.li(H.a(displayName(name), href=href)))
		return "".join(
			html(
				H.html(
					H.head(
						H.meta(charset="utf-8"),
						H.title(title),
						H.style(raw(FILE_CSS)),
					),
					H.body(H.h1(title), H.ul(items)),
				),
				doctype="html",
			)
		)


# EOF
