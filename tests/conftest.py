import asyncio
import http.client
from pathlib import Path
from typing import Callable, Iterator, NamedTuple

import pytest

from baseserve import FileService, HTTPRequest, HTTPResponse, Server, createServer

# A few bytes that would not survive any text transcoding
PNG_BYTES: bytes = b"\x89PNG\r\n\x1a\n\x00\x00\x00\rIHDR\x00\xff\xfe\x80"


class Response(NamedTuple):
	status: int
	headers: dict[str, str]
	body: bytes


@pytest.fixture
def tree(tmp_path: Path) -> Path:
	"""Creates the served root, next to a sibling directory sharing its
	name as a prefix."""
	root = tmp_path / "root"
	(root / "docs" / "sub").mkdir(parents=True)
	(root / "docs" / "b.txt").write_text("b")
	(root / "docs" / "a.txt").write_text("a")
	(root / "docs" / "A.md").write_text("# A")
	(root / "docs" / "sub" / "deep.txt").write_text("deep")
	(root / "site").mkdir()
	(root / "site" / "index.html").write_text("<p>Welcome</p>")
	(root / "broken" / "index.html").mkdir(parents=True)
	(root / "image.PNG").write_bytes(PNG_BYTES)
	(root / "data.json").write_text('{"ok": true}')
	(root / "style.css").write_text("body { color: red; }")
	(root / "noext").write_bytes(b"\x00\x01")
	(root / "with space.txt").write_text("spaced")
	(tmp_path / "root2").mkdir()
	(tmp_path / "root2" / "secret.txt").write_text("secret")
	return root


@pytest.fixture
def service(tree: Path) -> FileService:
	return FileService(tree)


@pytest.fixture
def process(service: FileService) -> Callable[..., HTTPResponse]:
	"""Runs a request through the service, without any socket involved."""

	def f(path: str, method: str = "GET", query: str = "") -> HTTPResponse:
		return asyncio.run(service.process(HTTPRequest(method, path, query)))

	return f


@pytest.fixture
def server(tree: Path) -> Iterator[Server]:
	with createServer(tree, logRequests=False, polling=0.1) as srv:
		yield srv


@pytest.fixture
def fetch(server: Server) -> Callable[..., Response]:
	"""Sends a request to the running server. Paths are sent as-is, which
	`http.client` does not normalize."""

	def f(
		path: str, method: str = "GET", headers: dict[str, str] | None = None
	) -> Response:
		conn = http.client.HTTPConnection("127.0.0.1", server.port, timeout=5)
		try:
			conn.request(method, path, headers=headers or {})
			res = conn.getresponse()
			return Response(res.status, dict(res.getheaders()), res.read())
		finally:
			conn.close()

	return f


# EOF
