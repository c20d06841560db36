import asyncio
import http.client
import socket
from pathlib import Path

from baseserve import (
	HTTPRequest,
	HTTPRequestError,
	HTTPResponse,
	Server,
	Service,
	createServer,
)
from baseserve.http.model import HTTPBodyWriter
from baseserve.server import SERVER_ERROR, AIOSocketServer, ServerOptions


class BufferWriter(HTTPBodyWriter):
	def __init__(self) -> None:
		self.data: bytes = b""

	async def _writeBytes(self, chunk: bytes) -> bool:
		self.data += chunk
		return True


class FailingService(Service):
	def __init__(self, error: Exception):
		super().__init__()
		self.error: Exception = error

	async def process(self, request: HTTPRequest) -> HTTPResponse:
		raise self.error


def sendResponse(service: Service) -> tuple[HTTPResponse | None, bytes]:
	writer = BufferWriter()
	res = asyncio.run(
		AIOSocketServer.SendResponse(
			HTTPRequest("GET", "/base/x"),
			service,
			writer,
			options=ServerOptions(logRequests=False),
		)
	)
	return res, writer.data


def recvall(sock: socket.socket) -> bytes:
	chunks: list[bytes] = []
	while chunk := sock.recv(65_536):
		chunks.append(chunk)
	return b"".join(chunks)


def test_ephemeral_port(server: Server):
	assert server.port > 0
	assert server.isRunning
	assert server.url == f"http://127.0.0.1:{server.port}/base/"


def test_binary_round_trip(fetch, tree: Path):
	res = fetch("/base/image.PNG")
	assert res.status == 200
	assert res.headers["Content-Type"] == "image/png"
	assert res.body == (tree / "image.PNG").read_bytes()


def test_statuses(fetch):
	assert fetch("/nope").status == 404
	assert fetch("/base/../../etc/passwd").status == 403
	assert fetch("/base/missing").body == b"File not found"
	assert fetch("/base/site/").body == b"<p>Welcome</p>"
	res = fetch("/base/docs/")
	assert res.status == 200
	assert res.headers["Content-Type"] == "text/html"
	assert b'<a href="/base/docs/a.txt">a.txt</a>' in res.body


def test_query_string(fetch):
	res = fetch("/base/docs/b.txt?cache=no")
	assert res.status == 200
	assert res.body == b"b"


def test_idempotent(fetch):
	a = fetch("/base/data.json")
	b = fetch("/base/data.json")
	assert a == b


def test_head(fetch):
	res = fetch("/base/data.json", method="HEAD")
	assert res.status == 200
	assert res.headers["Content-Type"] == "application/json"
	assert res.headers["Content-Length"] == str(len('{"ok": true}'))
	assert res.body == b""


def test_keep_alive(server: Server):
	conn = http.client.HTTPConnection("127.0.0.1", server.port, timeout=5)
	try:
		for path, body in (("/base/docs/a.txt", b"a"), ("/base/docs/b.txt", b"b")):
			conn.request("GET", path)
			res = conn.getresponse()
			assert res.status == 200
			assert res.getheader("Connection") == "keep-alive"
			assert res.read() == body
	finally:
		conn.close()


def test_pipelined_requests(server: Server):
	with socket.create_connection(("127.0.0.1", server.port), timeout=5) as sock:
		sock.sendall(
			b"GET /base/docs/a.txt HTTP/1.1\r\nHost: localhost\r\n\r\n"
			b"GET /base/docs/b.txt HTTP/1.1\r\nHost: localhost\r\nConnection: close\r\n\r\n"
		)
		data = recvall(sock)
	assert data.count(b"HTTP/1.1 200 OK\r\n") == 2
	assert data.endswith(b"\r\n\r\nb")


def test_http10_closes(server: Server):
	with socket.create_connection(("127.0.0.1", server.port), timeout=5) as sock:
		sock.sendall(b"GET /base/docs/a.txt HTTP/1.0\r\n\r\n")
		data = recvall(sock)
	assert data.startswith(b"HTTP/1.1 200 OK\r\n")
	assert b"Connection: close\r\n" in data
	assert data.endswith(b"\r\n\r\na")


def test_malformed_request(server: Server):
	with socket.create_connection(("127.0.0.1", server.port), timeout=5) as sock:
		sock.sendall(b"NONSENSE\r\n\r\n")
		data = recvall(sock)
	assert data.startswith(b"HTTP/1.1 400 Bad Request\r\n")


def test_request_with_body(server: Server):
	with socket.create_connection(("127.0.0.1", server.port), timeout=5) as sock:
		sock.sendall(
			b"POST /base/docs/a.txt HTTP/1.1\r\nContent-Length: 5\r\n\r\nhello"
			b"GET /base/docs/b.txt HTTP/1.1\r\nConnection: close\r\n\r\n"
		)
		data = recvall(sock)
	assert data.count(b"HTTP/1.1 200 OK\r\n") == 2


def test_stop(tree: Path):
	server = createServer(tree, logRequests=False, polling=0.1).start()
	port = server.port
	server.stop()
	assert not server.isRunning
	assert server.thread is None
	try:
		socket.create_connection(("127.0.0.1", port), timeout=1).close()
	except OSError:
		pass
	else:
		raise AssertionError("Server still accepts connections after stop")



def test_request_error_sets_status():
	res, data = sendResponse(FailingService(HTTPRequestError("Not here", 405)))
	assert res is not None
	assert res.status == 405
	assert data.startswith(b"HTTP/1.1 405 Method Not Allowed\r\n")
	assert b"Content-Type: text/plain\r\n" in data
	assert data.endswith(b"\r\n\r\nNot here")


def test_request_error_defaults_to_500():
	res, data = sendResponse(FailingService(HTTPRequestError("Oops")))
	assert res is not None and res.status == 500
	assert data.endswith(b"\r\n\r\nOops")


def test_unexpected_error_sends_canned_response():
	res, data = sendResponse(FailingService(RuntimeError("boom")))
	assert res is None
	assert data == SERVER_ERROR


# EOF
