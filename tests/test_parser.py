from baseserve.http.model import (
	HTTPHeaders,
	HTTPProcessingStatus,
	HTTPRequest,
	HTTPRequestLine,
	headername,
)
from baseserve.http.parser import HTTPParser


def feed(parser: HTTPParser, *chunks: bytes) -> list:
	return [atom for chunk in chunks for atom in parser.feed(chunk)]


def test_chunked_request():
	parser = HTTPParser()
	atoms = feed(
		parser,
		b"GET /base/a.txt?",
		b"v=1 HTTP/1.1\r\nHost: ",
		b"127.0.0.1\r",
		b"\nConn",
		b"ection: close\r\n",
		b"\r",
		b"\n",
	)
	assert atoms[0] == HTTPRequestLine("GET", "/base/a.txt", "v=1", "HTTP/1.1")
	assert isinstance(atoms[1], HTTPHeaders)
	assert atoms[1].headers == {"Host": "127.0.0.1", "Connection": "close"}
	req = atoms[2]
	assert isinstance(req, HTTPRequest)
	assert req.path == "/base/a.txt"
	assert req.query == "v=1"
	assert req.header("connection") == "close"
	assert not req.keepAlive


def test_pipelined_requests():
	atoms = feed(
		HTTPParser(),
		b"GET /a HTTP/1.1\r\n\r\nHEAD /b HTTP/1.1\r\n\r\n",
	)
	requests = [_ for _ in atoms if isinstance(_, HTTPRequest)]
	assert [(_.method, _.path) for _ in requests] == [("GET", "/a"), ("HEAD", "/b")]
	assert all(_.keepAlive for _ in requests)


def test_body_across_chunks():
	atoms = feed(
		HTTPParser(),
		b"POST /base/ HTTP/1.1\r\nContent-Length: 10\r\n\r\n01234",
		b"56789GET /next HTTP/1.1\r\n\r\n",
	)
	assert HTTPProcessingStatus.Body in atoms
	requests = [_ for _ in atoms if isinstance(_, HTTPRequest)]
	assert requests[0].body.length == 10
	assert requests[0].body.payload == b""
	assert requests[1].path == "/next"


def test_leading_empty_lines():
	atoms = feed(HTTPParser(), b"\r\n\r\nGET / HTTP/1.1\r\n\r\n")
	assert isinstance(atoms[-1], HTTPRequest)


def test_malformed_request_line():
	parser = HTTPParser()
	assert feed(parser, b"GARBAGE\r\n") == [HTTPProcessingStatus.BadFormat]
	# A failed parser stays failed
	assert feed(parser, b"GET / HTTP/1.1\r\n\r\n") == []


def test_oversized_request_line():
	parser = HTTPParser()
	atoms = feed(parser, b"GET /" + b"a" * 10_000)
	assert atoms == [HTTPProcessingStatus.BadFormat]


def test_chunked_body_is_rejected():
	atoms = feed(
		HTTPParser(),
		b"POST / HTTP/1.1\r\nTransfer-Encoding: chunked\r\n\r\n",
	)
	assert atoms[-1] is HTTPProcessingStatus.BadFormat


def test_http10_keep_alive():
	(req,) = [
		_
		for _ in feed(HTTPParser(), b"GET / HTTP/1.0\r\nConnection: Keep-Alive\r\n\r\n")
		if isinstance(_, HTTPRequest)
	]
	assert req.keepAlive


def test_large_body_is_not_buffered():
	parser = HTTPParser()
	atoms = feed(
		parser,
		b"PUT /base/ HTTP/1.1\r\nContent-Length: 10000000000\r\n\r\n",
		*(b"x" * 65_536 for _ in range(16)),
	)
	assert atoms[-1] is HTTPProcessingStatus.Body
	assert parser.bodyLength.read == 16 * 65_536
	assert parser.bodyLength.expected == 10_000_000_000
	assert not hasattr(parser.bodyLength, "data")


def test_header_names_cache_is_bounded():
	for i in range(1_000):
		assert headername(f"x-junk-{i}") == f"X-Junk-{i}"
	assert headername("CONTENT-type") == "Content-Type"
	assert headername.cache_info().currsize <= 256


# EOF
