from typing import Iterator, Literal
from ..utils.io import LineParser
from .model import (
	HTTPRequest,
	HTTPRequestLine,
	HTTPHeaders,
	HTTPBodyBlob,
	HTTPAtom,
	HTTPProcessingStatus,
	headername,
)


class MessageParser:
	"""Parses an HTTP request line."""

	__slots__ = ["line", "value"]

	def __init__(self) -> None:
		self.line: LineParser = LineParser(limit=8_192)
		self.value: HTTPRequestLine | None = None

	def flush(self) -> HTTPRequestLine | None:
		res = self.value
		self.reset()
		return res

	def reset(self) -> "MessageParser":
		self.line.reset()
		self.value = None
		return self

	def feed(self, chunk: bytes, start: int = 0) -> tuple[bool | None, int]:
		"""Returns `True` when a request line was parsed, `False` when the
		line is malformed and `None` when more data (or a non-empty line)
		is needed."""
		line, read = self.line.feed(chunk, start)
		if line is None:
			return None, read
		elif not line:
			# Empty lines before a request line are tolerated (RFC 9112 §2.2)
			return None, read
		try:
			ln = line.decode("utf8")
		except UnicodeDecodeError:
			return False, read
		parts: list[str] = ln.split(" ")
		if len(parts) != 3 or not parts[0] or not parts[2].startswith("HTTP/"):
			return False, read
		method, target, protocol = parts
		p: list[str] = target.split("?", 1)
		self.value = HTTPRequestLine(method, p[0], p[1] if len(p) > 1 else "", protocol)
		return True, read

	def __str__(self) -> str:
		return f"MessageParser({self.value})"


class HeadersParser:
	__slots__ = ["headers", "contentType", "contentLength", "line"]

	def __init__(self) -> None:
		self.line: LineParser = LineParser(limit=16_384)
		self.headers: dict[str, str] = {}
		self.contentType: str | None = None
		self.contentLength: int | None = None

	def flush(self) -> HTTPHeaders:
		res = HTTPHeaders(self.headers, self.contentType, self.contentLength)
		self.reset()
		return res

	def reset(self) -> "HeadersParser":
		self.line.reset()
		self.headers = {}
		self.contentType = None
		self.contentLength = None
		return self

	def feed(
		self, chunk: bytes, start: int = 0
	) -> tuple[str | Literal[False] | None, int]:
		"""Feeds data from chunk, starting at `start` offset. Returns
		a value and the number of bytes read. When the value is `None`, no
		header has been extracted, when the value is `False` it's the empty
		line ending the headers, otherwise it's the name of the header that
		was added."""
		line, read = self.line.feed(chunk, start)
		if line is None:
			return None, read
		elif not line:
			return False, read
		# Header values are latin-1 as per RFC 9110
		ln: str = line.decode("latin-1")
		i = ln.find(":")
		if i == -1:
			return None, read
		h = ln[:i].lower().strip()
		v = ln[i + 1 :].strip()
		if h == "content-length":
			try:
				self.contentLength = int(v)
			except ValueError:
				self.contentLength = None
		elif h == "content-type":
			self.contentType = v
		n: str = headername(h)
		self.headers[n] = v
		return n, read

	def __str__(self) -> str:
		return f"HeadersParser({self.headers})"


class BodyLengthParser:
	"""Consumes the body of a request with Content-Length set. Request
	bodies are not used when serving files, so the bytes are counted and
	dropped, whatever the announced length."""

	__slots__ = ["expected", "read"]

	def __init__(self) -> None:
		self.expected: int = 0
		self.read: int = 0

	def flush(self) -> HTTPBodyBlob:
		res = HTTPBodyBlob(b"", self.read)
		self.reset()
		return res

	def reset(self, length: int = 0) -> "BodyLengthParser":
		self.expected = length
		self.read = 0
		return self

	def feed(self, chunk: bytes, start: int = 0) -> tuple[bool, int]:
		to_read: int = min(len(chunk) - start, self.expected - self.read)
		self.read += to_read
		return self.read >= self.expected, to_read


class HTTPParser:
	"""A stateful HTTP request parser, fed with chunks as they are read
	from the connection."""

	def __init__(self) -> None:
		self.message: MessageParser = MessageParser()
		self.headers: HeadersParser = HeadersParser()
		self.bodyLength: BodyLengthParser = BodyLengthParser()
		self.parser: MessageParser | HeadersParser | BodyLengthParser = self.message
		self.requestLine: HTTPRequestLine | None = None
		self.requestHeaders: HTTPHeaders | None = None
		self.failed: bool = False

	def request(self, body: HTTPBodyBlob | None = None) -> HTTPRequest:
		line = self.requestLine
		if line is None:
			raise RuntimeError("Cannot create a request without a request line")
		res = HTTPRequest(
			method=line.method,
			path=line.path,
			query=line.query,
			headers=self.requestHeaders,
			body=body,
			protocol=line.protocol,
		)
		self.requestLine = None
		self.requestHeaders = None
		self.parser = self.message.reset()
		return res

	def fail(self) -> HTTPProcessingStatus:
		self.failed = True
		return HTTPProcessingStatus.BadFormat

	def feed(self, chunk: bytes) -> Iterator[HTTPAtom]:
		"""Yields the atoms parsed from the given chunk. Partially parsed
		data is kept until the next call. Once `BadFormat` is yielded, the
		parser won't produce anything else."""
		if self.failed:
			return
		size: int = len(chunk)
		offset: int = 0
		while offset < size:
			if self.parser is self.message:
				parsed, read = self.message.feed(chunk, offset)
				offset += read
				if parsed is False:
					yield self.fail()
					return
				elif parsed is None:
					if self.message.line.isOverflowing:
						yield self.fail()
						return
				elif (line := self.message.flush()) is not None:
					self.requestLine = line
					yield line
					self.parser = self.headers
			elif self.parser is self.headers:
				name, read = self.headers.feed(chunk, offset)
				offset += read
				if name is None:
					if self.headers.line.isOverflowing:
						yield self.fail()
						return
				elif name is False:
					headers = self.headers.flush()
					self.requestHeaders = headers
					yield headers
					if "Transfer-Encoding" in headers.headers or (
						headers.contentLength is not None and headers.contentLength < 0
					):
						# Chunked request bodies are not supported
						yield self.fail()
						return
					elif headers.contentLength:
						self.parser = self.bodyLength.reset(headers.contentLength)
						yield HTTPProcessingStatus.Body
					else:
						yield self.request(HTTPBodyBlob())
			else:
				complete, read = self.bodyLength.feed(chunk, offset)
				offset += read
				if complete:
					yield self.request(self.bodyLength.flush())


# EOF
