import asyncio
import os
import socket
import threading
from dataclasses import dataclass, field
from signal import SIGINT, SIGTERM
from typing import Any, Callable, Mapping, NamedTuple

from .config import HOST, LOG_REQUESTS, PORT
from .http.model import (
	HTTPBodyWriter,
	HTTPProcessingStatus,
	HTTPRequest,
	HTTPRequestError,
	HTTPResponse,
)
from .http.parser import HTTPParser
from .model import Service
from .services.files import FileService
from .utils.files import MIME_TYPES
from .utils.logging import debug, error, event, exception, info, warning


@dataclass(slots=True)
class ServerState:
	isRunning: bool = True
	# Set once the server accepts connections
	ready: threading.Event = field(default_factory=threading.Event)

	def stop(self) -> None:
		if self.isRunning:
			info("Server stopping…")
		self.isRunning = False

	def onException(
		self, loop: asyncio.AbstractEventLoop, context: dict[str, Any]
	) -> None:
		e = context.get("exception")
		if e:
			exception(e)
		else:
			warning("Event loop error", Message=str(context.get("message")))


class ServerOptions(NamedTuple):
	host: str = HOST
	port: int = PORT
	backlog: int = 1_024
	# This is the polling timeout for accepting new requests, which is also
	# how long it may take for a stop request to be honoured.
	polling: float = 1.0
	readsize: int = 4_096
	# Idle time after which a kept-alive connection is closed
	keepalive: float = 15.0
	logRequests: bool = LOG_REQUESTS
	condition: Callable[[], bool] | None = None
	stopSignals: bool = True


OPTIONS: ServerOptions = ServerOptions()

SERVER_ERROR: bytes = (
	b"HTTP/1.1 500 Internal Server Error\r\n"
	b"Content-Type: text/plain\r\n"
	b"Content-Length: 21\r\n"
	b"Connection: close\r\n"
	b"\r\n"
	b"Internal Server Error"
)

SERVER_BAD_REQUEST: bytes = (
	b"HTTP/1.1 400 Bad Request\r\n"
	b"Content-Type: text/plain\r\n"
	b"Content-Length: 11\r\n"
	b"Connection: close\r\n"
	b"\r\n"
	b"Bad Request"
)


class AIOSocketBodyWriter(HTTPBodyWriter):
	"""Specialized body writer to work with AIO sockets."""

	def __init__(
		self,
		client: "socket.socket",
		loop: asyncio.AbstractEventLoop,
	) -> None:
		super().__init__()
		self.client: socket.socket = client
		self.loop: asyncio.AbstractEventLoop = loop

	async def _writeBytes(self, chunk: bytes) -> bool:
		if chunk:
			await self.loop.sock_sendall(self.client, chunk)
		return True


class AIOSocketServer:
	"""AsyncIO backend using sockets directly, with one task per
	connection."""

	@classmethod
	async def OnRequest(
		cls,
		service: Service,
		client: socket.socket,
		*,
		loop: asyncio.AbstractEventLoop,
		options: ServerOptions,
		state: ServerState,
	) -> None:
		"""Asynchronous worker, processing the requests sent through the
		client socket until it closes, times out or asks for a close."""
		size: int = options.readsize
		buffer = bytearray(size)
		keep_alive: bool = True
		status: HTTPProcessingStatus = HTTPProcessingStatus.Processing
		req_count: int = 0
		res_count: int = 0
		parser: HTTPParser = HTTPParser()
		writer: AIOSocketBodyWriter = AIOSocketBodyWriter(client, loop)
		try:
			while keep_alive and state.isRunning:
				try:
					n = await asyncio.wait_for(
						loop.sock_recv_into(client, buffer),
						timeout=options.keepalive,
					)
				except asyncio.TimeoutError:
					status = HTTPProcessingStatus.Timeout
					break
				if not n:
					# A no-data means a close
					status = HTTPProcessingStatus.NoData
					break
				# NOTE: With HTTP pipelining, we may receive more than one
				# request in the same payload.
				for atom in parser.feed(bytes(buffer[:n])):
					if atom is HTTPProcessingStatus.BadFormat:
						warning("Malformed request", Client=f"{id(client):x}")
						status = atom
						await writer.write(SERVER_BAD_REQUEST)
						keep_alive = False
						break
					elif isinstance(atom, HTTPRequest):
						req_count += 1
						keep_alive = atom.keepAlive
						res = await cls.SendResponse(
							atom, service, writer, options=options, keepAlive=keep_alive
						)
						if res is None:
							keep_alive = False
							break
						res_count += 1
						if not keep_alive:
							break
			if status is HTTPProcessingStatus.NoData and req_count != res_count:
				warning(
					"Client closed before all responses were sent",
					Requests=req_count,
					Responses=res_count,
				)
			debug(
				"Connection closed",
				Client=f"{id(client):x}",
				Status=status.name,
				Requests=req_count,
			)
		except (ConnectionError, TimeoutError) as e:
			# The client went away, there's nobody to respond to
			debug("Connection lost", Client=f"{id(client):x}", Error=str(e))
		except Exception as e:
			exception(e)
		finally:
			client.close()

	@staticmethod
	async def SendResponse(
		request: HTTPRequest,
		service: Service,
		writer: HTTPBodyWriter,
		*,
		options: ServerOptions = OPTIONS,
		keepAlive: bool = True,
	) -> HTTPResponse | None:
		"""Processes the request within the service and sends the response
		using the given writer. Returns `None` when nothing could be sent."""
		res: HTTPResponse
		try:
			res = await service.process(request)
		except HTTPRequestError as e:
			res = request.error(
				e.status or 500, e.message, e.contentType or "text/plain"
			)
		except Exception as e:
			exception(e, f"Service failed on {request.method} {request.path}")
			try:
				await writer.write(SERVER_ERROR)
			except ConnectionError:
				pass
			return None
		res.setHeader("Connection", "keep-alive" if keepAlive else "close")
		if options.logRequests:
			event(request.method, request.path, Status=res.status)
		try:
			await writer.write(res.head())
			# Responses to HEAD have the same headers as GET, with no body
			if request.method != "HEAD":
				await writer.write(res.body)
		except ConnectionError:
			# Client did an early close
			return None
		return res

	@staticmethod
	def Bind(options: ServerOptions) -> socket.socket:
		"""Creates the listening socket. When the requested port is taken,
		the next few ports are tried. A port of `0` picks any free port."""
		server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
		server.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
		server.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
		try:
			server.bind((options.host, options.port))
		except OSError as e:
			if not options.port:
				server.close()
				raise e from e
			warning(
				f"Could not bind to {options.host}:{options.port}, trying other ports."
			)
			for p in range(options.port + 1, options.port + 5):
				try:
					server.bind((options.host, p))
					info(f"Found alternate available port: {p}")
					break
				except OSError:
					pass
			else:
				error(
					f"Unable to bind to {options.host}:{options.port}, aborting.",
					"HOSTPORTERR",
				)
				server.close()
				raise e from e
		# The argument is the backlog of connections that will be accepted before
		# they are refused.
		server.listen(options.backlog)
		# This is what we need to use it with asyncio
		server.setblocking(False)
		return server

	@classmethod
	async def Serve(
		cls,
		service: Service,
		server: socket.socket,
		options: ServerOptions = OPTIONS,
		state: ServerState | None = None,
	) -> None:
		"""Main server coroutine, accepting connections on the bound `server`
		socket until the state is stopped. The socket is closed on exit."""
		state = state or ServerState()
		loop = asyncio.get_running_loop()
		tasks: set[asyncio.Task[None]] = set()
		# We can only register signal handlers from the main thread.
		if (
			options.stopSignals
			and threading.current_thread() is threading.main_thread()
		):
			loop.add_signal_handler(SIGINT, state.stop)
			loop.add_signal_handler(SIGTERM, state.stop)
		loop.set_exception_handler(state.onException)
		host, port = server.getsockname()[:2]
		try:
			await service.start()
			info(
				"Static server listening",
				icon="🚀",
				Host=host,
				Port=port,
			)
			state.ready.set()
			while state.isRunning:
				if options.condition and not options.condition():
					break
				try:
					client, _ = await asyncio.wait_for(
						loop.sock_accept(server), timeout=options.polling or 1.0
					)
				except asyncio.TimeoutError:
					continue
				except OSError as e:
					# This can be: [OSError] [Errno 24] Too many open files
					if e.errno == 24:
						await asyncio.sleep(0.1)
					else:
						exception(e)
					continue
				task = loop.create_task(
					cls.OnRequest(service, client, loop=loop, options=options, state=state)
				)
				tasks.add(task)
				task.add_done_callback(tasks.discard)
		finally:
			state.isRunning = False
			server.close()
			for task in tasks:
				task.cancel()
			await asyncio.gather(*tasks, return_exceptions=True)
			await service.stop()
			# Unblocks anyone waiting on a server that failed to start
			state.ready.set()


class Server:
	"""An embeddable server, which can be bound to an ephemeral port and run
	either within an existing event loop (`serve`) or in a background
	thread (`start`/`stop`)."""

	def __init__(self, service: Service, options: ServerOptions = OPTIONS):
		self.service: Service = service
		self.options: ServerOptions = options
		self.state: ServerState = ServerState()
		self.socket: socket.socket | None = None
		self.thread: threading.Thread | None = None

	@property
	def address(self) -> tuple[str, int]:
		if not self.socket:
			raise RuntimeError("Server is not bound, call bind() first")
		host, port = self.socket.getsockname()[:2]
		return host, port

	@property
	def port(self) -> int:
		return self.address[1]

	@property
	def url(self) -> str:
		"""The URL of the served root, as reachable from this host."""
		host, port = self.address
		host = "localhost" if host in ("0.0.0.0", "") else host
		return f"http://{host}:{port}{self.service.prefix}"

	@property
	def isRunning(self) -> bool:
		return self.state.isRunning and self.state.ready.is_set()

	def bind(self) -> int:
		"""Binds the listening socket, returning the actual port."""
		if not self.socket:
			self.socket = AIOSocketServer.Bind(self.options)
		return self.port

	async def serve(self) -> None:
		"""Serves requests until `stop` is called."""
		self.bind()
		if not self.socket:
			raise RuntimeError("Server could not be bound")
		try:
			await AIOSocketServer.Serve(
				self.service, self.socket, self.options, self.state
			)
		finally:
			self.socket = None

	def start(self, timeout: float = 5.0) -> "Server":
		"""Starts serving from a background thread, returning once the
		server accepts connections."""
		if self.thread:
			raise RuntimeError(f"Server is already started: {self}")
		self.bind()
		# Signals can't be registered outside of the main thread
		self.options = self.options._replace(stopSignals=False)
		self.thread = threading.Thread(
			target=asyncio.run,
			args=(self.serve(),),
			name=f"baseserve:{self.port}",
			daemon=True,
		)
		self.thread.start()
		if not self.state.ready.wait(timeout):
			raise TimeoutError(f"Server did not start within {timeout}s")
		elif not self.state.isRunning:
			raise RuntimeError(f"Server failed to start: {self!r}")
		return self

	def stop(self, timeout: float | None = None) -> None:
		"""Stops the server, waiting for the background thread (if any)
		to finish."""
		self.state.stop()
		thread = self.thread
		if thread and thread is not threading.current_thread():
			thread.join(
				self.options.polling * 2 + 1.0 if timeout is None else timeout
			)
		self.thread = None
		if self.socket and not self.state.ready.is_set():
			# Bound but never served
			self.socket.close()
			self.socket = None

	def run(self) -> "Server":
		"""Serves in the foreground until interrupted."""
		try:
			asyncio.run(self.serve())
		except KeyboardInterrupt:
			event("ManualShutdown")
		event("EOK")
		return self

	def __enter__(self) -> "Server":
		return self if self.thread else self.start()

	def __exit__(self, *args: Any) -> None:
		self.stop()

	def __repr__(self) -> str:
		return f"(Server {self.service!r} {self.socket.getsockname() if self.socket else 'unbound'})"


def createServer(
	root: str | os.PathLike[str] | None = None,
	*,
	prefix: str | None = None,
	types: Mapping[str, str] = MIME_TYPES,
	host: str = "127.0.0.1",
	port: int = 0,
	logRequests: bool = LOG_REQUESTS,
	keepalive: float = OPTIONS.keepalive,
	polling: float = OPTIONS.polling,
) -> Server:
	"""Creates (but does not start) a static file server for `root`. The
	defaults bind to any free port on the loopback interface, which is
	what test harnesses want."""
	return Server(
		FileService(root, prefix=prefix, types=types),
		ServerOptions(
			host=host,
			port=port,
			logRequests=logRequests,
			keepalive=keepalive,
			polling=polling,
		),
	)


def run(
	service: Service,
	host: str = HOST,
	port: int = PORT,
	backlog: int = OPTIONS.backlog,
	condition: Callable[[], bool] | None = None,
	polling: float = OPTIONS.polling,
	logRequests: bool = OPTIONS.logRequests,
	keepalive: float = OPTIONS.keepalive,
) -> Server:
	"""High level function to run the server in the foreground."""
	server = Server(
		service,
		ServerOptions(
			host=host,
			port=port,
			backlog=backlog,
			condition=condition,
			polling=polling,
			logRequests=logRequests,
			keepalive=keepalive,
		),
	)
	return server.run()


# EOF
