from abc import ABC, abstractmethod
from typing import ClassVar, Optional

from .http.model import HTTPRequest, HTTPResponse

# -----------------------------------------------------------------------------
#
# SERVICE
#
# -----------------------------------------------------------------------------


class Service(ABC):
	"""A service turns each request into exactly one response. The server
	calls `start` before accepting connections and `stop` once it is done."""

	PREFIX: ClassVar[str] = "/"

	def __init__(self, name: Optional[str] = None, *, prefix: str | None = None):
		self.name: str = name or self.__class__.__name__
		self.prefix: str = prefix or self.PREFIX

	async def start(self) -> None:
		"""Can be overridden to do asynchronous pre-start work"""
		pass

	async def stop(self) -> None:
		"""Can be overridden to do asynchronous post-stop work"""
		pass

	@abstractmethod
	async def process(self, request: HTTPRequest) -> HTTPResponse: ...

	def __repr__(self) -> str:
		return f"(Service {self.name} {self.prefix})"


# EOF
