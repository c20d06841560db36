from .http.model import (
	HTTPRequest,
	HTTPResponse,
	HTTPRequestError,
)  # NOQA: F401
from .model import Service  # NOQA: F401
from .services.files import FileService  # NOQA: F401
from .server import Server, createServer, run  # NOQA: F401

# EOF
