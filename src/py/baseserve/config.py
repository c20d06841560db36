import os
from os import getenv

DEFAULT_PORT: int = 3000


def port(value: str | None, default: int = DEFAULT_PORT) -> int:
	"""Parses a port number, an empty or missing value giving `default`."""
	return int(value) if value else default


# NOTE: An invalid `PORT` is only an error for the standalone server, which
# parses it again, so that embedding the server is not affected.
try:
	PORT: int = port(getenv("PORT"))
except ValueError:
	PORT = DEFAULT_PORT

# Test harnesses typically reach the server from containers as well
HOST: str = getenv("HOST", "0.0.0.0")  # nosec: B104

# The directory tree exposed under `PREFIX`
ROOT: str = os.path.abspath(getenv("BASESERVE_ROOT") or os.getcwd())

# Only paths starting with this prefix are served
PREFIX: str = "/base/"

LOG_REQUESTS: bool = getenv("BASESERVE_LOG_REQUESTS", "1") == "1"

DEBUG: bool = getenv("BASESERVE_DEBUG", "0") == "1"

# EOF
