import argparse
import os
import sys
from typing import Sequence

from . import config
from .server import Server, ServerOptions
from .services.files import FileService
from .utils.logging import info


def main(args: Sequence[str] | None = None) -> int:
	parser = argparse.ArgumentParser(
		prog="baseserve",
		description=f"Serves a directory tree over HTTP under the {config.PREFIX} prefix",
	)
	parser.add_argument(
		"root",
		nargs="?",
		default=config.ROOT,
		help="Directory to serve (defaults to $BASESERVE_ROOT or the current directory)",
	)
	parser.add_argument("--host", default=config.HOST, help="Interface to listen on")
	try:
		port: int = config.port(os.getenv("PORT"))
	except ValueError:
		parser.error(f"PORT must be a number, got: {os.getenv('PORT')!r}")
	parser.add_argument(
		"-p", "--port", type=int, default=port, help="Port to listen on"
	)
	options = parser.parse_args(args)
	service = FileService(options.root)
	server = Server(
		service,
		ServerOptions(host=options.host, port=options.port),
	)
	# We bind first, as the port may differ from the requested one
	server.bind()
	info(f"Static server running at {server.url}")
	info(f"Serving files from: {service.root}")
	server.run()
	return 0


if __name__ == "__main__":
	sys.exit(main())

# EOF
