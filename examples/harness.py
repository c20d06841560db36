"""
Test Harness Example

Starts the static server on a free port for the duration of a block, the
way a test harness would, and fetches a few paths from it.

Usage:
    python harness.py [ROOT]
"""

import sys
import urllib.error
import urllib.request

from baseserve import createServer
from baseserve.utils.logging import info, warning


def get(url: str) -> tuple[int, str | None, int]:
	try:
		with urllib.request.urlopen(url) as res:
			return res.status, res.headers.get("Content-Type"), len(res.read())
	except urllib.error.HTTPError as e:
		return e.code, e.headers.get("Content-Type"), len(e.read())


if __name__ == "__main__":
	root = sys.argv[1] if len(sys.argv) > 1 else "."
	with createServer(root) as server:
		for path in ("", "README.md", "index.html", "../"):
			status, content_type, size = get(f"{server.url}{path}")
			(info if status == 200 else warning)(
				"Fetched", Path=f"/base/{path}", Status=status, Type=content_type, Size=size
			)

# EOF
