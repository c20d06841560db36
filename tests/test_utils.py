import importlib

import pytest

from baseserve import config
from baseserve.utils.files import MIME_TYPES, contentType, extension
from baseserve.utils.htmpl import H, html, raw
from baseserve.utils.logging import LogType, event, info


@pytest.mark.parametrize(
	"path,expected",
	[
		("index.html", "text/html"),
		("/srv/app/Logo.SVG", "image/svg+xml"),
		("font.woff2", "font/woff2"),
		("legacy.eot", "application/vnd.ms-fontobject"),
		("archive.tar.gz", "application/octet-stream"),
		(".bashrc", "application/octet-stream"),
		("dir.d/README", "application/octet-stream"),
	],
)
def test_content_type(path, expected):
	assert contentType(path) == expected


def test_extension():
	assert extension("a/b.JPEG") == ".jpeg"
	assert extension("a.b/c") == ""


def test_mime_table_is_read_only():
	with pytest.raises(TypeError):
		MIME_TYPES[".txt"] = "text/plain"  # type: ignore[index]


def test_htmpl_escapes():
	node = H.a("<x> & 'y'", href='/a"b', _="c")
	assert str(node) == '<a href="/a&quot;b" class="c">&lt;x&gt; &amp; &#x27;y&#x27;</a>'
	assert str(H.style(raw("a > b {}"))) == "<style>a > b {}</style>"
	assert "".join(html(H.meta(charset="utf-8"), doctype="html")) == (
		'<!DOCTYPE html>\n<meta charset="utf-8">'
	)


def test_logging(capsys):
	entry = info("Hello", Port=3000)
	assert entry.message == "Hello"
	assert entry.context == {"Port": 3000}
	assert event("GET", "/base/").type is LogType.Event
	err = capsys.readouterr().err
	assert "Hello" in err
	assert "/base/" in err


@pytest.mark.parametrize("value,expected", [(None, 3000), ("", 3000), ("8123", 8123)])
def test_port_from_environment(monkeypatch, value, expected):
	if value is None:
		monkeypatch.delenv("PORT", raising=False)
	else:
		monkeypatch.setenv("PORT", value)
	try:
		assert importlib.reload(config).PORT == expected
	finally:
		monkeypatch.undo()
		importlib.reload(config)


def test_root_from_environment(monkeypatch, tmp_path):
	monkeypatch.setenv("BASESERVE_ROOT", str(tmp_path))
	try:
		assert importlib.reload(config).ROOT == str(tmp_path)
	finally:
		monkeypatch.undo()
		importlib.reload(config)



def test_invalid_port_does_not_break_imports(monkeypatch):
	monkeypatch.setenv("PORT", "not-a-port")
	try:
		assert importlib.reload(config).PORT == 3000
		from baseserve import createServer

		assert callable(createServer)
	finally:
		monkeypatch.undo()
		importlib.reload(config)


def test_invalid_port_is_rejected_by_cli(monkeypatch, capsys):
	from baseserve.__main__ import main

	monkeypatch.setenv("PORT", "not-a-port")
	with pytest.raises(SystemExit) as e:
		main([])
	assert e.value.code == 2
	assert "PORT must be a number" in capsys.readouterr().err


# EOF
