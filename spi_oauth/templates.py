"""
HTML pages: the redirect notice shown before sending the user to the provider, and the
callback success page. The only dynamic value in either is the (escaped) provider URL.
"""
import html
from pathlib import Path
from string import Template

from spi_oauth.errors import RenderError

DEFAULT_REDIRECT_NOTICE = """<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <meta http-equiv="refresh" content="0; url=$url">
  <title>Redirecting</title>
</head>
<body>
  <h1>Redirecting to the service provider</h1>
  <p>If you are not redirected automatically, <a href="$url">continue here</a>.</p>
</body>
</html>"""


class RedirectTemplate:
    def __init__(self, source: str = DEFAULT_REDIRECT_NOTICE):
        self._template = Template(source)

    @classmethod
    def from_path(cls, path: str | None) -> "RedirectTemplate":
        """Template from file, or the built-in one when path is empty."""
        if not path:
            return cls()
        try:
            source = Path(path).read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise RenderError(f"cannot read template {path}: {e}") from e
        return cls(source)

    def render(self, url: str) -> str:
        try:
            return self._template.substitute(url=html.escape(url))
        except (KeyError, ValueError) as e:
            raise RenderError(f"bad template placeholder {e}") from e


def callback_success_page() -> str:
    return """<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>Authenticated</title></head>
<body>
  <h1>Authenticated</h1>
  <p>The service provider token was stored. You can close this window.</p>
</body>
</html>"""
