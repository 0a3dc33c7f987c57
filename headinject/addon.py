"""
Inject a snippet into HTML responses right before </head>, while streaming.

Usage:

    mitmdump -s headinject/addon.py --set inject_snippet_file=snippet.html

Only live `200 OK` responses with a `text/html` content type, no content
encoding and a supported charset are rewritten. Everything else is left as is.
"""
import logging
from typing import Optional

from mitmproxy import ctx
from mitmproxy import exceptions
from mitmproxy import http

from headinject import charset
from headinject.injector import Injector

logger = logging.getLogger(__name__)

DEFAULT_SNIPPET = """<script>(function(w,d,s,l,i){w[l]=w[l]||[];w[l].push({'gtm.start':
new Date().getTime(),event:'gtm.js'});var f=d.getElementsByTagName(s)[0],
j=d.createElement(s),dl=l!='dataLayer'?'&l='+l:'';j.async=true;j.src=
'https://www.googletagmanager.com/gtm.js?id='+i+dl;f.parentNode.insertBefore(j,f);
})(window,document,'script','dataLayer','GTM-XXXXXXX');</script>"""


def skip_reason(flow: http.HTTPFlow) -> str | None:
    """
    Return why a response must not be rewritten, or None if it can be.
    """
    response = flow.response
    assert response
    if flow.request.method.upper() == "HEAD":
        return "HEAD request"
    if response.status_code != 200:
        return f"status {response.status_code}"
    content_type = response.headers.get("content-type", "")
    if "text/html" not in content_type:
        return "not html"
    encoding = response.headers.get("content-encoding", "identity").strip().lower()
    if encoding not in ("", "identity"):
        return f"content-encoding {encoding}"
    if not charset.header_allows(content_type):
        return f"unsupported charset {charset.declared_charset(content_type)}"
    if callable(response.stream):
        return "already streamed by another addon"
    return None


class HeadInject:
    def __init__(self):
        self.snippet = DEFAULT_SNIPPET

    def load(self, loader):
        loader.add_option(
            "inject_snippet",
            str,
            DEFAULT_SNIPPET,
            "Markup to insert into HTML responses, right before the first </head>.",
        )
        loader.add_option(
            "inject_snippet_file",
            Optional[str],
            None,
            "Read the markup to insert from a file. Overrides inject_snippet.",
        )
        loader.add_option(
            "inject_lookback",
            bool,
            False,
            """
            Also find </head> if it is split across two body chunks.
            This holds back up to six characters at the end of each chunk.
            """,
        )

    def configure(self, updated):
        if "inject_snippet" in updated or "inject_snippet_file" in updated:
            if ctx.options.inject_snippet_file:
                try:
                    with open(ctx.options.inject_snippet_file, encoding="utf8") as f:
                        snippet = f.read()
                except (OSError, UnicodeDecodeError) as e:
                    raise exceptions.OptionsError(
                        f"Could not read inject_snippet_file: {e}"
                    ) from e
            else:
                snippet = ctx.options.inject_snippet
            if not snippet:
                raise exceptions.OptionsError("The injected snippet must not be empty.")
            self.snippet = snippet

    def responseheaders(self, flow: http.HTTPFlow) -> None:
        assert flow.response
        if not flow.live:
            return
        try:
            self.engage(flow)
        except Exception as e:
            logger.warning(f"Not injecting into {flow.request.pretty_url}: {e}")

    def engage(self, flow: http.HTTPFlow) -> None:
        assert flow.response
        response = flow.response
        if reason := skip_reason(flow):
            logger.debug(f"Passing {flow.request.pretty_url} through: {reason}.")
            return

        injector = Injector(
            self.snippet,
            charset_hint=charset.declared_charset(response.headers.get("content-type")),
            lookback=ctx.options.inject_lookback,
        )
        if "content-length" in response.headers:
            del response.headers["content-length"]
            if response.http_version == "HTTP/1.1":
                response.headers["transfer-encoding"] = "chunked"
        response.stream = injector
        logger.debug(f"Injecting into {flow.request.pretty_url}.")


addons = [HeadInject()]
