"""Viewer-request rewrite rule for directory-style URLs.

The rule runs on every request before the cache key is computed, so
``/foo/`` and ``/foo/index.html`` share one cache entry:

- ``/foo``   -> 301 redirect to ``/foo/`` (no trailing slash, no extension)
- ``/foo/``  -> request rewritten to ``/foo/index.html``
- ``/a.css`` -> unchanged
"""

from dataclasses import dataclass

FUNCTION_RUNTIME = "cloudfront-js-2.0"


@dataclass(frozen=True)
class RewriteResult:
  """Outcome of evaluating the rule for one URI."""

  uri: str
  status: int | None = None  # Set only for redirects

  @property
  def is_redirect(self) -> bool:
    return self.status is not None


def redirect301(uri: str) -> RewriteResult:
  return RewriteResult(uri=uri, status=301)


def rewrite_uri(uri: str) -> RewriteResult:
  """Apply the rewrite rule to a request URI."""
  if uri.endswith("/"):
    return RewriteResult(uri=uri + "index.html")
  last_segment = uri.rsplit("/", 1)[-1]
  if "." not in last_segment:
    return redirect301(uri + "/")
  return RewriteResult(uri=uri)


def cache_key_path(uri: str) -> str:
  """Path the edge caches a successful request under."""
  result = rewrite_uri(uri)
  if result.is_redirect:
    return rewrite_uri(result.uri).uri
  return result.uri


def function_code() -> str:
  """CloudFront Function source equivalent to ``rewrite_uri``."""
  return """function handler(event) {
  var request = event.request;
  var uri = request.uri;

  if (uri.endsWith("/")) {
    request.uri = uri + "index.html";
    return request;
  }

  var lastSegment = uri.substring(uri.lastIndexOf("/") + 1);
  if (lastSegment.indexOf(".") === -1) {
    return {
      statusCode: 301,
      statusDescription: "Moved Permanently",
      headers: { location: { value: uri + "/" } },
    };
  }

  return request;
}
"""
