"""Proxy error definitions for s3bridge."""

from typing import Any


class ProxyError(Exception):
    """A proxy error with code, message, and HTTP status.

    Attributes:
        code: The error code string (e.g. "ObjectNotFound").
        message: Human-readable error description.
        http_status: The HTTP status code to return.
        extra_fields: Additional key-value pairs to include in the JSON body.
        headers: Response headers to send along with the error.
    """

    def __init__(
        self,
        code: str,
        message: str,
        http_status: int = 500,
        extra_fields: dict[str, str] | None = None,
    ) -> None:
        """Initialize the proxy error.

        Args:
            code: Error code.
            message: Error description.
            http_status: HTTP status code (default 500).
            extra_fields: Optional extra JSON fields.
        """
        super().__init__(message)
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra_fields = extra_fields or {}
        self.headers: dict[str, str] = {}


class ObjectNotFound(ProxyError):
    """The requested key does not exist in the store."""

    def __init__(self, key: str = "", bucket: str = "") -> None:
        extra = {"key": key} if key else {}
        if bucket:
            extra["bucket"] = bucket
        super().__init__(
            code="ObjectNotFound",
            message="Missing S3 key",
            http_status=404,
            extra_fields=extra,
        )


class NotModified(ProxyError):
    """The client's cached copy is still current. Rendered as an empty 304."""

    def __init__(self, key: str = "") -> None:
        super().__init__(
            code="NotModified",
            message="Not Modified",
            http_status=304,
            extra_fields={"key": key} if key else {},
        )


class UpstreamError(ProxyError):
    """The object store reported an error the proxy does not map.

    The original store exception is chained as ``__cause__``.
    """

    def __init__(
        self,
        message: str = "The object store returned an error.",
        bucket: str = "",
        key: str = "",
        prefix: str | None = None,
        store_code: str = "",
    ) -> None:
        extra: dict[str, str] = {}
        if bucket:
            extra["bucket"] = bucket
        if key:
            extra["key"] = key
        if prefix is not None:
            extra["prefix"] = prefix
        if store_code:
            extra["storeCode"] = store_code
        super().__init__(
            code="UpstreamError",
            message=message,
            http_status=502,
            extra_fields=extra,
        )
        self.store_code = store_code


class TransformError(ProxyError):
    """A content transform could not parse its input stream.

    Raised while the body is streaming, after headers are committed, so
    it terminates the response instead of producing an error body.
    """

    def __init__(self, message: str = "Malformed input to content transform.") -> None:
        super().__init__(code="TransformError", message=message, http_status=500)


class InternalError(ProxyError):
    """An internal server error occurred."""

    def __init__(self, message: str = "We encountered an internal error. Please try again.") -> None:
        super().__init__(code="InternalError", message=message, http_status=500)


def render_error(
    code: str,
    message: str,
    resource: str = "",
    request_id: str = "",
    extra_fields: dict[str, str] | None = None,
) -> dict[str, Any]:
    """Build the JSON error payload sent to clients.

    Args:
        code: Error code.
        message: Error description.
        resource: The request path that failed.
        request_id: The request id assigned by the middleware.
        extra_fields: Additional fields merged into the payload.

    Returns:
        A JSON-serializable dict.
    """
    body: dict[str, Any] = {"code": code, "message": message}
    if resource:
        body["resource"] = resource
    if request_id:
        body["requestId"] = request_id
    for field, value in (extra_fields or {}).items():
        body[field] = value
    return body
