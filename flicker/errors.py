"""
Error taxonomy for the /ai endpoint

Every one of these is caught by the handler's single try/except and turned
into {"success": false, "error": ...} with HTTP 500.
"""

from typing import Optional


class ProxyError(Exception):
    category = "internal"
    status: Optional[str] = None


class ConfigurationError(ProxyError):
    category = "configuration"


class ValidationError(ProxyError):
    category = "validation"


class UpstreamError(ProxyError):
    category = "upstream"

    def __init__(self, message: str, http_status: Optional[int] = None):
        super().__init__(message)
        self.http_status = http_status


class UpstreamTimeout(UpstreamError):
    category = "timeout"


class EmptyOutputError(ProxyError):
    """The upstream reported success but produced nothing"""
    category = "empty_output"
    status = "FAILED"
