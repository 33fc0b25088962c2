# studyvault/edge_api/exceptions.py
#
#
#######################################################################################################################
#
# Functions:

class EdgeAPIError(Exception):
    """Base exception for edge function client errors."""
    pass


class EdgeConnectionError(EdgeAPIError):
    """Raised for network, timeout or connection issues."""
    pass


class EdgeFunctionError(EdgeAPIError):
    """Raised for non-2xx responses or an `{error}` body."""
    def __init__(self, status_code: int, message: str, response_data: dict = None):
        super().__init__(f"Edge function error {status_code}: {message}")
        self.status_code = status_code
        self.message = message
        self.response_data = response_data or {}


class AuthenticationError(EdgeFunctionError):
    """Raised for 401 responses."""
    pass


class RateLimitError(EdgeFunctionError):
    """Raised for 429 responses (provider quota or rate limit)."""
    pass


class AIResponseFormatError(EdgeAPIError):
    """The response body, or the AI output inside it, is not the JSON we expected."""
    def __init__(self, message: str, raw_text: str = ""):
        super().__init__(message)
        self.raw_text = raw_text

#
# End of studyvault/edge_api/exceptions.py
########################################################################################################################
