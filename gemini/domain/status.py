"""Gemini status codes and their categories.

The valid set is every individually defined code, including 11 (sensitive
input). Older Gemini clients predate 11 and reject it as undefined; here it
is accepted without needing ``allow_invalid_statuses``.
"""

STATUS_INPUT = 10
STATUS_SENSITIVE_INPUT = 11

STATUS_SUCCESS = 20
STATUS_SUCCESS_END_OF_CLIENT_CERTIFICATE_SESSION = 21

STATUS_REDIRECT = 30
STATUS_REDIRECT_TEMPORARY = 30
STATUS_REDIRECT_PERMANENT = 31

STATUS_TEMPORARY_FAILURE = 40
STATUS_UNAVAILABLE = 41
STATUS_CGI_ERROR = 42
STATUS_PROXY_ERROR = 43
STATUS_SLOW_DOWN = 44

STATUS_PERMANENT_FAILURE = 50
STATUS_NOT_FOUND = 51
STATUS_GONE = 52
STATUS_PROXY_REQUEST_REFUSED = 53
STATUS_BAD_REQUEST = 59

STATUS_CLIENT_CERTIFICATE_REQUIRED = 60
STATUS_TRANSIENT_CERTIFICATE_REQUESTED = 61
STATUS_AUTHORISED_CERTIFICATE_REQUIRED = 62
STATUS_CERTIFICATE_NOT_ACCEPTED = 63
STATUS_FUTURE_CERTIFICATE_REJECTED = 64
STATUS_EXPIRED_CERTIFICATE_REJECTED = 65

STATUS_TEXT = {
    STATUS_INPUT: "Input",
    STATUS_SENSITIVE_INPUT: "Sensitive Input",
    STATUS_SUCCESS: "Success",
    STATUS_SUCCESS_END_OF_CLIENT_CERTIFICATE_SESSION: (
        "Success - End Of Client Certificate Session"
    ),
    STATUS_REDIRECT_TEMPORARY: "Temporary Redirect",
    STATUS_REDIRECT_PERMANENT: "Permanent Redirect",
    STATUS_TEMPORARY_FAILURE: "Temporary Failure",
    STATUS_UNAVAILABLE: "Server Unavailable",
    STATUS_CGI_ERROR: "CGI Error",
    STATUS_PROXY_ERROR: "Proxy Error",
    STATUS_SLOW_DOWN: "Slow Down",
    STATUS_PERMANENT_FAILURE: "Permanent Failure",
    STATUS_NOT_FOUND: "Not Found",
    STATUS_GONE: "Gone",
    STATUS_PROXY_REQUEST_REFUSED: "Proxy Request Refused",
    STATUS_BAD_REQUEST: "Bad Request",
    STATUS_CLIENT_CERTIFICATE_REQUIRED: "Client Certificate Required",
    STATUS_TRANSIENT_CERTIFICATE_REQUESTED: "Transient Certificate Requested",
    STATUS_AUTHORISED_CERTIFICATE_REQUIRED: "Authorised Certificate Required",
    STATUS_CERTIFICATE_NOT_ACCEPTED: "Certificate Not Accepted",
    STATUS_FUTURE_CERTIFICATE_REJECTED: "Future Certificate Rejected",
    STATUS_EXPIRED_CERTIFICATE_REJECTED: "Expired Certificate Rejected",
}

STATUS_CATEGORIES = {
    10: "INPUT",
    20: "SUCCESS",
    30: "REDIRECT",
    40: "TEMPORARY_FAILURE",
    50: "PERMANENT_FAILURE",
    60: "CLIENT_CERT_REQUIRED",
}

VALID_STATUSES = frozenset(STATUS_TEXT)


def simplify_status(status: int) -> int:
    """Drop the detail digit, e.g. 44 becomes 40."""
    return (status // 10) * 10


def is_status_valid(status: int) -> bool:
    """Return True when the status is individually defined by the protocol."""
    return status in VALID_STATUSES


def category_name(status: int) -> str:
    """Return the category name for a status, or ``UNKNOWN`` outside 10-69."""
    return STATUS_CATEGORIES.get(simplify_status(status), "UNKNOWN")


def status_text(status: int) -> str:
    """Return a human-readable reason phrase for a status code."""
    return STATUS_TEXT.get(status, "Unknown Status")
