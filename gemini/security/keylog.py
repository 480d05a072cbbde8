"""TLS key logging for packet-analyser debugging (``SSLKEYLOGFILE``).

Anyone who can read the key log can decrypt the recorded traffic, so the
file is created owner-only and every context that writes to it says so in
the log.
"""

import logging
import os
import ssl
from typing import Optional

from gemini.domain.correlation_id import CorrelationLoggerAdapter

KEYLOG_LOGGER = CorrelationLoggerAdapter(logging.getLogger("gemini.security.keylog"), {})

KEYLOG_FILE_MODE = 0o600


def enable_keylog(context: ssl.SSLContext, path: Optional[str]) -> bool:
    """Point ``context`` at the key log ``path``; False if it was not enabled.

    A file that cannot be created is reported and skipped; TLS keeps working
    without it.
    """
    if not path:
        return False
    try:
        descriptor = os.open(
            path, os.O_WRONLY | os.O_CREAT | os.O_APPEND, KEYLOG_FILE_MODE
        )
    except OSError as error:
        KEYLOG_LOGGER.warning(
            "Cannot open TLS key log file, continuing without it",
            extra={
                "event": "keylog_unavailable",
                "error_type": type(error).__name__,
                "path": path,
            },
        )
        return False
    os.close(descriptor)
    context.keylog_filename = path
    KEYLOG_LOGGER.warning(
        "TLS session secrets are being written to a key log file",
        extra={"event": "keylog_enabled", "path": path},
    )
    return True
