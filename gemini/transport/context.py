"""Context object shared across worker threads."""

import ssl
from dataclasses import dataclass
from typing import Optional

from gemini.bootstrap.config import ServerConfig
from gemini.domain.gemini_types import Handler
from gemini.lifecycle.state import ServerLifecycle


@dataclass
class WorkerContext:
    """Read-only dependencies handed to every connection worker."""

    handler: Handler
    tls_context: ssl.SSLContext
    lifecycle: Optional[ServerLifecycle] = None
    config: Optional[ServerConfig] = None
