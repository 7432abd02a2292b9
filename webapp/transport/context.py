"""Context object shared across worker threads."""

from dataclasses import dataclass
from typing import Optional

from webapp.bootstrap.config import ServerConfig
from webapp.lifecycle.state import ServerLifecycle
from webapp.pipeline.filters import FilterChain


@dataclass
class WorkerContext:
    """Dependencies shared across handler threads."""

    directory: str
    chain: FilterChain
    lifecycle: Optional[ServerLifecycle] = None
    config: Optional[ServerConfig] = None
