"""
Entity: Request Context

Who is calling and how the service is reached. Built by the API layer.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class RequestContext:
    user_id: str | None = None
    base_url: str = "http://localhost"

    @property
    def is_anonymous(self) -> bool:
        return self.user_id is None

    def absolute_url(self, path: str) -> str:
        return self.base_url.rstrip("/") + "/" + path.lstrip("/")
