from dataclasses import dataclass
from typing import List


@dataclass
class DomainError(Exception):
    detail: str
    title: str = "Domain Error"
    type: str = "https://example.com/problems/domain-error"
    errors: List[dict] | None = None
    status_code: int = 400


@dataclass
class NotFoundError(DomainError):
    title: str = "Not Found"
    type: str = "https://example.com/problems/not-found"
    status_code: int = 404


@dataclass
class PermissionDeniedError(DomainError):
    title: str = "Forbidden"
    type: str = "https://example.com/problems/forbidden"
    status_code: int = 403


class DuplicateRefundError(Exception):
    """Raised when new claims match live claims by duplicate key."""

    def __init__(self, duplicates: list[dict]) -> None:
        super().__init__(f"{len(duplicates)} likely duplicate refund(s)")
        self.duplicates = duplicates
