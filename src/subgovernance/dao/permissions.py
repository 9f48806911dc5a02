"""Permission registry — the in-process stand-in for the DAO's permission manager.

A permission is a (where, who, permission_id) triple: principal ``who`` may
perform ``permission_id`` on resource ``where``. ``ANY_ADDR`` as ``who``
grants the permission to every principal.
"""

from __future__ import annotations

from typing import Any, Protocol

from subgovernance.errors import Unauthorized

ANY_ADDR = "*"

EXECUTE_PERMISSION = "EXECUTE_PERMISSION"
CREATE_GROUP_PERMISSION = "CREATE_GROUP_PERMISSION"
UPDATE_ADDRESSES_PERMISSION = "UPDATE_ADDRESSES_PERMISSION"
UPDATE_VOTING_SETTINGS_PERMISSION = "UPDATE_VOTING_SETTINGS_PERMISSION"


class PermissionChecker(Protocol):
    def has_permission(self, where: str, who: str, permission_id: str) -> bool: ...


def require(checker: PermissionChecker, where: str, who: str, permission_id: str) -> None:
    """Raise Unauthorized unless ``who`` holds ``permission_id`` on ``where``."""
    if not checker.has_permission(where, who, permission_id):
        raise Unauthorized(where, who, permission_id)


class PermissionRegistry:
    """Grant/revoke store answering ``has_permission`` queries."""

    def __init__(self) -> None:
        self._grants: set[tuple[str, str, str]] = set()

    def grant(self, where: str, who: str, permission_id: str) -> None:
        self._grants.add((where, who, permission_id))

    def revoke(self, where: str, who: str, permission_id: str) -> None:
        self._grants.discard((where, who, permission_id))

    def has_permission(self, where: str, who: str, permission_id: str) -> bool:
        return (
            (where, who, permission_id) in self._grants
            or (where, ANY_ADDR, permission_id) in self._grants
        )

    def to_records(self) -> list[dict[str, Any]]:
        return [
            {"where": where, "who": who, "permission_id": pid}
            for where, who, pid in sorted(self._grants)
        ]

    def load_records(self, records: list[dict[str, Any]]) -> None:
        self._grants = {(r["where"], r["who"], r["permission_id"]) for r in records}

    @classmethod
    def from_records(cls, records: list[dict[str, Any]]) -> PermissionRegistry:
        registry = cls()
        registry.load_records(records)
        return registry
