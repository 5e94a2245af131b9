"""
Membership directory — who belongs to a project and how to encrypt for them.

The directory is owned by the surrounding application (project/team CRUD,
on-chain membership). The vault only reads it.
"""
import abc
from typing import Optional

from .models import Member


class MemberDirectory(abc.ABC):
    """Read-only view of project membership."""

    @abc.abstractmethod
    async def list_project_members(self, project_id: str) -> list[Member]:
        """Return every current member of ``project_id``."""

    async def get_member(self, project_id: str, wallet_address: str) -> Optional[Member]:
        for member in await self.list_project_members(project_id):
            if member.wallet_address == wallet_address:
                return member
        return None


class StaticMemberDirectory(MemberDirectory):
    """In-memory directory, filled explicitly by the caller."""

    def __init__(self, members: Optional[dict[str, list[Member]]] = None):
        self._projects: dict[str, dict[str, Member]] = {}
        for project_id, project_members in (members or {}).items():
            for member in project_members:
                self.add_member(project_id, member.wallet_address, member.encryption_public_key)

    def add_member(
        self,
        project_id: str,
        wallet_address: str,
        encryption_public_key: Optional[bytes] = None,
    ) -> Member:
        member = Member(
            wallet_address=wallet_address,
            encryption_public_key=encryption_public_key,
        )
        self._projects.setdefault(project_id, {})[wallet_address] = member
        return member

    def remove_member(self, project_id: str, wallet_address: str) -> None:
        self._projects.get(project_id, {}).pop(wallet_address, None)

    async def list_project_members(self, project_id: str) -> list[Member]:
        return list(self._projects.get(project_id, {}).values())

    async def get_member(self, project_id: str, wallet_address: str) -> Optional[Member]:
        return self._projects.get(project_id, {}).get(wallet_address)
