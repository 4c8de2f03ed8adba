"""skillboost_etl.resolution_identity

Email-keyed identity resolution for one ingestion batch.

The resolver is built from an explicit read of the known participant set
taken once per file.  It never sees writes made during the batch and it
never writes anything itself; it only looks ids up and mints new ones.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Callable, Iterable

from skillboost_etl.models import Participant, ParticipantFact


@dataclass(frozen=True)
class Resolution:
    participant_id: str
    is_new: bool


def new_identifier() -> str:
    return str(uuid.uuid4())


class IdentityResolver:
    """Resolve facts to participant ids by exact (case-sensitive) email."""

    def __init__(
        self,
        known_participants: Iterable[Participant],
        id_factory: Callable[[], str] = new_identifier,
    ) -> None:
        self._by_email: dict[str, str] = {}
        for p in known_participants:
            self._by_email.setdefault(p.user_email, p.id)
        self._taken: set[str] = set(self._by_email.values())
        self._minted: dict[str, str] = {}
        self._id_factory = id_factory

    def lookup(self, email: str) -> str | None:
        """Return the known id for an email, ignoring ids minted this batch."""
        return self._by_email.get(email)

    def resolve(self, fact: ParticipantFact) -> Resolution:
        email = fact.user_email
        pid = self._by_email.get(email)
        if pid is not None:
            return Resolution(pid, is_new=False)

        # Duplicate rows for a person first seen in this batch share one id.
        pid = self._minted.get(email)
        if pid is not None:
            return Resolution(pid, is_new=False)

        pid = self._id_factory()
        while pid in self._taken:
            pid = self._id_factory()
        self._taken.add(pid)
        self._minted[email] = pid
        return Resolution(pid, is_new=True)

    @property
    def minted(self) -> dict[str, str]:
        return dict(self._minted)
