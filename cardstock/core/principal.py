"""The acting principal passed explicitly through every core call."""

from __future__ import annotations

import dataclasses
import uuid

__all__ = ["Principal"]


@dataclasses.dataclass(frozen=True)
class Principal:
    """Verified identity supplied by the identity provider.

    Attributes:
        id: Stable principal identifier (the token ``sub`` claim).
        email: Registered e-mail address of the principal.
    """

    id: uuid.UUID
    email: str

    @property
    def normalized_email(self) -> str:
        return self.email.strip().lower()
