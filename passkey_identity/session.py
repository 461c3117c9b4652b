import time
from dataclasses import dataclass
from typing import Callable, Optional
from collections.abc import Iterator


@dataclass
class CachedPassword:
    password: str
    user_id: str
    created: float

    def __repr__(self) -> str:
        # never expose the password
        return f'<CachedPassword user_id={self.user_id!r} created={self.created}>'


class PasswordCache:
    """Session-scoped cache of vault passwords, keyed by credential id.

    Entries live only in process memory and are never persisted; losing
    them just forces a re-derivation. With ``max_age`` set, entries older
    than ``max_age`` seconds are treated as absent and dropped on access.
    """

    def __init__(
        self,
        max_age: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic
    ) -> None:
        self._entries: dict[str, CachedPassword] = {}
        self._max_age = max_age
        self._clock = clock

    def __repr__(self) -> str:
        return (
            f'<PasswordCache [max_age:{self._max_age}] '
            f'credentials={list(self._entries.keys())}>'
        )

    def _expired(self, entry: CachedPassword) -> bool:
        if self._max_age is None:
            return False
        return self._clock() - entry.created > self._max_age

    # --- Properties ---

    @property
    def max_age(self) -> Optional[int]:
        return self._max_age

    @max_age.setter
    def max_age(self, value: Optional[int]) -> None:
        self._max_age = value

    @property
    def empty(self) -> bool:
        return not bool(self._entries)

    # --- Operations ---

    def set(self, credential_id: str, password: str, user_id: str) -> None:
        self._entries[credential_id] = CachedPassword(
            password=password,
            user_id=user_id,
            created=self._clock()
        )

    def get(
        self,
        credential_id: str,
        user_id: Optional[str] = None
    ) -> Optional[str]:
        """Return the cached password, or None.

        When ``user_id`` is given, an entry issued for another user id is
        treated as absent.
        """
        entry = self._entries.get(credential_id)
        if entry is None:
            return None
        if self._expired(entry):
            del self._entries[credential_id]
            return None
        if user_id is not None and entry.user_id != user_id:
            return None
        return entry.password

    def pop(self, credential_id: str) -> Optional[str]:
        entry = self._entries.pop(credential_id, None)
        return entry.password if entry is not None else None

    def purge_expired(self) -> int:
        """Drop all expired entries and return how many were removed."""
        expired = [k for k, v in self._entries.items() if self._expired(v)]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def invalidate(self) -> None:
        """Forget every cached password."""
        self._entries = {}

    # --- Magic Methods ---

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._entries))

    def __contains__(self, credential_id: object) -> bool:
        return self.get(str(credential_id)) is not None
