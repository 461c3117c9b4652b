"""
Encrypted key records — the persisted shape of a vault entry.

Wire form (camelCase, binary fields base64)::

    {"id": ..., "encryptedKey": ..., "iv": ..., "salt": ...,
     "timestamp": <epoch ms>, "metadata": {"userId": ..., "credentialId": ...}}
"""
from typing import Any, Optional

import orjson
from pydantic import BaseModel, Field


class KeyMetadata(BaseModel):
    """Identifiers the stored key was derived from."""

    user_id: str = Field(alias="userId")
    credential_id: str = Field(alias="credentialId")

    model_config = {"populate_by_name": True, "frozen": True}


class EncryptedKeyRecord(BaseModel):
    """At-rest cache entry for one derived signing key."""

    id: str = Field(min_length=1)
    encrypted_key: str = Field(alias="encryptedKey")
    iv: str
    salt: str
    timestamp: int = Field(ge=0)
    metadata: Optional[KeyMetadata] = None

    model_config = {"populate_by_name": True, "frozen": True}

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "EncryptedKeyRecord":
        return cls.model_validate(data)

    def to_json(self) -> bytes:
        return orjson.dumps(self.to_dict())

    @classmethod
    def from_json(cls, data: bytes) -> "EncryptedKeyRecord":
        """Parse a JSON record.

        Raises:
            ValueError: If data is not valid JSON or not a valid record.
        """
        return cls.from_dict(orjson.loads(data))
