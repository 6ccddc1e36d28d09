"""Test helpers shared across modules."""

from __future__ import annotations

import io
from typing import Any

from jose import jwt
from PIL import Image

from media_import.services.access import Caller
from media_import.services.ingestion import IncomingFile

TEST_SECRET = "test-secret"


class InMemoryRedis:
    """The subset of the redis client the progress tracker uses."""

    def __init__(self) -> None:
        self.values: dict[str, Any] = {}

    def set(self, key: str, value: Any, ex: int | None = None) -> bool:
        self.values[key] = value
        return True

    def get(self, key: str) -> Any:
        return self.values.get(key)

    def delete(self, *keys: str) -> int:
        return sum(1 for key in keys if self.values.pop(key, None) is not None)


def make_image_bytes(color: tuple[int, int, int], fmt: str = "JPEG", size: tuple[int, int] = (48, 48)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, format=fmt)
    return buffer.getvalue()


def image_file(name: str, color: tuple[int, int, int] = (200, 80, 20), fmt: str = "JPEG") -> IncomingFile:
    content_type = "image/png" if fmt == "PNG" else "image/jpeg"
    return IncomingFile(filename=name, content_type=content_type, data=make_image_bytes(color, fmt))


def mint_token(caller: Caller, secret: str = TEST_SECRET) -> str:
    return jwt.encode(
        {"sub": caller.user_id, "email": caller.email, "roles": sorted(caller.roles)},
        secret,
        algorithm="HS256",
    )


def auth_headers(caller: Caller) -> dict[str, str]:
    return {"Authorization": f"Bearer {mint_token(caller)}"}
