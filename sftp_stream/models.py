from __future__ import annotations

from dataclasses import dataclass, field

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


class ConnectionConfig(BaseModel):
    """Credentials and address of one SSH/SFTP endpoint.

    Instances are frozen: a worker captures the configuration it was created
    with and never observes later replacements.
    """

    model_config = ConfigDict(frozen=True)

    host: str
    port: int = Field(default=22, ge=1, le=65535)
    username: str
    password: str | None = Field(default=None, repr=False)
    private_key: str | None = Field(
        default=None,
        repr=False,
        validation_alias=AliasChoices("private_key", "privateKey"),
    )
    passphrase: str | None = Field(default=None, repr=False)

    @field_validator("host", "username", mode="before")
    @classmethod
    def _strip(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip()
        return value

    @field_validator("password", "private_key", "passphrase", mode="before")
    @classmethod
    def _blank_as_missing(cls, value: object) -> object:
        if isinstance(value, str):
            value = value.strip()
            return value or None
        return value

    @property
    def has_credentials(self) -> bool:
        return bool(self.private_key or self.password)

    def describe(self) -> str:
        return f"{self.username}@{self.host}:{self.port}"


@dataclass(frozen=True)
class ServeWindow:
    """Inclusive byte window chosen to satisfy one read request."""

    start: int
    end: int
    partial: bool = True

    @property
    def length(self) -> int:
        return self.end - self.start + 1

    def content_range(self, total_size: int) -> str:
        return f"bytes {self.start}-{self.end}/{total_size}"


@dataclass
class StreamResponse:
    status: int
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes = b""

    @property
    def content_type(self) -> str:
        return self.headers.get("Content-Type", "application/octet-stream")

    @classmethod
    def text(cls, message: str, status: int) -> StreamResponse:
        body = message.encode("utf-8")
        return cls(
            status=status,
            headers={
                "Content-Type": "text/plain; charset=utf-8",
                "Content-Length": str(len(body)),
                "Cache-Control": "no-store",
            },
            body=body,
        )
