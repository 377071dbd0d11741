"""Deployable artifact reference (immutable once constructed)."""

from __future__ import annotations

import re

from pydantic import BaseModel, ConfigDict, field_validator

# OCI distribution spec tag grammar, or a content digest.
_TAG_RE = re.compile(r"^(?:[A-Za-z0-9_][A-Za-z0-9_.-]{0,127}|sha256:[a-f0-9]{64})$")
_NAME_RE = re.compile(r"^[^\s:@]+$")


class ArtifactRef(BaseModel):
    """A reference to one immutable container image.

    ``registry``, ``repository`` and ``tag`` together resolve to exactly one
    image.  The tag may be a plain OCI tag (``v2``, ``2026.10.1``) or a
    ``sha256:<hex>`` digest.
    """

    model_config = ConfigDict(frozen=True)

    registry: str
    repository: str
    tag: str

    @field_validator("registry")
    @classmethod
    def _check_registry(cls, value: str) -> str:
        if not value or not _NAME_RE.match(value.replace(":", "")):
            raise ValueError(f"invalid registry {value!r}")
        return value

    @field_validator("repository")
    @classmethod
    def _check_repository(cls, value: str) -> str:
        if not value or not _NAME_RE.match(value) or value.startswith("/"):
            raise ValueError(f"invalid repository {value!r}")
        return value

    @field_validator("tag")
    @classmethod
    def _check_tag(cls, value: str) -> str:
        if not value:
            raise ValueError("tag must not be empty")
        if not _TAG_RE.match(value):
            raise ValueError(f"invalid tag {value!r}")
        return value

    @property
    def is_digest(self) -> bool:
        return self.tag.startswith("sha256:")

    @property
    def image_uri(self) -> str:
        """Render as a pullable image reference."""
        sep = "@" if self.is_digest else ":"
        return f"{self.registry}/{self.repository}{sep}{self.tag}"

    def __str__(self) -> str:
        return self.image_uri

    @classmethod
    def parse(cls, image_uri: str) -> ArtifactRef:
        """Parse ``registry/repository:tag`` or ``registry/repository@sha256:…``.

        The first path component is always taken as the registry, so
        ``123456789012.dkr.ecr.eu-west-1.amazonaws.com/app:v2`` and
        ``r/app:v2`` both parse.  Raises ``ValueError`` for references with
        no registry or no tag.
        """
        uri = image_uri.strip()
        if "@" in uri:
            name, tag = uri.split("@", 1)
        else:
            slash = uri.rfind("/")
            colon = uri.rfind(":")
            if colon <= slash:
                raise ValueError(f"image reference {image_uri!r} has no tag")
            name, tag = uri[:colon], uri[colon + 1:]

        if "/" not in name:
            raise ValueError(f"image reference {image_uri!r} has no registry")
        registry, repository = name.split("/", 1)
        return cls(registry=registry, repository=repository, tag=tag)
