import re
import yaml
import typing
from pydantic import BaseModel, model_validator


DEFAULT_PATTERNS = (
    r"^(?:https?://)?github\.com/[^/]+/[^/]+/(?:releases|archive)/.*$",
    r"^(?:https?://)?github\.com/[^/]+/[^/]+/tags.*$",
    r"^(?:https?://)?github\.com/[^/]+/[^/]+/(?:blob|raw)/.*$",
    r"^(?:https?://)?github\.com/[^/]+/[^/]+/(?:info|git-).*$",
    r"^(?:https?://)?raw\.(?:githubusercontent|github)\.com/[^/]+/[^/]+/[^/]+/.+$",
    r"^(?:https?://)?gist\.(?:githubusercontent|github)\.com/[^/]+/[^/]+/.+$",
)


class Policy(BaseModel):
    version: str = "1"
    patterns: typing.List[str]
    whitelist: typing.List[str] = []

    @model_validator(mode="before")
    def validate_patterns(cls, values: typing.Dict[str, typing.Any]):
        patterns = values.get("patterns") or []
        if not patterns:
            raise ValueError("At least one url pattern is required.")
        for pattern in patterns:
            try:
                re.compile(pattern, re.IGNORECASE)
            except re.error as e:
                raise ValueError(f"Invalid url pattern {pattern!r}: {e}") from e
        return values

    @model_validator(mode="before")
    def validate_whitelist(cls, values: typing.Dict[str, typing.Any]):
        whitelist = values.get("whitelist") or []
        if any(not entry for entry in whitelist):
            raise ValueError("Whitelist entries must be non-empty.")
        return values


def default_policy() -> Policy:
    return Policy(version="1", patterns=list(DEFAULT_PATTERNS))


def load_policy(path: str) -> Policy:
    with open(path, "r") as f:
        data = yaml.safe_load(f)

    policy = Policy(**data)
    return policy
