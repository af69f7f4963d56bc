"""Configuration models for the visual monitor."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator

from pixelwatch.alerts.channels import (
    Channel,
    EmailChannel,
    GenericWebhookChannel,
    SlackChannel,
    TeamsChannel,
)


def _resolve_env(value: str) -> str:
    if isinstance(value, str) and value.startswith("env:"):
        env_var = value[4:]
        resolved = os.environ.get(env_var)
        if resolved is None:
            raise ValueError(f"Environment variable '{env_var}' not set")
        return resolved
    return value


class ViewportConfig(BaseModel):
    width: int = 1920
    height: int = 1080
    name: str = "desktop"


class StorageConfig(BaseModel):
    base_dir: str = "./pixelwatch-snapshots"
    max_snapshots: int = Field(default=20, ge=1)  # history entries kept per key


class BrowserConfig(BaseModel):
    headless: bool = True
    slow_mo: float = 0
    user_agent: Optional[str] = None


class SlackChannelConfig(BaseModel):
    type: Literal["slack"] = "slack"
    url: str
    timeout_seconds: float = 10.0

    @field_validator("url", mode="before")
    @classmethod
    def resolve_env_url(cls, v: str) -> str:
        return _resolve_env(v)

    def build(self) -> Channel:
        return SlackChannel(self.url, timeout=self.timeout_seconds)


class TeamsChannelConfig(BaseModel):
    type: Literal["teams"] = "teams"
    url: str
    timeout_seconds: float = 10.0

    @field_validator("url", mode="before")
    @classmethod
    def resolve_env_url(cls, v: str) -> str:
        return _resolve_env(v)

    def build(self) -> Channel:
        return TeamsChannel(self.url, timeout=self.timeout_seconds)


class GenericWebhookChannelConfig(BaseModel):
    type: Literal["generic"] = "generic"
    url: str
    headers: dict[str, str] = Field(default_factory=dict)
    timeout_seconds: float = 10.0

    @field_validator("url", mode="before")
    @classmethod
    def resolve_env_url(cls, v: str) -> str:
        return _resolve_env(v)

    @field_validator("headers", mode="before")
    @classmethod
    def resolve_env_headers(cls, v: dict) -> dict:
        if isinstance(v, dict):
            return {k: _resolve_env(val) for k, val in v.items()}
        return v

    def build(self) -> Channel:
        return GenericWebhookChannel(self.url, headers=self.headers, timeout=self.timeout_seconds)


class EmailChannelConfig(BaseModel):
    type: Literal["email"] = "email"
    recipients: list[str] = Field(min_length=1)
    sender: str = "pixelwatch@localhost"
    outbox_dir: str = "./pixelwatch-outbox"

    def build(self) -> Channel:
        return EmailChannel(self.recipients, Path(self.outbox_dir), sender=self.sender)


ChannelConfig = Annotated[
    Union[SlackChannelConfig, TeamsChannelConfig, GenericWebhookChannelConfig, EmailChannelConfig],
    Field(discriminator="type"),
]


class MonitorConfig(BaseModel):
    # Schedule (5-field crontab)
    schedule: str = "0 */6 * * *"

    # Targets: urls x viewports x selectors
    urls: list[str] = Field(default_factory=list)
    viewports: list[ViewportConfig] = Field(
        default_factory=lambda: [
            ViewportConfig(width=1920, height=1080, name="desktop"),
            ViewportConfig(width=768, height=1024, name="tablet"),
            ViewportConfig(width=375, height=812, name="mobile"),
        ]
    )
    selectors: list[str] = Field(default_factory=lambda: ["body"])

    # Comparison
    pixel_difference_threshold: float = Field(default=0.03, ge=0.0, le=1.0)
    color_threshold: float = Field(default=0.1, ge=0.0, le=1.0)

    # Capture
    capture_timeout_ms: int = 60000
    settle_delay_ms: int = 1000
    max_concurrency: int = Field(default=3, ge=1)
    browser: BrowserConfig = Field(default_factory=BrowserConfig)

    # Lenient mode bootstraps missing baselines during a check; strict mode
    # refuses to check with an empty registry.
    bootstrap_missing_baselines: bool = True

    storage: StorageConfig = Field(default_factory=StorageConfig)
    channels: list[ChannelConfig] = Field(default_factory=list)

    @field_validator("viewports")
    @classmethod
    def unique_viewport_names(cls, v: list[ViewportConfig]) -> list[ViewportConfig]:
        names = [vp.name for vp in v]
        if len(names) != len(set(names)):
            raise ValueError(f"Viewport names must be unique: {names}")
        return v

    def find_viewport(self, name: str) -> ViewportConfig | None:
        for vp in self.viewports:
            if vp.name == name:
                return vp
        return None

    def build_channels(self) -> list[Channel]:
        return [c.build() for c in self.channels]

    @classmethod
    def load(cls, path: str | Path) -> "MonitorConfig":
        """Load config from a JSON file."""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")
        with open(path) as f:
            data = json.load(f)
        return cls(**data)

    def save(self, path: str | Path) -> None:
        """Save config to a JSON file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(self.model_dump(), f, indent=2)
