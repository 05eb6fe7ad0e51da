"""Configuration — probe modules, Pydantic Settings + YAML loading."""

from __future__ import annotations

import ipaddress
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from sslprobe.models.types import StartTLSProtocol

DEFAULT_CONFIG_PATH = Path(__file__).parent.parent / "config" / "default.yaml"


class TLSConfig(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    ca_file: str | None = None
    server_name: str | None = None
    insecure_skip_verify: bool = False
    cert_file: str | None = None
    key_file: str | None = None

    @field_validator("server_name")
    @classmethod
    def _valid_server_name(cls, v: str | None) -> str | None:
        if not v:
            return v
        try:
            ipaddress.ip_address(v.strip("[]"))
        except ValueError:
            pass
        else:
            return v
        try:
            v.rstrip(".").encode("idna")
        except UnicodeError as e:
            raise ValueError(f"invalid server_name {v!r}: {e}") from None
        return v

    @model_validator(mode="after")
    def _key_needs_cert(self) -> TLSConfig:
        if self.key_file and not self.cert_file:
            raise ValueError("key_file requires cert_file")
        return self


class TCPProbe(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    starttls: StartTLSProtocol = StartTLSProtocol.NONE

    @field_validator("starttls", mode="before")
    @classmethod
    def _normalize(cls, v: Any) -> Any:
        if v is None:
            return StartTLSProtocol.NONE
        if isinstance(v, str) and not isinstance(v, StartTLSProtocol):
            return StartTLSProtocol(v)
        return v


class Module(BaseModel):
    """Everything one probe invocation needs to know about its target."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    prober: Literal["tcp"] = "tcp"
    timeout: float | None = Field(default=None, gt=0)
    tcp: TCPProbe = Field(default_factory=TCPProbe)
    tls_config: TLSConfig = Field(default_factory=TLSConfig)


class Settings(BaseSettings):
    """Root settings — merges defaults, YAML config, and env vars."""

    model_config = SettingsConfigDict(env_prefix="SSLPROBE_")

    modules: dict[str, Module] = Field(default_factory=lambda: {"tcp": Module()})
    default_timeout: float = Field(default=10.0, gt=0)
    log_level: str = "INFO"

    def module(self, name: str) -> Module:
        try:
            return self.modules[name]
        except KeyError:
            raise KeyError(f"unknown module {name!r}") from None

    def timeout_for(self, module: Module) -> float:
        return module.timeout or self.default_timeout

    @classmethod
    def load(cls, config_path: Path | str | None = None) -> Settings:
        """Load settings from YAML file, falling back to defaults."""
        data: dict[str, Any] = {}

        if config_path is None:
            config_path = DEFAULT_CONFIG_PATH

        path = Path(config_path)
        if path.exists():
            with open(path, encoding="utf-8") as f:
                raw = yaml.safe_load(f)
                if isinstance(raw, dict):
                    data = raw

        return cls(**data)
