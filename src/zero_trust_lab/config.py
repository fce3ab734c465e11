from __future__ import annotations

import os
from pathlib import Path
from typing import List, Literal, Mapping, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

SERVICE_PRINCIPAL_ENV_VARS = (
    "ARM_CLIENT_ID",
    "ARM_CLIENT_SECRET",
    "ARM_TENANT_ID",
    "ARM_SUBSCRIPTION_ID",
)

# Menu numbering and destroy-all order operators know from the cleanup script.
DEFAULT_CLEANUP_ORDER = ("azure_ad", "managed_identity", "storage")


class SecretRef(BaseModel):
    """Reference to a secret source without storing the secret in the config file.

    Secrets are normally injected through environment variables (or the lab's
    `.env` file, which is loaded into the environment at startup). An inline
    `value` is accepted for throwaway local labs only.
    """

    env: Optional[str] = Field(
        default=None, description="Environment variable name containing the secret"
    )
    value: Optional[str] = Field(
        default=None,
        description="Inline value (use only for local development; avoid in production)",
    )

    model_config = ConfigDict(extra="forbid")

    def resolve(self) -> str:
        if self.env:
            env_value = os.getenv(self.env)
            if env_value:
                return env_value
            raise ValueError(f"Environment variable {self.env} is not set")
        if self.value:
            return self.value
        raise ValueError("No secret reference provided for resolution")


class ServicePrincipalCredentials(BaseModel):
    client_id: str
    client_secret: str
    tenant_id: str
    subscription_id: str

    model_config = ConfigDict(extra="forbid")

    @classmethod
    def from_environ(cls, environ: Optional[Mapping[str, str]] = None) -> "ServicePrincipalCredentials":
        environ = os.environ if environ is None else environ
        missing = [name for name in SERVICE_PRINCIPAL_ENV_VARS if not environ.get(name)]
        if missing:
            raise ValueError(
                "Service principal credentials are incomplete; missing: " + ", ".join(missing)
            )
        return cls(
            client_id=environ["ARM_CLIENT_ID"],
            client_secret=environ["ARM_CLIENT_SECRET"],
            tenant_id=environ["ARM_TENANT_ID"],
            subscription_id=environ["ARM_SUBSCRIPTION_ID"],
        )


class ClientSecretAuth(BaseModel):
    type: Literal["client_secret"] = "client_secret"
    authority_host: str = Field(
        default="https://login.microsoftonline.com",
        description="AAD authority host",
    )

    model_config = ConfigDict(extra="forbid")


class ManagedIdentityAuth(BaseModel):
    type: Literal["managed_identity"]
    client_id: Optional[str] = Field(
        default=None, description="Optional user-assigned managed identity client ID"
    )

    model_config = ConfigDict(extra="forbid")


AuthConfig = Union[ClientSecretAuth, ManagedIdentityAuth]


class GeneratorConfig(BaseModel):
    """One Terraform generator directory and its apply retry policy."""

    name: str
    path: Path
    apply_attempts: int = Field(default=1, ge=1)
    retry_delay_seconds: float = Field(default=0.0, ge=0)
    abort_on_failure: bool = Field(
        default=False,
        description="Stop the whole deploy when every apply attempt fails",
    )

    model_config = ConfigDict(extra="forbid")


def _default_generators() -> List[GeneratorConfig]:
    # Directory objects replicate after apply; only azure_ad retries.
    return [
        GeneratorConfig(
            name="azure_ad",
            path=Path("generators/azure_ad"),
            apply_attempts=3,
            retry_delay_seconds=90,
            abort_on_failure=True,
        ),
        GeneratorConfig(name="storage", path=Path("generators/storage")),
        GeneratorConfig(name="managed_identity", path=Path("generators/managed_identity")),
    ]


class OrphanRules(BaseModel):
    name_prefixes: List[str] = Field(default_factory=lambda: ["PurpleCloud"])
    name_substrings: List[str] = Field(default_factory=lambda: ["ZeroTrust"])

    model_config = ConfigDict(extra="forbid")

    def matches(self, name: str) -> bool:
        return any(name.startswith(prefix) for prefix in self.name_prefixes) or any(
            fragment in name for fragment in self.name_substrings
        )


class GraphSettings(BaseModel):
    base_url: str = Field(
        default="https://graph.microsoft.com",
        description="Graph endpoint. Override for national clouds if needed.",
    )
    scopes: List[str] = Field(
        default_factory=lambda: ["https://graph.microsoft.com/.default"]
    )
    auth: AuthConfig = Field(default_factory=ClientSecretAuth, discriminator="type")
    throttle_limit: int = Field(default=20, ge=1)
    timeout: float = 30.0
    max_retries: int = Field(default=3, ge=0)
    user_password: Optional[SecretRef] = Field(
        default=None,
        description="Initial password for created users; generated per run when unset",
    )
    force_change_password: bool = True

    model_config = ConfigDict(extra="forbid")

    @field_validator("scopes")
    @classmethod
    def ensure_scopes(cls, value: List[str]) -> List[str]:
        if not value:
            raise ValueError("At least one Graph scope must be provided")
        return value


class LabConfig(BaseModel):
    root: Path = Field(default_factory=Path.cwd)
    generators: List[GeneratorConfig] = Field(default_factory=_default_generators)
    orphans: OrphanRules = Field(default_factory=OrphanRules)
    graph: GraphSettings = Field(default_factory=GraphSettings)
    cleanup_order: Optional[List[str]] = Field(
        default=None,
        description="Generator order for the cleanup menu and destroy-all",
    )

    model_config = ConfigDict(extra="forbid")

    @field_validator("generators")
    @classmethod
    def ensure_unique_generators(cls, value: List[GeneratorConfig]) -> List[GeneratorConfig]:
        names = [generator.name for generator in value]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ValueError(f"Duplicate generator names: {', '.join(duplicates)}")
        return value

    @model_validator(mode="after")
    def ensure_cleanup_order_known(self) -> "LabConfig":
        if self.cleanup_order is None:
            return self
        names = {generator.name for generator in self.generators}
        unknown = sorted(set(self.cleanup_order) - names)
        if unknown:
            raise ValueError(f"cleanup_order names unknown generator(s): {', '.join(unknown)}")
        if len(set(self.cleanup_order)) != len(self.cleanup_order):
            raise ValueError("cleanup_order lists a generator more than once")
        return self

    def cleanup_sequence(self) -> List[str]:
        """Generator names in cleanup order; unlisted generators follow in config order."""
        preferred = self.cleanup_order if self.cleanup_order is not None else DEFAULT_CLEANUP_ORDER
        names = [generator.name for generator in self.generators]
        ordered = [name for name in preferred if name in names]
        return ordered + [name for name in names if name not in ordered]

    def generator(self, name: str) -> GeneratorConfig:
        for generator in self.generators:
            if generator.name == name:
                return generator
        raise KeyError(f"Generator {name} is not configured")

    def generator_path(self, generator: GeneratorConfig) -> Path:
        if generator.path.is_absolute():
            return generator.path
        return self.root / generator.path

    @classmethod
    def load(cls, path: Union[str, Path]) -> "LabConfig":
        config_path = Path(path)
        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with config_path.open("r", encoding="utf-8") as handle:
            try:
                raw = yaml.safe_load(handle) or {}
            except yaml.YAMLError as exc:
                raise ValueError(f"Configuration file {config_path} is not valid YAML: {exc}") from exc

        if not isinstance(raw, dict):
            raise ValueError(f"Configuration file {config_path} must contain a mapping at the top level")

        config = cls(**raw)
        if not config.root.is_absolute():
            config.root = (config_path.parent / config.root).resolve()
        return config
