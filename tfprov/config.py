from __future__ import annotations

from dataclasses import dataclass
import os

_TRUTHY = {"1", "true", "yes", "on"}

DEFAULT_TERRAFORM_PATH = "terraform"
DEFAULT_MIN_TERRAFORM_VERSION = "1.1.7"


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in _TRUTHY


@dataclass(frozen=True)
class ProviderSettings:
    terraform_path: str = DEFAULT_TERRAFORM_PATH
    min_terraform_version: str = DEFAULT_MIN_TERRAFORM_VERSION
    # When set, apply runs with -auto-approve and never asks for operator attention.
    auto_approve: bool = False

    @classmethod
    def from_env(cls) -> ProviderSettings:
        return cls(
            terraform_path=os.getenv("TFPROV_TERRAFORM_PATH", DEFAULT_TERRAFORM_PATH),
            min_terraform_version=os.getenv("TFPROV_MIN_TERRAFORM_VERSION", DEFAULT_MIN_TERRAFORM_VERSION),
            auto_approve=_env_flag("TFPROV_AUTO_APPROVE", False),
        )
