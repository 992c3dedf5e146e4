from dataclasses import dataclass
from typing import List, Optional

from pydantic_settings import BaseSettings

# Placeholders accepted in DN_TEMPLATE
TMPL_NS = "{{namespace}}"
TMPL_DN = "{{deploymentName}}"
TMPL_CN = "{{containerName}}"
TEMPLATE_PLACEHOLDERS = (TMPL_NS, TMPL_DN, TMPL_CN)

DEFAULT_TEMPLATE = f"{TMPL_NS}/{TMPL_DN}/{TMPL_CN}"

MIN_WORKERS = 1
MAX_WORKERS = 100


class ConfigError(ValueError):
    """Raised when the controller cannot start with the given configuration."""
    pass


def valid_template(template: str) -> bool:
    """Return True if at least one placeholder is present in the template (exact, case-sensitive)."""
    return any(placeholder in template for placeholder in TEMPLATE_PLACEHOLDERS)


def parse_exclude_namespaces(value: Optional[str]) -> List[str]:
    """Split a comma separated namespace list, dropping blanks and duplicates (order kept)."""
    seen: List[str] = []
    for ns in (value or "").split(","):
        ns = ns.strip()
        if ns and ns not in seen:
            seen.append(ns)
    return seen


def validate_workers(workers: int) -> int:
    if workers < MIN_WORKERS or workers > MAX_WORKERS:
        raise ConfigError(
            f"Invalid worker count {workers}, must be between {MIN_WORKERS} and {MAX_WORKERS}"
        )
    return workers


@dataclass(frozen=True)
class ControllerConfig:
    """Values stamped onto every deployment record."""
    template: str
    logical_environment: str
    physical_environment: str
    cluster: str


class Settings(BaseSettings):
    PROJECT_NAME: str = "deployment-tracker"

    # Deployment name template for the artifact metadata API
    DN_TEMPLATE: str = DEFAULT_TEMPLATE

    # Record environment
    LOGICAL_ENVIRONMENT: str = ""  # required
    PHYSICAL_ENVIRONMENT: str = ""
    CLUSTER: str = ""  # required

    # Artifact metadata API
    BASE_URL: str = "api.github.com"
    GITHUB_ORG: str = ""  # required
    API_TOKEN: str = ""

    # GitHub App credentials (take precedence over API_TOKEN when all three are set)
    GH_APP_ID: str = ""
    GH_INSTALL_ID: str = ""
    GH_APP_PRIV_KEY: str = ""  # path to the PEM private key

    # Delivery tuning
    POST_TIMEOUT_SECONDS: float = 5.0
    POST_RETRIES: int = 3
    POST_RATE_LIMIT: float = 20.0
    POST_RATE_BURST: int = 50

    # Kubernetes
    KUBECONFIG: str = ""

    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"
        extra = "ignore"  # Ignore extra environment variables

    @property
    def has_github_app(self) -> bool:
        return bool(self.GH_APP_ID and self.GH_INSTALL_ID and self.GH_APP_PRIV_KEY)

    def validate_required(self) -> "Settings":
        """Fail fast on settings the controller cannot run without."""
        if not valid_template(self.DN_TEMPLATE):
            raise ConfigError(
                f"Template must contain at least one placeholder: template={self.DN_TEMPLATE!r} "
                f"valid_placeholders={list(TEMPLATE_PLACEHOLDERS)}"
            )
        if not self.LOGICAL_ENVIRONMENT:
            raise ConfigError("Logical environment is required (LOGICAL_ENVIRONMENT)")
        if not self.CLUSTER:
            raise ConfigError("Cluster is required (CLUSTER)")
        if not self.GITHUB_ORG:
            raise ConfigError("Organization is required (GITHUB_ORG)")
        if self.POST_RETRIES < 0:
            raise ConfigError(f"POST_RETRIES must not be negative, got {self.POST_RETRIES}")
        if self.POST_RATE_LIMIT <= 0 or self.POST_RATE_BURST < 1:
            raise ConfigError(
                f"Invalid rate limit rps={self.POST_RATE_LIMIT} burst={self.POST_RATE_BURST}"
            )
        return self

    def controller_config(self) -> ControllerConfig:
        return ControllerConfig(
            template=self.DN_TEMPLATE,
            logical_environment=self.LOGICAL_ENVIRONMENT,
            physical_environment=self.PHYSICAL_ENVIRONMENT,
            cluster=self.CLUSTER,
        )
