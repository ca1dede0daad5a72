"""
Configuration management for the SDMX-to-ArcGIS pipeline.

Usage:
    from sdmx2agol.config.settings import Config
    config = Config()
    token, user_content_url = config.get_publish_credentials()

Environment Variables (AGOL_ standard):
    AGOL_PORTAL_URL: ArcGIS Online portal URL
    AGOL_USERNAME: Username for ArcGIS Online
    AGOL_PASSWORD: Password for ArcGIS Online
    AGOL_TOKEN: Pre-issued token (alternative to username/password)
    AGOL_USER_CONTENT_URL: User content URL matching AGOL_TOKEN
    REMOTE_TIMEOUT_S: Timeout for each remote call
    REMOTE_MAX_RETRIES: Retries for idempotent queries (SDMX fetch, geometry query)
    REMOTE_BACKOFF_S: Base delay for exponential backoff
    GEOMETRY_QUERY_BATCH_SIZE: Join values per geometry query
    PUBLISH_MAX_RECORD_COUNT: maxRecordCount of the published service
    PUBLISH_CAPABILITIES: Capabilities of the published layer
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)


@dataclass
class AGOLCredentials:
    """ArcGIS Online credential configuration."""
    portal_url: str
    username: Optional[str] = None
    password: Optional[str] = None
    token: Optional[str] = None
    user_content_url: Optional[str] = None

    def __post_init__(self):
        """Validate credential format."""
        if not self.portal_url.startswith(('http://', 'https://')):
            raise ValueError("Portal URL must include protocol (https://)")

        if self.token:
            if not self.user_content_url:
                raise ValueError("AGOL_USER_CONTENT_URL is required when AGOL_TOKEN is set")
            return

        if not self.username:
            raise ValueError("Username cannot be empty")

        if not self.password or len(self.password) < 8:
            raise ValueError("Password must be at least 8 characters")

    @property
    def content_url(self) -> str:
        """User content URL derived from the portal when not given explicitly."""
        if self.user_content_url:
            return self.user_content_url.rstrip('/')
        return f"{self.portal_url.rstrip('/')}/sharing/rest/content/users/{self.username}"


@dataclass
class RemoteConfig:
    """Timeouts and retries for remote calls."""
    timeout_s: float = 60.0
    max_retries: int = 3
    backoff_s: float = 1.0
    query_batch_size: int = 500

    def __post_init__(self):
        """Validate remote call configuration."""
        if self.timeout_s <= 0:
            raise ValueError("Timeout must be positive")
        if self.max_retries < 0:
            raise ValueError("Retry count must be non-negative")
        if self.backoff_s < 0:
            raise ValueError("Backoff must be non-negative")
        if self.query_batch_size < 1:
            raise ValueError("Query batch size must be positive")


@dataclass
class PublishConfig:
    """Publish parameters for the hosted feature service."""
    max_record_count: int = 10000
    capabilities: str = "Query"
    has_static_data: bool = True

    def __post_init__(self):
        """Validate publish configuration."""
        if self.max_record_count < 1:
            raise ValueError("maxRecordCount must be positive")
        if not self.capabilities:
            raise ValueError("Capabilities cannot be empty")


class ConfigurationError(Exception):
    """Raised when configuration is invalid or incomplete."""
    pass


def _env_float(name: str, default: str) -> float:
    raw = os.getenv(name, default)
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got '{raw}'")


def _env_int(name: str, default: str) -> int:
    raw = os.getenv(name, default)
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got '{raw}'")


class Config:
    """
    Centralized configuration management for the SDMX pipeline.

    Environment variables loaded (in order of preference):
    1. Explicit environment file passed to constructor
    2. .env.{ENVIRONMENT} (where ENVIRONMENT=development|production|staging)
    3. .env file in project root
    4. System environment variables

    ArcGIS Online credentials are only required when `require_agol` is set,
    so conversion-only runs work without them.

    Example:
        # Conversion only
        config = Config(require_agol=False)

        # Publishing with explicit env file
        config = Config(env_file=Path("/secure/production.env"))
    """

    def __init__(self,
                 environment: Optional[str] = None,
                 env_file: Optional[Path] = None,
                 require_agol: bool = True):
        """
        Initialize configuration.

        Args:
            environment: Target environment (development|staging|production)
            env_file: Explicit path to environment file
            require_agol: Fail when ArcGIS Online credentials are missing
        """
        self.environment = environment or os.getenv("ENVIRONMENT", "development")
        self.project_root = self._find_project_root()

        self._load_environment_variables(env_file)

        self.agol: Optional[AGOLCredentials] = None
        self._load_agol_config(required=require_agol)
        self._load_remote_config()
        self._load_publish_config()

    def _find_project_root(self) -> Path:
        """Find project root directory containing pyproject.toml, .git or a .env file."""
        current = Path(__file__).resolve()

        for parent in current.parents:
            if any((parent / marker).exists() for marker in ['pyproject.toml', '.git']):
                return parent

        if (Path.cwd() / '.env').exists():
            return Path.cwd()

        return Path.cwd()

    def _load_environment_variables(self, env_file: Optional[Path]) -> None:
        """Load environment variables from appropriate source."""
        loaded_files = []

        if env_file:
            if env_file.exists():
                load_dotenv(env_file)
                loaded_files.append(str(env_file))
                logger.info(f"Loaded configuration from {env_file}")
            else:
                raise ConfigurationError(f"Specified env file not found: {env_file}")

        else:
            env_specific_file = self.project_root / f".env.{self.environment}"
            if env_specific_file.exists():
                load_dotenv(env_specific_file)
                loaded_files.append(str(env_specific_file))
                logger.info(f"Loaded environment-specific config: {env_specific_file}")

            generic_env_file = self.project_root / ".env"
            if generic_env_file.exists():
                load_dotenv(generic_env_file)
                loaded_files.append(str(generic_env_file))
                logger.info(f"Loaded generic config: {generic_env_file}")

        if not loaded_files:
            logger.debug("No .env files found, using system environment variables only")

        self._loaded_env_files = loaded_files
        logger.debug(f"Project root: {self.project_root}")
        logger.debug(f"Environment: {self.environment}")

    def _load_agol_config(self, required: bool) -> None:
        """Load and validate ArcGIS configuration."""
        portal_url = os.getenv("AGOL_PORTAL_URL") or os.getenv("ARCGIS_PORTAL_URL")
        username = os.getenv("AGOL_USERNAME") or os.getenv("ARCGIS_USERNAME")
        password = os.getenv("AGOL_PASSWORD") or os.getenv("ARCGIS_PASSWORD")
        token = os.getenv("AGOL_TOKEN")
        user_content_url = os.getenv("AGOL_USER_CONTENT_URL")

        has_login = all([portal_url, username, password])
        has_token = bool(token and user_content_url)

        if not (has_login or has_token):
            if not required:
                logger.debug("ArcGIS Online credentials not configured")
                return
            missing = [name for name, value in [
                ("AGOL_PORTAL_URL", portal_url),
                ("AGOL_USERNAME", username),
                ("AGOL_PASSWORD", password),
            ] if not value]
            raise ConfigurationError(
                f"Missing required ArcGIS Online credentials: {', '.join(missing)}.\n"
                f"Set AGOL_PORTAL_URL, AGOL_USERNAME and AGOL_PASSWORD, or AGOL_TOKEN and "
                f"AGOL_USER_CONTENT_URL, in your .env file.\n\n"
                f"Current .env file: {self.project_root / '.env'}"
            )

        try:
            self.agol = AGOLCredentials(
                portal_url=portal_url or "https://www.arcgis.com",
                username=username,
                password=password,
                token=token if has_token else None,
                user_content_url=user_content_url,
            )
        except ValueError as e:
            raise ConfigurationError(f"Invalid ArcGIS configuration: {e}")

    def _load_remote_config(self) -> None:
        """Load timeout and retry settings for remote calls."""
        try:
            self.remote = RemoteConfig(
                timeout_s=_env_float("REMOTE_TIMEOUT_S", "60"),
                max_retries=_env_int("REMOTE_MAX_RETRIES", "3"),
                backoff_s=_env_float("REMOTE_BACKOFF_S", "1.0"),
                query_batch_size=_env_int("GEOMETRY_QUERY_BATCH_SIZE", "500"),
            )
        except ValueError as e:
            raise ConfigurationError(f"Invalid remote configuration: {e}")

    def _load_publish_config(self) -> None:
        """Load hosted feature service publish parameters."""
        try:
            self.publish = PublishConfig(
                max_record_count=_env_int("PUBLISH_MAX_RECORD_COUNT", "10000"),
                capabilities=os.getenv("PUBLISH_CAPABILITIES", "Query"),
            )
        except ValueError as e:
            raise ConfigurationError(f"Invalid publish configuration: {e}")

    def create_gis_connection(self):
        """
        Create authenticated ArcGIS Online connection.

        Returns:
            Authenticated arcgis.gis.GIS object

        Raises:
            ConfigurationError: If credentials are missing or the sign-in fails
        """
        if self.agol is None or not self.agol.username:
            raise ConfigurationError("ArcGIS Online username/password are not configured")

        from arcgis.gis import GIS

        try:
            gis = GIS(
                url=self.agol.portal_url,
                username=self.agol.username,
                password=self.agol.password
            )
            user_info = gis.users.me
            logger.info(f"Connected to ArcGIS Online as {user_info.username}")
            return gis

        except Exception as e:
            raise ConfigurationError(
                f"Failed to connect to ArcGIS Online: {e}. "
                f"Please verify your credentials and portal URL."
            )

    def get_publish_credentials(self) -> tuple[str, str]:
        """
        Resolve the token and user content URL used by the item publisher.

        A pre-issued AGOL_TOKEN is used as-is; otherwise the configured user
        signs in and the session token is reused.
        """
        if self.agol is None:
            raise ConfigurationError("ArcGIS Online credentials are not configured")

        if self.agol.token:
            return self.agol.token, self.agol.content_url

        gis = self.create_gis_connection()
        token = gis._con.token
        if not token:
            raise ConfigurationError("ArcGIS Online sign-in did not return a token")
        return token, self.agol.content_url

    def get_security_summary(self) -> dict[str, Any]:
        """
        Get configuration summary for audit purposes.

        Returns:
            Dictionary with configuration info (no secrets)
        """
        return {
            'environment': self.environment,
            'loaded_env_files': self._loaded_env_files,
            'agol_portal': self.agol.portal_url if self.agol else None,
            'agol_username': self.agol.username if self.agol else None,
            'agol_auth': ('token' if self.agol.token else 'login') if self.agol else None,
            'remote_timeout_s': self.remote.timeout_s,
            'publish_max_record_count': self.publish.max_record_count,
        }

    def __repr__(self) -> str:
        """Safe string representation without credentials."""
        portal = self.agol.portal_url if self.agol else None
        return f"Config(environment={self.environment}, portal={portal})"
