import json
from typing import Literal, TypeAlias

from opentelemetry.sdk.resources import Resource
from pydantic import AnyHttpUrl, PostgresDsn, field_validator
from pydantic_settings import BaseSettings

# Type personnalisé pour les listes configurables depuis l'environnement
ConfigurableList: TypeAlias = str | list[str] | list[AnyHttpUrl]


def parse_list_from_env(value: ConfigurableList, field_name: str = "field") -> list[str]:
    """
    Fonction utilitaire pour parser une liste depuis une variable d'environnement.

    Supporte les formats suivants:
    - Liste Python directe: ['val1', 'val2']
    - Format JSON: '["val1", "val2"]'
    - Format virgules: "val1,val2,val3"
    - Chaîne vide: "" → []

    Args:
        value: La valeur à parser (chaîne ou liste)
        field_name: Nom du champ pour les messages d'erreur

    Returns:
        Liste de chaînes parsée

    Raises:
        ValueError: Si le format n'est pas valide
    """
    if isinstance(value, list):
        return value
    elif isinstance(value, str):
        value = value.strip()
        if value.startswith("[") and value.endswith("]"):
            try:
                return json.loads(value)
            except json.JSONDecodeError:
                raise ValueError(f"Format JSON invalide pour {field_name}: {value}")
        elif value:
            return [item.strip() for item in value.split(",") if item.strip()]
        else:
            return []
    raise ValueError(f"Valeur invalide pour {field_name}: {value}")


class Settings(BaseSettings):
    try:
        from app import __version__
    except ImportError:
        __version__ = "0.1.0"

    PROJECT_NAME: str = "core-africare-practice"
    PROJECT_SLUG: str = "practice"
    VERSION: str = __version__
    DESCRIPTION: str = (
        "Gestion multi-tenant des cabinets médicaux et pharmacies : patients, rendez-vous, "
        "inventaire, ventes, caisse et abonnements"
    )

    API_VERSIONS: list[str] = ["v1"]
    API_LATEST_VERSION: str = "v1"

    # Environnement
    ENVIRONMENT: Literal["development", "staging", "production", "test"] = "development"
    DEBUG: bool = False

    # Keycloak Authentication (bearer-only)
    KEYCLOAK_SERVER_URL: str
    KEYCLOAK_REALM: str
    KEYCLOAK_CLIENT_ID: str
    # Clients frontend autorisés à appeler ce service (claim azp)
    KEYCLOAK_ALLOWED_AZP: ConfigurableList = ["apps-africare-practice-portal"]

    @field_validator("KEYCLOAK_ALLOWED_AZP", mode="before")
    @classmethod
    def assemble_allowed_azp(cls, v: ConfigurableList) -> list[str]:
        """Parse KEYCLOAK_ALLOWED_AZP depuis une variable d'environnement."""
        return parse_list_from_env(v, "KEYCLOAK_ALLOWED_AZP")

    # Webhook Stripe (abonnements)
    STRIPE_WEBHOOK_SECRET: str
    STRIPE_SIGNATURE_TOLERANCE: int = 300  # Tolérance timestamp en secondes (5 min)
    STRIPE_PRO_PRICE_ID: str | None = None
    STRIPE_ENTERPRISE_PRICE_ID: str | None = None

    # OpenTelemetry
    OTEL_SERVICE_NAME: str
    OTEL_EXPORTER_OTLP_ENDPOINT: str
    OTEL_EXPORTER_OTLP_PROTOCOL: str
    OTEL_EXPORTER_OTLP_INSECURE: bool
    OTEL_LOG_LEVEL: str = "info"
    OTEL_LOGS_EXPORTER: Literal["otlp", "console"] = "otlp"
    OTEL_TRACES_EXPORTER: Literal["otlp", "console"] = "otlp"
    OTEL_METRICS_EXPORTER: Literal["otlp", "console"] = "otlp"
    OTEL_PYTHON_LOG_LEVEL: str = "info"
    OTEL_PYTHON_LOGGING_AUTO_INSTRUMENTATION_ENABLED: bool = True
    OTEL_PYTHON_LOG_CORRELATION: bool = True
    OTEL_PYTHON_LOG_FORMAT: str = "%(asctime)s %(levelname)s [%(name)s] [%(filename)s:%(lineno)d] [trace_id=%(otelTraceID)s span_id=%(otelSpanID)s resource.service.name=%(otelServiceName)s trace_sampled=%(otelTraceSampled)s] - %(message)s"

    # CORS
    # Définir dans .env, ex: ALLOWED_ORIGINS='["http://localhost:3000","https://myfrontend.com"]'
    ALLOWED_ORIGINS: ConfigurableList = []
    # Définir dans .env, ex: TRUSTED_HOSTS='["localhost","127.0.0.1"]'
    TRUSTED_HOSTS: ConfigurableList = ["localhost", "127.0.0.1"]

    @field_validator("ALLOWED_ORIGINS", mode="before")
    @classmethod
    def assemble_cors_origins(cls, v: ConfigurableList) -> list[str]:
        """
        Permet de définir ALLOWED_ORIGINS de plusieurs façons:
        - Chaîne séparée par des virgules: "http://localhost:3000,https://api.exemple.com"
        - Format JSON: '["http://localhost:3000","https://api.exemple.com"]'
        - Liste Python directe (si déjà parsée)
        """
        return parse_list_from_env(v, "ALLOWED_ORIGINS")

    @field_validator("TRUSTED_HOSTS", mode="before")
    @classmethod
    def assemble_trusted_hosts(cls, v: ConfigurableList) -> list[str]:
        """Parse TRUSTED_HOSTS depuis une variable d'environnement."""
        return parse_list_from_env(v, "TRUSTED_HOSTS")

    # Base de données
    # PostgreSQL avec SQLAlchemy 2.0
    SQLALCHEMY_DATABASE_URI: PostgresDsn

    # Redis (messaging + cache)
    REDIS_URL: str = "redis://localhost:6379"
    REDIS_DB: int = 0

    # Cache Redis (cache-aside, TTL uniquement)
    CACHE_ENABLED: bool = True
    CACHE_TTL_DEFAULT: int = 300
    CACHE_TTL_USAGE: int = 120  # Snapshot des limites d'usage (2 min)
    CACHE_TTL_DASHBOARD: int = 300
    CACHE_TTL_SUBSCRIPTION: int = 600

    # Caches en mémoire par tenant
    SALES_CACHE_TTL: int = 300
    QUICK_SALE_CACHE_TTL: int = 86400

    # Règles métier
    DEFAULT_COUNTRY_CODE: str = "254"
    CURRENCY_LABEL: str = "KSh"
    LOW_STOCK_THRESHOLD: int = 10
    EXPIRY_WARNING_DAYS: int = 90
    INVITATION_TTL_DAYS: int = 7
    SUBSCRIPTION_PERIOD_DAYS: int = 30
    DEFAULT_APPOINTMENT_DURATION: int = 30

    # Ressource OpenTelemetry
    @property
    def OTEL_RESOURCE_ATTRIBUTES(self) -> Resource:  # noqa: N802
        """Crée l'objet Resource pour OpenTelemetry avec les attributs du service."""
        return Resource(
            attributes={
                "service.name": self.OTEL_SERVICE_NAME,
                "service.version": self.VERSION,
                "service.environment": self.ENVIRONMENT,
                "service.debug": str(self.DEBUG).lower(),
            }
        )

    def get_api_prefix(self, version: str | None = None) -> str:
        """
        Get API prefix for a specific version.

        Args:
            version: API version (e.g., "v1", "v2"). Defaults to latest.

        Returns:
            API prefix string (e.g., "/api/v1")
        """
        version = version or self.API_LATEST_VERSION
        return f"/api/{version}"

    class Config:
        case_sensitive = True
        env_file = ".env"
        extra = "ignore"


# Instance unique des paramètres chargée depuis .env
settings = Settings()
