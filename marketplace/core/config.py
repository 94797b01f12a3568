import os

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict


def _get_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_list(value: str | None, default: list[str]) -> tuple[str, ...]:
    if not value:
        return tuple(default)
    return tuple(item.strip() for item in value.split(",") if item.strip())


DEFAULT_JWT_SECRET = "change-me"


class Settings(BaseModel):
    """Process-wide configuration, built once at startup and never mutated."""

    model_config = ConfigDict(frozen=True)

    app_env: str = "development"
    database_url: str = "sqlite:///./marketplace.db"
    log_level: str = "INFO"
    cors_origins: tuple[str, ...] = ("http://localhost:4200",)

    jwt_secret_key: str = DEFAULT_JWT_SECRET
    jwt_algorithm: str = "HS256"
    jwt_expires_days: int = 30

    token_cookie_name: str = "token"
    session_cookie_name: str = "session_id"
    session_expires_days: int = 30

    institution_domain: str = "iut-dhaka.edu"
    otp_expires_minutes: int = 5

    brevo_api_key: str = ""
    mail_from_email: str = "no-reply@iut-dhaka.edu"
    mail_from_name: str = "IUT Marketplace"

    saml_strict: bool = True
    saml_debug: bool = False
    saml_sp_base_url: str = "https://localhost:8000"
    saml_sp_entity_id: str = ""
    saml_sp_acs_url: str = ""
    saml_sp_x509cert: str = ""
    saml_sp_private_key: str = ""
    saml_sp_nameid_format: str = "urn:oasis:names:tc:SAML:1.1:nameid-format:emailAddress"
    saml_idp_entity_id: str = ""
    saml_idp_sso_url: str = ""
    saml_idp_slo_url: str = ""
    saml_idp_x509cert: str = ""
    saml_idp_metadata_url: str = ""

    @property
    def is_production(self) -> bool:
        return self.app_env.lower() == "production"


def load_settings() -> Settings:
    load_dotenv()

    saml_sp_base_url = os.getenv("SAML_SP_BASE_URL", "https://localhost:8000")
    return Settings(
        app_env=os.getenv("APP_ENV", "development"),
        database_url=os.getenv("DATABASE_URL", "sqlite:///./marketplace.db"),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        cors_origins=_get_list(os.getenv("CORS_ORIGINS"), ["http://localhost:4200"]),
        jwt_secret_key=os.getenv("JWT_SECRET_KEY", DEFAULT_JWT_SECRET),
        jwt_algorithm=os.getenv("JWT_ALGORITHM", "HS256"),
        jwt_expires_days=int(os.getenv("JWT_EXPIRES_DAYS", "30")),
        session_expires_days=int(os.getenv("SESSION_EXPIRES_DAYS", "30")),
        institution_domain=os.getenv("INSTITUTION_DOMAIN", "iut-dhaka.edu"),
        otp_expires_minutes=int(os.getenv("OTP_EXPIRES_MINUTES", "5")),
        brevo_api_key=os.getenv("BREVO_API_KEY", ""),
        mail_from_email=os.getenv("MAIL_FROM_EMAIL", "no-reply@iut-dhaka.edu"),
        mail_from_name=os.getenv("MAIL_FROM_NAME", "IUT Marketplace"),
        saml_strict=_get_bool(os.getenv("SAML_STRICT"), default=True),
        saml_debug=_get_bool(os.getenv("SAML_DEBUG"), default=False),
        saml_sp_base_url=saml_sp_base_url,
        saml_sp_entity_id=os.getenv("SAML_SP_ENTITY_ID", f"{saml_sp_base_url}/auth/sso/metadata"),
        saml_sp_acs_url=os.getenv("SAML_SP_ACS_URL", f"{saml_sp_base_url}/auth/sso/acs"),
        saml_sp_x509cert=os.getenv("SAML_SP_X509CERT", ""),
        saml_sp_private_key=os.getenv("SAML_SP_PRIVATE_KEY", ""),
        saml_sp_nameid_format=os.getenv(
            "SAML_SP_NAMEID_FORMAT",
            "urn:oasis:names:tc:SAML:1.1:nameid-format:emailAddress",
        ),
        saml_idp_entity_id=os.getenv("SAML_IDP_ENTITY_ID", ""),
        saml_idp_sso_url=os.getenv("SAML_IDP_SSO_URL", ""),
        saml_idp_slo_url=os.getenv("SAML_IDP_SLO_URL", ""),
        saml_idp_x509cert=os.getenv("SAML_IDP_X509CERT", ""),
        saml_idp_metadata_url=os.getenv("SAML_IDP_METADATA_URL", ""),
    )


def validate_runtime_config(settings: Settings) -> None:
    if settings.is_production and settings.jwt_secret_key == DEFAULT_JWT_SECRET:
        raise RuntimeError("JWT_SECRET_KEY must be set in production.")
