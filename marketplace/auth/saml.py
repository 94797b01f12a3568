from onelogin.saml2.auth import OneLogin_Saml2_Auth
from onelogin.saml2.idp_metadata_parser import OneLogin_Saml2_IdPMetadataParser
from onelogin.saml2.settings import OneLogin_Saml2_Settings

from marketplace.core.config import Settings


def build_saml_settings(settings: Settings) -> dict:
    base_settings = {
        "strict": settings.saml_strict,
        "debug": settings.saml_debug,
        "sp": {
            "entityId": settings.saml_sp_entity_id,
            "assertionConsumerService": {
                "url": settings.saml_sp_acs_url,
                "binding": "urn:oasis:names:tc:SAML:2.0:bindings:HTTP-POST",
            },
            "x509cert": settings.saml_sp_x509cert,
            "privateKey": settings.saml_sp_private_key,
            "NameIDFormat": settings.saml_sp_nameid_format,
        },
        "idp": {
            "entityId": settings.saml_idp_entity_id,
            "singleSignOnService": {
                "url": settings.saml_idp_sso_url,
                "binding": "urn:oasis:names:tc:SAML:2.0:bindings:HTTP-Redirect",
            },
            "singleLogoutService": {
                "url": settings.saml_idp_slo_url,
                "binding": "urn:oasis:names:tc:SAML:2.0:bindings:HTTP-Redirect",
            },
            "x509cert": settings.saml_idp_x509cert,
        },
    }
    if settings.saml_idp_metadata_url:
        idp_data = OneLogin_Saml2_IdPMetadataParser.parse_remote(settings.saml_idp_metadata_url)
        return OneLogin_Saml2_IdPMetadataParser.merge_settings(base_settings, idp_data)
    return base_settings


def init_saml_auth(request_data: dict, settings: Settings) -> OneLogin_Saml2_Auth:
    return OneLogin_Saml2_Auth(request_data, build_saml_settings(settings))


def build_request_data(url: str, host: str, query_params: dict, form_data: dict) -> dict:
    scheme = "https" if url.startswith("https") else "http"
    return {
        "https": "on" if scheme == "https" else "off",
        "http_host": host,
        "server_port": "443" if scheme == "https" else "80",
        "script_name": url,
        "get_data": query_params,
        "post_data": form_data,
    }


def extract_identity(auth: OneLogin_Saml2_Auth) -> tuple[str, str | None, str | None]:
    """Return ``(subject, email, display_name)`` from a processed SAML response."""
    attributes = auth.get_attributes()
    name_id = auth.get_nameid()
    email_candidates = (
        attributes.get("email")
        or attributes.get("Email")
        or attributes.get("mail")
        or []
    )
    email = email_candidates[0] if email_candidates else name_id

    name_candidates = attributes.get("displayName") or attributes.get("name") or []
    if name_candidates:
        name = name_candidates[0]
    else:
        first = (attributes.get("FirstName") or [""])[0]
        last = (attributes.get("LastName") or [""])[0]
        name = f"{first} {last}".strip() or None
    return name_id, email, name


def generate_sp_metadata(settings: Settings) -> tuple[str, list[str]]:
    saml_settings = OneLogin_Saml2_Settings(build_saml_settings(settings), sp_validation_only=True)
    metadata = saml_settings.get_sp_metadata()
    errors = saml_settings.validate_metadata(metadata)
    return metadata, errors
