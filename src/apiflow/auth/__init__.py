from .models import ApiKeyVerification, CallerIdentity
from .session import SessionTokenVerifier, bearer_token
from .api_keys import API_KEY_PARAM, StoreApiKeyVerifier, extract_api_key
from .key_service import ApiKeyService

__all__ = [
    "ApiKeyVerification",
    "CallerIdentity",
    "SessionTokenVerifier",
    "bearer_token",
    "API_KEY_PARAM",
    "StoreApiKeyVerifier",
    "extract_api_key",
    "ApiKeyService",
]
