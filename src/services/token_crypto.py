# src/services/token_crypto.py
import os
import base64
import hashlib
import secrets
from typing import Optional, Tuple

import structlog
from cryptography.fernet import Fernet, InvalidToken

from src.services.errors import ConfigurationError

logger = structlog.get_logger(__name__)

ENVIRONMENT = os.getenv("ENVIRONMENT", "development").lower()
OAUTH_TOKEN_KEY = os.getenv("OAUTH_TOKEN_KEY")  # base64 Fernet key, required outside development

if not OAUTH_TOKEN_KEY:
    if ENVIRONMENT != "development":
        raise ConfigurationError("OAUTH_TOKEN_KEY must be set outside development")
    logger.warning("oauth_token_key_generated", environment=ENVIRONMENT)
    OAUTH_TOKEN_KEY = Fernet.generate_key().decode()

fernet = Fernet(OAUTH_TOKEN_KEY.encode())


# --- OAuth token encryption ---
def encrypt_token(plaintext: Optional[str]) -> Optional[str]:
    if plaintext is None:
        return None
    return fernet.encrypt(plaintext.encode()).decode()


def decrypt_token(ciphertext: Optional[str]) -> Optional[str]:
    if not ciphertext:
        return None
    try:
        return fernet.decrypt(ciphertext.encode()).decode()
    except InvalidToken:
        logger.warning("token_decrypt_failed")
        return None


# --- PKCE ---
def generate_pkce_pair() -> Tuple[str, str]:
    """
    Generate a PKCE code verifier and its S256 challenge.

    Returns:
        Tuple of (code_verifier, code_challenge)
    """
    verifier = secrets.token_urlsafe(64)
    digest = hashlib.sha256(verifier.encode()).digest()
    challenge = base64.urlsafe_b64encode(digest).decode().rstrip("=")
    return verifier, challenge
