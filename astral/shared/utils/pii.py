"""PII handling for notification logs.

User identifiers and contact details never reach application logs in the
clear. User ids are hashed with a secret salt; phone numbers and e-mail
addresses are reduced to a masked form when a log line needs to refer to one.
"""
import hashlib
import logging
from typing import Optional

logger = logging.getLogger(__name__)


_PII_SALT: Optional[str] = None


def configure_pii_salt(salt: str) -> None:
    """Configure the PII hashing salt.
    
    Must be called during application startup before any PII hashing.
    
    Args:
        salt: Secret salt value (at least 32 characters)
        
    Raises:
        ValueError: If salt is empty or too short
    """
    global _PII_SALT
    if not salt or len(salt) < 32:
        logger.critical(
            "PII_SALT_CONFIGURATION_FAILED",
            extra={"reason": "Salt too short or empty", "min_length": 32}
        )
        raise ValueError("PII salt must be at least 32 characters")
    
    _PII_SALT = salt
    logger.info("PII_SALT_CONFIGURED", extra={"salt_length": len(salt)})


def hash_pii(value: str) -> str:
    """Hash a PII value for safe logging.
    
    Uses SHA-256 with the configured salt, so the same user id always
    produces the same hash and log lines can be correlated.
    
    Args:
        value: The PII value to hash (user id, e-mail, etc.)
        
    Returns:
        64-char hex digest safe for logging
        
    Raises:
        RuntimeError: If PII salt has not been configured
    """
    if _PII_SALT is None:
        logger.critical(
            "PII_HASH_FAILED",
            extra={"reason": "Salt not configured", "action": "call configure_pii_salt()"}
        )
        raise RuntimeError("PII salt not configured. Call configure_pii_salt() first.")
    
    salted = f"{_PII_SALT}{value}"
    return hashlib.sha256(salted.encode()).hexdigest()


def mask_contact(value: Optional[str]) -> str:
    """Mask a phone number or e-mail address, keeping only the last 2 chars."""
    if not value:
        return ""
    if len(value) <= 2:
        return "*" * len(value)
    return "*" * (len(value) - 2) + value[-2:]
