"""Redaction rules for orchestrator logs.

This module centralizes the keys whose values must never reach log output:
- Authorization material (gate tokens, signatures, secrets)
- Raw prompt and source bodies, which may carry user data
"""

# Keys are matched as case-insensitive substrings of the log field name.
SENSITIVE_KEYS: set[str] = {
    # Authorization
    "secret",
    "token",
    "signature",
    "authorization",
    "api_key",
    "x-api-key",
    "bearer",
    "cookie",
    "set-cookie",
    "session_id",
    # Content bodies
    "user_prompt",
    "system_message",
    "source_content",
    "password",
    "email",
    "phone",
}


def is_sensitive_key(key: str) -> bool:
    """Check if a key should be considered sensitive and redacted.

    Args:
        key: The key name to check

    Returns:
        True if the key should be redacted, False otherwise
    """
    key_lower = key.lower()
    return any(sensitive in key_lower for sensitive in SENSITIVE_KEYS)
