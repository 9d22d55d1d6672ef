"""
TMDb Authentication Helpers

TMDb accepts two credential kinds:
    - v3 API key: 32 alphanumeric characters, sent as the api_key query parameter
    - v4 read access token: a JWT (starts with 'eyJ'), sent as a Bearer header
"""

from typing import Tuple, Dict

_INVALID_CREDENTIAL = (
    "Invalid TMDb credential format. Expected v3 API key (32 alphanumeric) "
    "or v4 read access token (JWT)"
)


def detect_tmdb_credential_type(api_key: str) -> str:
    """
    Detect whether a credential is a v3 API key or a v4 token.

    Returns:
        'v3' or 'v4'

    Raises:
        ValueError: If the credential matches neither format

    Example:
        >>> detect_tmdb_credential_type('df667ef7a7f9009def29e0bd78725f3d')
        'v3'
    """
    if not api_key or not isinstance(api_key, str):
        raise ValueError(_INVALID_CREDENTIAL)

    api_key = api_key.strip()
    if api_key.startswith('eyJ'):
        return 'v4'
    if len(api_key) == 32 and api_key.isalnum():
        return 'v3'
    raise ValueError(_INVALID_CREDENTIAL)


def format_tmdb_request(api_key: str) -> Tuple[Dict[str, str], Dict[str, str]]:
    """
    Build the (query params, headers) pair carrying the credential.

    Raises:
        ValueError: If the credential format is invalid
    """
    api_key = api_key.strip() if isinstance(api_key, str) else api_key
    if detect_tmdb_credential_type(api_key) == 'v4':
        return {}, {'Authorization': f'Bearer {api_key}'}
    return {'api_key': api_key}, {}


def mask_credential(api_key: str) -> str:
    """Return a log-safe form of a credential."""
    if not api_key:
        return "<unset>"
    if len(api_key) <= 8:
        return "****"
    return f"{api_key[:4]}...{api_key[-4:]}"
