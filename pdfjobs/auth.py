from fastapi import Security
from fastapi.security.api_key import APIKeyHeader

from .errors import Unauthenticated

# Set by the authenticating gateway after it has validated the caller's token
user_header = APIKeyHeader(name="X-User-Id", auto_error=False)


async def require_subject(subject: str = Security(user_header)) -> str:
    if not subject:
        raise Unauthenticated("Invalid or missing token")
    return subject
