import os
import uuid
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import jwt, JWTError
from datetime import datetime, timedelta, timezone

# Prefer JWT_SECRET but support legacy JWT_SECRET_KEY for compatibility
SECRET = os.getenv('JWT_SECRET') or os.getenv('JWT_SECRET_KEY', 'devsecret')
ALGORITHM = os.getenv('JWT_ALGORITHM', 'HS256')
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv('ACCESS_TOKEN_EXPIRE_MINUTES', str(60 * 24 * 7)))

bearer_scheme = HTTPBearer(auto_error=False)


def create_access_token(data: dict, expires_delta: timedelta = None):
    # Tokens are issued by the accounts service; this mirrors its claims for tooling and tests.
    to_encode = {k: str(v) if isinstance(v, uuid.UUID) else v for k, v in data.items()}
    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    to_encode.update({'exp': expire})
    encoded = jwt.encode(to_encode, SECRET, algorithm=ALGORITHM)
    return encoded


def decode_token(token: str):
    try:
        payload = jwt.decode(token, SECRET, algorithms=[ALGORITHM])
        return payload
    except JWTError:
        return None


async def get_current_user_id(credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme)) -> uuid.UUID:
    """Resolve the caller from the bearer token; core operations receive this id explicitly."""
    if credentials is None:
        raise HTTPException(status_code=401, detail='Authorization token required',
                            headers={'WWW-Authenticate': 'Bearer'})
    payload = decode_token(credentials.credentials)
    if not payload or 'id' not in payload:
        raise HTTPException(status_code=401, detail='Invalid or expired token',
                            headers={'WWW-Authenticate': 'Bearer'})
    try:
        return uuid.UUID(str(payload['id']))
    except ValueError:
        raise HTTPException(status_code=401, detail='Invalid or expired token',
                            headers={'WWW-Authenticate': 'Bearer'})
