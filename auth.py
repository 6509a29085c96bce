from fastapi import Depends, HTTPException
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from pydantic import BaseModel
from passlib.hash import bcrypt
from datetime import datetime, timedelta, UTC

import config
from database import Database, get_database
from models import User

# OAuth2 scheme
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")

class TokenData(BaseModel):
    email: str
    type: str

def hash_password(password: str) -> str:
    return bcrypt.hash(password)

def verify_password(password: str, hashed: str) -> bool:
    return bcrypt.verify(password, hashed)

def _create_token(data: dict, token_type: str, expires: timedelta) -> str:
    to_encode = data.copy()
    expire = datetime.now(UTC) + expires
    to_encode.update({"exp": expire, "type": token_type})
    return jwt.encode(to_encode, config.SECRET_KEY, algorithm=config.ALGORITHM)

def create_access_token(data: dict):
    """Create a JWT access token."""
    return _create_token(data, "access", timedelta(minutes=config.ACCESS_TOKEN_EXPIRE_MINUTES))

def create_refresh_token(data: dict):
    """Create a JWT refresh token."""
    return _create_token(data, "refresh", timedelta(days=config.REFRESH_TOKEN_EXPIRE_DAYS))

def decode_token(token: str, expected_type: str) -> TokenData:
    """Validate a token and return its claims; raises JWTError if unusable."""
    payload = jwt.decode(token, config.SECRET_KEY, algorithms=[config.ALGORITHM])
    email = payload.get("sub")
    token_type = payload.get("type")
    if email is None or token_type != expected_type:
        raise JWTError(f"Expected a {expected_type} token")
    return TokenData(email=email, type=token_type)

def get_current_user(token: str = Depends(oauth2_scheme), db: Database = Depends(get_database)) -> User:
    """Retrieve the current authenticated user from a JWT access token."""
    credentials_exception = HTTPException(
        status_code=401,
        detail="Invalid or expired token",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        token_data = decode_token(token, "access")
    except JWTError:
        raise credentials_exception
    user = db.get_user_by_email(token_data.email)
    if user is None:
        raise HTTPException(status_code=401, detail="User not found")
    return User(**user)
