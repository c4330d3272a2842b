import logging

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import ExpiredSignatureError, JWTError, jwt
from sqlalchemy.orm import Session

from .config import JWT_ALGORITHM, SECRET_KEY
from .database import get_db
from .models import User

logger = logging.getLogger(__name__)

# auto_error=False so a missing header is answered with 401 by us, not 403
security = HTTPBearer(auto_error=False)


def decode_access_token(token: str) -> dict:
    """Verify signature and expiry of a bearer token issued by the identity service"""
    return jwt.decode(token, SECRET_KEY, algorithms=[JWT_ALGORITHM])


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db),
) -> User:
    """Get current user from the bearer token's sub claim"""

    if not credentials:
        logger.warning("❌ No credentials provided")
        raise HTTPException(
            status_code=401,
            detail="Not authenticated. Please provide a valid Bearer token in the Authorization header.",
            headers={"WWW-Authenticate": "Bearer"},
        )

    token = credentials.credentials

    # Basic token format validation before processing
    if len(token.split(".")) != 3:
        logger.warning(f"⚠️ Malformed token received, token length: {len(token)}")
        raise HTTPException(
            status_code=401, detail="Invalid token format. Expected a valid JWT token."
        )

    try:
        claims = decode_access_token(token)
    except ExpiredSignatureError as e:
        logger.info("⏰ Expired token rejected")
        raise HTTPException(status_code=401, detail="Token has expired") from e
    except JWTError as e:
        logger.warning(f"❌ Token verification failed: {str(e)}")
        raise HTTPException(status_code=401, detail="Token verification failed") from e

    user_id = claims.get("sub")
    if not user_id:
        logger.error(f"❌ Token missing sub claim. Available claims: {list(claims.keys())}")
        raise HTTPException(status_code=401, detail="Invalid token claims")

    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        logger.warning(f"❌ Token subject {user_id} has no user record")
        raise HTTPException(status_code=401, detail="Authentication failed")

    logger.debug(f"✅ User authenticated: {user.email}")
    return user
