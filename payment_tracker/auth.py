import os
from fastapi import Header, HTTPException
from jose import jwt
from jose.exceptions import JOSEError

# Importing config loads .env before JWT_SECRET is read
from payment_tracker import config  # noqa: F401


def verify_token(authorization: str = Header(...)):
    try:
        scheme, token = authorization.split()
        if scheme.lower() != "bearer":
            raise ValueError("Unsupported authorization scheme")
        return jwt.decode(token, os.getenv("JWT_SECRET"), algorithms=["HS256"])
    except (ValueError, JOSEError):
        raise HTTPException(status_code=401, detail="Invalid or missing token")
