"""
Users, password hashing and bearer-token checks.
"""
import logging
import os
from datetime import datetime, timedelta, timezone

import jwt
from bson import ObjectId
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from passlib.context import CryptContext
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import create_document, db
from schemas import User

logger = logging.getLogger(__name__)

JWT_SECRET = os.getenv("JWT_SECRET", "dev-secret-change-me")
JWT_EXPIRES_MIN = int(os.getenv("JWT_EXPIRES_MIN", str(30 * 24 * 60)))
ADMIN_SECRET = os.getenv("ADMIN_SECRET", "")

security = HTTPBearer()
password_ctx = CryptContext(schemes=["bcrypt"], deprecated="auto")


def get_db() -> Database:
    if db is None:
        raise HTTPException(status_code=500, detail="Database not configured")
    return db


def hash_password(password: str) -> str:
    return password_ctx.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    return password_ctx.verify(password, hashed)


def create_token(user: dict) -> str:
    issued = datetime.now(timezone.utc)
    payload = {
        "sub": str(user["_id"]),
        "role": user.get("role", "user"),
        "exp": issued + timedelta(minutes=JWT_EXPIRES_MIN),
        "iat": issued,
    }
    return jwt.encode(payload, JWT_SECRET, algorithm="HS256")


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, JWT_SECRET, algorithms=["HS256"])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")


def public_user(user: dict) -> dict:
    return {
        "id": str(user["_id"]),
        "name": user.get("name"),
        "email": user.get("email"),
        "role": user.get("role", "user"),
    }


def register_user(database: Database, name: str, email: str, password: str, role: str = "user") -> dict:
    if database["user"].find_one({"email": email}):
        raise HTTPException(status_code=400, detail="User already exists")
    user = User(name=name, email=email, password=hash_password(password), role=role)
    try:
        user_id = create_document("user", user, database=database)
    except DuplicateKeyError:
        raise HTTPException(status_code=400, detail="User already exists")
    logger.info("Registered %s account %s", role, user_id)
    doc = database["user"].find_one({"_id": ObjectId(user_id)})
    return {"token": create_token(doc), "user": public_user(doc)}


def login_user(database: Database, email: str, password: str) -> dict:
    user = database["user"].find_one({"email": email})
    if not user or not verify_password(password, user.get("password", "")):
        raise HTTPException(status_code=401, detail="Invalid email or password")
    return {"token": create_token(user), "user": public_user(user)}


def get_current_user(credentials: HTTPAuthorizationCredentials = Depends(security),
                     database: Database = Depends(get_db)) -> dict:
    payload = decode_token(credentials.credentials)
    uid = payload.get("sub")
    if not uid or not ObjectId.is_valid(uid):
        raise HTTPException(status_code=401, detail="Invalid token")
    user = database["user"].find_one({"_id": ObjectId(uid)})
    if not user:
        raise HTTPException(status_code=401, detail="User not found")
    return user


def require_admin(user: dict = Depends(get_current_user)) -> dict:
    if user.get("role") != "admin":
        raise HTTPException(status_code=403, detail="Admin access required")
    return user
