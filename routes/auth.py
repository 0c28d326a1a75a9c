from fastapi import APIRouter, HTTPException, status, Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from passlib.context import CryptContext
from jose import JWTError, jwt
from datetime import datetime, timedelta
from typing import Optional
import logging
import pytz

import config
from models.user import UserCreate, UserLogin, TokenResponse, UserResponse, Role
from database import get_record_store
from services.record_store import PROFILES, RecordStore

router = APIRouter()
security = HTTPBearer()
logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

def verify_password(plain_password, hashed_password):
    return pwd_context.verify(plain_password, hashed_password)

def get_password_hash(password):
    return pwd_context.hash(password)

def create_access_token(data: dict, expires_delta: timedelta = None):
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.now(pytz.UTC) + expires_delta
    else:
        expire = datetime.now(pytz.UTC) + timedelta(minutes=config.ACCESS_TOKEN_EXPIRE_MINUTES)
    to_encode.update({"exp": expire})
    encoded_jwt = jwt.encode(to_encode, config.SECRET_KEY, algorithm=config.ALGORITHM)
    return encoded_jwt

def to_user_response(user: dict) -> UserResponse:
    return UserResponse(
        id=str(user["_id"]),
        display_name=user.get("display_name"),
        email=user["email"],
        role=user.get("role", Role.USER),
        seller_handle=user.get("seller_handle"),
        avatar_url=user.get("avatar_url"),
        created_at=user["created_at"]
    )

async def resolve_user(token: Optional[str], store: RecordStore) -> Optional[dict]:
    """Return the profile a bearer token belongs to, or None"""
    if not token:
        return None
    try:
        payload = jwt.decode(token, config.SECRET_KEY, algorithms=[config.ALGORITHM])
    except JWTError:
        return None
    user_id = payload.get("sub")
    if user_id is None:
        return None
    return await store.find_one(PROFILES, {"_id": user_id})

async def get_current_user(
        credentials: HTTPAuthorizationCredentials = Depends(security),
        store: RecordStore = Depends(get_record_store)
):
    user = await resolve_user(credentials.credentials, store)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user

def is_seller(user: dict) -> bool:
    return user.get("role") in (Role.SELLER, Role.ADMIN)

async def get_current_seller(current_user: dict = Depends(get_current_user)):
    if not is_seller(current_user):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Seller access required"
        )
    return current_user

@router.post("/register", response_model=TokenResponse)
async def register(user_data: UserCreate, store: RecordStore = Depends(get_record_store)):
    # Check if user already exists
    existing_user = await store.find_one(PROFILES, {"email": user_data.email})
    if existing_user:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Email already registered"
        )

    now = datetime.now(pytz.UTC)
    user_doc = await store.insert_one(PROFILES, {
        "display_name": user_data.display_name,
        "email": user_data.email,
        "password": get_password_hash(user_data.password),
        "role": Role.SELLER.value,
        "seller_handle": user_data.seller_handle,
        "avatar_url": None,
        "created_at": now,
        "updated_at": now,
    })
    logger.info(f"Seller {user_doc['_id']} registered")

    access_token = create_access_token(data={"sub": str(user_doc["_id"])})
    return TokenResponse(access_token=access_token, user=to_user_response(user_doc))

@router.post("/login", response_model=TokenResponse)
async def login(user_data: UserLogin, store: RecordStore = Depends(get_record_store)):
    user = await store.find_one(PROFILES, {"email": user_data.email})
    if not user or not verify_password(user_data.password, user["password"]):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect email or password"
        )

    access_token = create_access_token(data={"sub": str(user["_id"])})
    return TokenResponse(access_token=access_token, user=to_user_response(user))

@router.get("/me", response_model=UserResponse)
async def me(current_user: dict = Depends(get_current_user)):
    return to_user_response(current_user)
