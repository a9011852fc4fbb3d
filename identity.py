"""Identity: password hashes, bearer tokens and federated Google sign-in."""
import logging
from datetime import timedelta
from typing import Any, Dict, Optional

import bcrypt
import jwt
from google.auth.transport import requests as google_requests
from google.oauth2 import id_token as google_id_token

import config
from database import now_utc
from errors import Unauthorized

logger = logging.getLogger("storefront")


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt(rounds=10)).decode()


def check_password(password: str, password_hash: Optional[str]) -> bool:
    if not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode(), password_hash.encode())
    except ValueError:
        return False


def issue_token(user_id: str, email: str, role: str = "customer") -> str:
    now = now_utc()
    claims = {
        "sub": user_id,
        "email": email,
        "role": role,
        "iat": now,
        "exp": now + timedelta(days=config.JWT_EXPIRE_DAYS),
    }
    return jwt.encode(claims, config.JWT_SECRET, algorithm=config.JWT_ALGORITHM)


def verify_token(token: str) -> Dict[str, Any]:
    try:
        claims = jwt.decode(token, config.JWT_SECRET, algorithms=[config.JWT_ALGORITHM])
    except jwt.InvalidTokenError as exc:
        logger.debug("Rejected bearer token: %s", exc)
        raise Unauthorized("Invalid or expired token")
    if not claims.get("sub"):
        raise Unauthorized("Invalid or expired token")
    return claims


def verify_google_token(token: str) -> Dict[str, Any]:
    """Verify a Google ID token and return the subject's basic profile."""
    try:
        info = google_id_token.verify_oauth2_token(token, google_requests.Request(), config.GOOGLE_CLIENT_ID)
    except ValueError as exc:
        logger.info("Google ID token rejected: %s", exc)
        raise Unauthorized("Invalid Google ID token")
    return {
        "uid": info["sub"],
        "email": info.get("email"),
        "name": info.get("name") or "",
        "picture": info.get("picture") or "",
    }


def new_account(email: str, first_name: str = "", last_name: str = "", *, auth_provider: str = "email",
                password_hash: Optional[str] = None, photo_url: str = "", email_opt_in: bool = False,
                sms_opt_in: bool = False, terms_accepted: bool = False) -> Dict[str, Any]:
    """Default document for a freshly registered account."""
    now = now_utc()
    return {
        "email": email,
        "passwordHash": password_hash,
        "firstName": first_name,
        "lastName": last_name,
        "displayName": f"{first_name} {last_name}".strip(),
        "photoURL": photo_url,
        "authProvider": auth_provider,

        "role": "customer",
        "permissions": [],

        # Marketing consents; tracking must be opted into later
        "emailOptIn": email_opt_in,
        "smsOptIn": sms_opt_in,
        "trackingOptIn": False,
        "emailFrequency": "weekly",

        "birthday": None,
        "location": {"city": "", "country": ""},
        "experienceLevel": None,
        "traditions": [],
        "interests": [],
        "favoriteProductTypes": [],

        "tags": [],
        "lastPurchase": None,
        "lifetimeValue": 0,
        "cartAbandonedCount": 0,
        "emailEngagement": {
            "lastOpened": None,
            "clickedOffers": False,
            "openedLast3Emails": False,
        },

        "profileCompletionStep": 0,

        "createdAt": now,
        "updatedAt": now,
        "lastLogin": now,
        "termsAcceptedAt": now if terms_accepted else None,
    }


def public_user(user: Dict[str, Any]) -> Dict[str, Any]:
    """Account summary returned by the auth routes."""
    return {
        "id": user["id"],
        "email": user.get("email"),
        "firstName": user.get("firstName", ""),
        "lastName": user.get("lastName", ""),
        "displayName": user.get("displayName", ""),
        "photoURL": user.get("photoURL") or None,
        "role": user.get("role", "customer"),
        "profileCompletionStep": user.get("profileCompletionStep", 0),
    }
