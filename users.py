"""User accounts: creation, login checks, password resets and cascade delete."""

from datetime import datetime, timezone
from typing import Dict, List

from passlib.context import CryptContext
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from config import AppConfig
from database import LEAVES, SALES, USERS, create_document, get_documents, stamp_document, to_str_id
from errors import AuthenticationError, ConflictError, NotFoundError
from logs import log
from schemas import User, UserCreate

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def verify_password(plain_password, hashed_password):
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password):
    return pwd_context.hash(password)


def public_user(doc: dict) -> dict:
    doc = dict(doc)
    doc.pop("passwordHash", None)
    return to_str_id(doc)


def create_user(db: Database, payload: UserCreate) -> dict:
    """Store a new account.

    Raises:
        ConflictError: if the username or the salesman id is already taken.
    """
    if db[USERS].find_one({"username": payload.username}):
        raise ConflictError(f"Username '{payload.username}' already exists")
    if payload.salesman_id and db[USERS].find_one({"salesmanId": payload.salesman_id}):
        raise ConflictError(f"Salesman id '{payload.salesman_id}' is already assigned")

    user = User(
        **payload.model_dump(exclude={"password"}),
        password_hash=get_password_hash(payload.password),
    )
    try:
        doc = create_document(db, USERS, user)
    except DuplicateKeyError as exc:
        raise ConflictError(f"User '{payload.username}' already exists") from exc

    log.info("Created %s account '%s'", user.role, user.username)
    return public_user(doc)


def list_users(db: Database) -> List[dict]:
    return [public_user(doc) for doc in get_documents(db, USERS, sort=[("username", 1)])]


def authenticate(db: Database, username: str, password: str) -> dict:
    doc = db[USERS].find_one({"username": username.strip().lower()})
    hashed = doc.get("passwordHash") if doc else None
    try:
        valid = bool(hashed) and verify_password(password, hashed)
    except ValueError:
        # legacy or corrupted hash that passlib cannot identify
        log.error("Unreadable password hash for '%s'", username)
        valid = False
    if not valid:
        log.warning("Failed login for '%s'", username)
        raise AuthenticationError("Invalid credentials")
    return public_user(doc)


def get_user(db: Database, username: str) -> dict:
    doc = db[USERS].find_one({"username": username})
    if not doc:
        raise NotFoundError("User not found")
    return public_user(doc)


def reset_password(db: Database, salesman_id: str, password: str) -> dict:
    res = db[USERS].update_one(
        {"salesmanId": salesman_id},
        {"$set": {"passwordHash": get_password_hash(password), "updatedAt": datetime.now(timezone.utc)}},
    )
    if res.matched_count == 0:
        raise NotFoundError("User not found")
    log.info("Password reset for salesman '%s'", salesman_id)
    return public_user(db[USERS].find_one({"salesmanId": salesman_id}))


def delete_salesman(db: Database, salesman_id: str) -> Dict[str, int]:
    """Delete a salesman account together with its sales and leaves."""
    res = db[USERS].delete_one({"salesmanId": salesman_id})
    if res.deleted_count == 0:
        raise NotFoundError("User not found")
    sales = db[SALES].delete_many({"salesmanId": salesman_id}).deleted_count
    leaves = db[LEAVES].delete_many({"salesmanId": salesman_id}).deleted_count
    log.info("Deleted salesman '%s' with %d sales and %d leaves", salesman_id, sales, leaves)
    return {"sales": sales, "leaves": leaves}


def seed_default_admin(db: Database, config: AppConfig) -> bool:
    """Create the configured admin account unless it already exists.

    Runs on every startup; the upsert only writes when the username is new.
    Returns ``True`` when an account was created.
    """
    if not config.default_admin_password:
        log.info("DEFAULT_ADMIN_PASSWORD not set, skipping admin seeding")
        return False

    admin = User(
        username=config.default_admin_username,
        name=config.default_admin_name,
        role="admin",
        password_hash=get_password_hash(config.default_admin_password),
    )
    doc = stamp_document(admin)
    doc.pop("username")
    res = db[USERS].update_one({"username": admin.username}, {"$setOnInsert": doc}, upsert=True)
    if res.upserted_id is not None:
        log.info("Default admin '%s' created", admin.username)
        return True
    return False
