import os
import re
from contextlib import asynccontextmanager
from datetime import date, datetime, timezone, timedelta
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, File, Query, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from pydantic import BaseModel
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError, PyMongoError
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException

import database
import importer
import leaves
import reports
import users
from config import AppConfig, load_config, split_origins
from database import PRODUCTS, SALES, create_document, get_db, get_documents, object_id, to_str_id
from errors import AuthenticationError, ConflictError, NotFoundError, PermissionDenied, SalesTrackerError
from logs import log
from normalizer import RecordKind
from schemas import LeaveDecision, LeaveRequest, LoginRequest, PasswordReset, Product, ProductUpdate, Sale, UserCreate

ALGORITHM = "HS256"

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/login")

_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    global _config
    if _config is None:
        _config = load_config()
    return _config


@asynccontextmanager
async def lifespan(app: FastAPI):
    config = get_config()
    db = database.connect(config)
    database.ensure_indexes(db)
    users.seed_default_admin(db, config)
    log.info("Sales Tracker API ready on port %d", config.port)
    yield
    database.close()


app = FastAPI(title="Sales Tracker API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=split_origins(os.getenv("CORS_ORIGINS", "*")),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    response = await call_next(request)
    log.info("%s %s -> %d", request.method, request.url.path, response.status_code)
    return response


# Error responses all share the {"error": message} shape
@app.exception_handler(SalesTrackerError)
async def handle_app_error(request: Request, exc: SalesTrackerError):
    body: Dict[str, Any] = {"error": exc.message}
    if exc.inserted is not None:
        body["inserted"] = exc.inserted
    return JSONResponse(status_code=exc.status_code, content=body)


@app.exception_handler(PyMongoError)
async def handle_store_error(request: Request, exc: PyMongoError):
    log.error("Database error on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=503, content={"error": "Database unavailable"})


@app.exception_handler(Exception)
async def handle_unexpected_error(request: Request, exc: Exception):
    log.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


@app.exception_handler(RequestValidationError)
async def handle_request_validation(request: Request, exc: RequestValidationError):
    messages = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        messages.append(f"{location}: {error.get('msg')}" if location else str(error.get("msg")))
    return JSONResponse(status_code=422, content={"error": "; ".join(messages)})


@app.exception_handler(StarletteHTTPException)
async def handle_http_error(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)}, headers=exc.headers)


# Utility helpers
class Token(BaseModel):
    success: bool = True
    access_token: str
    token_type: str = "bearer"
    user: Dict[str, Any]


def create_access_token(data: dict, config: AppConfig, expires_delta: Optional[timedelta] = None):
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=config.access_token_expire_minutes))
    to_encode.update({"exp": expire})
    encoded_jwt = jwt.encode(to_encode, config.secret_key, algorithm=ALGORITHM)
    return encoded_jwt


def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: Database = Depends(get_db),
    config: AppConfig = Depends(get_config),
) -> dict:
    credentials_exception = AuthenticationError("Could not validate credentials")
    try:
        payload = jwt.decode(token, config.secret_key, algorithms=[ALGORITHM])
        username: str = payload.get("sub")
        if username is None:
            raise credentials_exception
    except JWTError:
        raise credentials_exception

    try:
        return users.get_user(db, username)
    except NotFoundError:
        raise credentials_exception


def require_admin(user: dict = Depends(get_current_user)) -> dict:
    if user.get("role") != "admin":
        raise PermissionDenied("Admin access required")
    return user


def check_own_record(user: dict, salesman_id: str) -> None:
    """Salesmen may only write records under their own salesman id."""
    if user.get("role") == "salesman" and user.get("salesmanId") != salesman_id:
        raise PermissionDenied("Salesmen can only submit their own records")


# Helper to accept either JSON or form for the login endpoint
async def parse_login_request(request: Request) -> LoginRequest:
    content_type = request.headers.get("content-type", "")
    if "application/x-www-form-urlencoded" in content_type or "multipart/form-data" in content_type:
        form = await request.form()
        return LoginRequest(username=form.get("username") or "", password=form.get("password") or "")
    data = await request.json()
    return LoginRequest(**data)


def _iso(day: Optional[date]) -> Optional[str]:
    return day.isoformat() if day else None


@app.get("/")
def read_root(db: Database = Depends(get_db)):
    info = {
        "status": "running",
        "database": "disconnected",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "collections": [],
    }
    try:
        info["collections"] = db.list_collection_names()
        info["database"] = "connected"
    except PyMongoError as e:
        info["error"] = str(e)[:80]
    return info


# Auth routes
@app.post("/api/login", response_model=Token)
async def login(request: Request, db: Database = Depends(get_db), config: AppConfig = Depends(get_config)):
    try:
        credentials = await parse_login_request(request)
    except (ValueError, TypeError) as exc:
        raise AuthenticationError("Invalid credentials") from exc
    user = await run_in_threadpool(users.authenticate, db, credentials.username, credentials.password)
    token = create_access_token({"sub": user["username"], "role": user["role"]}, config)
    return Token(access_token=token, user=user)


# Users
@app.get("/api/users")
def list_users(db: Database = Depends(get_db), _: dict = Depends(require_admin)):
    return users.list_users(db)


@app.post("/api/users", status_code=201)
def create_user(payload: UserCreate, db: Database = Depends(get_db), _: dict = Depends(require_admin)):
    return {"success": True, "user": users.create_user(db, payload)}


@app.put("/api/users/{salesman_id}/password")
def reset_password(
    salesman_id: str,
    payload: PasswordReset,
    db: Database = Depends(get_db),
    user: dict = Depends(get_current_user),
):
    check_own_record(user, salesman_id)
    return {"success": True, "user": users.reset_password(db, salesman_id, payload.password)}


@app.delete("/api/users/{salesman_id}")
def delete_user(salesman_id: str, db: Database = Depends(get_db), _: dict = Depends(require_admin)):
    removed = users.delete_salesman(db, salesman_id)
    return {"success": True, "deleted": removed}


# Products
@app.get("/api/products")
def list_products(
    search: Optional[str] = None,
    brand: Optional[str] = None,
    category: Optional[str] = None,
    db: Database = Depends(get_db),
    _: dict = Depends(get_current_user),
):
    query: dict = {}
    if search:
        pattern = {"$regex": re.escape(search), "$options": "i"}
        query["$or"] = [
            {"brand": pattern},
            {"description": pattern},
            {"itemCode": pattern},
            {"modelNumber": pattern},
        ]
    if brand:
        query["brand"] = {"$regex": f"^{re.escape(brand)}$", "$options": "i"}
    if category:
        query["category"] = category
    return get_documents(db, PRODUCTS, query, sort=[("brand", 1), ("itemCode", 1)])


@app.post("/api/products", status_code=201)
def create_product(product: Product, db: Database = Depends(get_db), _: dict = Depends(require_admin)):
    if product.item_code and db[PRODUCTS].find_one({"itemCode": product.item_code}):
        raise ConflictError(f"Item code '{product.item_code}' already exists")
    try:
        doc = create_document(db, PRODUCTS, product)
    except DuplicateKeyError as exc:
        raise ConflictError(f"Item code '{product.item_code}' already exists") from exc
    return {"success": True, "product": doc}


@app.put("/api/products/{item_code}")
def update_product(
    item_code: str,
    update: ProductUpdate,
    db: Database = Depends(get_db),
    _: dict = Depends(require_admin),
):
    update_dict = update.to_document()
    if not db[PRODUCTS].find_one({"itemCode": item_code}):
        raise NotFoundError("Product not found")
    if update_dict:
        update_dict["updatedAt"] = datetime.now(timezone.utc)
        db[PRODUCTS].update_one({"itemCode": item_code}, {"$set": update_dict})
    return {"success": True, "product": to_str_id(db[PRODUCTS].find_one({"itemCode": item_code}))}


@app.delete("/api/products/{item_code}")
def delete_product(item_code: str, db: Database = Depends(get_db), _: dict = Depends(require_admin)):
    res = db[PRODUCTS].delete_one({"itemCode": item_code})
    if res.deleted_count == 0:
        raise NotFoundError("Product not found")
    return {"success": True}


# Sales
@app.get("/api/sales")
def list_sales(
    salesman_id: Optional[str] = Query(None, alias="salesmanId"),
    day: Optional[date] = Query(None, alias="date"),
    month: Optional[str] = None,
    db: Database = Depends(get_db),
    _: dict = Depends(get_current_user),
):
    query: dict = {}
    if salesman_id:
        query["salesmanId"] = salesman_id
    if day:
        query["date"] = day.isoformat()
    if month:
        query.update(reports.month_filter(month))
    return get_documents(db, SALES, query, sort=[("date", -1), ("createdAt", -1)])


@app.post("/api/sales", status_code=201)
def create_sale(sale: Sale, db: Database = Depends(get_db), user: dict = Depends(get_current_user)):
    check_own_record(user, sale.salesman_id)
    doc = create_document(db, SALES, sale)
    log.info("Sale %s recorded for '%s': %s", doc["_id"], sale.salesman_id, sale.total_amount)
    return {"success": True, "sale": doc}


@app.delete("/api/sales/{sale_id}")
def delete_sale(sale_id: str, db: Database = Depends(get_db), _: dict = Depends(require_admin)):
    res = db[SALES].delete_one({"_id": object_id(sale_id, "Sale")})
    if res.deleted_count == 0:
        raise NotFoundError("Sale not found")
    return {"success": True}


# Leaves
@app.get("/api/leaves")
def list_leaves(
    salesman_id: Optional[str] = Query(None, alias="salesmanId"),
    day: Optional[date] = Query(None, alias="date"),
    month: Optional[str] = None,
    db: Database = Depends(get_db),
    _: dict = Depends(get_current_user),
):
    return leaves.list_leaves(db, salesman_id=salesman_id, day=_iso(day), month=month)


@app.get("/api/leaves/today")
def leaves_today(db: Database = Depends(get_db), _: dict = Depends(get_current_user)):
    return leaves.salesmen_on_leave_today(db)


@app.get("/api/leaves/range")
def leaves_range(
    start: date,
    end: date,
    db: Database = Depends(get_db),
    _: dict = Depends(get_current_user),
):
    return leaves.leaves_in_range(db, start.isoformat(), end.isoformat())


@app.post("/api/leaves", status_code=201)
def apply_for_leave(
    request: LeaveRequest,
    db: Database = Depends(get_db),
    config: AppConfig = Depends(get_config),
    user: dict = Depends(get_current_user),
):
    check_own_record(user, request.salesman_id)
    leave = leaves.apply_for_leave(
        db,
        request,
        default_status=config.leave_default_status,
        allow_status=user.get("role") == "admin",
    )
    return {"success": True, "leave": leave}


@app.patch("/api/leaves/{leave_id}")
def decide_leave(
    leave_id: str,
    decision: LeaveDecision,
    db: Database = Depends(get_db),
    admin: dict = Depends(require_admin),
):
    return {"success": True, "leave": leaves.decide_leave(db, leave_id, decision, admin["username"])}


@app.delete("/api/leaves/{leave_id}")
def delete_leave(leave_id: str, db: Database = Depends(get_db), _: dict = Depends(require_admin)):
    leaves.delete_leave(db, leave_id)
    return {"success": True}


# Reports
@app.get("/api/stats")
def stats(db: Database = Depends(get_db), _: dict = Depends(get_current_user)):
    return reports.dashboard_stats(db)


@app.get("/api/reports/sales-summary")
def sales_summary(
    salesman_id: Optional[str] = Query(None, alias="salesmanId"),
    start: Optional[date] = None,
    end: Optional[date] = None,
    db: Database = Depends(get_db),
    _: dict = Depends(get_current_user),
):
    return reports.sales_summary(db, salesman_id, _iso(start), _iso(end))


@app.get("/api/reports/brands")
def brand_report(
    salesman_id: Optional[str] = Query(None, alias="salesmanId"),
    start: Optional[date] = None,
    end: Optional[date] = None,
    db: Database = Depends(get_db),
    _: dict = Depends(get_current_user),
) -> List[dict]:
    return reports.brand_totals(db, salesman_id, _iso(start), _iso(end))


@app.get("/api/reports/salesmen")
def salesman_report(
    start: Optional[date] = None,
    end: Optional[date] = None,
    db: Database = Depends(get_db),
    _: dict = Depends(get_current_user),
) -> List[dict]:
    return reports.salesman_totals(db, _iso(start), _iso(end))


@app.get("/api/reports/monthly")
def monthly_report(
    month: str,
    salesman_id: Optional[str] = Query(None, alias="salesmanId"),
    db: Database = Depends(get_db),
    _: dict = Depends(get_current_user),
):
    return reports.monthly_sales(db, month, salesman_id)


@app.get("/api/reports/leave-balance")
def leave_balance_report(
    salesman_id: str = Query(..., alias="salesmanId"),
    year: Optional[int] = Query(None, ge=2000, le=2100),
    db: Database = Depends(get_db),
    _: dict = Depends(get_current_user),
):
    return reports.leave_balance(db, salesman_id, year or datetime.now(timezone.utc).year)


# Excel uploads
def _run_upload(kind: RecordKind, file: UploadFile, db: Database, config: AppConfig) -> dict:
    summary = importer.import_upload(
        kind,
        db,
        file.file,
        file.filename,
        config.upload_dir,
        leave_default_status=config.leave_default_status,
    )
    return summary.as_response()


@app.post("/api/upload-excel")
@app.post("/api/upload-products")
def upload_products(
    file: UploadFile = File(...),
    db: Database = Depends(get_db),
    config: AppConfig = Depends(get_config),
    _: dict = Depends(require_admin),
):
    return _run_upload(RecordKind.PRODUCT, file, db, config)


@app.post("/api/upload-sales")
def upload_sales(
    file: UploadFile = File(...),
    db: Database = Depends(get_db),
    config: AppConfig = Depends(get_config),
    _: dict = Depends(require_admin),
):
    return _run_upload(RecordKind.SALE, file, db, config)


@app.post("/api/upload-leaves")
def upload_leaves(
    file: UploadFile = File(...),
    db: Database = Depends(get_db),
    config: AppConfig = Depends(get_config),
    _: dict = Depends(require_admin),
):
    return _run_upload(RecordKind.LEAVE, file, db, config)


@app.post("/api/upload-users")
def upload_users(
    file: UploadFile = File(...),
    db: Database = Depends(get_db),
    config: AppConfig = Depends(get_config),
    _: dict = Depends(require_admin),
):
    return _run_upload(RecordKind.USER, file, db, config)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=get_config().port)
