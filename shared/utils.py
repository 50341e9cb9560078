from datetime import datetime
from typing import Optional, Generic, TypeVar, Any, List
from fastapi import HTTPException, status
from motor.motor_asyncio import AsyncIOMotorClient
from pydantic import BaseModel
from pydantic_settings import BaseSettings
from jose import JWTError, jwt

# --- Configuration ---
class Settings(BaseSettings):
    MONGO_URL: str = "mongodb://mongodb:27017"
    CART_DB_NAME: str = "storefront_db"
    CART_STORAGE_KEY: str = "cart"

    SUPABASE_URL: str = "http://localhost:54321"
    SUPABASE_ANON_KEY: str = ""
    SUPABASE_JWT_SECRET: str = ""
    ALGORITHM: str = "HS256"
    JWT_AUDIENCE: str = "authenticated"

    PAYMENT_FUNCTION_URL: str = "http://payments-service:8004/create-payment"
    QRIS_IMAGE_URL: str = "https://cdn.worldvectorlogo.com/logos/qris-1.svg"

    STOREFRONT_SERVICE_URL: str = "http://storefront-service:8001"
    ADMIN_SERVICE_URL: str = "http://admin-service:8002"
    PAYMENTS_SERVICE_URL: str = "http://payments-service:8004"

    LOG_LEVEL: str = "INFO"
    CORS_ORIGINS: List[str] = ["*"]

    class Config:
        env_file = ".env"

settings = Settings()

# --- Database ---
def get_db_client(url: str = settings.MONGO_URL) -> AsyncIOMotorClient:
    return AsyncIOMotorClient(url)

# --- Authentication ---
def verify_token(token: str, secret: Optional[str] = None) -> dict:
    """Decode a backend-issued access token with the project's JWT secret."""
    try:
        payload = jwt.decode(
            token,
            secret or settings.SUPABASE_JWT_SECRET,
            algorithms=[settings.ALGORITHM],
            audience=settings.JWT_AUDIENCE,
        )
        return payload
    except JWTError:
        raise UnauthorizedException("Could not validate credentials")

def bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, param = authorization.partition(" ")
    if scheme.lower() != "bearer" or not param:
        return None
    return param

# --- Response Models ---
T = TypeVar("T")

class SuccessResponse(BaseModel, Generic[T]):
    success: bool = True
    data: Optional[T] = None
    message: Optional[str] = None

class HealthResponse(BaseModel):
    service: str
    status: str
    timestamp: datetime
    version: str
    database: Optional[str] = None


# --- Exceptions ---
class AppException(HTTPException):
    def __init__(
        self,
        status_code: int = status.HTTP_400_BAD_REQUEST,
        detail: Any = "An error occurred",
        headers: Optional[dict] = None
    ):
        super().__init__(status_code=status_code, detail=detail, headers=headers)

class NotFoundException(AppException):
    def __init__(self, detail: str = "Resource not found"):
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=detail)

class UnauthorizedException(AppException):
    def __init__(self, detail: str = "Unauthorized", headers: Optional[dict] = None):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            headers=headers or {"WWW-Authenticate": "Bearer"}
        )

class ForbiddenException(AppException):
    def __init__(self, detail: str = "Forbidden"):
        super().__init__(status_code=status.HTTP_403_FORBIDDEN, detail=detail)

class InvalidCollectionError(AppException):
    def __init__(self, collection: str):
        self.collection = collection
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid table name: {collection}"
        )

class FormValidationError(AppException):
    def __init__(self, errors: List[dict]):
        self.errors = errors
        super().__init__(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=errors)

class SubmissionInProgressError(AppException):
    def __init__(self, detail: str = "A submission is already in progress"):
        super().__init__(status_code=status.HTTP_409_CONFLICT, detail=detail)

class DataStoreError(AppException):
    def __init__(self, detail: str = "Data store request failed"):
        super().__init__(status_code=status.HTTP_502_BAD_GATEWAY, detail=detail)

class PaymentError(AppException):
    def __init__(self, detail: str = "Failed to process payment"):
        super().__init__(status_code=status.HTTP_402_PAYMENT_REQUIRED, detail=detail)

class CartError(AppException):
    def __init__(self, detail: str = "Cart is empty"):
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)

