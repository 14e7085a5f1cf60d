import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, FastAPI, Query, Request, Security
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from accounts import Accounts
from auth import Principal, authorize, decode_token
from book import Book
from circulation import Circulation
from config import configure_logging, settings
from database import connection
from errors import LibraryError, Unauthorized, ValidationError
from library import Library
from user import ROLE_LIBRARIAN

configure_logging()
logger = logging.getLogger(__name__)

library = Library()
accounts = Accounts(library.db_file)
circulation = Circulation(library.db_file)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("%s %s starting (database: %s)", settings.app_name, settings.app_version, library.db_file)
    yield
    logger.info("%s shutting down", settings.app_name)


app = FastAPI(title=settings.app_name, version=settings.app_version, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# --- Error handling ---
@app.exception_handler(LibraryError)
async def library_error_handler(request: Request, exc: LibraryError):
    content = {"message": exc.message}
    if isinstance(exc, ValidationError) and exc.errors:
        content["errors"] = exc.errors
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        content = {"message": "Internal server error"}
    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, Unauthorized) else None
    return JSONResponse(status_code=exc.status_code, content=content, headers=headers)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = []
    for error in exc.errors():
        location = [str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path")]
        errors.append({"field": ".".join(location), "message": error.get("msg", "Invalid value")})
    return JSONResponse(status_code=400, content={"message": "Validation failed", "errors": errors})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"message": "Internal server error"})


# --- Security ---
bearer_scheme = HTTPBearer(auto_error=False)


def current_user(credentials: Optional[HTTPAuthorizationCredentials] = Security(bearer_scheme)) -> Principal:
    """Dependency resolving the bearer token to a principal."""
    if credentials is None:
        raise Unauthorized("Access token required")
    return authorize(decode_token(credentials.credentials))


def require_librarian(principal: Principal = Depends(current_user)) -> Principal:
    return authorize(principal, ROLE_LIBRARIAN)


# --- Models ---
class CamelModel(BaseModel):
    """JSON uses camelCase; snake_case is accepted on input too."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class MessageModel(CamelModel):
    message: str


class RegisterModel(CamelModel):
    username: str
    email: str
    password: str


class RegisterResponse(CamelModel):
    message: str
    user_id: int


class LoginModel(CamelModel):
    username: str = ""
    password: str = ""


class UserSummaryModel(CamelModel):
    id: int
    username: str
    role: str


class LoginResponse(CamelModel):
    token: str
    user: UserSummaryModel


class UserModel(UserSummaryModel):
    email: str
    created_at: Optional[str] = None


class BookModel(CamelModel):
    id: int
    title: str
    author: str
    isbn: str
    category: str
    total_copies: int
    available_copies: int
    published_year: Optional[int] = None
    description: Optional[str] = None
    created_at: Optional[str] = None
    is_available: bool


class BookCreateModel(CamelModel):
    title: str
    author: str
    isbn: str
    category: Optional[str] = None
    total_copies: int = 1
    published_year: Optional[int] = None
    description: Optional[str] = None


class BookCreateResponse(CamelModel):
    message: str
    book_id: int


class BookUpdateModel(CamelModel):
    title: Optional[str] = None
    author: Optional[str] = None
    isbn: Optional[str] = None
    category: Optional[str] = None
    total_copies: Optional[int] = None
    published_year: Optional[int] = None
    description: Optional[str] = None
    # Accepted only to be refused with a clear message
    available_copies: Optional[int] = None


class BookUpdateResponse(CamelModel):
    message: str
    book: BookModel


class LoanRequest(CamelModel):
    book_id: int


class BorrowResponse(CamelModel):
    message: str
    borrowing_id: int
    due_date: datetime


class ReturnResponse(CamelModel):
    message: str
    returned_date: datetime


class BorrowingModel(CamelModel):
    id: int
    user_id: int
    book_id: int
    borrowed_date: datetime
    due_date: datetime
    returned_date: Optional[datetime] = None
    status: str
    is_overdue: bool
    days_remaining: int
    title: Optional[str] = None
    author: Optional[str] = None
    isbn: Optional[str] = None
    username: Optional[str] = None


class DashboardStatsModel(CamelModel):
    total_books: int
    total_users: int
    active_borrowings: int
    overdue_books: int


def _book_model(book: Book) -> BookModel:
    return BookModel(**book.to_dict())


router = APIRouter(prefix=settings.api_prefix)


# --- Authentication ---
@router.post("/register", response_model=RegisterResponse, status_code=201)
def register(payload: RegisterModel):
    """Create a borrower account."""
    user = accounts.register(payload.username, payload.email, payload.password)
    return RegisterResponse(message="User registered successfully", user_id=user.id)


@router.post("/login", response_model=LoginResponse)
def login(payload: LoginModel):
    """Exchange username and password for a 24-hour bearer token."""
    return accounts.login(payload.username, payload.password)


@router.get("/me", response_model=UserModel)
def me(principal: Principal = Depends(current_user)):
    return UserModel(**accounts.get_user(principal.id).to_dict())


# --- Catalog ---
@router.get("/books", response_model=List[BookModel])
def get_books(
    q: Optional[str] = Query(None, description="Search title, author, category or ISBN"),
    category: Optional[str] = Query(None, description="Exact category"),
    available: bool = Query(False, description="Only books with a copy on the shelf"),
):
    """All books ordered by title."""
    return [_book_model(b) for b in library.list_books(query=q, category=category, available_only=available)]


@router.get("/books/{book_id}", response_model=BookModel)
def get_book(book_id: int):
    return _book_model(library.get_book(book_id))


@router.post("/books", response_model=BookCreateResponse, status_code=201)
def add_book(payload: BookCreateModel, principal: Principal = Depends(require_librarian)):
    """Add a book to the catalog (librarian only)."""
    book = library.add_book(Book(**payload.model_dump()))
    logger.debug("Book %s added by %r", book.id, principal.username)
    return BookCreateResponse(message="Book added successfully", book_id=book.id)


@router.put("/books/{book_id}", response_model=BookUpdateResponse)
def update_book(book_id: int, payload: BookUpdateModel, principal: Principal = Depends(require_librarian)):
    """Update catalog fields of a book (librarian only)."""
    changes = payload.model_dump(exclude_unset=True)
    if changes.pop("available_copies", None) is not None:
        raise ValidationError("Validation failed", [{
            "field": "availableCopies",
            "message": "Available copies are maintained by borrowing and returns",
        }])
    book = library.update_book(book_id, **changes)
    return BookUpdateResponse(message="Book updated successfully", book=_book_model(book))


@router.delete("/books/{book_id}", response_model=MessageModel)
def delete_book(book_id: int, principal: Principal = Depends(require_librarian)):
    """Remove a book from the catalog (librarian only)."""
    library.remove_book(book_id)
    return MessageModel(message="Book deleted successfully")


# --- Borrowing ---
@router.post("/borrow", response_model=BorrowResponse, status_code=201)
def borrow_book(payload: LoanRequest, principal: Principal = Depends(current_user)):
    borrowing = circulation.borrow(principal.id, payload.book_id)
    return BorrowResponse(message="Book borrowed successfully", borrowing_id=borrowing.id, due_date=borrowing.due_date)


@router.post("/return", response_model=ReturnResponse)
def return_book(payload: LoanRequest, principal: Principal = Depends(current_user)):
    borrowing = circulation.return_book(principal.id, payload.book_id)
    return ReturnResponse(message="Book returned successfully", returned_date=borrowing.returned_date)


@router.get("/borrowings", response_model=List[BorrowingModel])
def get_borrowings(principal: Principal = Depends(current_user)):
    """The caller's own loans, most recent first."""
    return [circulation.serialize(b) for b in circulation.list_user_borrowings(principal.id)]


@router.get("/all-borrowings", response_model=List[BorrowingModel])
def get_all_borrowings(
    status: Optional[str] = Query(None, description="borrowed | returned"),
    overdue: bool = Query(False, description="Only open loans past their due date"),
    principal: Principal = Depends(require_librarian),
):
    """Every loan in the ledger (librarian only)."""
    return [circulation.serialize(b) for b in circulation.list_all_borrowings(status=status, overdue=overdue)]


@router.get("/dashboard-stats", response_model=DashboardStatsModel)
def dashboard_stats(principal: Principal = Depends(require_librarian)):
    return DashboardStatsModel(**circulation.dashboard_stats())


app.include_router(router)


# --- Health check ---
@app.get("/health")
def health():
    """Lightweight health endpoint with a database round-trip."""
    db_ok = True
    try:
        with connection(library.db_file) as conn:
            conn.execute("SELECT 1")
    except Exception:
        logger.exception("Health check database query failed")
        db_ok = False
    return {
        "status": "healthy" if db_ok else "degraded",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "db": db_ok,
        "version": settings.app_version,
    }
