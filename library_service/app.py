import logging

from flask import Blueprint, Flask, current_app, g, jsonify, request
from flask_cors import CORS

from . import services
from .auth import admin_required, issue_token, login_required
from .cache import TTLCache
from .config import Config
from .db import SessionLocal, init_db
from .errors import BadRequestError, ForbiddenError, register_error_handlers
from .models import ROLE_ADMIN
from .serializers import (
    author_to_dict,
    book_to_dict,
    borrowing_to_dict,
    paginated,
    user_to_dict,
)
from .validation import (
    email_field,
    int_field,
    json_body,
    parse_bool_arg,
    parse_positive_int_arg,
    password_field,
    string_field,
)

logger = logging.getLogger(__name__)

api = Blueprint("api", __name__, url_prefix="/api")

MAX_PAGE_SIZE = 100


# ---------------------------------------------------------
# App factory
# ---------------------------------------------------------

def create_app(config_object=Config):
    app = Flask(__name__)
    app.config.from_object(config_object)

    logging.basicConfig(level=app.config.get("LOG_LEVEL", "INFO"))

    CORS(app, origins=app.config["CORS_ORIGINS"], supports_credentials=True)
    init_db(app)
    app.extensions["books_cache"] = TTLCache(
        ttl_seconds=app.config["BOOKS_CACHE_TTL"],
        max_entries=app.config["BOOKS_CACHE_MAX"],
    )

    register_error_handlers(app)
    app.register_blueprint(api)

    from .seed import register_commands
    register_commands(app)

    return app


def books_cache():
    return current_app.extensions["books_cache"]


# ---------------------------------------------------------
# Health
# ---------------------------------------------------------

@api.get("/health")
def health_check():
    return jsonify({"status": "ok", "service": "library_service"}), 200


# ---------------------------------------------------------
# Auth
# ---------------------------------------------------------

@api.post("/auth/register")
def register():
    data = json_body()
    email = email_field(data)
    password = password_field(data)
    name = string_field(data, "name")

    session = SessionLocal()
    try:
        user = services.register_user(session, email, password, name)
        return jsonify({"access_token": issue_token(user), "user": user_to_dict(user)}), 201
    finally:
        session.close()


@api.post("/auth/login")
def login():
    data = json_body()
    email = email_field(data)
    password = data.get("password")
    if not isinstance(password, str) or not password:
        raise BadRequestError("password is required")

    session = SessionLocal()
    try:
        user = services.authenticate(session, email, password)
        return jsonify({"access_token": issue_token(user), "user": user_to_dict(user)}), 200
    finally:
        session.close()


@api.get("/auth/profile")
@login_required
def profile():
    session = SessionLocal()
    try:
        user = services.get_user(session, g.current_user.id)
        return jsonify(user_to_dict(user))
    finally:
        session.close()


# ---------------------------------------------------------
# Authors
# ---------------------------------------------------------

@api.post("/authors")
@admin_required
def create_author():
    data = json_body()
    name = string_field(data, "name")
    bio = string_field(data, "bio", required=False)

    session = SessionLocal()
    try:
        author = services.create_author(session, name, bio)
        return jsonify(author_to_dict(author)), 201
    finally:
        session.close()


@api.get("/authors")
def list_authors():
    session = SessionLocal()
    try:
        rows = services.list_authors(session)
        return jsonify([author_to_dict(a, book_count=n) for a, n in rows])
    finally:
        session.close()


@api.get("/authors/<int:author_id>")
def get_author(author_id):
    session = SessionLocal()
    try:
        author = services.get_author(session, author_id)
        return jsonify(author_to_dict(author, book_count=len(author.books), books=True))
    finally:
        session.close()


@api.patch("/authors/<int:author_id>")
@admin_required
def update_author(author_id):
    data = json_body()
    changes = {}
    if "name" in data:
        changes["name"] = string_field(data, "name")
    if "bio" in data:
        changes["bio"] = string_field(data, "bio", required=False)

    session = SessionLocal()
    try:
        author = services.update_author(session, author_id, changes)
        # author names are embedded in cached book pages
        books_cache().clear()
        return jsonify(author_to_dict(author))
    finally:
        session.close()


@api.delete("/authors/<int:author_id>")
@admin_required
def delete_author(author_id):
    session = SessionLocal()
    try:
        author = services.delete_author(session, author_id)
        return jsonify(author_to_dict(author))
    finally:
        session.close()


# ---------------------------------------------------------
# Books
# ---------------------------------------------------------

@api.post("/books")
@admin_required
def create_book():
    data = json_body()
    title = string_field(data, "title")
    isbn = string_field(data, "isbn")
    author_id = int_field(data, "authorId")
    quantity = int_field(data, "quantity", minimum=1)

    session = SessionLocal()
    try:
        book = services.create_book(session, title, isbn, author_id, quantity)
        books_cache().clear()
        return jsonify(book_to_dict(book)), 201
    finally:
        session.close()


@api.get("/books")
def list_books():
    args = request.args
    author_id = None
    if args.get("authorId"):
        try:
            author_id = int(args["authorId"])
        except ValueError as exc:
            raise BadRequestError("authorId must be an integer") from exc
    available = parse_bool_arg(args.get("available"))
    search = (args.get("search") or "").strip() or None
    page = parse_positive_int_arg(args.get("page"), 1)
    limit = parse_positive_int_arg(args.get("limit"), 10, maximum=MAX_PAGE_SIZE)

    key = f"books:{author_id}:{available}:{search}:{page}:{limit}"

    def load():
        session = SessionLocal()
        try:
            books, total = services.list_books(
                session, author_id, available, search, page, limit
            )
            return paginated([book_to_dict(b) for b in books], total, page, limit)
        finally:
            session.close()

    return jsonify(books_cache().get_or_set(key, load))


@api.get("/books/<int:book_id>")
def get_book(book_id):
    session = SessionLocal()
    try:
        book = services.get_book(session, book_id)
        return jsonify(book_to_dict(book, active_borrowings=True))
    finally:
        session.close()


@api.patch("/books/<int:book_id>")
@admin_required
def update_book(book_id):
    data = json_body()
    changes = {
        "title": string_field(data, "title") if "title" in data else None,
        "isbn": string_field(data, "isbn") if "isbn" in data else None,
        "author_id": int_field(data, "authorId", required=False),
        "quantity": int_field(data, "quantity", minimum=1, required=False),
        "available_qty": int_field(data, "availableQty", minimum=0, required=False),
    }

    session = SessionLocal()
    try:
        book = services.update_book(session, book_id, changes)
        books_cache().clear()
        return jsonify(book_to_dict(book))
    finally:
        session.close()


@api.delete("/books/<int:book_id>")
@admin_required
def delete_book(book_id):
    session = SessionLocal()
    try:
        book = services.delete_book(session, book_id)
        books_cache().clear()
        return jsonify(book_to_dict(book, include_author=False))
    finally:
        session.close()


# ---------------------------------------------------------
# Users
# ---------------------------------------------------------

@api.get("/users")
@admin_required
def list_users():
    session = SessionLocal()
    try:
        rows = services.list_users(session)
        return jsonify([user_to_dict(u, borrowing_count=n) for u, n in rows])
    finally:
        session.close()


@api.get("/users/<int:user_id>")
@login_required
def get_user(user_id):
    if g.current_user.role != ROLE_ADMIN and g.current_user.id != user_id:
        raise ForbiddenError("You can only access your own profile")

    session = SessionLocal()
    try:
        user = services.get_user(session, user_id)
        return jsonify(user_to_dict(user, borrowings=True))
    finally:
        session.close()


# ---------------------------------------------------------
# Borrowings
# ---------------------------------------------------------

@api.post("/borrowings")
@login_required
def borrow_book():
    data = json_body()
    book_id = int_field(data, "bookId")

    session = SessionLocal()
    try:
        borrowing = services.borrow_book(
            session,
            g.current_user.id,
            book_id,
            days=current_app.config["BORROWING_DAYS"],
        )
        books_cache().clear()
        return jsonify(borrowing_to_dict(borrowing)), 201
    finally:
        session.close()


@api.patch("/borrowings/<int:borrowing_id>/return")
@login_required
def return_book(borrowing_id):
    session = SessionLocal()
    try:
        borrowing = services.return_book(session, borrowing_id, g.current_user)
        books_cache().clear()
        return jsonify(borrowing_to_dict(borrowing)), 200
    finally:
        session.close()


@api.get("/borrowings/my")
@login_required
def my_borrowings():
    session = SessionLocal()
    try:
        borrowings = services.list_borrowings(session, user_id=g.current_user.id)
        return jsonify([borrowing_to_dict(b, include_user=False) for b in borrowings])
    finally:
        session.close()


@api.get("/borrowings")
@admin_required
def all_borrowings():
    session = SessionLocal()
    try:
        borrowings = services.list_borrowings(session)
        return jsonify([borrowing_to_dict(b) for b in borrowings])
    finally:
        session.close()


@api.get("/borrowings/<int:borrowing_id>")
@login_required
def get_borrowing(borrowing_id):
    session = SessionLocal()
    try:
        borrowing = services.get_borrowing(session, borrowing_id, g.current_user)
        return jsonify(borrowing_to_dict(borrowing))
    finally:
        session.close()
