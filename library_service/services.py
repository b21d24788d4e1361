"""
Business operations behind the HTTP routes.

Every function takes an open SQLAlchemy session, commits its own work
and raises a ``LibraryError`` subclass when a rule is violated. Borrow
and return change two tables in a single commit; the counter moves via
guarded UPDATE statements so two racing requests cannot push
``available_qty`` outside ``[0, quantity]``.
"""

import logging
from datetime import timedelta

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import selectinload

from .auth import hash_password, verify_password
from .errors import (
    BadRequestError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
    UnauthorizedError,
)
from .models import (
    ROLE_ADMIN,
    ROLE_USER,
    STATUS_BORROWED,
    STATUS_RETURNED,
    Author,
    Book,
    Borrowing,
    User,
    utcnow,
)

logger = logging.getLogger(__name__)

NOT_AVAILABLE = "This book is currently not available for borrowing"
ALREADY_BORROWED = "You already have an active borrowing for this book"
ALREADY_RETURNED = "This book has already been returned"
DUPLICATE_ISBN = "A book with this ISBN already exists"


# ----------------- users -----------------

def register_user(session, email, password, name):
    existing = session.execute(select(User).where(User.email == email)).scalar_one_or_none()
    if existing:
        raise ConflictError("User with this email already exists")

    user = User(
        email=email,
        password=hash_password(password),
        name=name,
        role=ROLE_USER,
    )
    session.add(user)
    try:
        session.commit()
    except IntegrityError as exc:
        session.rollback()
        raise ConflictError("User with this email already exists") from exc
    logger.info("Registered user %s (%s)", user.id, user.email)
    return user


def authenticate(session, email, password):
    user = session.execute(select(User).where(User.email == email)).scalar_one_or_none()
    if not user or not verify_password(user.password, password):
        logger.warning("Failed login for %s", email)
        raise UnauthorizedError("Invalid credentials")
    return user


def get_user(session, user_id):
    user = session.get(User, user_id)
    if not user:
        raise NotFoundError(f"User with ID {user_id} not found")
    return user


def list_users(session):
    """Return ``(user, borrowing_count)`` pairs ordered by name."""
    counts = (
        select(Borrowing.user_id, func.count(Borrowing.id).label("n"))
        .group_by(Borrowing.user_id)
        .subquery()
    )
    q = (
        select(User, func.coalesce(counts.c.n, 0))
        .outerjoin(counts, counts.c.user_id == User.id)
        .order_by(User.name)
    )
    return session.execute(q).all()


# ----------------- authors -----------------

def get_author(session, author_id):
    author = session.get(Author, author_id)
    if not author:
        raise NotFoundError(f"Author with ID {author_id} not found")
    return author


def list_authors(session):
    """Return ``(author, book_count)`` pairs ordered by name."""
    counts = (
        select(Book.author_id, func.count(Book.id).label("n"))
        .group_by(Book.author_id)
        .subquery()
    )
    q = (
        select(Author, func.coalesce(counts.c.n, 0))
        .outerjoin(counts, counts.c.author_id == Author.id)
        .order_by(Author.name)
    )
    return session.execute(q).all()


def create_author(session, name, bio=None):
    author = Author(name=name, bio=bio)
    session.add(author)
    session.commit()
    logger.info("Created author %s (%s)", author.id, author.name)
    return author


def update_author(session, author_id, changes):
    author = get_author(session, author_id)
    for field in ("name", "bio"):
        if field in changes:
            setattr(author, field, changes[field])
    session.commit()
    return author


def delete_author(session, author_id):
    author = get_author(session, author_id)
    book_count = session.execute(
        select(func.count(Book.id)).where(Book.author_id == author_id)
    ).scalar_one()
    if book_count:
        raise ConflictError(
            f"Cannot delete author. There are {book_count} book(s) by this author."
        )
    session.delete(author)
    session.commit()
    logger.info("Deleted author %s", author_id)
    return author


# ----------------- books -----------------

def get_book(session, book_id):
    q = (
        select(Book)
        .where(Book.id == book_id)
        .options(
            selectinload(Book.author),
            selectinload(Book.borrowings).selectinload(Borrowing.user),
        )
    )
    book = session.execute(q).scalar_one_or_none()
    if not book:
        raise NotFoundError(f"Book with ID {book_id} not found")
    return book


def list_books(session, author_id=None, available=None, search=None, page=1, limit=10):
    """Return ``(books, total)`` for one page of the filtered catalogue."""
    q = select(Book)
    if author_id is not None:
        q = q.where(Book.author_id == author_id)
    if available is True:
        q = q.where(Book.available_qty > 0)
    elif available is False:
        q = q.where(Book.available_qty == 0)
    if search:
        q = q.where(Book.title.ilike(f"%{search}%"))

    total = session.execute(
        select(func.count()).select_from(q.subquery())
    ).scalar_one()
    books = (
        session.execute(
            q.options(selectinload(Book.author))
            .order_by(Book.title, Book.id)
            .offset((page - 1) * limit)
            .limit(limit)
        )
        .scalars()
        .all()
    )
    return books, total


def _ensure_isbn_free(session, isbn):
    existing = session.execute(select(Book.id).where(Book.isbn == isbn)).first()
    if existing:
        raise ConflictError(DUPLICATE_ISBN)


def create_book(session, title, isbn, author_id, quantity):
    _ensure_isbn_free(session, isbn)
    get_author(session, author_id)

    book = Book(
        title=title,
        isbn=isbn,
        author_id=author_id,
        quantity=quantity,
        available_qty=quantity,
    )
    session.add(book)
    try:
        session.commit()
    except IntegrityError as exc:
        session.rollback()
        raise ConflictError(DUPLICATE_ISBN) from exc
    logger.info("Created book %s (isbn=%s, quantity=%s)", book.id, isbn, quantity)
    return book


def resolve_available_qty(book, quantity=None, available_qty=None, on_loan=0):
    """
    Work out ``(quantity, available_qty)`` after an update.

    An explicit ``available_qty`` wins (e.g. copies written off as lost);
    otherwise a change in ``quantity`` shifts availability by the same
    delta. Results outside ``[0, quantity - on_loan]`` are a conflict,
    since every copy out on loan must still fit back on the shelf.
    """
    new_quantity = book.quantity if quantity is None else quantity
    if available_qty is not None:
        new_available = available_qty
    elif quantity is not None:
        new_available = book.available_qty + (quantity - book.quantity)
    else:
        new_available = book.available_qty

    if new_available > new_quantity:
        raise ConflictError(
            f"Available quantity ({new_available}) cannot exceed total quantity ({new_quantity})"
        )
    if new_available < 0:
        raise ConflictError("Available quantity cannot be negative")
    if new_available > new_quantity - on_loan:
        raise ConflictError(
            f"Available quantity ({new_available}) cannot exceed copies not on loan "
            f"({new_quantity - on_loan})"
        )
    return new_quantity, new_available


def _active_loans(session, book_id):
    return session.execute(
        select(func.count(Borrowing.id)).where(
            Borrowing.book_id == book_id, Borrowing.status == STATUS_BORROWED
        )
    ).scalar_one()


def update_book(session, book_id, changes):
    q = select(Book).where(Book.id == book_id).with_for_update()
    book = session.execute(q).scalar_one_or_none()
    if not book:
        raise NotFoundError(f"Book with ID {book_id} not found")

    isbn = changes.get("isbn")
    if isbn and isbn != book.isbn:
        _ensure_isbn_free(session, isbn)
        book.isbn = isbn

    author_id = changes.get("author_id")
    if author_id is not None:
        get_author(session, author_id)
        book.author_id = author_id

    if changes.get("title") is not None:
        book.title = changes["title"]

    book.quantity, book.available_qty = resolve_available_qty(
        book,
        changes.get("quantity"),
        changes.get("available_qty"),
        on_loan=_active_loans(session, book_id),
    )

    try:
        session.commit()
    except IntegrityError as exc:
        session.rollback()
        raise ConflictError("Book update conflicts with current data") from exc
    logger.info(
        "Updated book %s (quantity=%s, available=%s)",
        book.id, book.quantity, book.available_qty,
    )
    return book


def delete_book(session, book_id):
    book = get_book(session, book_id)
    active = _active_loans(session, book_id)
    if active:
        raise ConflictError(
            f"Cannot delete book. There are {active} active borrowing(s). "
            "Please wait for all copies to be returned."
        )
    session.delete(book)
    session.commit()
    logger.info("Deleted book %s (isbn=%s)", book_id, book.isbn)
    return book


# ----------------- borrowings -----------------

def _load_borrowing(session, borrowing_id):
    q = (
        select(Borrowing)
        .where(Borrowing.id == borrowing_id)
        .options(
            selectinload(Borrowing.book).selectinload(Book.author),
            selectinload(Borrowing.user),
        )
        .execution_options(populate_existing=True)
    )
    return session.execute(q).scalar_one_or_none()


def _take_copy(session, book_id):
    """Decrement ``available_qty`` unless it already hit zero."""
    taken = session.execute(
        update(Book)
        .where(Book.id == book_id, Book.available_qty > 0)
        .values(available_qty=Book.available_qty - 1)
    )
    return taken.rowcount == 1


def _close_borrowing(session, borrowing_id):
    """Mark a loan RETURNED unless another request got there first."""
    closed = session.execute(
        update(Borrowing)
        .where(Borrowing.id == borrowing_id, Borrowing.status == STATUS_BORROWED)
        .values(status=STATUS_RETURNED, return_date=utcnow())
    )
    return closed.rowcount == 1


def borrow_book(session, user_id, book_id, days=14):
    """Create a BORROWED loan and take one copy off the shelf in one commit."""
    book = session.execute(
        select(Book).where(Book.id == book_id).with_for_update()
    ).scalar_one_or_none()
    if not book:
        raise NotFoundError(f"Book with ID {book_id} not found")

    if book.available_qty <= 0:
        raise BadRequestError(NOT_AVAILABLE)

    existing = session.execute(
        select(Borrowing.id).where(
            Borrowing.user_id == user_id,
            Borrowing.book_id == book_id,
            Borrowing.status == STATUS_BORROWED,
        )
    ).first()
    if existing:
        raise BadRequestError(ALREADY_BORROWED)

    if not _take_copy(session, book_id):
        session.rollback()
        raise BadRequestError(NOT_AVAILABLE)

    now = utcnow()
    borrowing = Borrowing(
        user_id=user_id,
        book_id=book_id,
        borrow_date=now,
        due_date=now + timedelta(days=days),
        status=STATUS_BORROWED,
    )
    session.add(borrowing)
    try:
        session.commit()
    except IntegrityError as exc:
        # the partial unique index caught a concurrent borrow of the same book
        session.rollback()
        raise BadRequestError(ALREADY_BORROWED) from exc

    logger.info("User %s borrowed book %s (borrowing %s)", user_id, book_id, borrowing.id)
    return _load_borrowing(session, borrowing.id)


def return_book(session, borrowing_id, current_user):
    """Close a loan and put the copy back on the shelf in one commit."""
    borrowing = session.execute(
        select(Borrowing).where(Borrowing.id == borrowing_id).with_for_update()
    ).scalar_one_or_none()
    if not borrowing:
        raise NotFoundError(f"Borrowing with ID {borrowing_id} not found")

    if borrowing.status == STATUS_RETURNED:
        raise BadRequestError(ALREADY_RETURNED)

    if current_user.role != ROLE_ADMIN and borrowing.user_id != current_user.id:
        raise ForbiddenError("You can only return your own borrowings")

    if not _close_borrowing(session, borrowing_id):
        session.rollback()
        raise BadRequestError(ALREADY_RETURNED)

    try:
        session.execute(
            update(Book)
            .where(Book.id == borrowing.book_id)
            .values(available_qty=Book.available_qty + 1)
        )
        session.commit()
    except IntegrityError as exc:
        session.rollback()
        raise ConflictError("Book has no outstanding copies to return") from exc

    logger.info(
        "Borrowing %s returned (book %s, by user %s)",
        borrowing_id, borrowing.book_id, current_user.id,
    )
    return _load_borrowing(session, borrowing_id)


def get_borrowing(session, borrowing_id, current_user):
    borrowing = _load_borrowing(session, borrowing_id)
    if not borrowing:
        raise NotFoundError(f"Borrowing with ID {borrowing_id} not found")
    if current_user.role != ROLE_ADMIN and borrowing.user_id != current_user.id:
        raise ForbiddenError("You can only view your own borrowings")
    return borrowing


def list_borrowings(session, user_id=None):
    q = select(Borrowing).options(
        selectinload(Borrowing.book).selectinload(Book.author),
        selectinload(Borrowing.user),
    )
    if user_id is not None:
        q = q.where(Borrowing.user_id == user_id)
    q = q.order_by(Borrowing.borrow_date.desc(), Borrowing.id.desc())
    return session.execute(q).scalars().all()
