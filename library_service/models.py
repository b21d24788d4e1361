from datetime import datetime, timezone

from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    text,
)

Base = declarative_base()

ROLE_USER = "USER"
ROLE_ADMIN = "ADMIN"

STATUS_BORROWED = "BORROWED"
STATUS_RETURNED = "RETURNED"


def utcnow():
    """Naive UTC timestamp, the form SQLite hands back on reads."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class User(Base):
    __tablename__ = "user"

    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String(255), unique=True, nullable=False)
    password = Column(String(255), nullable=False)  # hash, never the raw value
    name = Column(String(255), nullable=False)
    role = Column(
        Enum(ROLE_USER, ROLE_ADMIN, name="user_role"),
        nullable=False,
        default=ROLE_USER,
    )
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    borrowings = relationship(
        "Borrowing", back_populates="user", order_by="Borrowing.borrow_date.desc()"
    )

    @property
    def is_admin(self):
        return self.role == ROLE_ADMIN


class Author(Base):
    __tablename__ = "author"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    bio = Column(Text)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    books = relationship("Book", back_populates="author", order_by="Book.title")


class Book(Base):
    __tablename__ = "book"
    __table_args__ = (
        CheckConstraint(
            "available_qty >= 0 AND available_qty <= quantity",
            name="ck_book_available_qty",
        ),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(String(255), nullable=False)
    isbn = Column(String(20), unique=True, nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
    available_qty = Column(Integer, nullable=False, default=1)
    author_id = Column(Integer, ForeignKey("author.id"), nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    author = relationship("Author", back_populates="books")
    borrowings = relationship(
        "Borrowing", back_populates="book", cascade="all, delete-orphan"
    )


class Borrowing(Base):
    __tablename__ = "borrowing"
    __table_args__ = (
        # one open loan per (user, book)
        Index(
            "uq_borrowing_active",
            "user_id",
            "book_id",
            unique=True,
            sqlite_where=text("status = 'BORROWED'"),
            postgresql_where=text("status = 'BORROWED'"),
        ),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("user.id"), nullable=False)
    book_id = Column(Integer, ForeignKey("book.id"), nullable=False)
    borrow_date = Column(DateTime, nullable=False, default=utcnow)
    due_date = Column(DateTime, nullable=False)
    return_date = Column(DateTime)
    status = Column(
        Enum(STATUS_BORROWED, STATUS_RETURNED, name="borrow_status"),
        nullable=False,
        default=STATUS_BORROWED,
    )

    user = relationship("User", back_populates="borrowings")
    book = relationship("Book", back_populates="borrowings")
