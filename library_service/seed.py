# seed.py
from datetime import timedelta

import click
from flask import current_app
from flask.cli import with_appcontext
from sqlalchemy import delete

from .auth import hash_password
from .db import SessionLocal
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

USERS = [
    {"email": "admin@library.com", "password": "admin123", "name": "Admin User", "role": ROLE_ADMIN},
    {"email": "john@example.com", "password": "user123", "name": "John Doe", "role": ROLE_USER},
    {"email": "jane@example.com", "password": "user123", "name": "Jane Smith", "role": ROLE_USER},
]

AUTHORS = [
    {
        "name": "George Orwell",
        "bio": "English novelist, essayist, and critic famous for Animal Farm and Nineteen Eighty-Four.",
    },
    {
        "name": "J.K. Rowling",
        "bio": "British author best known for the Harry Potter fantasy series.",
    },
    {
        "name": "Agatha Christie",
        "bio": "English writer known for her 66 detective novels and 14 short story collections.",
    },
    {
        "name": "Stephen King",
        "bio": "American author of horror, supernatural fiction, suspense, crime, and fantasy novels.",
    },
    {
        "name": "Jane Austen",
        "bio": "English novelist known for six major novels about the 18th-century landed gentry.",
    },
]

# (title, isbn, quantity, author name)
BOOKS = [
    ("1984", "9780451524935", 5, "George Orwell"),
    ("Animal Farm", "9780451526342", 4, "George Orwell"),
    ("Harry Potter and the Philosopher's Stone", "9780747532699", 8, "J.K. Rowling"),
    ("Harry Potter and the Chamber of Secrets", "9780747538486", 6, "J.K. Rowling"),
    ("Harry Potter and the Prisoner of Azkaban", "9780747542155", 7, "J.K. Rowling"),
    ("Murder on the Orient Express", "9780062693662", 4, "Agatha Christie"),
    ("And Then There Were None", "9780062073488", 3, "Agatha Christie"),
    ("The Shining", "9780307743657", 5, "Stephen King"),
    ("It", "9781501142970", 3, "Stephen King"),
    ("Misery", "9781501143106", 2, "Stephen King"),
    ("Pride and Prejudice", "9780141439518", 6, "Jane Austen"),
    ("Sense and Sensibility", "9780141439662", 4, "Jane Austen"),
]

# (user email, isbn, days ago, returned?)
BORROWINGS = [
    ("john@example.com", "9780451524935", 2, False),
    ("john@example.com", "9780747532699", 20, True),
    ("jane@example.com", "9780141439518", 5, False),
    ("jane@example.com", "9780307743657", 1, False),
]


def seed_database(session, borrowing_days=14):
    """Wipe every table and load the demo catalogue. Returns row counts."""
    for model in (Borrowing, Book, Author, User):
        session.execute(delete(model))

    users = {}
    for u in USERS:
        user = User(
            email=u["email"],
            password=hash_password(u["password"]),
            name=u["name"],
            role=u["role"],
        )
        session.add(user)
        users[user.email] = user

    authors = {}
    for a in AUTHORS:
        author = Author(name=a["name"], bio=a["bio"])
        session.add(author)
        authors[author.name] = author

    books = {}
    for title, isbn, quantity, author_name in BOOKS:
        book = Book(
            title=title,
            isbn=isbn,
            quantity=quantity,
            available_qty=quantity,
            author=authors[author_name],
        )
        session.add(book)
        books[isbn] = book

    now = utcnow()
    for email, isbn, days_ago, returned in BORROWINGS:
        borrowed_at = now - timedelta(days=days_ago)
        book = books[isbn]
        borrowing = Borrowing(
            user=users[email],
            book=book,
            borrow_date=borrowed_at,
            due_date=borrowed_at + timedelta(days=borrowing_days),
            status=STATUS_RETURNED if returned else STATUS_BORROWED,
            return_date=now - timedelta(days=1) if returned else None,
        )
        session.add(borrowing)
        # keep the shelf count in step with the open loans
        if not returned:
            book.available_qty -= 1

    session.commit()
    return {
        "users": len(users),
        "authors": len(authors),
        "books": len(books),
        "borrowings": len(BORROWINGS),
    }


@click.command("seed-db")
@with_appcontext
def seed_db_command():
    """Clear the database and load demo data."""
    session = SessionLocal()
    try:
        counts = seed_database(session, current_app.config["BORROWING_DAYS"])
    finally:
        session.close()

    current_app.extensions["books_cache"].clear()
    for name, count in counts.items():
        click.echo(f"  {name}: {count}")
    click.echo("\nDone.")
    click.echo("Admin login: admin@library.com / admin123")
    click.echo("User login:  john@example.com / user123")


def register_commands(app):
    app.cli.add_command(seed_db_command)
