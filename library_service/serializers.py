import math

from .models import STATUS_BORROWED


def _iso(value):
    return value.isoformat() if value else None


def user_summary(user):
    return {"id": user.id, "name": user.name, "email": user.email}


def user_to_dict(user, borrowing_count=None, borrowings=False):
    # password hash never leaves this module
    data = {
        "id": user.id,
        "email": user.email,
        "name": user.name,
        "role": user.role,
        "createdAt": _iso(user.created_at),
        "updatedAt": _iso(user.updated_at),
    }
    if borrowing_count is not None:
        data["borrowingCount"] = borrowing_count
    if borrowings:
        data["borrowings"] = [
            borrowing_to_dict(b, include_user=False) for b in user.borrowings
        ]
    return data


def author_to_dict(author, book_count=None, books=False):
    data = {
        "id": author.id,
        "name": author.name,
        "bio": author.bio,
        "createdAt": _iso(author.created_at),
        "updatedAt": _iso(author.updated_at),
    }
    if book_count is not None:
        data["bookCount"] = book_count
    if books:
        data["books"] = [book_to_dict(b, include_author=False) for b in author.books]
    return data


def book_to_dict(book, include_author=True, active_borrowings=False):
    data = {
        "id": book.id,
        "title": book.title,
        "isbn": book.isbn,
        "quantity": book.quantity,
        "availableQty": book.available_qty,
        "authorId": book.author_id,
        "createdAt": _iso(book.created_at),
        "updatedAt": _iso(book.updated_at),
    }
    if include_author:
        data["author"] = author_to_dict(book.author) if book.author else None
    if active_borrowings:
        data["borrowings"] = [
            {
                "id": b.id,
                "borrowDate": _iso(b.borrow_date),
                "dueDate": _iso(b.due_date),
                "status": b.status,
                "user": user_summary(b.user),
            }
            for b in book.borrowings
            if b.status == STATUS_BORROWED
        ]
    return data


def borrowing_to_dict(borrowing, include_book=True, include_user=True):
    data = {
        "id": borrowing.id,
        "userId": borrowing.user_id,
        "bookId": borrowing.book_id,
        "borrowDate": _iso(borrowing.borrow_date),
        "dueDate": _iso(borrowing.due_date),
        "returnDate": _iso(borrowing.return_date),
        "status": borrowing.status,
    }
    if include_book:
        data["book"] = book_to_dict(borrowing.book)
    if include_user:
        data["user"] = user_summary(borrowing.user)
    return data


def paginated(items, total, page, limit):
    total_pages = math.ceil(total / limit) if limit else 0
    return {
        "data": items,
        "meta": {
            "total": total,
            "page": page,
            "limit": limit,
            "totalPages": total_pages,
            "hasNextPage": page < total_pages,
            "hasPrevPage": page > 1,
        },
    }
