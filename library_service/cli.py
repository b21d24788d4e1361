import os
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table
from rich import box

from .client import ApiError, LibraryClient

TOKEN_FILE = Path(os.getenv("LIBRARY_CLI_TOKEN_FILE", Path.home() / ".library_cli_token"))

console = Console()


def load_token():
    try:
        return TOKEN_FILE.read_text().strip() or None
    except FileNotFoundError:
        return None


def save_token(token):
    TOKEN_FILE.write_text(token)


def books_table(books, title="Books"):
    table = Table(title=title, box=box.SIMPLE_HEAVY)
    table.add_column("ID", justify="right")
    table.add_column("Title")
    table.add_column("Author")
    table.add_column("ISBN")
    table.add_column("Available", justify="right")
    for b in books:
        author = (b.get("author") or {}).get("name", "")
        available = f'{b["availableQty"]}/{b["quantity"]}'
        style = None if b["availableQty"] > 0 else "red"
        table.add_row(str(b["id"]), b["title"], author, b["isbn"], available, style=style)
    return table


def authors_table(authors):
    table = Table(title="Authors", box=box.SIMPLE_HEAVY)
    table.add_column("ID", justify="right")
    table.add_column("Name")
    table.add_column("Books", justify="right")
    table.add_column("Bio")
    for a in authors:
        table.add_row(str(a["id"]), a["name"], str(a.get("bookCount", "")), a.get("bio") or "")
    return table


def borrowings_table(borrowings, title="Borrowings"):
    table = Table(title=title, box=box.SIMPLE_HEAVY)
    table.add_column("ID", justify="right")
    table.add_column("Book")
    table.add_column("Borrowed")
    table.add_column("Due")
    table.add_column("Returned")
    table.add_column("Status")
    for b in borrowings:
        table.add_row(
            str(b["id"]),
            (b.get("book") or {}).get("title", str(b["bookId"])),
            b["borrowDate"][:10],
            b["dueDate"][:10],
            (b.get("returnDate") or "")[:10],
            b["status"],
            style="dim" if b["status"] == "RETURNED" else None,
        )
    return table


@click.group()
@click.option("--api-url", envvar="LIBRARY_API_URL", default="http://localhost:3000/api",
              show_default=True, help="Base URL of the library API.")
@click.pass_context
def main(ctx, api_url):
    """Terminal front end for the library API."""
    ctx.obj = LibraryClient(api_url, token=load_token())


def _run(call):
    try:
        return call()
    except ApiError as exc:
        raise click.ClickException(f"{exc.message} (HTTP {exc.status_code})") from exc


@main.command()
@click.option("--email", prompt=True)
@click.option("--password", prompt=True, hide_input=True)
@click.pass_obj
def login(client, email, password):
    """Log in and remember the access token."""
    data = _run(lambda: client.login(email, password))
    save_token(data["access_token"])
    console.print(f'Logged in as [bold]{data["user"]["name"]}[/bold] ({data["user"]["role"]})')


@main.command()
@click.option("--search", default=None, help="Title contains.")
@click.option("--author-id", type=int, default=None)
@click.option("--available/--unavailable", default=None)
@click.option("--page", type=int, default=1, show_default=True)
@click.option("--limit", type=int, default=10, show_default=True)
@click.pass_obj
def books(client, search, author_id, available, page, limit):
    """List the catalogue."""
    result = _run(lambda: client.list_books(author_id, available, search, page, limit))
    meta = result["meta"]
    console.print(books_table(result["data"]))
    console.print(f'Page {meta["page"]}/{max(meta["totalPages"], 1)}, {meta["total"]} book(s)')


@main.command()
@click.pass_obj
def authors(client):
    """List authors."""
    console.print(authors_table(_run(client.list_authors)))


@main.command()
@click.argument("book_id", type=int)
@click.pass_obj
def borrow(client, book_id):
    """Borrow a book by id."""
    b = _run(lambda: client.borrow(book_id))
    console.print(f'Borrowed [bold]{b["book"]["title"]}[/bold], due {b["dueDate"][:10]}')


@main.command("return")
@click.argument("borrowing_id", type=int)
@click.pass_obj
def return_(client, borrowing_id):
    """Return a borrowing by id."""
    b = _run(lambda: client.return_borrowing(borrowing_id))
    console.print(f'Returned [bold]{b["book"]["title"]}[/bold]')


@main.command("my-borrowings")
@click.pass_obj
def my_borrowings(client):
    """Show your borrowings."""
    console.print(borrowings_table(_run(client.my_borrowings), title="My borrowings"))


if __name__ == "__main__":
    main()
