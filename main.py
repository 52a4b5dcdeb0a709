from datetime import datetime
from typing import NoReturn, Optional

import typer
import uvicorn
from rich.console import Console

import database
from config import settings
from errors import LibraryError
from library import Library
from models import Role
from utils.ui_helpers import print_availability_result, print_loans_result, set_output_mode
from schemas import USERNAME_MAX, USERNAME_MIN
from utils.validators import PasswordValidator, TextValidator

APP_NAME = "Library Loans CLI"

console = Console()


class LibraryManager:
    """Lazily builds the shared Library, rebuilding it if the database file changes."""

    _instance: Optional[Library] = None
    _db_file_snapshot: Optional[str] = None

    @classmethod
    def get_instance(cls) -> Library:
        current_db = database.DATABASE_FILE
        if cls._instance is None or current_db != cls._db_file_snapshot:
            cls._instance = Library(db_file=current_db)
            cls._db_file_snapshot = current_db
        return cls._instance


def _fail(message: str) -> NoReturn:
    print(f"Error: {message}")
    raise typer.Exit(code=1)


# --- Typer CLI application ---
app = typer.Typer(help=APP_NAME)


@app.callback()
def _global_options(
    output: Optional[str] = typer.Option(
        None,
        "--output",
        "-o",
        help="Output format: plain | json | rich (default: plain)",
    )
):
    """Global options for the CLI (e.g. output mode)."""
    if output:
        set_output_mode(output)


@app.command("init-db")
def cli_init_db():
    """Create the database schema if it does not exist yet."""
    lib = LibraryManager.get_instance()
    print(f"Database initialized at {lib.db_file}")


@app.command("create-user")
def cli_create_user(
    username: str = typer.Argument(..., help="Login name for the new user"),
    password: str = typer.Option(..., "--password", "-p", prompt=True, hide_input=True,
                                 help="Password (prompted when omitted)"),
    role: Optional[str] = typer.Option(None, "--role", "-r", help="SeniorStaff or JuniorStaff; omit for a patron"),
):
    """Create a user account, optionally with a staff role."""
    try:
        parsed_role = Role.parse(role)
    except ValueError:
        _fail(f"Unknown role '{role}'. Use SeniorStaff or JuniorStaff.")
    username_problem = TextValidator.length_problem(username, "Username", USERNAME_MAX, USERNAME_MIN)
    if username_problem:
        _fail(username_problem)
    problems = PasswordValidator.problems(password)
    if problems:
        _fail("; ".join(problems))

    lib = LibraryManager.get_instance()
    try:
        user = lib.users.create_user(username, password, parsed_role)
    except LibraryError as e:
        _fail(e.detail)
    print(f"Created user {user.username} ({user.id}) with role {user.role.value if user.role else 'none'}")


@app.command("issue-token")
def cli_issue_token(username: str = typer.Argument(..., help="User to issue a bearer token for")):
    """Print a bearer token for an existing user."""
    lib = LibraryManager.get_instance()
    try:
        token = lib.users.issue_token(username)
    except LibraryError as e:
        _fail(e.detail)
    print(token)


@app.command("loans")
def cli_loans():
    """List every loan, oldest first."""
    lib = LibraryManager.get_instance()
    print_loans_result(lib.loans.list_all())


@app.command("availability")
def cli_availability(
    book_id: str = typer.Argument(..., help="Book id"),
    start: datetime = typer.Argument(..., formats=["%Y-%m-%d"], help="First day of the period"),
    end: Optional[datetime] = typer.Option(None, "--end", "-e", formats=["%Y-%m-%d"],
                                           help="Day the period ends (exclusive); open-ended when omitted"),
):
    """Check whether a book can be lent over a period."""
    lib = LibraryManager.get_instance()
    start_day = start.date()
    end_day = end.date() if end else None
    try:
        available = lib.books.check_availability(book_id, start_day, end_day)
    except LibraryError as e:
        _fail(e.detail)
    print_availability_result(book_id, start_day, end_day, available)


@app.command("serve")
def cli_serve(
    host: str = typer.Option(settings.api_host, "--host", help="Interface to bind"),
    port: int = typer.Option(settings.api_port, "--port", help="Port to listen on"),
    reload: bool = typer.Option(False, "--reload", help="Restart on code changes"),
):
    """Run the HTTP API with uvicorn."""
    console.print(f"[bold]Starting {settings.app_name}[/] on http://{host}:{port}/")
    uvicorn.run("api:app", host=host, port=port, reload=reload, log_level=settings.log_level.lower())


if __name__ == "__main__":
    app()
