import os
import json
from datetime import date
from typing import List, Optional

from rich.console import Console
from rich.table import Table
from rich.panel import Panel

from models import Loan

# Environment variable to control CLI output mode
# Allowed values: 'plain' (default), 'json', 'rich'
OUTPUT_MODE_ENV = "LIB_CLI_OUTPUT"

_console = Console()


def set_output_mode(mode: str) -> None:
    mode = (mode or "").lower().strip()
    if mode in {"plain", "json", "rich"}:
        os.environ[OUTPUT_MODE_ENV] = mode


def get_output_mode() -> str:
    return os.environ.get(OUTPUT_MODE_ENV, "plain").lower()


def _loan_status(loan: Loan) -> str:
    return "returned" if loan.is_closed else "open"


def print_loans_result(loans: List[Loan]) -> None:
    """Print loans in the current output mode.
    - plain: 'id  book -> borrower  start..end  status' lines, or 'No loans recorded.'
    - json: array of camelCase loan objects
    - rich: Rich table
    """
    mode = get_output_mode()

    if not loans:
        print("No loans recorded.")
        return

    if mode == "json":
        payload = [
            {
                "id": loan.id,
                "bookId": loan.book_id,
                "borrowerId": loan.borrower_id,
                "loanDate": loan.loan_date.isoformat(),
                "returnDate": loan.return_date.isoformat() if loan.return_date else None,
                "returnedAt": loan.returned_at,
            }
            for loan in loans
        ]
        print(json.dumps(payload, ensure_ascii=False))
    elif mode == "rich":
        table = Table(title="Loans", show_lines=True, header_style="bold cyan")
        table.add_column("Loan", style="magenta", no_wrap=True)
        table.add_column("Book", style="white")
        table.add_column("Borrower", style="white")
        table.add_column("From", style="white")
        table.add_column("Until", style="white")
        table.add_column("Status", style="green")
        for loan in loans:
            until = loan.return_date.isoformat() if loan.return_date else "-"
            table.add_row(loan.id, loan.book_id, loan.borrower_id, loan.loan_date.isoformat(), until, _loan_status(loan))
        _console.print(table)
    else:
        for loan in loans:
            until = loan.return_date.isoformat() if loan.return_date else "open-ended"
            print(f"{loan.id}  {loan.book_id} -> {loan.borrower_id}  {loan.loan_date.isoformat()}..{until}  {_loan_status(loan)}")


def print_availability_result(book_id: str, start: date, end: Optional[date], available: bool) -> None:
    mode = get_output_mode()
    until = end.isoformat() if end else "open-ended"

    if mode == "json":
        print(json.dumps({
            "bookId": book_id,
            "start": start.isoformat(),
            "end": end.isoformat() if end else None,
            "available": available,
        }))
    elif mode == "rich":
        verdict = "[bold green]available[/]" if available else "[bold red]not available[/]"
        content = f"[bold]Book:[/] {book_id}\n[bold]Period:[/] {start.isoformat()}..{until}\n{verdict}"
        _console.print(Panel.fit(content, title="Availability", border_style="blue"))
    else:
        status = "available" if available else "not available"
        print(f"Book {book_id} is {status} for {start.isoformat()}..{until}")
