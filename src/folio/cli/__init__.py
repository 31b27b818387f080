"""Folio CLI - Review project proposals from the command line."""

import json
import os
from pathlib import Path
from typing import Annotated, Any

import httpx
import typer
from rich.console import Console
from rich.table import Table

from folio import __version__

app = typer.Typer(
    name="folio",
    help="Proposal review workflow for collaborative academic projects",
    no_args_is_help=True,
)

console = Console()
err_console = Console(stderr=True)

# Sub-commands
project_app = typer.Typer(help="Inspect projects and manage collaborators")
proposal_app = typer.Typer(help="Review change proposals")

app.add_typer(project_app, name="project")
app.add_typer(proposal_app, name="proposal")

STATUS_STYLES = {
    "OPEN": "yellow",
    "APPROVED": "cyan",
    "REJECTED": "red",
    "MERGED": "green",
}


def get_base_url() -> str:
    """Get the Folio API base URL from environment or default."""
    return os.environ.get("FOLIO_URL", "http://localhost:8000")


def get_user_id() -> str | None:
    """Get the acting user id from environment."""
    return os.environ.get("FOLIO_USER_ID")


def make_request(
    method: str,
    path: str,
    json_data: dict[str, Any] | None = None,
    params: dict[str, Any] | None = None,
) -> httpx.Response:
    """Make an HTTP request to the Folio API."""
    url = f"{get_base_url()}/api/v1{path}"
    headers: dict[str, str] = {}
    user_id = get_user_id()
    if user_id:
        headers["X-User-ID"] = user_id

    with httpx.Client(timeout=30.0) as client:
        response = client.request(
            method=method,
            url=url,
            json=json_data,
            params=params,
            headers=headers,
        )
    return response


def handle_response(response: httpx.Response) -> Any:
    """Handle API response, raising on errors.

    Returns the JSON response which may be a dict or list depending on the endpoint.
    """
    if response.status_code >= 400:
        try:
            error = response.json().get("error", {})
            detail = f"{error['code']}: {error['message']}"
        except (ValueError, KeyError, AttributeError):
            detail = response.text
        err_console.print(f"[red]Error ({response.status_code}):[/red] {detail}")
        raise typer.Exit(1)
    if response.status_code == 204:
        return {}
    return response.json()


def _styled(status: str) -> str:
    style = STATUS_STYLES.get(status, "white")
    return f"[{style}]{status}[/{style}]"


# ============================================================================
# Project commands
# ============================================================================


@project_app.command("get")
def project_get(
    project_id: Annotated[str, typer.Argument(help="Project ID")],
) -> None:
    """Get project details."""
    response = make_request("GET", f"/projects/{project_id}")
    project = handle_response(response)
    console.print_json(json.dumps(project))


@project_app.command("add-member")
def project_add_member(
    project_id: Annotated[str, typer.Argument(help="Project ID")],
    user_id: Annotated[str, typer.Argument(help="User ID of the new collaborator")],
) -> None:
    """Add a collaborator to a project (owner only)."""
    response = make_request(
        "POST", f"/projects/{project_id}/members", json_data={"user_id": user_id}
    )
    member = handle_response(response)
    console.print(f"[green]Added collaborator:[/green] {member['user_id']}")


@project_app.command("files")
def project_files(
    project_id: Annotated[str, typer.Argument(help="Project ID")],
) -> None:
    """List a project's permanent files."""
    response = make_request("GET", f"/projects/{project_id}/files")
    files = handle_response(response)

    if not files:
        console.print("[dim]No files found[/dim]")
        return

    table = Table(title="Project Files")
    table.add_column("Name", style="bold")
    table.add_column("Size", justify="right")
    table.add_column("From proposal", style="dim")
    table.add_column("Uploaded")

    for f in files:
        source = f.get("source_proposal_id")
        table.add_row(
            f["file_name"],
            str(f["size"]),
            source[:8] + "..." if source else "-",
            f["uploaded_at"][:10],
        )

    console.print(table)


@project_app.command("download")
def project_download(
    project_id: Annotated[str, typer.Argument(help="Project ID")],
    file_id: Annotated[str, typer.Argument(help="File ID")],
    output: Annotated[Path, typer.Option("--output", "-o", help="Where to save the file")],
) -> None:
    """Download one of a project's permanent files."""
    response = make_request("GET", f"/projects/{project_id}/files/{file_id}/content")
    if response.status_code >= 400:
        handle_response(response)
    output.write_bytes(response.content)
    console.print(f"[green]Saved:[/green] {output} ({len(response.content)} bytes)")


# ============================================================================
# Proposal commands
# ============================================================================


@proposal_app.command("list")
def proposal_list(
    project_id: Annotated[str, typer.Argument(help="Project ID")],
    status: Annotated[
        str | None,
        typer.Option("--status", "-s", help="Filter: OPEN, APPROVED, REJECTED, MERGED"),
    ] = None,
    limit: Annotated[int, typer.Option("--limit", "-l", help="Max results")] = 50,
) -> None:
    """List a project's proposals, newest first."""
    params: dict[str, Any] = {"limit": limit}
    if status:
        params["status"] = status.upper()

    response = make_request("GET", f"/projects/{project_id}/proposals", params=params)
    result = handle_response(response)
    proposals = result.get("results", [])

    if not proposals:
        console.print("[dim]No proposals found[/dim]")
        return

    table = Table(title="Proposals")
    table.add_column("#", justify="right")
    table.add_column("ID", style="dim")
    table.add_column("Title", style="bold")
    table.add_column("Status")
    table.add_column("Fields", justify="right")
    table.add_column("Files", justify="right")
    table.add_column("Created")

    for p in proposals:
        table.add_row(
            str(p["number"]),
            p["id"][:8] + "...",
            p["title"],
            _styled(p["status"]),
            str(len(p["changed_fields"])),
            str(len(p["attachments"])),
            p["created_at"][:10],
        )

    console.print(table)


@proposal_app.command("show")
def proposal_show(
    project_id: Annotated[str, typer.Argument(help="Project ID")],
    proposal_id: Annotated[str, typer.Argument(help="Proposal ID")],
) -> None:
    """Show a proposal's description, changes and files."""
    response = make_request("GET", f"/projects/{project_id}/proposals/{proposal_id}")
    proposal = handle_response(response)

    console.print(f"[bold]{proposal['title']}[/bold]  {_styled(proposal['status'])}")
    console.print(proposal["description"])

    table = Table(title="Changes")
    table.add_column("Field", style="bold")
    table.add_column("Old")
    table.add_column("New")
    for name, change in proposal["change_set"].items():
        table.add_row(name, json.dumps(change["old"]), json.dumps(change["new"]))
    console.print(table)

    if proposal.get("attachments"):
        console.print("\n[bold]Files:[/bold]")
        for a in proposal["attachments"]:
            console.print(f"  {a['file_name']} ({a['size']} bytes) [dim]{a['status']}[/dim]")


def _review(project_id: str, proposal_id: str, status: str) -> dict[str, Any]:
    response = make_request(
        "PATCH",
        f"/projects/{project_id}/proposals/{proposal_id}",
        json_data={"status": status},
    )
    result: dict[str, Any] = handle_response(response)
    return result


@proposal_app.command("approve")
def proposal_approve(
    project_id: Annotated[str, typer.Argument(help="Project ID")],
    proposal_id: Annotated[str, typer.Argument(help="Proposal ID")],
) -> None:
    """Approve an open proposal (owner only)."""
    proposal = _review(project_id, proposal_id, "APPROVED")
    console.print(f"[cyan]Approved:[/cyan] {proposal['title']}")


@proposal_app.command("reject")
def proposal_reject(
    project_id: Annotated[str, typer.Argument(help="Project ID")],
    proposal_id: Annotated[str, typer.Argument(help="Proposal ID")],
) -> None:
    """Reject an open proposal and discard its files (owner only)."""
    proposal = _review(project_id, proposal_id, "REJECTED")
    console.print(f"[red]Rejected:[/red] {proposal['title']}")


@proposal_app.command("merge")
def proposal_merge(
    project_id: Annotated[str, typer.Argument(help="Project ID")],
    proposal_id: Annotated[str, typer.Argument(help="Proposal ID")],
) -> None:
    """Merge an approved proposal into the project (owner only)."""
    proposal = _review(project_id, proposal_id, "MERGED")
    console.print(f"[green]Merged:[/green] {proposal['title']}")
    for a in proposal.get("attachments", []):
        if a.get("promoted_name") and a["promoted_name"] != a["file_name"]:
            console.print(f"  [yellow]{a['file_name']} saved as {a['promoted_name']}[/yellow]")


# ============================================================================
# Server command
# ============================================================================


@app.command("serve")
def serve(
    host: Annotated[str, typer.Option("--host", "-h", help="Host to bind")] = "0.0.0.0",
    port: Annotated[int, typer.Option("--port", "-p", help="Port to bind")] = 8000,
    reload: Annotated[bool, typer.Option("--reload", "-r", help="Enable auto-reload")] = False,
) -> None:
    """Start the Folio API server."""
    import uvicorn

    uvicorn.run("folio.main:app", host=host, port=port, reload=reload)


# ============================================================================
# Version command
# ============================================================================


@app.command("version")
def version() -> None:
    """Show Folio version."""
    console.print(f"folio {__version__}")


if __name__ == "__main__":
    app()
