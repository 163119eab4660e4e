"""CLI entry point for OASIS Integration."""

from __future__ import annotations

import logging
import sys

import click
from rich.console import Console

from oasis.client import OTPProvider
from oasis.config import ConfigurationError, load_settings
from oasis.models import RegisterUser, RequestAuthorisationState, VerifyUserOTP

console = Console()

directory_option = click.option("--directory", "directory", default=None, help="Directory (overrides OASIS_DIRECTORY_NAME)")


def _provider() -> OTPProvider:
    try:
        return OTPProvider.from_settings()
    except ConfigurationError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(2)


def _print_state(state: str) -> None:
    colour = "green" if state == "VALID" else "yellow" if state == "PENDING" else "red"
    console.print(f"State: [{colour}]{state}[/{colour}]")
    if state != "VALID":
        sys.exit(1)


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Debug logging")
def main(verbose: bool) -> None:
    """OASIS Integration — OTP service client."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        datefmt="%H:%M:%S",
    )


@main.command()
def status() -> None:
    """Show configuration (secrets masked)."""
    try:
        settings = load_settings()
    except ConfigurationError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(2)

    def _mask(configured: bool) -> str:
        return "[green]set[/green]" if configured else "[red]missing[/red]"

    console.print("[bold]OASIS Configuration[/bold]")
    console.print(f"  Service: {settings.service_url}")
    console.print(f"  App ID: {settings.app_id if settings.app_id is not None else '[red]missing[/red]'}")
    console.print(f"  App key: {_mask(bool(settings.app_key.get_secret_value()))}")
    console.print(f"  API key: {_mask(bool(settings.api_key.get_secret_value()))}")
    console.print(f"  Directory: {settings.directory_name or '—'}")
    console.print(f"  Remote IP: {settings.remote_ip or '—'}")


@main.command()
def hello() -> None:
    """Check the service is reachable and the credentials are accepted."""
    if _provider().hello_world():
        console.print("[green]OASIS credentials OK[/green]")
    else:
        console.print("[red]OASIS HelloWorld failed[/red]")
        sys.exit(1)


@main.command()
@click.argument("username")
@directory_option
def register(username: str, directory: str | None) -> None:
    """Register USERNAME for OTP authentication."""
    resp = _provider().register_user(RegisterUser(username=username, directory_name=directory))
    console.print_json(resp.model_dump_json(by_alias=True, exclude_none=True))


@main.command()
@click.argument("username")
@directory_option
def state(username: str, directory: str | None) -> None:
    """Request the authorisation state of USERNAME."""
    resp = _provider().request_authorisation_state(
        RequestAuthorisationState(username=username, directory_name=directory)
    )
    _print_state(resp.state)


@main.command()
@click.argument("username")
@click.argument("otp")
@directory_option
def verify(username: str, otp: str, directory: str | None) -> None:
    """Verify OTP for USERNAME."""
    resp = _provider().verify_user_otp(
        VerifyUserOTP(username=username, directory_name=directory, otp=otp)
    )
    _print_state(resp.state)


@main.command()
@click.argument("username")
@directory_option
def delete(username: str, directory: str | None) -> None:
    """Delete USERNAME from the service."""
    if _provider().delete_user(username, directory):
        console.print(f"[green]Deleted {username}[/green]")
    else:
        console.print(f"[red]Failed to delete {username}[/red]")
        sys.exit(1)


if __name__ == "__main__":
    main()
