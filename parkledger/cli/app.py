"""
Main CLI application using Typer.
"""

import asyncio
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Annotated, Iterator, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from ..adapters.authenticator import BackendAuthenticator
from ..adapters.firestore_client import FirestoreClient
from ..adapters.memory_store import InMemoryBackend
from ..adapters.storage_client import FirebaseStorageClient
from ..config import AppConfig, get_default_config_path
from ..domain.exceptions import AccountNotFoundError, AuthenticationError, ParkLedgerError
from ..domain.fee_calculator import format_currency
from ..domain.models import VEHICLE_TYPES, UserProfile
from ..services.accounts import AccountService
from ..services.photo_log import PhotoLogService
from ..services.pricing import PricingService
from ..services.slot_ledger import SlotLedger

app = typer.Typer(
    name="parkledger",
    help="Manage parking slots, fees and balances",
    add_completion=False,
)
pricing_app = typer.Typer(help="Show or change the parking tariff")
images_app = typer.Typer(help="Browse and clean up license-plate photos")
app.add_typer(pricing_app, name="pricing")
app.add_typer(images_app, name="images")

console = Console()

AsOption = Annotated[
    Optional[str],
    typer.Option("--as", "-u", help="Email of the acting user. Defaults to the signed-in user."),
]


@dataclass
class CliState:
    config_path: Path
    mock: bool


@dataclass
class Services:
    """Everything a command needs, wired once per invocation."""
    config: AppConfig
    ledger: SlotLedger
    accounts: AccountService
    pricing: PricingService
    photo_log: PhotoLogService
    authenticator: Optional[BackendAuthenticator] = None


def build_services(config: AppConfig, mock: bool) -> Services:
    """
    Construct stores and services for one CLI invocation.

    With ``mock`` the in-memory backend persisted to the configured local
    state file is used; otherwise the hosted backend from the config.
    """
    authenticator = None

    if mock:
        backend = InMemoryBackend(state_file=config.local_state_file)
        slot_store = pricing_store = account_store = image_store = backend
    else:
        backend_config = config.require_backend()
        authenticator = BackendAuthenticator(
            api_key=backend_config.api_key,
            project_id=backend_config.project_id,
            timeout=backend_config.timeout_seconds,
        )
        firestore = FirestoreClient(
            project_id=backend_config.project_id,
            token_provider=authenticator.get_access_token,
            timeout=backend_config.timeout_seconds,
        )
        slot_store = pricing_store = account_store = firestore
        image_store = FirebaseStorageClient(
            bucket=backend_config.get_bucket(),
            token_provider=authenticator.get_access_token,
            timeout=backend_config.timeout_seconds,
        )

    accounts = AccountService(account_store, max_deposit=config.max_deposit)
    pricing = PricingService(pricing_store, config.pricing.to_pricing())
    ledger = SlotLedger(
        slot_store,
        accounts,
        pricing,
        image_store=image_store,
        timezone=config.timezone,
    )

    return Services(
        config=config,
        ledger=ledger,
        accounts=accounts,
        pricing=pricing,
        photo_log=PhotoLogService(image_store),
        authenticator=authenticator,
    )


@contextmanager
def _handle_errors() -> Iterator[None]:
    """Turn expected failures into a red message and exit code 1."""
    try:
        yield
    except (ParkLedgerError, FileNotFoundError, ValueError) as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)


def _services(ctx: typer.Context) -> Services:
    state: CliState = ctx.obj
    config = AppConfig.load_from_yaml(state.config_path)
    return build_services(config, state.mock)


async def _resolve_caller(services: Services, as_email: Optional[str]) -> UserProfile:
    if as_email:
        return await services.accounts.require_by_email(as_email)

    if services.authenticator is not None:
        current = services.authenticator.current_user()
        if current:
            return await services.accounts.get_profile(current["uid"])

    raise AuthenticationError("No acting user. Pass --as EMAIL or run 'parkledger sign-in'.")


def _normalize_vehicle_type(value: str) -> str:
    for vehicle_type in VEHICLE_TYPES:
        if vehicle_type.lower() == value.strip().lower():
            return vehicle_type
    raise ValueError(
        f"Unknown vehicle type '{value}'. Choose one of: {', '.join(VEHICLE_TYPES)}"
    )


@app.callback()
def main(
    ctx: typer.Context,
    config_file: Annotated[Optional[Path], typer.Option("--config", "-c", help="Path to config file. Defaults to ./config.yaml")] = None,
    mock: Annotated[bool, typer.Option("--mock", help="Use local data instead of the hosted backend.")] = False,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Show debug logging.")] = False,
):
    """
    Parking slot ledger.
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )
    ctx.obj = CliState(config_path=config_file or get_default_config_path(), mock=mock)


# ----------------------------------------------------------------------
# Slots
# ----------------------------------------------------------------------

@app.command()
def init(ctx: typer.Context):
    """
    Create the initial slot inventory if the store is empty.
    """
    with _handle_errors():
        services = _services(ctx)
        count = services.config.inventory.slot_count
        created = asyncio.run(services.ledger.initialize_inventory(count))

    if created:
        console.print(f"[green]✓ Initialized {created} parking slot(s).[/green]")
    else:
        console.print("[yellow]Parking slots already exist; nothing to do.[/yellow]")


@app.command()
def slots(ctx: typer.Context):
    """
    Show every slot with its vehicle and current fee.
    """
    async def _collect(services: Services):
        all_slots = await services.ledger.list_slots()
        calculator = await services.ledger.fee_calculator()
        return all_slots, calculator

    with _handle_errors():
        services = _services(ctx)
        all_slots, calculator = asyncio.run(_collect(services))

    if not all_slots:
        console.print("[yellow]No parking slots found. Run 'parkledger init' first.[/yellow]")
        return

    table = Table(title="Parking Slots", show_header=True, header_style="bold cyan")
    table.add_column("Slot", justify="right", style="bold")
    table.add_column("Status")
    table.add_column("Plate", style="bold yellow")
    table.add_column("Type")
    table.add_column("Entry")
    table.add_column("Duration")
    table.add_column("Current Fee", justify="right")

    for slot in all_slots:
        occupancy = slot.occupancy
        if occupancy is None:
            table.add_row(str(slot.slot_number), "[green]Available[/green]", "", "", "", "", "")
            continue
        entry = occupancy.entry_reference
        table.add_row(
            str(slot.slot_number),
            "[red]Occupied[/red]",
            occupancy.vehicle_plate,
            occupancy.vehicle_type,
            occupancy.entry_time,
            calculator.format_duration(entry),
            calculator.format_currency(calculator.compute_fee(entry)),
        )

    console.print()
    console.print(table)
    available = sum(1 for slot in all_slots if not slot.occupied)
    console.print(f"\n{available} of {len(all_slots)} slot(s) available.\n")


@app.command()
def available(ctx: typer.Context):
    """
    List the numbers of free slots.
    """
    with _handle_errors():
        services = _services(ctx)
        free_slots = asyncio.run(services.ledger.list_available())

    if not free_slots:
        console.print("[yellow]No available slots.[/yellow]")
        return

    numbers = ", ".join(str(slot.slot_number) for slot in free_slots)
    console.print(f"[green]Available slots:[/green] {numbers}")


@app.command()
def register(
    ctx: typer.Context,
    slot_number: Annotated[int, typer.Argument(help="Slot to park in")],
    plate: Annotated[str, typer.Argument(help="License plate")],
    vehicle_type: Annotated[str, typer.Option("--type", "-t", help=f"One of: {', '.join(VEHICLE_TYPES)}")],
    owner: Annotated[str, typer.Option("--owner", "-o", help="Email of the user who will pay")],
    entry_time: Annotated[Optional[str], typer.Option("--entry-time", help="Clock time like '9:30 AM'. Defaults to now.")] = None,
    photo: Annotated[Optional[Path], typer.Option("--photo", help="Photo of the license plate (JPEG)")] = None,
):
    """
    Register a vehicle into a free slot.

    Examples:

        parkledger register 2 XYZ999 --type Sedan --owner alice@example.com

        parkledger register 4 ABC123 -t SUV -o bob@example.com --photo plate.jpg
    """
    async def _register(services: Services):
        owner_profile = await services.accounts.require_by_email(owner)
        image = photo.read_bytes() if photo else None
        slot = await services.ledger.register_vehicle(
            slot_number=slot_number,
            plate=plate,
            vehicle_type=_normalize_vehicle_type(vehicle_type),
            owner_id=owner_profile.uid,
            entry_time=entry_time,
            image=image,
        )
        return owner_profile, slot

    with _handle_errors():
        if photo is not None and not photo.exists():
            raise FileNotFoundError(f"Photo not found: {photo}")
        services = _services(ctx)
        owner_profile, slot = asyncio.run(_register(services))

    console.print(
        f"[green]✓ Vehicle {slot.occupancy.vehicle_plate} registered in slot "
        f"{slot.slot_number} for {owner_profile.display_name} ({owner_profile.email}).[/green]"
    )
    if photo is not None and not slot.occupancy.image_url:
        console.print("[yellow]⚠ Photo upload failed; registered without image.[/yellow]")


@app.command()
def quote(
    ctx: typer.Context,
    slot_number: Annotated[int, typer.Argument(help="Occupied slot")],
):
    """
    Show the fee owed so far for an occupied slot.
    """
    async def _quote(services: Services):
        slot = await services.ledger.find_by_number(slot_number)
        _, duration, fee = await services.ledger.quote(slot.id)
        pricing = await services.pricing.get_pricing()
        return slot, duration, fee, pricing

    with _handle_errors():
        services = _services(ctx)
        slot, duration, fee, pricing = asyncio.run(_quote(services))

    console.print(Panel.fit(
        f"[bold]Plate:[/bold] {slot.occupancy.vehicle_plate}\n"
        f"[bold]Entry:[/bold] {slot.occupancy.entry_time}\n"
        f"[bold]Duration:[/bold] {duration}\n"
        f"[bold]Fee:[/bold] {format_currency(fee, pricing.currency)}",
        title=f"Slot {slot.slot_number}",
    ))


@app.command()
def pay(
    ctx: typer.Context,
    slot_number: Annotated[int, typer.Argument(help="Your occupied slot")],
    as_email: AsOption = None,
):
    """
    Pay the parking fee from your balance and free the slot.
    """
    async def _pay(services: Services):
        payer = await _resolve_caller(services, as_email)
        slot = await services.ledger.find_by_number(slot_number)
        settlement = await services.ledger.settle_and_release(slot.id, payer.uid)
        pricing = await services.pricing.get_pricing()
        return settlement, pricing

    with _handle_errors():
        services = _services(ctx)
        settlement, pricing = asyncio.run(_pay(services))

    console.print(Panel.fit(
        f"[bold green]✓ Payment successful![/bold green]\n\n"
        f"[bold]Duration:[/bold] {settlement.duration}\n"
        f"[bold]Charged:[/bold] {format_currency(settlement.fee, pricing.currency)}\n"
        f"[bold]Remaining balance:[/bold] {format_currency(settlement.new_balance, pricing.currency)}",
        title=f"Slot {settlement.slot.slot_number} released",
    ))


@app.command()
def release(
    ctx: typer.Context,
    slot_number: Annotated[int, typer.Argument(help="Slot to free")],
    as_email: AsOption = None,
):
    """
    Free a slot without payment (administrators only).
    """
    async def _release(services: Services):
        admin = await _resolve_caller(services, as_email)
        slot = await services.ledger.find_by_number(slot_number)
        return await services.ledger.force_release(slot.id, admin.uid)

    with _handle_errors():
        services = _services(ctx)
        slot = asyncio.run(_release(services))

    console.print(f"[green]✓ Slot {slot.slot_number} marked as available.[/green]")


@app.command()
def reset(
    ctx: typer.Context,
    as_email: AsOption = None,
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Do not ask for confirmation.")] = False,
):
    """
    Mark every slot as available (administrators only).
    """
    if not yes:
        typer.confirm("Reset ALL parking slots to available?", abort=True)

    async def _reset(services: Services):
        admin = await _resolve_caller(services, as_email)
        return await services.ledger.reset_all(admin.uid)

    with _handle_errors():
        services = _services(ctx)
        released = asyncio.run(_reset(services))

    console.print(f"[green]✓ All parking slots have been reset ({released} released).[/green]")


@app.command("add-slot")
def add_slot(
    ctx: typer.Context,
    slot_number: Annotated[int, typer.Argument(help="Number of the new slot")],
    as_email: AsOption = None,
):
    """
    Add a new parking slot (administrators only).
    """
    async def _add(services: Services):
        admin = await _resolve_caller(services, as_email)
        await services.accounts.require_admin(admin.uid)
        return await services.ledger.add_slot(slot_number)

    with _handle_errors():
        if slot_number <= 0:
            raise ValueError("Please enter a valid slot number")
        services = _services(ctx)
        slot = asyncio.run(_add(services))

    console.print(f"[green]✓ Parking slot {slot.slot_number} added.[/green]")


# ----------------------------------------------------------------------
# Balance
# ----------------------------------------------------------------------

@app.command()
def balance(ctx: typer.Context, as_email: AsOption = None):
    """
    Show your account balance.
    """
    async def _balance(services: Services):
        profile = await _resolve_caller(services, as_email)
        pricing = await services.pricing.get_pricing()
        return profile, pricing

    with _handle_errors():
        services = _services(ctx)
        profile, pricing = asyncio.run(_balance(services))

    console.print(
        f"[bold]{profile.display_name}[/bold] ({profile.email}): "
        f"{format_currency(profile.balance, pricing.currency)}"
    )


@app.command()
def deposit(
    ctx: typer.Context,
    amount: Annotated[str, typer.Argument(help="Amount to add")],
    as_email: AsOption = None,
):
    """
    Add funds to your balance.
    """
    async def _deposit(services: Services):
        profile = await _resolve_caller(services, as_email)
        new_balance = await services.accounts.deposit(profile.uid, amount)
        pricing = await services.pricing.get_pricing()
        return new_balance, pricing

    with _handle_errors():
        services = _services(ctx)
        new_balance, pricing = asyncio.run(_deposit(services))

    console.print(
        f"[green]✓ {format_currency(amount, pricing.currency)} added to your account. "
        f"New balance: {format_currency(new_balance, pricing.currency)}[/green]"
    )


# ----------------------------------------------------------------------
# Pricing
# ----------------------------------------------------------------------

@pricing_app.command("show")
def pricing_show(ctx: typer.Context):
    """
    Show the current tariff.
    """
    with _handle_errors():
        services = _services(ctx)
        pricing = asyncio.run(services.pricing.get_pricing())

    console.print(Panel.fit(
        f"[bold]Hourly rate:[/bold] {format_currency(pricing.hourly_rate, pricing.currency)}\n"
        f"[bold]Minimum charge:[/bold] {format_currency(pricing.minimum_charge, pricing.currency)}\n"
        f"[bold]Updated by:[/bold] {pricing.updated_by}",
        title="Pricing",
    ))


@pricing_app.command("set")
def pricing_set(
    ctx: typer.Context,
    hourly_rate: Annotated[str, typer.Option("--hourly-rate", help="Price per hour")],
    minimum_charge: Annotated[str, typer.Option("--minimum-charge", help="Minimum fee per session")],
    as_email: AsOption = None,
):
    """
    Change the tariff (administrators only).
    """
    async def _update(services: Services):
        admin = await _resolve_caller(services, as_email)
        await services.accounts.require_admin(admin.uid)
        return await services.pricing.update_pricing(hourly_rate, minimum_charge, admin.uid)

    with _handle_errors():
        services = _services(ctx)
        pricing = asyncio.run(_update(services))

    console.print(
        f"[green]✓ Pricing updated: {format_currency(pricing.hourly_rate, pricing.currency)}/h, "
        f"minimum {format_currency(pricing.minimum_charge, pricing.currency)}.[/green]"
    )


# ----------------------------------------------------------------------
# Photos
# ----------------------------------------------------------------------

@images_app.command("list")
def images_list(ctx: typer.Context):
    """
    List stored license-plate photos, newest first.
    """
    with _handle_errors():
        services = _services(ctx)
        images = asyncio.run(services.photo_log.list_images())

    if not images:
        console.print("[yellow]No photos stored.[/yellow]")
        return

    table = Table(title="Photo Log", show_header=True, header_style="bold cyan")
    table.add_column("Captured")
    table.add_column("Plate", style="bold yellow")
    table.add_column("Type")
    table.add_column("Slot", justify="right")
    table.add_column("Name", style="dim")

    for image in images:
        table.add_row(
            image.timestamp.format("YYYY-MM-DD HH:mm"),
            image.license_plate or "",
            image.vehicle_type or "",
            image.slot_number or "",
            image.name,
        )

    console.print()
    console.print(table)
    console.print()


@images_app.command("delete")
def images_delete(
    ctx: typer.Context,
    name: Annotated[str, typer.Argument(help="Photo name as shown by 'images list'")],
    as_email: AsOption = None,
):
    """
    Delete one stored photo (administrators only).
    """
    async def _delete(services: Services):
        admin = await _resolve_caller(services, as_email)
        await services.accounts.require_admin(admin.uid)
        await services.photo_log.delete_image(name)

    with _handle_errors():
        services = _services(ctx)
        asyncio.run(_delete(services))

    console.print("[green]✓ Image deleted successfully.[/green]")


@images_app.command("purge")
def images_purge(
    ctx: typer.Context,
    as_email: AsOption = None,
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Do not ask for confirmation.")] = False,
):
    """
    Delete ALL stored photos (administrators only).
    """
    if not yes:
        typer.confirm("Delete ALL stored photos?", abort=True)

    async def _purge(services: Services):
        admin = await _resolve_caller(services, as_email)
        await services.accounts.require_admin(admin.uid)
        return await services.photo_log.delete_all()

    with _handle_errors():
        services = _services(ctx)
        removed = asyncio.run(_purge(services))

    console.print(f"[green]✓ Deleted {removed} photo(s).[/green]")


# ----------------------------------------------------------------------
# Authentication
# ----------------------------------------------------------------------

def _require_authenticator(services: Services) -> BackendAuthenticator:
    if services.authenticator is None:
        raise AuthenticationError("Sign-in is not available in mock mode; use --as EMAIL instead.")
    return services.authenticator


@app.command("sign-in")
def sign_in(
    ctx: typer.Context,
    email: Annotated[str, typer.Argument(help="Account email")],
    password: Annotated[str, typer.Option(prompt=True, hide_input=True)],
):
    """
    Sign in to the hosted backend and cache the session.
    """
    async def _profile(services: Services, uid: str):
        return await services.accounts.get_profile(uid)

    with _handle_errors():
        services = _services(ctx)
        authenticator = _require_authenticator(services)
        session = authenticator.sign_in(email, password)
        profile = asyncio.run(_profile(services, session.uid))

    console.print(f"[green]✓ Signed in as {profile.display_name} ({profile.email}).[/green]")
    if authenticator.insecure_storage_warning:
        console.print(f"[yellow]⚠ {authenticator.insecure_storage_warning}[/yellow]")


@app.command("sign-up")
def sign_up(
    ctx: typer.Context,
    email: Annotated[str, typer.Argument(help="Account email")],
    name: Annotated[str, typer.Option("--name", "-n", help="Display name")],
    password: Annotated[str, typer.Option(prompt=True, hide_input=True, confirmation_prompt=True)],
):
    """
    Create an account with an empty balance.
    """
    with _handle_errors():
        if not name.strip():
            raise ValueError("Please enter your name")
        services = _services(ctx)
        authenticator = _require_authenticator(services)
        session = authenticator.sign_up(email, password, name.strip())
        profile = asyncio.run(
            services.accounts.create_profile(session.uid, session.email, name.strip())
        )

    console.print(f"[green]✓ Account created for {profile.display_name} ({profile.email}).[/green]")


@app.command("clear-cache")
def clear_cache(ctx: typer.Context):
    """
    Sign out by clearing the cached session.
    """
    with _handle_errors():
        services = _services(ctx)
        _require_authenticator(services).clear_cache()

    console.print("\n[green]✓ Session cache cleared.[/green]")
    console.print("You will need to sign in again on the next call.\n")


@app.command()
def whoami(ctx: typer.Context, as_email: AsOption = None):
    """
    Show the acting user.
    """
    with _handle_errors():
        services = _services(ctx)
        try:
            profile = asyncio.run(_resolve_caller(services, as_email))
        except AccountNotFoundError:
            raise AuthenticationError("Signed-in user has no profile. Run 'parkledger sign-up'.")

    role = "administrator" if profile.is_admin else "user"
    console.print(f"{profile.display_name} ({profile.email}), {role}")


@app.command()
def version():
    """
    Show version information.
    """
    from .. import __version__
    console.print(f"\n[bold cyan]parkledger[/bold cyan] version [bold]{__version__}[/bold]\n")


if __name__ == "__main__":
    app()
