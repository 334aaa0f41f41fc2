"""
openbid CLI - Command Line Interface for the English auction engine

Main entry point for all CLI commands. Auction state lives in an SQLite
database under --data-dir, so each command picks up where the last one
left off.
"""

import json
import time
from pathlib import Path
from typing import Optional

import click

from openbid.core.errors import AuctionError
from openbid.utils.logger import setup_logging, get_logger

logger = get_logger("cli")


class KeyType(click.ParamType):
    """0x-prefixed 32-byte secp256k1 private key."""

    name = "key"

    def convert(self, value, param, ctx):
        from openbid.crypto import SECP256K1_ORDER, hex_to_bytes

        if isinstance(value, bytes):
            return value
        try:
            key = hex_to_bytes(value)
        except ValueError:
            self.fail("private key must be hex", param, ctx)
        if len(key) != 32 or not 0 < int.from_bytes(key, "big") < SECP256K1_ORDER:
            self.fail("private key must be 32 bytes in the secp256k1 range", param, ctx)
        return key


KEY = KeyType()


def caller_options(f):
    """--key and --nonce for commands that act on behalf of a caller."""
    f = click.option(
        "--nonce", default=None, type=int,
        help="Call nonce, accepted once per caller (default: current time in ns)",
    )(f)
    f = click.option(
        "--key", required=True, type=KEY, envvar="OPENBID_KEY",
        help="Caller private key (0x...), or set OPENBID_KEY",
    )(f)
    return f


def _authenticate(auction_id: str, storage, action: str, params: dict, key: bytes, nonce: Optional[int]) -> bytes:
    """Sign the call with the caller's key and resolve it to an address."""
    from openbid.core.identity import IdentityService, sign_call

    if nonce is None:
        nonce = time.time_ns()
    call = sign_call(auction_id, action, params, key, nonce=nonce)
    try:
        return IdentityService(auction_id, storage_manager=storage).authenticate(call)
    except AuctionError as e:
        _fail(e)


def _time_source(now: Optional[int]):
    from openbid.core.timesource import ManualTimeSource, SystemTimeSource

    return ManualTimeSource(now) if now is not None else SystemTimeSource()


def _open_auction(ctx, now: Optional[int] = None):
    """Load the selected auction from the data directory."""
    from openbid.core.auction import EnglishAuction
    from openbid.core.payments import EscrowPaymentService
    from openbid.core.storage import StorageManager

    storage = StorageManager(data_dir=ctx.obj["data_dir"])
    auction_id = ctx.obj["auction_id"]
    payments = EscrowPaymentService(storage_manager=storage, escrow_id=auction_id)

    try:
        return EnglishAuction.resume(
            storage,
            payments,
            auction_id=auction_id,
            config=ctx.obj["config"],
            time_source=_time_source(now),
        )
    except KeyError:
        raise click.ClickException(
            f"No auction '{auction_id}' in {ctx.obj['data_dir']}. Create one with: openbid create --key 0x..."
        )


def _fail(error: Exception):
    logger.debug(f"Command failed: {error!r}")
    click.echo(f"❌ {type(error).__name__}: {error}")
    raise SystemExit(1)


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.option("--log-file", is_flag=True, help="Also write logs to <log_dir>/openbid.log")
@click.option("--data-dir", default="~/.openbid", help="Data directory")
@click.option("--config", "config_path", default=None, help="JSON config file")
@click.option("--auction", "auction_id", default="default", help="Auction identifier")
@click.version_option(version="0.1.0")
@click.pass_context
def cli(ctx, debug, log_file, data_dir, config_path, auction_id):
    """openbid - English auction engine"""
    import logging
    from openbid.core.config import load_config

    try:
        config = load_config(config_path)
    except ValueError as e:
        raise click.ClickException(str(e))

    level = logging.DEBUG if debug else logging.WARNING
    setup_logging(level=level, log_dir=str(config.log_dir), log_to_file=log_file)

    ctx.ensure_object(dict)
    ctx.obj["config"] = config
    ctx.obj["auction_id"] = auction_id
    ctx.obj["data_dir"] = Path(data_dir).expanduser()
    ctx.obj["data_dir"].mkdir(parents=True, exist_ok=True)


# =============================================================================
# Lifecycle Commands
# =============================================================================


@cli.command("create")
@caller_options
@click.option("--start", default=None, type=int, help="Start time (unix seconds, default now)")
@click.pass_context
def create(ctx, key, nonce, start):
    """Open a new auction owned by the --key holder"""
    from openbid.core.auction import EnglishAuction
    from openbid.core.payments import EscrowPaymentService
    from openbid.core.storage import StorageManager
    from openbid.crypto import bytes_to_hex

    storage = StorageManager(data_dir=ctx.obj["data_dir"])
    auction_id = ctx.obj["auction_id"]

    if storage.has_auction(auction_id):
        raise click.ClickException(f"Auction '{auction_id}' already exists")

    owner = _authenticate(auction_id, storage, "create", {"start": start}, key, nonce)
    auction = EnglishAuction(
        owner=owner,
        payments=EscrowPaymentService(storage_manager=storage, escrow_id=auction_id),
        config=ctx.obj["config"],
        time_source=_time_source(start),
        auction_id=auction_id,
        storage_manager=storage,
    )

    click.echo(f"✓ Auction created: {auction_id}")
    click.echo(f"  Owner: {bytes_to_hex(owner)}")
    click.echo(f"  Start: {auction.start_time}")
    click.echo(f"  Deadline: {auction.deadline}")


@cli.command("bid")
@click.argument("amount", type=int)
@caller_options
@click.option("--now", default=None, type=int, help="Override current time")
@click.pass_context
def bid(ctx, amount, key, nonce, now):
    """Place a bid as the --key holder"""
    auction = _open_auction(ctx, now)
    bidder = _authenticate(auction.auction_id, auction.storage_manager, "place_bid", {"amount": amount}, key, nonce)
    try:
        event = auction.place_bid(bidder, amount)
    except (AuctionError, ValueError) as e:
        _fail(e)

    click.echo(f"✅ {event.name}: {amount} from 0x{bidder.hex()}")
    click.echo(f"   Deadline: {auction.deadline}")
    click.echo(f"   Next minimum bid: {auction.minimum_next_bid()}")


@cli.command("refund")
@caller_options
@click.option("--now", default=None, type=int, help="Override current time")
@click.pass_context
def refund(ctx, key, nonce, now):
    """Reclaim the --key holder's superseded bids while the auction is running"""
    auction = _open_auction(ctx, now)
    bidder = _authenticate(auction.auction_id, auction.storage_manager, "partial_refund", {}, key, nonce)
    try:
        event = auction.partial_refund(bidder)
    except AuctionError as e:
        _fail(e)

    click.echo(f"✅ {event.name}: {event.amount} to 0x{bidder.hex()}")


@cli.command("finalize")
@caller_options
@click.option("--now", default=None, type=int, help="Override current time")
@click.pass_context
def finalize(ctx, key, nonce, now):
    """Settle the auction and refund losing bidders (owner only)"""
    auction = _open_auction(ctx, now)
    caller = _authenticate(auction.auction_id, auction.storage_manager, "finalize", {}, key, nonce)
    try:
        report = auction.finalize(caller)
    except AuctionError as e:
        _fail(e)

    winner = f"0x{report.winner.hex()}" if report.winner else "nobody"
    click.echo(f"✅ AuctionEnded: winner={winner}, amount={report.winning_amount}")
    for bidder, amount in report.payouts:
        click.echo(f"   refunded {amount} to 0x{bidder.hex()}")
    for bidder, amount in report.failed:
        click.echo(f"   ⚠️  refund of {amount} to 0x{bidder.hex()} failed")


@cli.command("sweep")
@caller_options
@click.pass_context
def sweep(ctx, key, nonce):
    """Move the whole escrow balance to the owner (owner only)"""
    auction = _open_auction(ctx)
    caller = _authenticate(auction.auction_id, auction.storage_manager, "emergency_withdraw", {}, key, nonce)
    try:
        event = auction.emergency_withdraw(caller)
    except AuctionError as e:
        _fail(e)

    click.echo(f"✅ {event.name}: {event.amount} to 0x{event.owner.hex()}")


# =============================================================================
# Inspection Commands
# =============================================================================


@cli.command("status")
@click.option("--now", default=None, type=int, help="Override current time")
@click.pass_context
def status(ctx, now):
    """Show auction state"""
    auction = _open_auction(ctx, now)
    stats = auction.stats()

    click.echo(f"Auction {stats['auction_id']}")
    click.echo("-" * 40)
    for key, value in stats.items():
        if key == "auction_id":
            continue
        click.echo(f"  {key}: {value}")


@cli.command("bids")
@click.pass_context
def bids(ctx):
    """List every accepted bid"""
    auction = _open_auction(ctx)
    all_bids = auction.list_bids()
    if not all_bids:
        click.echo("No bids yet.")
        return

    for i, b in enumerate(all_bids):
        click.echo(f"  {i + 1}. {b.amount} from 0x{b.bidder.hex()}")


@cli.command("events")
@click.option("--verify", is_flag=True, help="Recompute the audit chain")
@click.pass_context
def events(ctx, verify):
    """Show the audit feed"""
    auction = _open_auction(ctx)
    for record in auction.feed.records:
        payload = json.dumps(record.event.payload(), sort_keys=True)
        click.echo(f"  #{record.sequence} {record.event.name} {payload} {record.digest.hex()[:16]}...")

    if verify:
        if auction.feed.verify_chain():
            click.echo("✓ Audit chain intact")
        else:
            click.echo("❌ Audit chain broken")
            raise SystemExit(1)


@cli.command("keygen")
def keygen():
    """Generate a keypair and print its address"""
    from openbid.crypto import generate_keypair, bytes_to_hex

    kp = generate_keypair()
    click.echo(f"  Address: {bytes_to_hex(kp.address)}")
    click.echo(f"  Private key: {bytes_to_hex(kp.private_key)}")


# =============================================================================
# Demo Command
# =============================================================================


@cli.command("demo")
def demo():
    """Run an end-to-end auction in memory"""
    from openbid.core.auction import EnglishAuction
    from openbid.core.identity import IdentityService, sign_call
    from openbid.core.payments import EscrowPaymentService
    from openbid.core.timesource import ManualTimeSource
    from openbid.crypto import generate_keypair, bytes_to_hex

    click.echo("=" * 60)
    click.echo("  OPENBID - ENGLISH AUCTION DEMO")
    click.echo("=" * 60)
    click.echo()

    owner_kp = generate_keypair()
    alice = generate_keypair().address
    bob = generate_keypair().address

    clock = ManualTimeSource(0)
    escrow = EscrowPaymentService()
    auction = EnglishAuction(owner=owner_kp.address, payments=escrow, time_source=clock, auction_id="demo")
    identity = IdentityService("demo")

    click.echo(f"📦 Auction open until t={auction.deadline}")

    clock.set(1)
    auction.place_bid(alice, 100)
    click.echo("  ✓ t=1      Alice bids 100")

    clock.set(2)
    auction.place_bid(bob, 106)
    click.echo("  ✓ t=2      Bob bids 106")

    clock.set(3)
    try:
        auction.partial_refund(alice)
    except AuctionError as e:
        click.echo(f"  ✗ t=3      Alice partial refund: {type(e).__name__}")

    clock.set(604795)
    auction.place_bid(bob, 1000)
    click.echo(f"  ✓ t=604795 Bob bids 1000, deadline extended to {auction.deadline}")

    call = sign_call("demo", "finalize", {}, owner_kp.private_key, nonce=1)
    caller = identity.authenticate(call)

    clock.set(605395)
    try:
        auction.finalize(caller)
    except AuctionError as e:
        click.echo(f"  ✗ t=605395 Finalize: {type(e).__name__}")

    clock.set(auction.deadline)
    report = auction.finalize(caller)
    click.echo(f"  ✓ t={auction.deadline} Finalized, winner={bytes_to_hex(report.winner)[:12]}... amount={report.winning_amount}")
    for bidder, amount in report.payouts:
        click.echo(f"      refund {amount} -> {bytes_to_hex(bidder)[:12]}...")

    try:
        auction.finalize(caller)
    except AuctionError as e:
        click.echo(f"  ✗ Second finalize: {type(e).__name__}")

    click.echo()
    click.echo(f"📊 Escrow balance: {escrow.balance()}")
    click.echo(f"📜 Audit chain: {len(auction.feed)} events, intact={auction.feed.verify_chain()}")
    click.echo()
    click.echo("✅ Demo complete!")


if __name__ == "__main__":
    cli()
