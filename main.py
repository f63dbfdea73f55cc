#!/usr/bin/env python3
"""
Meshtastic Contact NFC Writer - Main Entry Point
Encode the active node as a contact URL and write it to an NFC tag
"""

import functools
import logging
import os
import sys
import threading
import time

import click
import pyperclip

from contact_token import DecodeError, decode, describe_user, encode
from nfc_config import DEFAULT_CONFIG_PATH, ConfigError, load_config, record_from_config
from nfc_driver import MockReaderSession, NFCError
from nfc_session import FailureReason, TagWriteSession, build_uri_message
from pcsc_driver import PcscReaderSession

VERSION = "1.0.0"

log = logging.getLogger("nfc_contact")


def log_message(message):
    """Print timestamped message"""
    timestamp = time.strftime("%H:%M:%S")
    click.echo(f"[{timestamp}] {message}")


def setup_logging(debug):
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if debug:
        os.makedirs("debug", exist_ok=True)
        handler = logging.FileHandler(os.path.join("debug", "nfc_write.log"), encoding="utf-8")
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
        logging.getLogger().addHandler(handler)


def _load_record(config_path):
    try:
        config = load_config(config_path)
        return config, record_from_config(config)
    except ConfigError as e:
        click.echo(f"❌ {e}", err=True)
        sys.exit(1)


@click.group(invoke_without_command=True)
@click.option('--version', is_flag=True, help='Show version information')
@click.option('--debug', is_flag=True, help='Enable debug logging - also saved to debug/nfc_write.log')
@click.option('--config', 'config_path', default=DEFAULT_CONFIG_PATH, show_default=True,
              type=click.Path(dir_okay=False), help='JSON config with the active node')
@click.pass_context
def cli(ctx, version, debug, config_path):
    """
    Meshtastic Contact NFC Writer

    Writes the configured node as a https://meshtastic.org/v/# contact URL to
    an NTAG213/215/216 tag using an ACS ACR1252 (or any PC/SC) reader.
    """
    if version:
        click.echo(f"Meshtastic Contact NFC Writer v{VERSION}")
        ctx.exit()

    setup_logging(debug)
    ctx.obj = {"config_path": config_path, "debug": debug}

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


@cli.command("encode")
@click.option('--copy', is_flag=True, help='Copy the contact URL to the clipboard')
@click.pass_obj
def encode_command(obj, copy):
    """Print the contact URL for the configured node."""
    _, record = _load_record(obj["config_path"])
    token = encode(record)
    click.echo(token)

    if copy:
        try:
            pyperclip.copy(token)
            click.echo("📋 URL copied to clipboard", err=True)
        except pyperclip.PyperclipException as e:
            click.echo(f"❌ Error copying to clipboard: {e}", err=True)


@cli.command("decode")
@click.argument('token')
def decode_command(token):
    """Show the contact carried by TOKEN."""
    try:
        record = decode(token)
    except DecodeError as e:
        click.echo(f"❌ {type(e).__name__}: {e}", err=True)
        sys.exit(1)

    click.echo(f"Node number: {record.device_id}")
    click.echo(f"Verified: {record.verified}")
    user = describe_user(record.identity)
    if user:
        click.echo(f"Node ID: {user['id']}")
        click.echo(f"Long name: {user['long_name']}")
        click.echo(f"Short name: {user['short_name']}")
    else:
        click.echo(f"Identity: {record.identity.hex() or '(empty)'}")


@cli.command("write")
@click.option('--mock', is_flag=True, help='Use a simulated tag instead of a reader')
@click.option('--timeout', type=int, default=None, help='Seconds to wait for a tag (default from config)')
@click.pass_obj
def write_command(obj, mock, timeout):
    """Write the configured node's contact URL to an NFC tag."""
    config, record = _load_record(obj["config_path"])
    token = encode(record)

    user = describe_user(record.identity)
    if user:
        log_message(f"Node Name: {user['long_name'] or 'Unknown'}")
    else:
        log.warning("No active node configured; writing a contact without identity")
        log_message("⚠️  No active node configured")
    log_message(f"URL to write: {token}")

    if obj["debug"]:
        try:
            log.debug("NDEF message (hex): %s", build_uri_message(token).hex())
        except ValueError as e:
            log.debug("Token is not a valid URI record: %s", e)

    if mock:
        session_factory = MockReaderSession
    else:
        session_factory = functools.partial(PcscReaderSession, preferred_reader=config["reader"])

    done = threading.Event()
    session = TagWriteSession(
        session_factory,
        logger=log,
        status_callback=log_message,
        on_complete=lambda outcome: done.set(),
        repoll_delay=config["repoll_delay"],
    )

    try:
        session.scan(token)
    except NFCError as e:
        click.echo(f"❌ {e}", err=True)
        sys.exit(1)

    wait = timeout if timeout is not None else config["timeout"]
    if not done.wait(timeout=wait):
        # cancel() waits for a write already in progress; that write's outcome wins
        session.cancel()
        if session.outcome is None or session.outcome.reason is FailureReason.CANCELLED:
            log_message("TIMEOUT: No tag written within timeout window")
            sys.exit(2)

    outcome = session.outcome
    if outcome.success:
        return
    click.echo(f"❌ {outcome.message} ({outcome.reason.value})", err=True)
    sys.exit(1)


def main():
    """Main entry point"""
    cli(obj={})


if __name__ == "__main__":
    main()
