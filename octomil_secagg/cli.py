"""
octomil-secagg command-line interface.

Usage::

    octomil-secagg simulate --clients 5 --threshold 3 --drop 2 --drop 4
    octomil-secagg inspect shares.bin --total-clients 5
    octomil-secagg inspect unmask.bin --kind unmask
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Optional

import click

from . import __version__, field
from .errors import DecodingError, InsufficientSharesError
from .masking import unmask_update
from .models import SecAggConfiguration
from .recovery import recover_dropped_masks
from .serialization import (
    WORD_BYTES,
    deserialize_share_bundles,
    deserialize_unmasking_shares,
    field_elements_to_bytes,
)
from .session import SecAggSession


@click.group()
@click.version_option(version=__version__, prog_name="octomil-secagg")
@click.option("--verbose", "-v", is_flag=True, help="Log protocol steps to stderr.")
def main(verbose: bool) -> None:
    """Octomil secure aggregation: inspect payloads and simulate rounds."""
    if verbose:
        logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")


# ---------------------------------------------------------------------------
# simulate
# ---------------------------------------------------------------------------


def _random_update(size: int) -> bytes:
    """Random update bytes whose full words are valid field elements."""
    words = -(-size // WORD_BYTES)
    return field_elements_to_bytes([field.random_element() for _ in range(words)])[:size]


@main.command("simulate")
@click.option("--clients", "-n", default=5, show_default=True, help="Participants in the round.")
@click.option("--threshold", "-t", default=3, show_default=True, help="Shamir threshold.")
@click.option(
    "--drop",
    "dropped",
    multiple=True,
    type=int,
    help="Index of a client that vanishes after uploading (repeatable).",
)
@click.option("--size", default=64, show_default=True, help="Update size in bytes.")
def simulate(clients: int, threshold: int, dropped: tuple[int, ...], size: int) -> None:
    """Run an in-process round and verify dropout recovery.

    Example:

        octomil-secagg simulate --clients 5 --threshold 3 --drop 2
    """
    try:
        config = SecAggConfiguration(threshold=threshold, total_clients=clients)
    except ValueError as exc:
        raise click.BadParameter(str(exc)) from exc
    drop = sorted(set(dropped))
    bad = [i for i in drop if not 1 <= i <= clients]
    if bad:
        raise click.BadParameter(f"--drop indices must be in [1, {clients}]: {bad}")
    if size < 0:
        raise click.BadParameter("--size must be >= 0")

    sessions: Dict[int, SecAggSession] = {i: SecAggSession() for i in range(1, clients + 1)}
    try:
        for idx, session in sessions.items():
            session.begin_session("simulated", idx, config)
        payloads = {idx: s.generate_key_shares() for idx, s in sessions.items()}
        click.echo(
            f"Share keys: {clients} client(s), {len(payloads[1])} byte payload each"
        )

        # The server relays every payload to every other participant.
        for receiver, session in sessions.items():
            for sender, payload in payloads.items():
                if sender != receiver:
                    session.receive_peer_shares(sender, payload)

        updates = {idx: _random_update(size) for idx in sessions}
        masked = {idx: s.mask_model_update(updates[idx]) for idx, s in sessions.items()}
        click.echo(f"Masked input: {size} byte update per client")

        survivors = [idx for idx in sessions if idx not in drop]
        unmask_payloads = [sessions[idx].provide_unmasking_shares(drop) for idx in survivors]
        click.echo(f"Unmasking: {len(survivors)} survivor(s), dropped {drop or 'none'}")

        try:
            masks = recover_dropped_masks(
                unmask_payloads, threshold, size, total_clients=clients
            )
        except InsufficientSharesError as exc:
            raise click.ClickException(f"Recovery failed: {exc}") from exc

        failures = 0
        for idx in drop:
            mask = masks.get(idx)
            if mask is None:
                raise click.ClickException(
                    f"Recovery failed: no unmasking shares for client {idx}"
                )
            ok = unmask_update(masked[idx], mask) == updates[idx]
            failures += 0 if ok else 1
            click.echo(f"  client {idx}: mask {'recovered' if ok else 'MISMATCH'}")
    finally:
        for session in sessions.values():
            session.reset()

    if failures:
        raise click.ClickException(f"{failures} dropped mask(s) did not match")
    click.echo("Round completed")


# ---------------------------------------------------------------------------
# inspect
# ---------------------------------------------------------------------------


@main.command("inspect")
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option(
    "--kind",
    type=click.Choice(["shares", "unmask"]),
    default="shares",
    show_default=True,
    help="Payload type.",
)
@click.option("--total-clients", type=int, default=None, help="Reject indices above this.")
def inspect_payload(path: Path, kind: str, total_clients: Optional[int]) -> None:
    """Decode a share-bundle or unmasking payload and summarise it.

    Example:

        octomil-secagg inspect shares.bin --total-clients 5
    """
    data = path.read_bytes()
    try:
        if kind == "shares":
            bundles = deserialize_share_bundles(data, total_clients=total_clients)
            click.echo(f"{len(bundles)} bundle(s)")
            for share in bundles:
                click.echo(f"  index {share.index}: {len(share.values)} value(s)")
        else:
            sender, entries = deserialize_unmasking_shares(data, total_clients=total_clients)
            click.echo(f"Unmasking shares from client {sender}: {len(entries)} dropped owner(s)")
            for owner, share in sorted(entries.items()):
                click.echo(f"  owner {owner}: {len(share.values)} value(s)")
    except DecodingError as exc:
        raise click.ClickException(f"Cannot decode {path}: {exc}") from exc


if __name__ == "__main__":
    main()
