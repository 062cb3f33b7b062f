"""
ctcore CLI - Command line access to the confidential transfer core.

Main entry point for all CLI commands.
"""

import json
import logging

import click

from ctcore.utils.logger import setup_logging


def _shim(ctx):
    """Acceleration shim built from the loaded config, closed with the context."""
    from ctcore.core.acceleration import AccelerationShim

    if "shim" not in ctx.obj:
        shim = AccelerationShim(config=ctx.obj["config"])
        ctx.call_on_close(shim.close)
        ctx.obj["shim"] = shim
    return ctx.obj["shim"]


def _parse_hex(value: str, name: str, size: int) -> bytes:
    from ctcore.crypto import hex_to_bytes
    from ctcore.utils.validation import validate_hex_string

    valid, err = validate_hex_string(value, name, size)
    if not valid:
        raise click.BadParameter(err, param_hint=name)
    return hex_to_bytes(value)


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.option("--env-file", default=None, type=click.Path(dir_okay=False), help="Load CTCORE_* settings from this file")
@click.version_option(version="0.1.0")
@click.pass_context
def cli(ctx, debug, env_file):
    """Confidential transfer core - encrypted balances and their proofs"""
    from ctcore.core.config import load_config

    ctx.ensure_object(dict)
    config = load_config(env_file=env_file)
    level = logging.DEBUG if debug else getattr(logging, config.log_level)
    setup_logging(level=level, log_dir=config.log_dir)
    ctx.obj["config"] = config


# =============================================================================
# Key Commands
# =============================================================================


@cli.command()
@click.option("--seed", default=None, help="Derive the keypair deterministically from this text")
@click.option("--show-secret", is_flag=True, help="Include the secret key in the output")
@click.pass_context
def keygen(ctx, seed, show_secret):
    """Generate an ElGamal keypair"""
    shim = _shim(ctx)
    kp = shim.generate_keypair(seed.encode() if seed is not None else None)
    click.echo(json.dumps(kp.to_dict(include_secret=show_secret), indent=2))
    if show_secret:
        click.echo("⚠️  The secret key decrypts every balance under this public key", err=True)


# =============================================================================
# Encryption Commands
# =============================================================================


@cli.command()
@click.argument("amount", type=int)
@click.option("--pubkey", required=True, help="Recipient public key (hex)")
@click.pass_context
def encrypt(ctx, amount, pubkey):
    """Encrypt AMOUNT under a public key"""
    from ctcore.core.errors import AmountOutOfRange

    shim = _shim(ctx)
    public_key = _parse_hex(pubkey, "pubkey", 32)
    valid, err = shim.validate_public_key(public_key)
    if not valid:
        raise click.BadParameter(err, param_hint="pubkey")
    try:
        ct = shim.encrypt(amount, public_key)
    except AmountOutOfRange as e:
        raise click.BadParameter(str(e), param_hint="amount")
    click.echo(json.dumps({"ciphertext": ct.to_bytes().hex(), **ct.to_dict()}, indent=2))


@cli.command()
@click.option("--ciphertext", required=True, help="64-byte ciphertext (hex)")
@click.option("--secret", required=True, help="Secret key (hex)")
@click.pass_context
def decrypt(ctx, ciphertext, secret):
    """Decrypt a ciphertext with a secret key"""
    from ctcore.crypto import bytes_to_scalar
    from ctcore.core.types import DECRYPTION_AMBIGUOUS, Ciphertext

    shim = _shim(ctx)
    ct = Ciphertext.from_bytes(_parse_hex(ciphertext, "ciphertext", 64))
    try:
        secret_key = bytes_to_scalar(_parse_hex(secret, "secret", 32))
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="secret")

    amount = shim.decrypt(ct, secret_key)
    if amount is DECRYPTION_AMBIGUOUS:
        click.echo("✗ Could not decrypt (wrong key, malformed ciphertext, or amount beyond search bound)")
        ctx.exit(1)
    click.echo(amount)


# =============================================================================
# Acceleration Commands
# =============================================================================


@cli.command()
@click.pass_context
def probe(ctx):
    """Report whether the accelerated backend is usable"""
    from ctcore.core.acceleration import ACCELERATED_OPERATIONS

    shim = _shim(ctx)
    cap = shim.capability
    if cap.available:
        click.echo(f"✓ Accelerated backend available: {cap.backend}")
    else:
        click.echo(f"✗ Accelerated backend unavailable: {cap.reason}")
    click.echo(f"  Mode: {shim.mode.value}")
    for op in sorted(ACCELERATED_OPERATIONS):
        click.echo(f"  {op}: {shim.choose_path(op).value}")


@cli.command()
@click.option("--backend", type=click.Choice(["reference", "sodium"]), default=None,
              help="Only this backend (default: every available one)")
@click.option("--iterations", default=3, show_default=True, help="Timed iterations per benchmark")
def bench(backend, iterations):
    """Benchmark encryption and proofs per backend"""
    from ctcore.utils.benchmark import run_all_benchmarks

    try:
        run_all_benchmarks(backend=backend, iterations=iterations)
    except ValueError as e:
        raise click.ClickException(str(e))


def main():
    cli(obj={})


if __name__ == "__main__":
    main()
