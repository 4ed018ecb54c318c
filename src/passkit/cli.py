"""passctl - sign and verify pass bundles."""

from __future__ import annotations

import logging
import sys
import traceback
from pathlib import Path

import click

from passkit import __version__
from passkit.bundle import PassBundler
from passkit.config import ExpiryPolicy, PassConfig
from passkit.digest import DigestAlgorithm
from passkit.identity.keystore import KeystoreDirectory, load_certificates


def handle_error(error: Exception, debug: bool) -> None:
    """Handle errors with structured output.

    Args:
        error: The exception that occurred
        debug: Whether to show full traceback
    """
    if debug:
        traceback.print_exc()
    else:
        click.echo(f"Error: {error}", err=True)
    sys.exit(1)


def load_config(config_path: Path | None) -> PassConfig:
    """Config file if given, otherwise environment variables."""
    if config_path is not None:
        return PassConfig.from_yaml(config_path)
    return PassConfig.from_env()


@click.group()
@click.version_option(version=__version__, prog_name="passctl")
@click.option('--config', '-c', type=click.Path(exists=True, dir_okay=False, path_type=Path),
              help='YAML configuration file (default: PASSKIT_* environment variables)')
@click.option('--debug', is_flag=True, help='Enable debug mode (debug logging, full tracebacks)')
@click.pass_context
def cli(ctx: click.Context, config: Path | None, debug: bool):
    """passctl - Build, sign and verify tamper-evident passes."""
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    ctx.ensure_object(dict)
    ctx.obj['config_path'] = config
    ctx.obj['debug'] = debug


@cli.command()
@click.option('--source', '-s', required=True, type=click.Path(exists=True, path_type=Path),
              help='Pass source directory or archive')
@click.option('--identity', '-i', 'hint', required=True, help='Signing identity common-name suffix')
@click.option('--out', '-o', required=True, type=click.Path(path_type=Path), help='Output path')
@click.option('--zip/--no-zip', 'as_archive', default=True, help='Write a .pkpass archive or a directory')
@click.option('--keystore', '-k', required=True,
              type=click.Path(exists=True, file_okay=False, path_type=Path),
              help='Keystore directory with PKCS#12 identities')
@click.option('--password', envvar='PASSKIT_KEYSTORE_PASSWORD', default=None,
              help='PKCS#12 password (env: PASSKIT_KEYSTORE_PASSWORD)')
@click.option('--digest', type=click.Choice(['sha256', 'sha1']), default=None,
              help='Manifest digest algorithm (sha1 only for legacy passes)')
@click.option('--force', is_flag=True, help='Replace an existing output')
@click.pass_context
def sign(
    ctx: click.Context,
    source: Path,
    hint: str,
    out: Path,
    as_archive: bool,
    keystore: Path,
    password: str | None,
    digest: str | None,
    force: bool,
):
    """Sign a pass directory or archive.

    Examples:
      passctl sign -s ./Event.pass -i "Pass Type ID: pass.com.example" -k ./keys -o event.pkpass
      passctl sign -s ./Event.pass -i example -k ./keys -o ./signed --no-zip
    """
    debug = ctx.obj.get('debug', False)

    try:
        config = load_config(ctx.obj.get('config_path'))
        if digest:
            config = config.with_overrides(digest_algorithm=DigestAlgorithm.parse(digest))

        store = KeystoreDirectory(
            keystore,
            password=password.encode("utf-8") if password else None,
            limits=config.limits,
        )
        bundler = PassBundler(identity_store=store, config=config)
        output = bundler.sign(source, hint, out, as_archive=as_archive, force=force)
        click.echo(f"Signed pass written to {output}")
    except Exception as e:
        handle_error(e, debug)


@cli.command()
@click.option('--bundle', '-b', required=True, type=click.Path(exists=True, path_type=Path),
              help='Signed pass directory or archive')
@click.option('--keystore', '-k', type=click.Path(exists=True, file_okay=False, path_type=Path),
              help='Keystore directory whose roots/ are trusted')
@click.option('--trust-root', '-r', 'trust_roots', multiple=True,
              type=click.Path(exists=True, dir_okay=False, path_type=Path),
              help='Trusted root certificate (PEM or DER); repeatable')
@click.option('--expiry-policy', type=click.Choice(['warn', 'fail']), default=None,
              help='Treat a certificate expired at verify time as a warning or a failure')
@click.option('--out', '-o', type=click.Path(path_type=Path), help='Output directory for verification reports')
@click.pass_context
def verify(
    ctx: click.Context,
    bundle: Path,
    keystore: Path | None,
    trust_roots: tuple[Path, ...],
    expiry_policy: str | None,
    out: Path | None,
):
    """Verify a signed pass.

    Examples:
      passctl verify -b event.pkpass -r ./AppleRootCA.cer
      passctl verify -b ./signed -k ./keys --expiry-policy fail --out ./report
    """
    debug = ctx.obj.get('debug', False)

    try:
        config = load_config(ctx.obj.get('config_path'))
        if expiry_policy:
            config = config.with_overrides(expiry_policy=ExpiryPolicy(expiry_policy))

        roots = []
        for path in trust_roots:
            roots.extend(load_certificates(path))
        if keystore:
            roots.extend(KeystoreDirectory(keystore, limits=config.limits).trusted_roots())
        if not roots:
            raise click.UsageError("Provide --trust-root or --keystore with a roots/ directory")

        bundler = PassBundler(trusted_roots=roots, config=config)

        if out:
            result, paths = bundler.verify_and_report(bundle, out)
            click.echo("Verification reports written to:")
            click.echo(f"  - JSON: {paths['json']}")
            click.echo(f"  - MD:   {paths['markdown']}")
        else:
            result = bundler.verify(bundle)
    except click.UsageError:
        raise
    except Exception as e:
        handle_error(e, debug)
        return

    for warning in result.warnings:
        click.echo(f"Warning: {warning}", err=True)

    if not result.valid:
        click.echo(f"INVALID: {result.reason.value}: {result.message}", err=True)
        sys.exit(1)

    click.echo(f"VALID: signed by '{result.signer}' ({result.files_checked} files)")


if __name__ == "__main__":
    cli()
