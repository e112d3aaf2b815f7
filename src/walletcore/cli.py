"""
walletcore CLI - Generate mnemonics, derive descriptors and addresses, inspect PSBTs.
"""

from __future__ import annotations

import sys
from pathlib import Path

import typer
from loguru import logger

from walletcore.errors import WalletError
from walletcore.keys.descriptor import Descriptor
from walletcore.keys.descriptor_key import DescriptorSecretKey, parse_descriptor_key
from walletcore.keys.mnemonic import Mnemonic
from walletcore.models import KeychainKind, NetworkType
from walletcore.psbt import Psbt

app = typer.Typer(
    name="walletcore",
    help="Descriptor wallet tooling",
    add_completion=False,
)

BIP_TEMPLATES = {
    "bip44": Descriptor.new_bip44,
    "bip49": Descriptor.new_bip49,
    "bip84": Descriptor.new_bip84,
}


def setup_logging(level: str = "INFO") -> None:
    """Configure loguru logging."""
    logger.remove()
    logger.add(
        sys.stderr,
        level=level.upper(),
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | {message}",
    )


def load_mnemonic(mnemonic: str | None, mnemonic_file: Path | None) -> Mnemonic:
    """Read a mnemonic from the option, or from a file when one is given."""
    if mnemonic_file:
        if not mnemonic_file.exists():
            logger.error(f"Mnemonic file not found: {mnemonic_file}")
            raise typer.Exit(1)
        mnemonic = mnemonic_file.read_text().strip()

    if not mnemonic:
        logger.error("Mnemonic required. Use --mnemonic, --mnemonic-file, or MNEMONIC env var")
        raise typer.Exit(1)
    return Mnemonic.from_string(mnemonic)


def load_psbt(value: str) -> Psbt:
    """Accept base64 text or a path to a file holding it."""
    path = Path(value)
    if len(value) < 256 and path.exists():
        value = path.read_text().strip()
    return Psbt.from_base64(value)


def _network(name: str) -> NetworkType:
    try:
        return NetworkType(name.lower())
    except ValueError:
        logger.error(f"Unknown network '{name}'")
        raise typer.Exit(1)


@app.command()
def generate(
    word_count: int = typer.Option(24, "--words", "-w", help="Number of words (12-24)"),
) -> None:
    """Generate a new BIP39 mnemonic phrase."""
    setup_logging()
    try:
        mnemonic = Mnemonic.generate(word_count)
    except WalletError as e:
        logger.error(e.message)
        raise typer.Exit(1)

    typer.echo("\n" + "=" * 80)
    typer.echo("GENERATED MNEMONIC - WRITE THIS DOWN AND KEEP IT SAFE!")
    typer.echo("=" * 80)
    typer.echo(f"\n{mnemonic.as_string()}\n")
    typer.echo("=" * 80 + "\n")


@app.command()
def descriptor(
    mnemonic: str = typer.Option(None, "--mnemonic", envvar="MNEMONIC", help="BIP39 mnemonic"),
    mnemonic_file: Path | None = typer.Option(
        None, "--mnemonic-file", "-f", help="Path to mnemonic file"
    ),
    password: str = typer.Option("", "--password", envvar="MNEMONIC_PASSWORD"),
    template: str = typer.Option("bip84", "--template", "-t", help="bip44 | bip49 | bip84"),
    network: str = typer.Option("mainnet", "--network", "-n", help="Bitcoin network"),
    change: bool = typer.Option(False, "--change", help="Internal (change) keychain"),
    private: bool = typer.Option(False, "--private", help="Include secret keys"),
    log_level: str = typer.Option("INFO", "--log-level", "-l"),
) -> None:
    """Print a BIP44/49/84 account descriptor for a mnemonic."""
    setup_logging(log_level)
    net = _network(network)
    constructor = BIP_TEMPLATES.get(template.lower())
    if constructor is None:
        logger.error(f"Unknown template '{template}'")
        raise typer.Exit(1)

    try:
        secret = DescriptorSecretKey.generate(net, load_mnemonic(mnemonic, mnemonic_file), password)
        keychain = KeychainKind.INTERNAL if change else KeychainKind.EXTERNAL
        desc = constructor(secret, keychain, net)
    except WalletError as e:
        logger.error(e.message)
        raise typer.Exit(1)

    typer.echo(desc.as_string_private() if private else desc.as_string())


@app.command()
def derive(
    key: str = typer.Argument(..., help="Key expression, e.g. [fp/84'/0'/0']xpub.../0/*"),
    path: str = typer.Argument(..., help="Path to derive, e.g. m/0/5"),
) -> None:
    """Derive a child of a descriptor key expression."""
    setup_logging()
    try:
        derived = parse_descriptor_key(key).derive(path)
    except WalletError as e:
        logger.error(e.message)
        raise typer.Exit(1)
    typer.echo(derived.as_string())


@app.command()
def addresses(
    descriptor_text: str = typer.Argument(..., metavar="DESCRIPTOR"),
    network: str = typer.Option("mainnet", "--network", "-n", help="Bitcoin network"),
    start: int = typer.Option(0, "--start", "-s", min=0),
    count: int = typer.Option(5, "--count", "-c", min=1),
) -> None:
    """List addresses of a descriptor."""
    setup_logging()
    try:
        desc = Descriptor.parse(descriptor_text, _network(network))
        if not desc.is_ranged:
            typer.echo(f"0  {desc.address(0)}")
            return
        for index in range(start, start + count):
            typer.echo(f"{index}  {desc.address(index)}")
    except WalletError as e:
        logger.error(e.message)
        raise typer.Exit(1)


@app.command("psbt-info")
def psbt_info(
    psbt: str = typer.Argument(..., help="Base64 PSBT or file containing it"),
) -> None:
    """Dump a PSBT as JSON."""
    setup_logging()
    try:
        typer.echo(load_psbt(psbt).json_serialize())
    except WalletError as e:
        logger.error(e.message)
        raise typer.Exit(1)


@app.command()
def combine(
    psbts: list[str] = typer.Argument(..., help="Two or more base64 PSBTs or files"),
) -> None:
    """Combine PSBTs for the same transaction."""
    setup_logging()
    if len(psbts) < 2:
        logger.error("Need at least two PSBTs to combine")
        raise typer.Exit(1)
    try:
        combined = load_psbt(psbts[0])
        for other in psbts[1:]:
            combined = combined.combine(load_psbt(other))
    except WalletError as e:
        logger.error(e.message)
        raise typer.Exit(1)
    typer.echo(combined.to_base64())


@app.command()
def extract(
    psbt: str = typer.Argument(..., help="Base64 PSBT or file containing it"),
) -> None:
    """Print the raw transaction hex of a fully signed PSBT."""
    setup_logging()
    try:
        tx = load_psbt(psbt).extract_tx()
    except WalletError as e:
        logger.error(e.message)
        raise typer.Exit(1)
    typer.echo(tx.serialize().hex())


def main() -> None:
    app()


if __name__ == "__main__":
    main()
