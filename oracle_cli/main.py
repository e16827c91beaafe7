"""
oraclekit command line.

Output is JSON on stdout; errors go to stderr with exit code 1.
"""
import json
import logging
from pathlib import Path
from typing import Any, List, Optional

import typer

from oraclekit import OracleKit, __version__
from oraclekit.compiler import compile_program
from oraclekit.exceptions import ExecutionError, OracleKitError

app = typer.Typer(help="Publish off-chain data to contracts through threshold-signed programs.")


def _echo_json(value: Any) -> None:
    typer.echo(json.dumps(value, indent=2, default=str))


def _fail(message: str, logs: Optional[str] = None) -> None:
    typer.echo(f"Error: {message}", err=True)
    if logs:
        typer.echo(logs, err=True)
    raise typer.Exit(code=1)


def _read_snippet(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except OSError as e:
        _fail(f"Can't read {path}: {e}")


def _kit() -> OracleKit:
    return OracleKit.from_env()


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@app.command()
def version():
    """Print the installed version."""
    typer.echo(__version__)


@app.command("compile")
def compile_command(
    snippet_file: Path = typer.Argument(..., help="File holding the data-fetch snippet"),
    abi: Optional[str] = typer.Option(None, "--abi", help="Target function signature or JSON ABI"),
    show_text: bool = typer.Option(False, "--text", help="Include the program text"),
):
    """Compile a snippet and print its content address."""
    snippet = _read_snippet(snippet_file)
    try:
        program = compile_program(snippet, abi)
    except OracleKitError as e:
        _fail(str(e))
    output = {"contentAddress": program.content_address}
    if show_text:
        output["text"] = program.text
    _echo_json(output)


@app.command("test-source")
def test_source(
    snippet_file: Path = typer.Argument(..., help="File holding the data-fetch snippet"),
):
    """Run a snippet on the network and print the values it returns."""
    snippet = _read_snippet(snippet_file)
    try:
        with _kit() as kit:
            values = kit.test_data_source(snippet)
    except ExecutionError as e:
        _fail(str(e), e.logs)
    except OracleKitError as e:
        _fail(str(e))
    _echo_json(values)


@app.command()
def write(
    snippet_file: Path = typer.Argument(..., help="File holding the data-fetch snippet"),
    abi: str = typer.Option(..., "--abi", help="Target function signature or JSON ABI"),
    to: str = typer.Option(..., "--to", help="Target contract address"),
    chain: str = typer.Option(..., "--chain", help="Chain name"),
):
    """Fetch data on the network and write it to a contract."""
    snippet = _read_snippet(snippet_file)
    try:
        with _kit() as kit:
            result = kit.write_to_chain(snippet, abi, to, chain)
    except ExecutionError as e:
        _fail(str(e), e.logs)
    except OracleKitError as e:
        _fail(str(e))
    _echo_json(result.model_dump(by_alias=True))


@app.command()
def read(
    abi: str = typer.Option(..., "--abi", help="Function signature or JSON ABI"),
    contract: str = typer.Option(..., "--contract", help="Contract address"),
    chain: str = typer.Option(..., "--chain", help="Chain name"),
    arg: List[str] = typer.Option([], "--arg", help="Call argument, repeatable"),
):
    """Call a read-only contract function."""
    try:
        value = _kit().read_from_chain(abi, contract, chain, arg)
    except OracleKitError as e:
        _fail(str(e))
    if isinstance(value, (bytes, bytearray)):
        value = "0x" + bytes(value).hex()
    _echo_json(value)


@app.command()
def bindings():
    """List key bindings in the local store."""
    try:
        kit = _kit()
        listed = [b.model_dump(by_alias=True) for b in kit.store.list_bindings()]
    except OracleKitError as e:
        _fail(str(e))
    _echo_json(listed)


if __name__ == "__main__":
    app()
