"""Command line entry point: compile, inspect and analyze Formulas."""

from __future__ import annotations

import asyncio
import json
import logging
import os
import sys
from typing import Optional

import click
import yaml

from .analysis.analyzer import analyze_formula
from .analysis.contract_factory import NullContractFactory
from .analysis.rpc import RpcContractFactory
from .analysis.serialization import analysis_to_json
from .config import AnalyzerConfig
from .encoding import normalize_address, to_hex
from .errors import SpecError
from .formula import Formula

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
    stream=sys.stderr,
)
logger = logging.getLogger(__name__)


class PlainDumper(yaml.SafeDumper):
    pass


def _str_representer(dumper: yaml.SafeDumper, data: str) -> yaml.ScalarNode:
    return dumper.represent_scalar("tag:yaml.org,2002:str", data, style=None)


PlainDumper.add_representer(str, _str_representer)


def dump_yaml(data: dict) -> str:
    return yaml.dump(data, Dumper=PlainDumper, sort_keys=False, width=4096)


def load_formula(source: str) -> Formula:
    """Formula from a YAML/JSON file, a file holding compiled hex, or compiled hex itself."""
    if os.path.isfile(source):
        with open(source) as f:
            text = f.read().strip()
        # YAML would read bare 0x... as an integer
        if text.startswith(("0x", "0X")):
            return Formula.decompile(text)
        return Formula.from_json(yaml.safe_load(text))
    return Formula.decompile(source)


@click.group()
@click.option("--verbose", is_flag=True, help="Enable debug logging")
def main(verbose: bool) -> None:
    """Crypto Formulas tools."""
    if verbose or AnalyzerConfig.from_env().verbose:
        logging.getLogger().setLevel(logging.DEBUG)


@main.command("compile")
@click.argument("source")
def compile_command(source: str) -> None:
    """Print the compiled hex of a YAML/JSON formula."""
    try:
        click.echo(load_formula(source).compile_hex())
    except SpecError as e:
        raise click.ClickException(str(e))


@main.command("decompile")
@click.argument("source")
def decompile_command(source: str) -> None:
    """Print a compiled formula as YAML."""
    try:
        click.echo(dump_yaml(load_formula(source).to_json()), nl=False)
    except SpecError as e:
        raise click.ClickException(str(e))


@main.command("hash")
@click.argument("source")
def hash_command(source: str) -> None:
    """Print the message hash and the digest each signing endpoint signs."""
    try:
        formula = load_formula(source)
    except SpecError as e:
        raise click.ClickException(str(e))

    click.echo(f"messageHash: {to_hex(formula.message_hash)}")
    for index in range(formula.signed_endpoint_count):
        signed = "signed" if formula.is_signed(index) else "unsigned"
        click.echo(f"endpoint {index}: {to_hex(formula.get_message_to_sign(index))} ({signed})")


@main.command("analyze")
@click.argument("source")
@click.option("--rpc", "rpc_url", default=None, help="Ethereum JSON-RPC URL (static analysis when omitted)")
@click.option("--contract", "contract_address", default=None, help="Settlement contract address")
@click.option("--timeout", default=None, type=float, help="RPC request timeout in seconds")
@click.option("--stop-on-executed", is_flag=True, help="Stop early when the formula was already executed")
def analyze_command(
    source: str,
    rpc_url: Optional[str],
    contract_address: Optional[str],
    timeout: Optional[float],
    stop_on_executed: bool,
) -> None:
    """Analyze a formula and print the report as JSON."""

    # Load config from environment, then override with CLI args
    config = AnalyzerConfig.from_env()
    if rpc_url:
        config.rpc_url = rpc_url
    if contract_address:
        config.contract_address = contract_address
    if timeout is not None:
        config.rpc_timeout = timeout

    try:
        formula = load_formula(source)
        settlement = normalize_address(config.contract_address) if config.contract_address else bytes(20)
    except SpecError as e:
        raise click.ClickException(str(e))

    if config.rpc_url and not config.contract_address:
        raise click.UsageError("--contract is required together with --rpc")

    async def run() -> dict:
        if not config.rpc_url:
            logger.info("No RPC URL configured, running static analysis only")
            analysis = await analyze_formula(formula, settlement, NullContractFactory(), stop_on_executed)
            return analysis_to_json(analysis)

        async with RpcContractFactory(config.rpc_url, config.rpc_timeout) as factory:
            analysis = await analyze_formula(formula, settlement, factory, stop_on_executed)
            return analysis_to_json(analysis)

    report = asyncio.run(run())
    click.echo(json.dumps(report, indent=2))
    sys.exit(0 if report["totals"]["errors"] == 0 else 1)


if __name__ == "__main__":
    main()
