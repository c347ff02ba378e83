"""
WarStack CLI

Command-line interface for a persisted WarStack session. Each invocation
restores the session from its SQLite file, applies one operation, and saves
the snapshot back.

Usage:
    warstack init --db session.db --seed 42
    warstack mode WAR
    warstack command analyze --args '{"query": "supply lines"}'
    warstack log --event-type INTENT_CAPTURE --description "Operator intent"
    warstack ledger --json
    warstack verify
    warstack report
    warstack serve --port 8080 --metrics-port 9090
"""

import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Optional

import typer
from pydantic import ValidationError
from typing_extensions import Annotated

from warstack.health_server import initialize_health_server, run_health_server
from warstack.kernel.config import WarStackConfig
from warstack.kernel.errors import WarStackError
from warstack.kernel.events import WarStackMode
from warstack.kernel.logging import configure_logging, get_logger
from warstack.kernel.metrics import start_metrics_server
from warstack.kernel.storage import SQLiteKeyValueStore
from warstack.records import LedgerEventType, LedgerSeverity
from warstack.warstack import WarStack

# Logs go to stderr so stdout stays clean for JSON output
configure_logging(json_output=False, log_level="WARNING", stream=sys.stderr)

logger = get_logger(__name__)

app = typer.Typer(
    name="warstack",
    help="WarStack - Deterministic orchestration kernel with a hash-chained ledger",
    add_completion=False,
)

DEFAULT_DB = Path(".warstack.db")
CONFIG_KEY = "warstack.config"

DbOption = Annotated[Optional[Path], typer.Option("--db", help="Session database path")]


def _open_store(db_path: Optional[Path]) -> tuple[Path, SQLiteKeyValueStore]:
    db = db_path or DEFAULT_DB
    if not db.exists():
        typer.echo(f"Error: Session not found: {db}", err=True)
        typer.echo(f"Run 'warstack init --db {db}' to initialize", err=True)
        raise typer.Exit(1)
    return db, SQLiteKeyValueStore(db)


def get_stack(db_path: Optional[Path] = None) -> WarStack:
    """Restore the session stored in db_path"""
    db, store = _open_store(db_path)
    raw_config = store.get(CONFIG_KEY)
    config = (
        WarStackConfig.model_validate_json(raw_config) if raw_config else WarStackConfig()
    )
    stack = WarStack(config, storage=store)
    try:
        stack.restore()
    except WarStackError as e:
        typer.echo(f"Error: Could not restore session {db}: {e}", err=True)
        raise typer.Exit(1)
    return stack


def save(stack: WarStack) -> None:
    asyncio.run(stack.force_save())


def _echo_json(data: Any) -> None:
    typer.echo(json.dumps(data, indent=2, default=str))


# Initialization command


@app.command()
def init(
    db: Annotated[Path, typer.Option(help="Session database path")] = DEFAULT_DB,
    seed: Annotated[Optional[int], typer.Option(help="Kernel seed (uint32)")] = None,
    mode: Annotated[Optional[WarStackMode], typer.Option(help="Initial mode")] = None,
    digest: Annotated[
        Optional[str], typer.Option(help="Ledger digest: sha256 or checksum32")
    ] = None,
    config_file: Annotated[
        Optional[Path], typer.Option("--config", help="JSON configuration file")
    ] = None,
) -> None:
    """Initialize a new WarStack session"""
    if db.exists():
        typer.echo(f"Error: Session already exists: {db}", err=True)
        raise typer.Exit(1)

    try:
        config = WarStackConfig.from_file(config_file) if config_file else WarStackConfig()
        overrides: dict[str, Any] = {}
        if seed is not None:
            overrides["determinism"] = {**config.determinism.model_dump(), "seed": seed}
        if mode is not None:
            overrides["initial_mode"] = mode
        if digest is not None:
            overrides["digest"] = digest
        config = WarStackConfig.model_validate({**config.model_dump(), **overrides})
    except (ValidationError, OSError, ValueError) as e:
        typer.echo(f"Error: Invalid configuration: {e}", err=True)
        raise typer.Exit(1)

    store = SQLiteKeyValueStore(db)
    store.set(CONFIG_KEY, config.model_dump_json())
    stack = WarStack(config, storage=store)
    save(stack)

    state = stack.get_state()
    typer.echo(f"✓ Initialized WarStack session: {db}")
    typer.echo(f"  Seed: {config.determinism.seed}")
    typer.echo(f"  Mode: {state.mode.value}")
    typer.echo(f"  Digest: {config.digest}")


@app.command()
def status(
    db: DbOption = None,
    json_output: Annotated[bool, typer.Option("--json", help="Output as JSON")] = False,
) -> None:
    """Show kernel status"""
    stack = get_stack(db)
    data = stack.get_system_status()

    if json_output:
        _echo_json(data)
        return

    kernel = data["kernel"]
    chain = "VERIFIED" if data["ledger"]["verified"] else "BROKEN"
    typer.echo(f"\nWarStack v{data['version']}")
    typer.echo(f"  Mode: {kernel['mode']}")
    typer.echo(f"  Cognitive Load: {kernel['cognitiveLoad']}")
    typer.echo(f"  Seed: {kernel['rngSeed']}")
    typer.echo(f"  Commands: {kernel['commandCount']}")
    typer.echo(f"  Ledger: {data['ledger']['entries']} entries ({chain})")
    typer.echo(f"  AI Retries: {data['retryCount']}")
    typer.echo(f"  Last Saved: {data['lastSaved'] or 'never'}")


@app.command()
def log(
    event_type: Annotated[LedgerEventType, typer.Option("--event-type", help="Ledger event type")],
    description: Annotated[str, typer.Option("--description", help="What happened")],
    severity: Annotated[
        LedgerSeverity, typer.Option("--severity", help="Severity")
    ] = LedgerSeverity.INFO,
    correlation_id: Annotated[
        Optional[str], typer.Option("--correlation-id", help="Correlation id")
    ] = None,
    metadata: Annotated[
        Optional[str], typer.Option("--metadata", help="Metadata (JSON object)")
    ] = None,
    db: DbOption = None,
) -> None:
    """Record an informational event"""
    try:
        meta = json.loads(metadata) if metadata else None
    except json.JSONDecodeError as e:
        typer.echo(f"Error: --metadata is not valid JSON: {e}", err=True)
        raise typer.Exit(1)

    stack = get_stack(db)
    record = stack.log(
        event_type, severity, description, correlation_id=correlation_id, metadata=meta
    )
    if record is None:
        typer.echo("Error: Event rejected by kernel", err=True)
        raise typer.Exit(1)
    save(stack)
    typer.echo(f"✓ Logged {record.event_type} [{record.severity}]: {record.id}")


@app.command()
def mode(
    new_mode: Annotated[str, typer.Argument(metavar="MODE", help="Target mode")],
    db: DbOption = None,
) -> None:
    """Switch the kernel mode"""
    stack = get_stack(db)
    record = stack.switch_mode(new_mode.upper())
    if record is None:
        valid = ", ".join(m.value for m in WarStackMode)
        typer.echo(f"Error: Invalid mode '{new_mode}' (expected one of: {valid})", err=True)
        raise typer.Exit(1)
    save(stack)
    state = stack.get_state()
    typer.echo(f"✓ Mode switched to {state.mode.value}")
    typer.echo(f"  Cognitive Load: {state.cognitive_load}")


@app.command()
def command(
    name: Annotated[str, typer.Argument(help="Command name")],
    args: Annotated[Optional[str], typer.Option("--args", help="Arguments (JSON object)")] = None,
    db: DbOption = None,
) -> None:
    """Execute a kernel command"""
    try:
        parsed_args = json.loads(args) if args else {}
    except json.JSONDecodeError as e:
        typer.echo(f"Error: --args is not valid JSON: {e}", err=True)
        raise typer.Exit(1)

    stack = get_stack(db)
    result = stack.execute_command(name, parsed_args)
    if not result["accepted"]:
        typer.echo(f"Error: Command '{name}' rejected by kernel", err=True)
        raise typer.Exit(1)
    save(stack)
    typer.echo(f"✓ {result['result']}")
    typer.echo(f"  Entry: {result['entryId']}")
    typer.echo(f"  Seed: {result['seed']}")


@app.command()
def ledger(
    db: DbOption = None,
    json_output: Annotated[bool, typer.Option("--json", help="Output as JSON")] = False,
    limit: Annotated[
        Optional[int], typer.Option("--limit", help="Show only the last N records")
    ] = None,
) -> None:
    """List ledger records"""
    stack = get_stack(db)
    records = stack.ledger_records()
    if limit is not None:
        records = records[-limit:] if limit > 0 else []

    if json_output:
        _echo_json([r.to_dict() for r in records])
        return

    if not records:
        typer.echo("No ledger records")
        return

    typer.echo(f"\nLedger ({len(records)} records):")
    for record in records:
        typer.echo(
            f"  {record.timestamp_iso}  {record.severity:<8} {record.event_type:<18} "
            f"{record.description}"
        )
        typer.echo(f"    {record.id}  hash={record.hash[:16]}…")


@app.command()
def verify(db: DbOption = None) -> None:
    """Verify the ledger hash chain"""
    stack = get_stack(db)
    if not stack.verify():
        breach = stack.kernel.ledger.find_breach()
        typer.echo(f"✗ Ledger chain BROKEN at entry {breach}", err=True)
        raise typer.Exit(1)
    typer.echo(f"✓ Ledger chain verified ({len(stack.kernel.ledger)} entries)")


@app.command()
def reset(
    seed: Annotated[Optional[int], typer.Option(help="New seed (default: 42)")] = None,
    db: DbOption = None,
    yes: Annotated[bool, typer.Option("--yes", help="Skip confirmation")] = False,
) -> None:
    """Discard the ledger and start a fresh chain"""
    if not yes:
        typer.confirm("This discards the entire ledger. Continue?", abort=True)
    stack = get_stack(db)
    try:
        stack.reset(seed)
    except ValueError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)
    save(stack)
    typer.echo(f"✓ Kernel reset (seed: {stack.get_state().seed})")


@app.command()
def report(
    db: DbOption = None,
    json_output: Annotated[bool, typer.Option("--json", help="Output as JSON")] = False,
) -> None:
    """Generate a session report"""
    stack = get_stack(db)
    result = stack.generate_report()
    save(stack)

    if json_output:
        _echo_json(result)
        return
    typer.echo(result["report"])


@app.command()
def serve(
    db: DbOption = None,
    host: Annotated[str, typer.Option(help="Health server interface")] = "0.0.0.0",
    port: Annotated[int, typer.Option(help="Health server port")] = 8080,
    metrics_port: Annotated[
        Optional[int], typer.Option("--metrics-port", help="Expose Prometheus metrics on this port")
    ] = None,
    json_logs: Annotated[bool, typer.Option("--json-logs", help="JSON log output")] = False,
    log_level: Annotated[str, typer.Option("--log-level", help="Logging level")] = "INFO",
) -> None:
    """Serve health probes (and optionally metrics) for a session"""
    configure_logging(json_output=json_logs, log_level=log_level, stream=sys.stderr)
    stack = get_stack(db)

    if metrics_port is not None:
        start_metrics_server(port=metrics_port)
        logger.info(
            "Metrics server started",
            endpoint=f"http://{host}:{metrics_port}/metrics",
        )

    initialize_health_server(stack)
    run_health_server(host=host, port=port)


def main() -> None:
    """Main entry point"""
    app()


if __name__ == "__main__":
    main()
