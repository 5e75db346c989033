"""CLI entry point for quickedit."""

import asyncio
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.syntax import Syntax

from quickedit.config.loader import load_config as load_config_file
from quickedit.document.tree import OutlineTree
from quickedit.editing.context_resolver import SelectionSource
from quickedit.models.config import Config
from quickedit.models.diff import generate_unified_diff
from quickedit.models.history import HistoryEntry
from quickedit.models.session import EditSession, SessionState
from quickedit.orchestration.events import EditEvent
from quickedit.orchestration.orchestrator import EditOrchestrator
from quickedit.services.exceptions import InvalidUnitIdError, StoreError
from quickedit.services.instruction_history import InstructionHistory
from quickedit.services.kv_store import JsonFileStore
from quickedit.services.llm_client import LLMClient
from quickedit.services.siyuan_client import SiyuanClient
from quickedit.utils.ids import validate_unit_id
from quickedit.utils.logging import configure_logging, get_logger


logger = get_logger(__name__)
console = Console()

STATE_PATH = Path.home() / ".cache" / "quickedit" / "state.json"
LAST_EDIT_KEY = "last_edit"


def load_config(config_path: Optional[Path] = None) -> Config:
    """
    Load configuration, turning failures into click errors.

    Raises:
        click.ClickException: If config is missing, has invalid permissions, or validation fails
    """
    try:
        config = load_config_file(config_path)
        logger.info("config_loaded", path=str(config_path) if config_path else "default")
        return config
    except FileNotFoundError as e:
        logger.error("config_not_found", path=str(config_path))
        raise click.ClickException(str(e))
    except PermissionError as e:
        logger.error("config_permission_error", path=str(config_path))
        raise click.ClickException(str(e))
    except Exception as e:
        logger.error("config_validation_error", error=str(e))
        raise click.ClickException(f"Configuration validation failed:\n{e}")


async def load_document_tree(store: SiyuanClient, unit_ids: list[str]) -> OutlineTree:
    """Build an outline of the document holding the first selected unit."""
    first = await store.get_unit(unit_ids[0])
    if first is None:
        raise click.ClickException(f"Block not found: {unit_ids[0]}")
    root_id = first.root_id or first.id
    units = await store.list_units(root_id)
    logger.info("document_loaded", root_id=root_id, unit_count=len(units))
    return OutlineTree.from_units(units, root_id=root_id)


def show_review(session: EditSession) -> None:
    """Print the reviewed response as a unified diff."""
    diff_text = generate_unified_diff(session.original_text, session.accumulated_text)
    console.print()
    if diff_text:
        console.print(Syntax(diff_text, "diff", theme="ansi_dark", word_wrap=True))
    else:
        console.print("[dim]No changes.[/dim]")


@click.group()
@click.version_option(version="0.1.0", prog_name="quickedit")
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Path to configuration file (default: ~/.config/quickedit/config.yaml)",
)
@click.pass_context
def cli(ctx: click.Context, config_path: Optional[Path]):
    """quickedit: AI inline edits for SiYuan documents."""
    configure_logging()
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path


@cli.command()
@click.option("--block", "blocks", multiple=True, required=True, help="Block ID to edit (repeat for several)")
@click.option("--insert", "insert_below", is_flag=True, help="Insert the result below instead of replacing")
@click.argument("instruction", required=False)
@click.pass_context
def edit(ctx: click.Context, blocks: tuple[str, ...], insert_below: bool, instruction: Optional[str]):
    """
    Rewrite one or more blocks with an instruction.

    Examples:
        quickedit edit --block 20251028234500-abc1234 "Make it formal"
        quickedit edit --block ID1 --block ID2 "Summarize"
    """
    config = load_config(ctx.obj["config_path"])
    state = JsonFileStore(STATE_PATH)
    instructions = InstructionHistory(state)

    if not instruction:
        previous = instructions.entries[-1].text if len(instructions) else None
        instruction = click.prompt("Instruction", default=previous)

    try:
        unit_ids = [validate_unit_id(block) for block in blocks]
    except InvalidUnitIdError as e:
        raise click.ClickException(str(e))

    instructions.add(instruction)
    instructions.last_action_mode = "insert" if insert_below else "replace"

    logger.info("edit_command_started", blocks=unit_ids, insert=insert_below)
    entry = asyncio.run(run_edit(config, unit_ids, instruction, insert_below))
    if entry is not None:
        state.set(LAST_EDIT_KEY, entry.model_dump(mode="json"))
    logger.info("edit_command_completed", applied=entry is not None)


async def run_edit(
    config: Config,
    unit_ids: list[str],
    instruction: str,
    insert_below: bool,
) -> Optional[HistoryEntry]:
    """Drive one session to a decision; returns the history entry if it was applied."""
    store = SiyuanClient(config.siyuan)
    try:
        tree = await load_document_tree(store, unit_ids)
    except StoreError as e:
        raise click.ClickException(str(e))

    orchestrator = EditOrchestrator(store, LLMClient(config.llm), tree=tree, config=config.edit)

    def on_chunk(event: EditEvent) -> None:
        console.print(event.data["rendered"], end="", markup=False, highlight=False)

    orchestrator.subscribe(on_chunk, events=["streaming_chunk"])

    source = SelectionSource(selected_nodes=[n for n in (tree.node(i) for i in unit_ids) if n is not None])
    session_id = await orchestrator.trigger_edit(
        source, instruction, action_mode="insert" if insert_below else "replace"
    )
    if session_id is None:
        raise click.ClickException("Nothing to edit: the selected blocks have no text")

    try:
        while True:
            session = await orchestrator.wait_for_review(session_id)
            if session.state == SessionState.ERROR:
                console.print(f"\n[red]Error:[/red] {session.error}")
                if not click.confirm("Retry?", default=False):
                    await orchestrator.reject(session_id)
                    return None
                await orchestrator.retry(session_id)
                continue
            if session.state != SessionState.REVIEWING:
                console.print(f"\n[yellow]Edit ended: {session.state.value}[/yellow]")
                return None

            show_review(session)
            choice = click.prompt(
                "[a]ccept, [i]nsert below, [r]etry, [d]iscard",
                type=click.Choice(["a", "i", "r", "d"]),
                default="i" if insert_below else "a",
            )
            if choice == "r":
                await orchestrator.retry(session_id)
                continue
            if choice == "d":
                await orchestrator.reject(session_id)
                console.print("Discarded.")
                return None

            if choice == "a":
                session = await orchestrator.accept(session_id)
            else:
                session = await orchestrator.insert(session_id)

            if session.state == SessionState.ERROR:
                console.print(f"[red]Error:[/red] {session.error}")
                return None
            if session.partial_failure:
                console.print(f"[yellow]Warning:[/yellow] {session.partial_failure}")
            console.print("[green]Applied.[/green]")
            return orchestrator.history.last()
    finally:
        await orchestrator.shutdown()


@cli.command()
@click.pass_context
def undo(ctx: click.Context):
    """Undo the most recent edit made with `quickedit edit`."""
    config = load_config(ctx.obj["config_path"])
    state = JsonFileStore(STATE_PATH)
    data = state.get(LAST_EDIT_KEY)
    if not data:
        click.echo("Nothing to undo.")
        return

    entry = HistoryEntry.model_validate(data)

    async def run_undo():
        orchestrator = EditOrchestrator(SiyuanClient(config.siyuan), LLMClient(config.llm), config=config.edit)
        orchestrator.history.add(entry)
        try:
            return await orchestrator.undo_last()
        finally:
            await orchestrator.shutdown()

    result = asyncio.run(run_undo())
    if not result.undone:
        logger.error("undo_command_failed", entry_id=entry.id, error=result.error)
        raise click.ClickException(f"Undo failed: {result.error}")

    state.delete(LAST_EDIT_KEY)
    if result.error:
        console.print(f"[yellow]Warning:[/yellow] {result.error}")
    console.print(f"[green]Restored[/green] {result.restored_unit_id or entry.unit_id}")


@cli.command("check-config")
@click.pass_context
def check_config(ctx: click.Context):
    """Validate the configuration and check the SiYuan kernel."""
    config = load_config(ctx.obj["config_path"])
    console.print(f"LLM endpoint: {config.llm.endpoint} (model {config.llm.model})")
    console.print(f"SiYuan endpoint: {config.siyuan.endpoint}")

    async def check():
        store = SiyuanClient(config.siyuan)
        version = await store.capabilities.detect_version()
        return version, await store.supports_batch_insert()

    version, batch = asyncio.run(check())
    if version is None:
        console.print("[red]SiYuan kernel unreachable[/red]")
        raise click.exceptions.Exit(1)
    console.print(f"SiYuan version: {version} (batch insert: {'yes' if batch else 'no'})")


def main():
    cli(obj={})


if __name__ == "__main__":
    main()
