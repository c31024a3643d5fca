"""Entry point for Pirido.

This module allows running Pirido as a module:
    python -m pirido list

Or as an installed command:
    pirido add "Plan the trip" --generate
"""

import argparse
import asyncio
import sys
from pathlib import Path
from typing import List, Optional

from pirido.config import Config
from pirido.database import DatabaseManager
from pirido.logging_config import get_logger, setup_logging
from pirido.models import MODEL_PRESETS, AppState
from pirido.services import state_engine
from pirido.services.ai_service import AIService, AIServiceError, MissingApiKeyError
from pirido.services.state_store import StateStore
from pirido.services.todo_app import TodoApp

# Initialize logger for this module
logger = get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    """Build the command-line parser."""
    parser = argparse.ArgumentParser(
        prog="pirido",
        description="Personal todo list with AI sub-task generation and ranking"
    )
    parser.add_argument('--config', help='Path to config.ini (default: ~/.pirido/config.ini)')
    parser.add_argument('--verbose', action='store_true', help='Echo log output to stderr')

    commands = parser.add_subparsers(dest='command', required=True)

    commands.add_parser('list', help='Show todos and sub-tasks')

    add = commands.add_parser('add', help='Add a todo')
    add.add_argument('text')
    add.add_argument('--generate', action='store_true', help='Generate sub-tasks right away')

    toggle = commands.add_parser('toggle', help='Toggle completion of a todo or sub-task')
    toggle.add_argument('id', help='Todo or sub-task id (a unique prefix is enough)')

    edit = commands.add_parser('edit', help='Change the text of a todo or sub-task')
    edit.add_argument('id')
    edit.add_argument('text')

    delete = commands.add_parser('delete', help='Delete a todo or sub-task')
    delete.add_argument('id')

    move = commands.add_parser('move', help='Move a todo to a position in the list')
    move.add_argument('id')
    move.add_argument('index', type=int)

    collapse = commands.add_parser('collapse', help='Collapse or expand a todo')
    collapse.add_argument('id')

    generate = commands.add_parser('generate', help='Generate sub-tasks for a todo')
    generate.add_argument('id')

    commands.add_parser('rank', help='Let the AI order incomplete todos')

    settings = commands.add_parser('settings', help='Show or change settings')
    settings.add_argument('--api-key', help='Store an API key (kept unencrypted)')
    settings.add_argument('--model', choices=MODEL_PRESETS)
    settings.add_argument('--clear', action='store_true', help='Forget the stored API key')

    return parser


def render(state: AppState) -> str:
    """Render the todo list as plain text."""
    lines = []
    for index, todo in enumerate(state_engine.ordered_todos(state)):
        mark = "x" if todo.completed else " "
        priority = f"P{todo.priority}" if todo.priority else "--"
        lines.append(f"{index:>2}. [{mark}] {priority} {todo.text}  ({todo.id[:8]})")
        if todo.id in state.collapsed_todo_ids:
            count = len(todo.sub_task_ids)
            if count:
                lines.append(f"      ... {count} sub-tasks hidden")
            continue
        for sub_task in state_engine.sub_tasks_for(state, todo.id):
            sub_mark = "x" if sub_task.completed else " "
            lines.append(f"      [{sub_mark}] {sub_task.text}  ({sub_task.id[:8]})")
    return "\n".join(lines) if lines else "No todos yet."


def _resolve(app: TodoApp, prefix: str, allow_sub_task: bool = True):
    """Return ("todo"|"sub_task", id) for an id prefix."""
    todo_id = state_engine.find_todo_id(app.state, prefix)
    if todo_id is not None:
        return "todo", todo_id
    if allow_sub_task:
        sub_task_id = state_engine.find_sub_task_id(app.state, prefix)
        if sub_task_id is not None:
            return "sub_task", sub_task_id
    raise LookupError(f"No unique todo{' or sub-task' if allow_sub_task else ''} matches '{prefix}'")


async def run_command(app: TodoApp, args: argparse.Namespace) -> str:
    """
    Execute one parsed command against the app.

    Returns:
        Text to print
    """
    command = args.command

    if command == 'list':
        return render(app.state)

    if command == 'add':
        todo_id = app.add_todo(args.text)
        if todo_id is None:
            raise ValueError("Todo text must not be empty")
        if args.generate:
            generated = await app.generate_sub_tasks(todo_id)
            return f"Added {todo_id[:8]} with {len(generated)} sub-tasks"
        return f"Added {todo_id[:8]}"

    if command == 'settings':
        if args.clear:
            app.apply(state_engine.clear_settings)
        if args.api_key is not None or args.model is not None:
            app.apply(state_engine.update_settings, api_key=args.api_key, model=args.model)
        key_state = "set" if app.state.settings.has_api_key else "not set"
        return f"model={app.state.settings.model} api_key={key_state}"

    if command == 'rank':
        result = await app.rank_todos()
        if result is None:
            return "Nothing to rank"
        return render(app.state)

    kind, item_id = _resolve(app, args.id, allow_sub_task=command in ('toggle', 'edit', 'delete'))

    if command == 'toggle':
        operation = (state_engine.toggle_todo_completed if kind == "todo"
                     else state_engine.toggle_sub_task_completed)
        app.apply(operation, item_id)
    elif command == 'edit':
        operation = state_engine.update_todo_text if kind == "todo" else state_engine.update_sub_task_text
        app.apply(operation, item_id, args.text)
    elif command == 'delete':
        operation = state_engine.delete_todo if kind == "todo" else state_engine.delete_sub_task
        app.apply(operation, item_id)
    elif command == 'move':
        app.apply(state_engine.move_todo_to_index, item_id, args.index)
    elif command == 'collapse':
        app.apply(state_engine.toggle_todo_collapsed, item_id)
    elif command == 'generate':
        generated = await app.generate_sub_tasks(item_id)
        return f"Generated {len(generated)} sub-tasks"

    return render(app.state)


async def _run(args: argparse.Namespace) -> int:
    config = Config(Path(args.config) if args.config else None)
    storage_config = config.get_storage_config()

    db_manager = DatabaseManager(storage_config['database_url'])
    await db_manager.initialize()
    app = TodoApp(
        StateStore(db_manager, storage_config['storage_key']),
        AIService.from_config(config.get_ai_config()),
        save_debounce_ms=storage_config['save_debounce_ms'],
    )
    try:
        await app.load()
        try:
            print(await run_command(app, args))
            return 0
        except MissingApiKeyError as e:
            print(e.message, file=sys.stderr)
            print("Run: pirido settings --api-key <KEY>", file=sys.stderr)
            return 1
        except AIServiceError as e:
            print(e.message, file=sys.stderr)
            return 1
        except (LookupError, ValueError) as e:
            print(str(e), file=sys.stderr)
            return 1
    finally:
        await app.close()
        await db_manager.close()


def main(args: Optional[List[str]] = None) -> int:
    """Main entry point for Pirido.

    Args:
        args: Command-line arguments (defaults to sys.argv)

    Returns:
        Exit code (0 for success, non-zero for error)
    """
    if args is None:
        args = sys.argv[1:]

    parsed = build_parser().parse_args(args)

    # Initialize logging before any other operations
    setup_logging(console=parsed.verbose)

    try:
        return asyncio.run(_run(parsed))
    except KeyboardInterrupt:
        logger.info("Pirido interrupted by user (Ctrl+C)")
        return 0
    except Exception:
        logger.error("Error running Pirido", exc_info=True)
        print("Unexpected error, see ~/.pirido/logs/pirido.log", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
