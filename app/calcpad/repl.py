"""
Terminal Calculator

A keypad in the terminal. Type keys and press Enter; every token on the
line is fed to the calculator in order, so "12+3=" works as well as one
key per line.

Named keys: "c" (clear), "bs" (backspace), "neg" (toggle sign).
Type "q" or "quit" to exit.
"""

from typing import Iterable, List, Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from .config import Config, load_config
from .keymap import BUTTONS
from .logging_config import setup_logging
from .services import CalculatorService
from .session import CalculatorSession, DisplaySnapshot

console = Console()

WORD_KEYS = {
    "c": "Escape",
    "clear": "Escape",
    "bs": "Backspace",
    "back": "Backspace",
    "neg": "±",
    "x": "*",
}

QUIT_WORDS = ("q", "quit", "exit")


def tokenize(line: str) -> List[str]:
    """
    Split a typed line into keys.

    Words from WORD_KEYS stand for a single key; everything else is read
    character by character, and single-letter names ("c", "x") count
    inside a word too. An empty line means Enter (equals).
    """
    if not line.strip():
        return ["Enter"]

    keys = []
    for word in line.split():
        named = WORD_KEYS.get(word.lower())
        if named:
            keys.append(named)
        else:
            keys.extend(WORD_KEYS.get(ch.lower(), ch) for ch in word)
    return keys


def render(snapshot: DisplaySnapshot) -> Panel:
    """Draw the display: expression preview above, value below."""
    preview = Text(snapshot.expression or " ", style="dim", justify="right")
    value = Text(snapshot.display, style="bold red" if snapshot.has_error else "bold", justify="right")
    body = Text.assemble(preview, "\n", value)
    return Panel(body, title="Calculator", width=34)


def render_keypad() -> Table:
    table = Table(show_header=False, show_lines=True, box=None)
    for _ in range(4):
        table.add_column(justify="center", width=5)
    styles = {"op": "blue", "control": "yellow", "equals": "bold white on blue", "digit": ""}
    for row in BUTTONS:
        table.add_row(*[Text(button.label, style=styles[button.kind]) for button in row])
    return table


def run_keys(session: CalculatorSession, keys: Iterable[str]) -> DisplaySnapshot:
    """Press each key in turn and return the final display."""
    snapshot = session.snapshot()
    for key in keys:
        snapshot = session.press(key)
    return snapshot


def main(config: Optional[Config] = None) -> None:
    """
    Interactive terminal calculator.

    Usage:
        python -m calcpad.repl
    """
    config = config or load_config()
    setup_logging(level="WARNING", log_file=config.log_file, json_format=config.log_json)

    service = CalculatorService(config)
    service.start()
    session = service.create_session()

    console.print(render_keypad())
    console.print("[dim]Type keys and press Enter. 'c' clears, 'bs' deletes, 'neg' flips the sign, 'q' quits.[/dim]")
    console.print(render(session.snapshot()))

    try:
        while True:
            try:
                line = console.input("[bold blue]>[/bold blue] ")
            except EOFError:
                break
            if line.strip().lower() in QUIT_WORDS:
                break
            console.print(render(run_keys(session, tokenize(line))))
    except KeyboardInterrupt:
        console.print()
    finally:
        service.stop()
        console.print(f"[dim]{session.calculations} calculation(s) this session[/dim]")


if __name__ == "__main__":
    main()
