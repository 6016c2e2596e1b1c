"""
WebShell terminal side - painting, keyboard and the input router

Pages are painted with the iTerm2 inline image sequence, the selected
link is shown on an inverse-video status line at the bottom, and
keypresses come in one at a time through readchar.
"""
import asyncio
import base64
import logging
import shutil
import sys
import threading
from typing import NamedTuple

import readchar

from shell_browser import LinkNavigator, WebShellError

# Handle platform-specific imports; termios.error is not an OSError
try:
    import termios
    READ_ERRORS = (OSError, ValueError, termios.error)
except ImportError:
    READ_ERRORS = (OSError, ValueError)

logger = logging.getLogger(__name__)


# ANSI color codes for terminal output
class Colors:
    CYAN = '\033[96m'
    GREEN = '\033[92m'
    YELLOW = '\033[93m'
    RED = '\033[91m'
    BOLD = '\033[1m'
    RESET = '\033[0m'

    @classmethod
    def disable(cls):
        """Disable colors (for non-TTY output)"""
        cls.CYAN = cls.GREEN = cls.YELLOW = cls.RED = ''
        cls.BOLD = cls.RESET = ''


# Disable colors if not a TTY
if not sys.stdout.isatty():
    Colors.disable()


CLEAR_SCREEN = "\x1b[2J\x1b[H"
HIDE_CURSOR = "\x1b[?25l"
CLEAR_LINE = "\x1b[2K"

LOGO = """\
╔═══════════════════════════════════════════╗
║                                           ║
║   W E B S H E L L                         ║
║   the web, one screenshot at a time       ║
║                                           ║
╚═══════════════════════════════════════════╝"""


class LoadingAnimation:
    """Spinner on the current line while a slow startup step runs"""

    FRAMES = "⠋⠙⠹⠸⠼⠴⠦⠧⠇⠏"

    def __init__(self, message: str = "Loading"):
        self.message = message
        self._done = threading.Event()
        self.thread = None

    def _spin(self):
        frame = 0
        while not self._done.wait(0.1):
            _write(f"\r{Colors.YELLOW}{self.FRAMES[frame % len(self.FRAMES)]}{Colors.RESET} {self.message}...")
            frame += 1

    def start(self):
        if sys.stdout.isatty():
            self.thread = threading.Thread(target=self._spin, daemon=True)
            self.thread.start()

    def stop(self, success: bool = True):
        self._done.set()
        if self.thread is None:
            return
        self.thread.join(timeout=0.5)
        mark = f"{Colors.GREEN}✓" if success else f"{Colors.RED}✗"
        _write(f"\r\x1b[2K{mark}{Colors.RESET} {self.message}\n")


def _write(text: str):
    sys.stdout.write(text)
    sys.stdout.flush()


def clear_screen():
    _write(CLEAR_SCREEN)


def reset_terminal():
    """Reset the terminal state completely"""
    _write(
        "\x1b[!p"   # soft reset
        "\x1b[3J"   # clear scrollback
        "\x1b[2J"   # clear screen
        "\x1bc"     # full reset
        "\x1b[H"    # home
    )


def display_image(image_data: bytes, width: str = "100%"):
    """Paint raw image bytes inline (iTerm2 protocol)"""
    b64_image = base64.b64encode(image_data).decode("ascii")
    _write(f"\x1b]1337;File=inline=1;width={width}:{b64_image}\x07")


def status_text(nav: LinkNavigator) -> str:
    """' [i/n] url ' for the selected link, or "" when nothing is selectable"""
    selected = nav.selected()
    total = nav.total_links()
    if not 0 <= selected < total:
        return ""
    return f" [{selected + 1}/{total}] {nav.url_at(selected)} "


def display_selected_link(nav: LinkNavigator):
    """Show the selected link on the bottom line in inverse video"""
    text = status_text(nav)
    if not text:
        return

    columns, rows = shutil.get_terminal_size()
    text = text[:columns]
    _write(
        f"{HIDE_CURSOR}\x1b[{rows};1H\x1b[7m{CLEAR_LINE}"
        f"{text}{' ' * (columns - len(text))}\x1b[0m"
    )


def display_prompt() -> str:
    """Show the logo and URL prompt; returns the entered line ("quit" on EOF)"""
    C = Colors
    columns = shutil.get_terminal_size().columns

    clear_screen()
    for line in LOGO.split("\n"):
        padding = (columns - len(line)) // 2
        print(f"{' ' * max(padding, 0)}{C.CYAN}{line}{C.RESET}")
    print()

    try:
        return input(f"\t{C.BOLD}Enter URL (or 'quit' to exit):{C.RESET} ")
    except EOFError:
        return "quit"


def wait_for_enter():
    try:
        input("\tPress Enter to continue...")
    except EOFError:
        pass


class KeyboardError(WebShellError):
    """Keyboard could not be opened or a keypress could not be read"""


class Key:
    """Key categories the input router understands"""
    UP = readchar.key.UP
    DOWN = readchar.key.DOWN
    ENTER = readchar.key.ENTER
    ENTER_KEYS = ("\r", "\n")


class Keyboard:
    """Single-key input from the controlling terminal.

    readchar reads sys.stdin and switches it to raw mode around each
    read, so open() only has to make sure stdin is a terminal.
    """

    def __init__(self):
        self.opened = False

    def open(self):
        if not sys.stdin.isatty():
            raise KeyboardError("stdin is not a terminal")
        self.opened = True
        logger.debug("Keyboard opened")

    def get_key(self) -> str:
        """Next keypress; "" means the terminal went away"""
        if not self.opened:
            raise KeyboardError("keyboard is not open")
        try:
            return readchar.readkey()
        except READ_ERRORS as e:
            raise KeyboardError(f"error getting key: {e}") from e

    def close(self):
        if self.opened:
            self.opened = False
            logger.debug("Keyboard closed")


class InputResult(NamedTuple):
    quit: bool
    reload: bool


IDLE = InputResult(quit=False, reload=False)


def route_key(nav: LinkNavigator, key: str) -> InputResult:
    """Apply one keypress to the navigator.

    Up/Down move the selection inside [0, total) and repaint the status
    line. Enter on a valid selection asks the caller to navigate, q/Q
    asks it to quit, everything else does nothing.
    """
    selected = nav.selected()
    total = nav.total_links()

    if key == Key.UP:
        if selected > 0:
            nav.select(selected - 1)
            display_selected_link(nav)
        return IDLE

    if key == Key.DOWN:
        if selected < total - 1:
            nav.select(selected + 1)
            display_selected_link(nav)
        return IDLE

    if key == Key.ENTER or key in Key.ENTER_KEYS:
        if 0 <= selected < total:
            clear_screen()
            _write("Navigating to link...")
            return InputResult(quit=False, reload=True)
        return IDLE

    if key in ("q", "Q"):
        logger.info("Quit command received")
        return InputResult(quit=True, reload=False)

    return IDLE


async def handle_input(nav: LinkNavigator, keyboard: Keyboard) -> InputResult:
    """Wait for one keypress and route it.

    A failed read is logged and re-raised as KeyboardError; the session
    loop treats it as recoverable. An empty read means the terminal is
    gone and is treated as quit.
    """
    try:
        key = await asyncio.to_thread(keyboard.get_key)
    except KeyboardError as e:
        logger.error("Error getting key: %s", e)
        raise

    if key == "":
        # readchar keeps returning "" once the terminal hangs up
        logger.warning("Keyboard returned no input, ending session")
        return InputResult(quit=True, reload=False)

    logger.debug("Input received - Key: %r", key)
    return route_key(nav, key)
