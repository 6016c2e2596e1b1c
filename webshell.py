"""
WebShell - a terminal web browser

Loads a page in a real browser, paints its screenshot inline in the
terminal and lets you walk the page's links from the keyboard.

Run: python webshell.py

Keys while browsing:
  Up / Down   - Select previous / next link
  Enter       - Follow the selected link
  q           - Quit
"""
import os
import logging
import sys

# Keep browser-use quiet and away from our terminal before it is imported
os.environ.setdefault("BROWSER_USE_LOGGING_LEVEL", "CRITICAL")
os.environ.setdefault("BROWSER_USE_SETUP_LOGGING", "false")

import asyncio
from datetime import datetime
from pathlib import Path
from typing import Optional

from shell_browser import (
    BrowserError,
    NavigationState,
    ShellBrowser,
    ShellConfig,
    WebShellError,
)
from shell_ui import (
    Colors,
    Keyboard,
    KeyboardError,
    LoadingAnimation,
    clear_screen,
    display_prompt,
    handle_input,
    wait_for_enter,
)

logger = logging.getLogger("webshell")

LOG_FORMAT = "%(asctime)s %(filename)s:%(lineno)d: %(message)s"
LOG_DATEFMT = "%Y/%m/%d %H:%M:%S.%f"
QUIET_LOGGERS = ['browser_use', 'cdp_use', 'bubus', 'asyncio', 'urllib3', 'httpx']

_log_handler: Optional[logging.Handler] = None


class MicrosecondFormatter(logging.Formatter):
    """Formatter whose timestamps carry microseconds"""

    def formatTime(self, record, datefmt=None):
        return datetime.fromtimestamp(record.created).strftime(datefmt or LOG_DATEFMT)


def setup_logging(log_file: Path, level: str = "DEBUG") -> logging.Handler:
    """Send all logging to an append-only file. Raises OSError if it can't be opened."""
    global _log_handler

    handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
    handler.setFormatter(MicrosecondFormatter(LOG_FORMAT, LOG_DATEFMT))

    root = logging.getLogger()
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.DEBUG))
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    _log_handler = handler
    return handler


def teardown_logging():
    global _log_handler
    if _log_handler is not None:
        logging.getLogger().removeHandler(_log_handler)
        _log_handler.close()
        _log_handler = None


def normalize_url(url: str) -> str:
    """Prefix https:// unless the URL already has an http(s) scheme"""
    url = url.strip()
    if not url.startswith(("http://", "https://")):
        url = "https://" + url
    return url


def report_error(message: str):
    logger.error(message)
    print(f"{Colors.RED}❌ {message}{Colors.RESET}")


async def next_target(browser: ShellBrowser, state: NavigationState, enter_action: str) -> str:
    """Where Enter takes us: the selected link, or the current location again"""
    if enter_action == "reload":
        return await browser.current_location()
    return state.selected_url()


async def browse_url(
    browser: ShellBrowser,
    state: NavigationState,
    keyboard: Keyboard,
    url: str,
    enter_action: str = "link",
) -> bool:
    """Show url and handle keys until the user quits or leaves the page.

    Returns True when the user asked to quit. Navigation and capture
    failures propagate as WebShellError so the caller can go back to
    the prompt.
    """
    while True:
        await browser.navigate(url)
        await browser.capture(state)

        while True:
            try:
                result = await handle_input(state, keyboard)
            except KeyboardError as e:
                logger.error("Error handling input: %s", e)
                continue

            if result.quit:
                return True
            if result.reload:
                break

        url = await next_target(browser, state, enter_action)
        logger.info("Following to %s", url)


async def interactive_session(config: Optional[ShellConfig] = None, browser: Optional[ShellBrowser] = None,
                              keyboard: Optional[Keyboard] = None):
    """Run interactive terminal browser session"""
    config = config or ShellConfig.from_env()

    try:
        setup_logging(config.log_file, config.log_level)
    except OSError as e:
        print(f"Failed to set up logging: {e}")
        return
    logger.info("Starting terminal browser")

    keyboard = keyboard or Keyboard()
    browser = browser or ShellBrowser(config)
    try:
        try:
            keyboard.open()
        except KeyboardError as e:
            report_error(f"Failed to initialize keyboard: {e}")
            return

        loader = LoadingAnimation("Starting browser")
        loader.start()
        try:
            await browser.start()
            await browser.set_viewport(config.viewport_width, config.viewport_height)
        except BrowserError as e:
            loader.stop(success=False)
            report_error(str(e))
            return
        loader.stop(success=True)

        state = NavigationState(config.viewport_width, config.viewport_height)

        while True:
            url = (await asyncio.to_thread(display_prompt)).strip()
            if url == "quit":
                break
            if not url:
                continue

            try:
                if await browse_url(browser, state, keyboard, normalize_url(url), config.enter_action):
                    break
            except WebShellError as e:
                report_error(f"Error: {e}")
                await asyncio.to_thread(wait_for_enter)

        clear_screen()

    except KeyboardInterrupt:
        logger.info("Interrupted")
    finally:
        try:
            await browser.close()
        except Exception as e:
            logger.error("Error closing browser: %s", e)
        keyboard.close()
        logger.info("Terminal browser stopped")
        teardown_logging()


def main():
    try:
        asyncio.run(interactive_session())
    except KeyboardInterrupt:
        print(f"\n{Colors.GREEN}👋 Goodbye!{Colors.RESET}\n")


if __name__ == "__main__":
    sys.exit(main())
