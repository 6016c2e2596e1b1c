"""
WebShell browser side - page capture and link navigation state

Wraps a browser-use session so the terminal front end only ever sees a
handful of operations: navigate, read the current location, screenshot
the full page, evaluate a script, and set the viewport.

Links found on the rendered page are kept in a NavigationState; the
front end walks them through the small LinkNavigator protocol.
"""
import asyncio
import base64
import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, List, Optional, Protocol, runtime_checkable

logger = logging.getLogger(__name__)


class WebShellError(Exception):
    """Base error for everything WebShell raises on purpose"""


class BrowserError(WebShellError):
    """Browser session refused a navigation, location, or viewport request"""


class CaptureError(WebShellError):
    """Screenshot could not be taken, saved, or read back"""


class ExtractionError(WebShellError):
    """Link script failed or returned something that isn't a link list"""


# Evaluated in the page. browser-use requires arrow function format.
LINKS_JS = """
() => Array.from(document.links).map(link => {
    const rect = link.getBoundingClientRect();
    return {
        url: link.href,
        x1: Math.round(rect.left),
        y1: Math.round(rect.top),
        x2: Math.round(rect.right),
        y2: Math.round(rect.bottom)
    };
})
"""

BODY_READY_JS = """
() => (document.readyState !== 'loading' && document.body !== null) ? 'ready' : ''
"""


@dataclass
class Link:
    """A hyperlink on the rendered page, in viewport pixels"""
    x1: int           # left
    y1: int           # top
    x2: int           # right
    y2: int           # bottom
    url: str


@runtime_checkable
class LinkNavigator(Protocol):
    """What the input router and status line need from navigation state"""

    def selected(self) -> int: ...
    def select(self, index: int) -> None: ...
    def total_links(self) -> int: ...
    def url_at(self, index: int) -> str: ...


@dataclass
class NavigationState:
    """Viewport, links of the current capture and the selected link"""
    viewport_width: int
    viewport_height: int
    links: List[Link] = field(default_factory=list)
    selected_link: int = 0
    current_url: str = ""

    def selected(self) -> int:
        return self.selected_link

    def select(self, index: int) -> None:
        # No clamping here, the input router checks bounds before calling
        self.selected_link = index

    def total_links(self) -> int:
        return len(self.links)

    def url_at(self, index: int) -> str:
        """URL of the link at index, or "" when index is out of range"""
        if 0 <= index < len(self.links):
            return self.links[index].url
        return ""

    def selected_url(self) -> str:
        return self.url_at(self.selected_link)

    def install_links(self, links) -> None:
        """Replace the link list with a fresh capture and select the first link"""
        self.links = list(links)
        self.selected_link = 0


def _coordinate(entry: dict, key: str) -> int:
    value = entry.get(key)
    # bool is an int subclass, a JS true/false here means the page is lying
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ExtractionError(f"Link field '{key}' is not numeric: {value!r}")
    return int(value)


def parse_links(raw: Any) -> List[Link]:
    """Turn the result of LINKS_JS into Link objects.

    browser-use hands back objects JSON-encoded, so both a decoded list
    and its JSON string are accepted. One malformed entry fails the
    whole extraction.
    """
    if raw is None or raw == "":
        return []
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except ValueError as e:
            raise ExtractionError(f"Link script returned invalid JSON: {e}") from e
    if not isinstance(raw, list):
        raise ExtractionError(f"Link script returned {type(raw).__name__}, expected a list")

    links = []
    for entry in raw:
        if not isinstance(entry, dict):
            raise ExtractionError(f"Link entry is not an object: {entry!r}")
        url = entry.get("url")
        if not isinstance(url, str):
            raise ExtractionError(f"Link url is not a string: {url!r}")
        link = Link(
            x1=_coordinate(entry, "x1"),
            y1=_coordinate(entry, "y1"),
            x2=_coordinate(entry, "x2"),
            y2=_coordinate(entry, "y2"),
            url=url,
        )
        links.append(link)
        logger.debug("Found link: %s", link)

    logger.info("Total links found: %d", len(links))
    return links


def _load_dotenv(env_path: Path):
    """Seed os.environ from a .env file; variables already set win."""
    if not env_path.exists():
        return
    with open(env_path) as f:
        for line in f:
            line = line.strip()
            if line and not line.startswith('#') and '=' in line:
                key, value = line.split('=', 1)
                key = key.strip()
                value = value.strip().strip('"').strip("'")
                if key not in os.environ:
                    os.environ[key] = value


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() not in ("false", "0", "no")


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning("Ignoring %s=%r, not an integer; using %d", name, value, default)
        return default


@dataclass
class ShellConfig:
    """WebShell settings.

    Environment Variables:
        WEBSHELL_BROWSER_MODE: chromium|chrome|cdp (default: chromium)
        WEBSHELL_HEADLESS: true|false (default: true)
        WEBSHELL_CDP_ENDPOINT: CDP URL (default: http://localhost:9222)
        WEBSHELL_CHROME_PATH: Chrome executable for chrome mode
        WEBSHELL_VIEWPORT_WIDTH / WEBSHELL_VIEWPORT_HEIGHT (default: 1024x800)
        WEBSHELL_IMAGE_WIDTH: inline image width (default: 100%)
        WEBSHELL_LOG_FILE: log path (default: terminal_browser.log)
        WEBSHELL_LOG_LEVEL: log level (default: DEBUG)
        WEBSHELL_SCREENSHOT_FILE: transient screenshot (default: temp_screenshot.png)
        WEBSHELL_ENTER_ACTION: link|reload (default: link)
    """
    browser_mode: str = "chromium"
    headless: bool = True
    cdp_endpoint: str = "http://localhost:9222"
    chrome_path: Optional[str] = None
    viewport_width: int = 1024
    viewport_height: int = 800
    image_width: str = "100%"
    log_file: Path = Path("terminal_browser.log")
    log_level: str = "DEBUG"
    screenshot_file: Path = Path("temp_screenshot.png")
    enter_action: str = "link"

    @classmethod
    def from_env(cls, env_path: Optional[Path] = None) -> "ShellConfig":
        """Load configuration from .env file and environment variables."""
        _load_dotenv(env_path or Path(__file__).parent / ".env")

        enter_action = os.getenv("WEBSHELL_ENTER_ACTION", "link").lower()
        if enter_action not in ("link", "reload"):
            logger.warning("Unknown WEBSHELL_ENTER_ACTION %r, using 'link'", enter_action)
            enter_action = "link"

        return cls(
            browser_mode=os.getenv("WEBSHELL_BROWSER_MODE", "chromium").lower(),
            headless=_env_flag("WEBSHELL_HEADLESS", "true"),
            cdp_endpoint=os.getenv("WEBSHELL_CDP_ENDPOINT", "http://localhost:9222"),
            chrome_path=os.getenv("WEBSHELL_CHROME_PATH"),
            viewport_width=_env_int("WEBSHELL_VIEWPORT_WIDTH", 1024),
            viewport_height=_env_int("WEBSHELL_VIEWPORT_HEIGHT", 800),
            image_width=os.getenv("WEBSHELL_IMAGE_WIDTH", "100%"),
            log_file=Path(os.getenv("WEBSHELL_LOG_FILE", "terminal_browser.log")),
            log_level=os.getenv("WEBSHELL_LOG_LEVEL", "DEBUG").upper(),
            screenshot_file=Path(os.getenv("WEBSHELL_SCREENSHOT_FILE", "temp_screenshot.png")),
            enter_action=enter_action,
        )


class ShellBrowser:
    """One browser tab driven through browser-use.

    Every method that talks to the browser is a remote call that can
    fail; failures come back as BrowserError, CaptureError or
    ExtractionError with the original exception chained.
    """

    def __init__(self, config: ShellConfig, session=None):
        self.config = config
        self.session = session

    async def start(self):
        """Initialize browser based on configuration."""
        from browser_use import BrowserSession

        session_kwargs = {"headless": self.config.headless}

        if self.config.browser_mode == "chrome":
            session_kwargs["channel"] = "chrome"
            if self.config.chrome_path:
                session_kwargs["executable_path"] = self.config.chrome_path
        elif self.config.browser_mode == "cdp":
            # Connect to existing browser via CDP
            session_kwargs["cdp_url"] = self.config.cdp_endpoint

        logger.info("Starting %s browser (headless=%s)", self.config.browser_mode, self.config.headless)
        self.session = BrowserSession(**session_kwargs)
        try:
            await self.session.start()
        except Exception as e:
            raise BrowserError(f"failed to start browser: {e}") from e

    async def set_viewport(self, width: int, height: int):
        """Emulate a width x height viewport on the current tab"""
        try:
            cdp_session = await self.session.get_or_create_cdp_session()
            await cdp_session.cdp_client.send.Emulation.setDeviceMetricsOverride(
                params={
                    "width": width,
                    "height": height,
                    "deviceScaleFactor": 1,
                    "mobile": False,
                },
                session_id=cdp_session.session_id,
            )
        except Exception as e:
            raise BrowserError(f"failed to set viewport {width}x{height}: {e}") from e
        logger.info("Viewport set to %dx%d", width, height)

    async def navigate(self, url: str):
        logger.info("Navigating to URL: %s", url)
        try:
            await self.session.navigate_to(url)
        except Exception as e:
            raise BrowserError(f"failed to navigate to {url}: {e}") from e

    async def current_location(self) -> str:
        try:
            return await self.session.get_current_page_url()
        except Exception as e:
            raise BrowserError(f"failed to get current URL: {e}") from e

    async def evaluate(self, script: str) -> Any:
        page = await self.session.get_current_page()
        return await page.evaluate(script)

    async def render_full_page(self) -> bytes:
        """Full-page PNG screenshot as raw bytes"""
        try:
            data = await self.session.take_screenshot(full_page=True)
        except Exception as e:
            raise CaptureError(f"failed to capture screenshot: {e}") from e
        # Some browser-use releases return base64 text instead of bytes
        if isinstance(data, str):
            data = base64.b64decode(data)
        return data

    async def wait_ready(self, attempts: int = 50, delay: float = 0.1):
        """Poll until the document has a body"""
        for _ in range(attempts):
            try:
                ready = await self.evaluate(BODY_READY_JS)
            except Exception as e:
                raise CaptureError(f"page not ready: {e}") from e
            if ready == "ready":
                return
            await asyncio.sleep(delay)
        raise CaptureError("page body never became ready")

    async def get_page_links(self) -> List[Link]:
        """Extract all hyperlinks from the current page"""
        logger.info("Getting page links")
        try:
            raw = await self.evaluate(LINKS_JS)
        except Exception as e:
            logger.error("Failed to evaluate JavaScript for links: %s", e)
            raise ExtractionError(f"failed to get links: {e}") from e
        return parse_links(raw)

    async def screenshot(self) -> bytes:
        """Take a screenshot through the transient screenshot file.

        The file is always removed, even when reading it back fails.
        """
        await self.wait_ready()
        data = await self.render_full_page()

        temp_file = self.config.screenshot_file
        try:
            temp_file.write_bytes(data)
            return temp_file.read_bytes()
        except OSError as e:
            raise CaptureError(f"failed to save screenshot: {e}") from e
        finally:
            temp_file.unlink(missing_ok=True)

    async def capture(self, state: NavigationState):
        """Screenshot the page, extract its links and paint both.

        Installs a fresh link list in state (selection back to 0).
        """
        from shell_ui import display_image, display_selected_link, reset_terminal

        image_data = await self.screenshot()
        links = await self.get_page_links()

        reset_terminal()
        state.install_links(links)
        display_image(image_data, width=self.config.image_width)
        if state.total_links() > 0:
            display_selected_link(state)

        try:
            state.current_url = await self.current_location()
        except BrowserError as e:
            logger.warning("Could not record location after capture: %s", e)

    async def close(self):
        """Cleanup"""
        if self.session:
            await self.session.stop()
