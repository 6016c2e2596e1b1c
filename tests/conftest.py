"""Shared fixtures for webshell tests."""

import json
from types import SimpleNamespace

import pytest

from shell_browser import Link, NavigationState, ShellBrowser, ShellConfig
from shell_ui import KeyboardError


class FakeEmulation:
    def __init__(self):
        self.calls = []

    async def setDeviceMetricsOverride(self, params, session_id=None):
        self.calls.append((params, session_id))


class FakePage:
    def __init__(self, session):
        self.session = session

    async def evaluate(self, script):
        if self.session.evaluate_error:
            raise self.session.evaluate_error
        if "document.links" in script:
            # browser-use hands objects back JSON-encoded
            return json.dumps(self.session.pages.get(self.session.url, []))
        return "ready"


class FakeSession:
    """Stands in for browser_use.BrowserSession"""

    def __init__(self, pages=None):
        self.pages = pages or {}
        self.url = "about:blank"
        self.visited = []
        self.stopped = False
        self.screenshot = b"\x89PNG fake"
        self.navigate_error = None
        self.evaluate_error = None
        self.emulation = FakeEmulation()

    async def navigate_to(self, url):
        if self.navigate_error:
            raise self.navigate_error
        self.visited.append(url)
        self.url = url

    async def get_current_page_url(self):
        return self.url

    async def get_current_page(self):
        return FakePage(self)

    async def take_screenshot(self, full_page=False):
        return self.screenshot

    async def get_or_create_cdp_session(self):
        return SimpleNamespace(
            session_id="fake-session",
            cdp_client=SimpleNamespace(send=SimpleNamespace(Emulation=self.emulation)),
        )

    async def stop(self):
        self.stopped = True


class FakeShellBrowser(ShellBrowser):
    """ShellBrowser that never launches a real browser"""

    async def start(self):
        self.started = True


class FakeKeyboard:
    """Replays a scripted list of keys; exceptions in the list are raised"""

    def __init__(self, keys=(), tty=True):
        self.keys = list(keys)
        self.tty = tty
        self.opened = False
        self.closed = False

    def open(self):
        if not self.tty:
            raise KeyboardError("stdin is not a terminal")
        self.opened = True

    def get_key(self):
        if not self.keys:
            return "q"
        key = self.keys.pop(0)
        if isinstance(key, Exception):
            raise key
        return key

    def close(self):
        self.closed = True


def link_dicts(*urls):
    return [
        {"url": url, "x1": 0, "y1": i * 20, "x2": 100, "y2": i * 20 + 16}
        for i, url in enumerate(urls)
    ]


@pytest.fixture
def config(tmp_path):
    return ShellConfig(
        log_file=tmp_path / "terminal_browser.log",
        screenshot_file=tmp_path / "temp_screenshot.png",
    )


@pytest.fixture
def session():
    return FakeSession(pages={
        "https://example.com": link_dicts("https://a.test/", "https://b.test/", "https://c.test/"),
        "https://b.test/": link_dicts("https://d.test/"),
        "https://empty.test": [],
    })


@pytest.fixture
def browser(config, session):
    return FakeShellBrowser(config, session=session)


@pytest.fixture
def three_links():
    state = NavigationState(1024, 800)
    state.install_links([
        Link(0, 0, 10, 10, "https://a.test/"),
        Link(0, 20, 10, 30, "https://b.test/"),
        Link(0, 40, 10, 50, "https://c.test/"),
    ])
    return state
