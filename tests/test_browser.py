"""Tests for ShellBrowser against a fake browser-use session."""

import asyncio
import base64
import pathlib

import pytest

from shell_browser import (
    BrowserError,
    CaptureError,
    ExtractionError,
    NavigationState,
    ShellConfig,
)


def run(coro):
    return asyncio.run(coro)


class TestCapture:
    def test_installs_links_and_paints(self, browser, session, capsys):
        state = NavigationState(1024, 800)
        state.install_links([])
        state.select(4)

        run(browser.navigate("https://example.com"))
        run(browser.capture(state))

        assert state.selected() == 0
        assert state.total_links() == 3
        assert state.url_at(2) == "https://c.test/"
        assert state.current_url == "https://example.com"

        out = capsys.readouterr().out
        encoded = base64.b64encode(session.screenshot).decode()
        assert f"\x1b]1337;File=inline=1;width=100%:{encoded}\x07" in out
        assert "[1/3] https://a.test/" in out

    def test_zero_links_no_status_line(self, browser, capsys):
        state = NavigationState(1024, 800)
        run(browser.navigate("https://empty.test"))
        run(browser.capture(state))

        assert state.total_links() == 0
        assert state.url_at(state.selected()) == ""
        assert "[1/" not in capsys.readouterr().out

    def test_image_width_from_config(self, session, tmp_path, capsys):
        from conftest import FakeShellBrowser

        config = ShellConfig(image_width="50%", screenshot_file=tmp_path / "shot.png")
        browser = FakeShellBrowser(config, session=session)
        run(browser.capture(NavigationState(1024, 800)))
        assert "File=inline=1;width=50%:" in capsys.readouterr().out

    def test_screenshot_file_removed(self, browser, config):
        data = run(browser.screenshot())
        assert data == b"\x89PNG fake"
        assert not config.screenshot_file.exists()

    def test_screenshot_file_removed_when_read_fails(self, browser, config, monkeypatch):
        def broken_read(self):
            raise OSError("disk went away")

        monkeypatch.setattr(pathlib.Path, "read_bytes", broken_read)
        with pytest.raises(CaptureError):
            run(browser.screenshot())
        assert not config.screenshot_file.exists()

    def test_base64_screenshot_decoded(self, browser, session):
        session.screenshot = base64.b64encode(b"png bytes").decode()
        assert run(browser.render_full_page()) == b"png bytes"

    def test_extraction_failure_surfaces(self, browser, session):
        session.evaluate_error = RuntimeError("context destroyed")
        with pytest.raises(ExtractionError):
            run(browser.get_page_links())

    def test_failed_extraction_keeps_old_links(self, browser, session, three_links):
        session.pages[session.url] = [{"url": 5, "x1": 0, "y1": 0, "x2": 1, "y2": 1}]
        with pytest.raises(ExtractionError):
            run(browser.capture(three_links))
        assert three_links.total_links() == 3


class TestBrowserCalls:
    def test_navigate(self, browser, session):
        run(browser.navigate("https://example.com"))
        assert session.visited == ["https://example.com"]
        assert run(browser.current_location()) == "https://example.com"

    def test_navigate_failure(self, browser, session):
        session.navigate_error = RuntimeError("net::ERR_NAME_NOT_RESOLVED")
        with pytest.raises(BrowserError, match="ERR_NAME_NOT_RESOLVED"):
            run(browser.navigate("https://nope.invalid"))

    def test_set_viewport(self, browser, session):
        run(browser.set_viewport(1024, 800))
        params, session_id = session.emulation.calls[0]
        assert params["width"] == 1024
        assert params["height"] == 800
        assert session_id == "fake-session"

    def test_set_viewport_failure(self, browser, session):
        async def broken():
            raise RuntimeError("no target")

        session.get_or_create_cdp_session = broken
        with pytest.raises(BrowserError):
            run(browser.set_viewport(1024, 800))

    def test_close_stops_session(self, browser, session):
        run(browser.close())
        assert session.stopped


class TestConfig:
    def test_defaults(self, tmp_path, monkeypatch):
        for name in ("WEBSHELL_VIEWPORT_WIDTH", "WEBSHELL_VIEWPORT_HEIGHT", "WEBSHELL_ENTER_ACTION",
                     "WEBSHELL_HEADLESS", "WEBSHELL_LOG_FILE"):
            monkeypatch.delenv(name, raising=False)
        config = ShellConfig.from_env(tmp_path / "missing.env")
        assert config.viewport_width == 1024
        assert config.viewport_height == 800
        assert config.headless is True
        assert config.enter_action == "link"
        assert config.log_file == pathlib.Path("terminal_browser.log")

    def test_environment(self, tmp_path, monkeypatch):
        monkeypatch.setenv("WEBSHELL_VIEWPORT_WIDTH", "1280")
        monkeypatch.setenv("WEBSHELL_HEADLESS", "false")
        monkeypatch.setenv("WEBSHELL_ENTER_ACTION", "reload")
        config = ShellConfig.from_env(tmp_path / "missing.env")
        assert config.viewport_width == 1280
        assert config.headless is False
        assert config.enter_action == "reload"

    def test_bad_values_fall_back(self, tmp_path, monkeypatch):
        monkeypatch.setenv("WEBSHELL_VIEWPORT_HEIGHT", "tall")
        monkeypatch.setenv("WEBSHELL_ENTER_ACTION", "teleport")
        config = ShellConfig.from_env(tmp_path / "missing.env")
        assert config.viewport_height == 800
        assert config.enter_action == "link"

    def test_dotenv_does_not_override_environment(self, tmp_path, monkeypatch):
        env_file = tmp_path / ".env"
        env_file.write_text('# comment\nWEBSHELL_IMAGE_WIDTH="75%"\nWEBSHELL_BROWSER_MODE=cdp\n')
        monkeypatch.setenv("WEBSHELL_IMAGE_WIDTH", "")
        monkeypatch.delenv("WEBSHELL_IMAGE_WIDTH")
        monkeypatch.setenv("WEBSHELL_BROWSER_MODE", "chrome")
        config = ShellConfig.from_env(env_file)
        assert config.image_width == "75%"
        assert config.browser_mode == "chrome"
