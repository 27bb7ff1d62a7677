import logging
from typing import Type

from playwright.sync_api import BrowserContext, Page, Playwright, sync_playwright
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError

from .base import InstitutionClient
from .config import Config, settings

logger = logging.getLogger(__name__)

LOGIN_TIMEOUT_MS = 300000  # 5 minutes


class BrowserSession:
    """
    A persistent Chrome profile used to log in to an institution by hand.

    Reusing the profile between runs keeps cookies and device trust, which
    avoids repeated 2FA prompts. Once logged in, the context's
    `APIRequestContext` carries the session cookies for every API call.

    Usage:
        with BrowserSession(config) as session:
            session.login(RBCClient)
            client = RBCClient.from_browser(session.context, session.page, config)
    """

    def __init__(self, config: Config = settings):
        self.config = config
        self.playwright: Playwright = None
        self.context: BrowserContext = None
        self.page: Page = None

    def __enter__(self) -> "BrowserSession":
        self.playwright = sync_playwright().start()
        try:
            self.setup_driver()
        except Exception:
            self.playwright.stop()
            raise
        return self

    def __exit__(self, exc_type, exc, tb):
        self.teardown()
        return False

    def setup_driver(self):
        """Launch the persistent context using the configured profile path."""
        logger.info("Launching browser with profile: %s", self.config.browser_profile_path)
        self.config.browser_profile_path.mkdir(parents=True, exist_ok=True)

        self.context = self.playwright.chromium.launch_persistent_context(
            user_data_dir=str(self.config.browser_profile_path),
            channel="chrome",
            headless=self.config.headless,
            args=["--disable-blink-features=AutomationControlled"],
        )
        self.context.set_default_timeout(self.config.timeout)
        self.page = self.context.new_page()

    def login(self, client_cls: Type[InstitutionClient]):
        """Open the institution's login page and wait for the user to finish logging in."""
        print(f"Navigating to {client_cls.display_name} login page...")
        self.page.goto(client_cls.login_url)

        print(f"\nWaiting for you to log in to {client_cls.display_name}...")
        print("Please complete the login (including any 2FA) and wait for the dashboard to load.")
        try:
            self.page.wait_for_url(client_cls.logged_in_url, timeout=LOGIN_TIMEOUT_MS)
            print("Login detected.")
        except PlaywrightTimeoutError:
            logger.warning("Login timeout or URL not matched. Proceeding anyway in case we are already there.")

    def teardown(self):
        if self.context:
            self.context.close()
            self.context = None
        if self.playwright:
            self.playwright.stop()
            self.playwright = None
