"""
Browser rendered sources.

Some upstreams only render their results after client side JavaScript
has run, so they are driven through a real Chrome instance with
Selenium.  Driver setup follows the usual stealth recipe: a random user
agent from ``fake_useragent``, a random window size, automation
switches disabled, ``selenium_stealth`` applied and the chromedriver
binary managed by ``webdriver_manager``.

Browser sessions are the scarcest resource in the system.  Every fetch
opens one through :func:`rendering_session`, which always quits the
driver, whatever happens while it is in use.
"""

from __future__ import annotations

import logging
import random
from abc import abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from functools import partial
from typing import Any, Callable, ContextManager, Dict, Iterator, List, Optional

from bs4 import BeautifulSoup
from fake_useragent import UserAgent
from selenium import webdriver
from selenium.common.exceptions import TimeoutException, WebDriverException
from selenium.webdriver.chrome.options import Options
from selenium.webdriver.chrome.service import Service
from selenium.webdriver.common.by import By
from selenium.webdriver.common.keys import Keys
from selenium.webdriver.support.ui import WebDriverWait
from selenium_stealth import stealth
from webdriver_manager.chrome import ChromeDriverManager

from ..normalize.detector import is_challenge
from ..normalize.schema import Query, RawResponse
from .base import Source, time_left

logger = logging.getLogger(__name__)

# Type aliases
Driver = webdriver.Chrome
SessionFactory = Callable[[], ContextManager[Any]]

SCREEN_SIZES: List[str] = [
    "1280x800",
    "1366x768",
    "1440x900",
    "1920x1080",
]
DEFAULT_RENDER_TIMEOUT: float = 30.0

RESULTS_SELECTOR = "#tbl-results, .tbl-results, table"
NO_RESULTS_SELECTOR = ".no-results"
OWNER_ROW_SELECTOR = "table.table-hover tbody tr"

# Positional columns of the owner lookup results row.
OWNER_ROW_COLUMNS = ("patente", "tipo", "marca", "modelo", "rut", "numeroMotor", "año", "nombre")


@dataclass
class BrowserConfig:
    """Configuration settings for browser initialization."""
    user_agent: str
    screen_size: str
    headless: bool = True


def create_browser_config(headless: bool = True) -> BrowserConfig:
    """Create browser configuration with random user agent and screen size."""
    return BrowserConfig(
        user_agent=UserAgent().random,
        screen_size=random.choice(SCREEN_SIZES),
        headless=headless,
    )


def setup_chrome_options(config: BrowserConfig) -> Options:
    options = Options()
    options.add_argument(f"user-agent={config.user_agent}")
    options.add_argument("--disable-blink-features=AutomationControlled")
    options.add_argument(f"--window-size={config.screen_size.replace('x', ',')}")
    options.add_argument("--lang=es-CL")
    options.add_experimental_option("excludeSwitches", ["enable-automation"])
    if config.headless:
        options.add_argument("--headless=new")
    return options


def init_selenium(headless: bool = True) -> Driver:
    """Start a stealth-configured Chrome driver."""
    options = setup_chrome_options(create_browser_config(headless))
    driver = webdriver.Chrome(service=Service(ChromeDriverManager().install()), options=options)
    stealth(
        driver,
        languages=["es-CL", "es"],
        vendor="Google Inc.",
        platform="Win32",
        webgl_vendor="Intel Inc.",
        renderer="Intel Iris OpenGL Engine",
        fix_hairline=True,
    )
    return driver


@contextmanager
def rendering_session(
    headless: bool = True, page_load_timeout: float = DEFAULT_RENDER_TIMEOUT
) -> Iterator[Driver]:
    """Yield a fresh driver and quit it on exit."""
    driver = init_selenium(headless)
    try:
        driver.set_page_load_timeout(page_load_timeout)
        yield driver
    finally:
        try:
            driver.quit()
        except WebDriverException as exc:
            logger.debug("driver quit failed: %s", exc)


def _results_ready(driver: Any) -> bool:
    if is_challenge(driver.page_source or ""):
        return True
    if driver.find_elements(By.CSS_SELECTOR, NO_RESULTS_SELECTOR):
        return True
    return "resultados" in (driver.current_url or "") and bool(
        driver.find_elements(By.CSS_SELECTOR, RESULTS_SELECTOR)
    )


def _element_or_challenge(selector: str) -> Callable[[Any], bool]:
    def ready(driver: Any) -> bool:
        if is_challenge(driver.page_source or ""):
            return True
        return bool(driver.find_elements(By.CSS_SELECTOR, selector))

    return ready


class RenderedSource(Source):
    """Shared plumbing for sources that drive a browser.

    Every blocking step inside the session (page load, element waits) is
    sized from the time left before the call's deadline, so an overrun
    surfaces as a :class:`TimeoutException` inside the session and the
    driver is quit on the way out.
    """

    holds_session = True

    def __init__(
        self,
        url: str,
        timeout: float = DEFAULT_RENDER_TIMEOUT,
        headless: bool = True,
        session_factory: Optional[SessionFactory] = None,
    ) -> None:
        self.url = url
        self.timeout = timeout
        self.session_factory = session_factory or partial(
            rendering_session, headless=headless, page_load_timeout=timeout
        )

    @abstractmethod
    def render(self, query: Query, deadline: Optional[float] = None) -> str:
        """Drive the page for ``query`` and return the final page source."""

    def wrap(self, html: str) -> RawResponse:
        return self.ok(html)

    def budget(self, deadline: Optional[float]) -> float:
        """Seconds the next browser step may block for."""
        left = time_left(deadline, self.timeout)
        if left <= 0:
            raise TimeoutException("deadline reached")
        return left

    def open_session(self, deadline: Optional[float]) -> ContextManager[Any]:
        self.budget(deadline)
        return self.session_factory()

    def wait(self, driver: Any, deadline: Optional[float]) -> WebDriverWait:
        return WebDriverWait(driver, self.budget(deadline))

    def fetch_group(self, query: Query, group: str, deadline: Optional[float] = None) -> RawResponse:
        try:
            html = self.render(query, deadline)
        except TimeoutException as exc:
            return self.transport_error(f"render timed out: {exc.msg or 'no results'}")
        except WebDriverException as exc:
            return self.transport_error(exc.msg or type(exc).__name__)
        if is_challenge(html):
            return self.blocked("challenge page while rendering")
        return self.wrap(html)


class RenderedResultsSource(RenderedSource):
    """Types the plate into the public search form and reads the results page.

    Non-vehicle queries switch to the matching search tab first.  The
    returned page is raw markup; extraction happens in the policy.
    """

    name = "rendered"

    def render(self, query: Query, deadline: Optional[float] = None) -> str:
        with self.open_session(deadline) as driver:
            driver.set_page_load_timeout(self.budget(deadline))
            driver.get(self.url)
            self.wait(driver, deadline).until(_element_or_challenge("#inputTerm"))
            if is_challenge(driver.page_source or ""):
                return driver.page_source
            field = driver.find_element(By.ID, "inputTerm")
            if query.kind != "vehicle":
                tab = driver.find_element(
                    By.CSS_SELECTOR, f'.tab-item[data-type="{query.search_tab}"]'
                )
                tab.click()
            field.clear()
            field.send_keys(query.plate)
            driver.find_element(By.ID, "searchBtn").click()
            wait = self.wait(driver, deadline)
            try:
                wait.until(_results_ready)
            except TimeoutException:
                html = driver.page_source or ""
                if is_challenge(html):
                    return html
                raise
            return driver.page_source or ""


def parse_owner_row(html: str) -> Optional[Dict[str, Any]]:
    """Map the first owner lookup results row onto a structured payload."""
    soup = BeautifulSoup(html or "", "html.parser")
    row = soup.select_one(OWNER_ROW_SELECTOR)
    if row is None:
        return None
    cells = [cell.get_text(" ", strip=True) for cell in row.find_all("td")]
    if len(cells) < len(OWNER_ROW_COLUMNS):
        return None
    values = dict(zip(OWNER_ROW_COLUMNS, cells))
    return {
        "propietario": {"rut": values["rut"], "nombre": values["nombre"]},
        "vehiculo": {
            "patente": values["patente"],
            "tipo": values["tipo"],
            "marca": values["marca"],
            "modelo": values["modelo"],
            "año": values["año"],
            "numeroMotor": values["numeroMotor"],
        },
    }


class OwnerLookupSource(RenderedSource):
    """Owner search site whose single results row is read by position."""

    name = "owner_lookup"

    def render(self, query: Query, deadline: Optional[float] = None) -> str:
        with self.open_session(deadline) as driver:
            driver.set_page_load_timeout(self.budget(deadline))
            driver.get(self.url)
            self.wait(driver, deadline).until(_element_or_challenge('input[name="term"]'))
            if is_challenge(driver.page_source or ""):
                return driver.page_source
            field = driver.find_element(By.CSS_SELECTOR, 'input[name="term"]')
            field.clear()
            field.send_keys(query.plate + Keys.ENTER)
            wait = self.wait(driver, deadline)
            try:
                wait.until(_element_or_challenge(OWNER_ROW_SELECTOR))
            except TimeoutException:
                # An empty search never renders a row.
                logger.debug("no owner row rendered for %s", query.plate)
            return driver.page_source or ""

    def wrap(self, html: str) -> RawResponse:
        payload = parse_owner_row(html)
        if payload is None:
            return self.not_found("no results row")
        return self.ok(payload)
