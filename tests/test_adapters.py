"""
Tests for the source adapters.

HTTP adapters get a mocked ``requests.Session``; browser adapters get a
``MagicMock`` driver handed out by a fake session factory, so nothing
here opens a socket or a browser.
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from unittest import mock

import pytest
import requests
from selenium.common.exceptions import WebDriverException
from selenium.webdriver.common.by import By

from plateflow.config import SOURCE_NAMES, Settings
from plateflow.ingest import build_sources
from plateflow.ingest.api_adapter import RateLimiter, ThirdPartyApiSource
from plateflow.ingest.default_adapter import StaticDefaultSource
from plateflow.ingest.direct_adapter import DirectFetchSource, FinesSource, results_endpoints
from plateflow.ingest.rendered_adapter import (
    OwnerLookupSource,
    RenderedResultsSource,
    RenderedSource,
    parse_owner_row,
    rendering_session,
)
from plateflow.normalize.schema import BLOCKED, NOT_FOUND, OK, TRANSPORT_ERROR, Query

QUERY = Query.parse("JCLJ38")

OWNER_PAGE = """
<table class="table table-hover"><tbody>
<tr><td>JCLJ38</td><td>AUTOMOVIL</td><td>HYUNDAI</td><td>ACCENT</td>
<td>13295039-3</td><td>G4FCFU123456</td><td>2016</td><td>KATHERINE PARRA</td></tr>
</tbody></table>
"""


def _response(status_code=200, text="", payload=None):
    response = mock.MagicMock()
    response.status_code = status_code
    response.text = text
    if isinstance(payload, Exception):
        response.json.side_effect = payload
    else:
        response.json.return_value = payload
    return response


class TestDirectFetch:
    def test_first_usable_endpoint_wins(self, results_page: str) -> None:
        session = mock.MagicMock()
        session.post.return_value = _response(text=results_page)
        source = DirectFetchSource(results_endpoints("https://www.patentechile.com/"), session=session)

        response = source.fetch_group(QUERY, "owner")

        assert response.status == OK
        assert response.content == results_page
        session.post.assert_called_once()
        args, kwargs = session.post.call_args
        assert args[0] == "https://www.patentechile.com/resultados"
        assert kwargs["data"] == {"patente": "JCLJ38"}
        assert kwargs["headers"]["Accept-Language"].startswith("es-CL")

    def test_challenge_then_get_endpoint(self, results_page: str, challenge_page: str) -> None:
        session = mock.MagicMock()
        session.post.return_value = _response(status_code=403, text=challenge_page)
        session.get.return_value = _response(text=results_page)
        source = DirectFetchSource(results_endpoints("https://www.patentechile.com"), session=session)

        response = source.fetch_group(QUERY, "vehicle")

        assert response.status == OK
        session.get.assert_called_once()
        assert session.get.call_args.kwargs["params"] == {"patente": "JCLJ38"}

    def test_every_endpoint_blocked(self, challenge_page: str) -> None:
        session = mock.MagicMock()
        session.post.return_value = _response(text=challenge_page)
        session.get.return_value = _response(text=challenge_page)
        source = DirectFetchSource(results_endpoints("https://www.patentechile.com"), session=session)
        assert source.fetch_group(QUERY, "owner").status == BLOCKED

    def test_connection_errors(self) -> None:
        session = mock.MagicMock()
        session.post.side_effect = requests.ConnectionError("refused")
        session.get.side_effect = requests.Timeout("slow")
        source = DirectFetchSource(results_endpoints("https://www.patentechile.com"), session=session)
        response = source.fetch_group(QUERY, "owner")
        assert response.status == TRANSPORT_ERROR
        assert "refused" in response.detail

    def test_unmarked_page_is_returned_for_classification(self) -> None:
        session = mock.MagicMock()
        session.post.return_value = _response(text="<p>No se encontraron resultados</p>")
        session.get.return_value = _response(status_code=500, text="error")
        source = DirectFetchSource(results_endpoints("https://www.patentechile.com"), session=session)
        response = source.fetch_group(QUERY, "owner")
        assert response.status == OK
        assert "No se encontraron" in response.content

    def test_deadline_caps_request_timeout(self, results_page: str) -> None:
        session = mock.MagicMock()
        session.post.return_value = _response(text=results_page)
        source = DirectFetchSource(results_endpoints("https://www.patentechile.com"), timeout=30, session=session)

        source.fetch_group(QUERY, "owner", deadline=time.monotonic() + 2)

        assert 0 < session.post.call_args.kwargs["timeout"] <= 2

    def test_expired_deadline_sends_nothing(self) -> None:
        session = mock.MagicMock()
        source = DirectFetchSource(results_endpoints("https://www.patentechile.com"), session=session)
        response = source.fetch_group(QUERY, "owner", deadline=time.monotonic() - 1)
        assert response.status == TRANSPORT_ERROR
        session.post.assert_not_called()
        session.get.assert_not_called()

    def test_fines_form_post(self, fines_page: str) -> None:
        session = mock.MagicMock()
        session.post.return_value = _response(text=fines_page)
        source = FinesSource("https://www.patentechile.com/resultado-multas", session=session)

        response = source.fetch_group(Query.parse("abc12", "motorcycle"), "fines")

        assert response.status == OK
        assert session.post.call_args.kwargs["data"] == {"frmTerm2": "ABC12", "frmOpcion2": "moto"}


class TestThirdPartyApi:
    def _source(self, session, **kwargs):
        limiter = RateLimiter(sleep=lambda seconds: None)
        return ThirdPartyApiSource(
            "https://api.example.com/v1/", api_key="secret", session=session, limiter=limiter, **kwargs
        )

    def test_vehicle_lookup(self) -> None:
        session = mock.MagicMock()
        session.get.return_value = _response(payload={"data": {"vehiculo": {"marca": "KIA"}}})
        response = self._source(session).fetch_group(QUERY, "vehicle")

        assert response.status == OK
        assert response.content == {"vehiculo": {"marca": "KIA"}}
        args, kwargs = session.get.call_args
        assert args[0] == "https://api.example.com/v1/vehicles/JCLJ38"
        assert kwargs["params"] == {"type": "vehicle"}
        assert kwargs["headers"]["Authorization"] == "Bearer secret"

    def test_toll_lookup_wraps_payload(self) -> None:
        session = mock.MagicMock()
        session.get.return_value = _response(payload={"provider": "AUTOPASE"})
        query = Query(plate="JCLJ38", national_id="13295039-3")
        response = self._source(session).fetch_group(query, "toll")
        assert response.content == {"toll": {"provider": "AUTOPASE"}}
        assert session.get.call_args.args[0].endswith("/owners/13295039-3/tolls")

    def test_toll_needs_national_id(self) -> None:
        session = mock.MagicMock()
        assert self._source(session).fetch_group(QUERY, "toll").status == NOT_FOUND
        session.get.assert_not_called()

    def test_cache_key_separates_toll(self) -> None:
        source = self._source(mock.MagicMock())
        assert source.cache_key(QUERY, "owner") == source.cache_key(QUERY, "insurance")
        assert source.cache_key(QUERY, "toll") != source.cache_key(QUERY, "owner")

    @pytest.mark.parametrize(
        "response,status",
        [
            (_response(status_code=404), NOT_FOUND),
            (_response(status_code=429), TRANSPORT_ERROR),
            (_response(payload=ValueError("bad json")), TRANSPORT_ERROR),
            (_response(payload=["not", "an", "object"]), TRANSPORT_ERROR),
        ],
    )
    def test_error_statuses(self, response, status) -> None:
        session = mock.MagicMock()
        session.get.return_value = response
        assert self._source(session).fetch_group(QUERY, "vehicle").status == status

    def test_expired_deadline(self) -> None:
        session = mock.MagicMock()
        response = self._source(session).fetch_group(QUERY, "vehicle", deadline=time.monotonic() - 1)
        assert response.status == TRANSPORT_ERROR
        session.get.assert_not_called()

    def test_unconfigured(self) -> None:
        session = mock.MagicMock()
        source = ThirdPartyApiSource(None, session=session)
        assert source.fetch_group(QUERY, "vehicle").status == TRANSPORT_ERROR
        session.get.assert_not_called()


def test_rate_limiter_spaces_calls() -> None:
    times = iter([10.0, 10.2, 12.0])
    sleeps = []
    limiter = RateLimiter(clock=lambda: next(times), sleep=sleeps.append)

    assert limiter.wait("api", 1.0) == 0.0
    assert limiter.wait("api", 1.0) == pytest.approx(0.8)
    assert limiter.wait("api", 1.0) == 0.0
    assert sleeps == [pytest.approx(0.8)]


def test_static_default_source() -> None:
    source = StaticDefaultSource("DESCONOCIDO")
    assert source.is_default
    assert source.fetch_group(QUERY, "owner").content == {"owner": {"fullName": "DESCONOCIDO"}}
    assert source.fetch_group(QUERY, "vehicle").status == NOT_FOUND


def test_build_sources_registers_every_adapter() -> None:
    sources = build_sources(Settings())
    assert set(sources) == set(SOURCE_NAMES)
    assert sources["default"].is_default
    assert sources["api"].cache_key(QUERY, "toll") == "toll"
    assert sources["rendered"].page_scoped


@pytest.fixture
def driver(results_page):
    driver = mock.MagicMock()
    driver.page_source = results_page
    driver.current_url = "https://www.patentechile.com/resultados"
    driver.find_elements.return_value = [mock.MagicMock()]
    return driver


def _factory(driver):
    @contextmanager
    def session():
        yield driver

    return session


class TestRenderedResults:
    def test_search_form_flow(self, driver, results_page: str) -> None:
        source = RenderedResultsSource("https://www.patentechile.com/", session_factory=_factory(driver))

        response = source.fetch_group(QUERY, "owner")

        assert response.status == OK
        assert response.content == results_page
        driver.get.assert_called_once_with("https://www.patentechile.com/")
        driver.find_element.return_value.send_keys.assert_called_with("JCLJ38")
        assert mock.call(By.ID, "searchBtn") in driver.find_element.call_args_list

    def test_search_tab_for_other_kinds(self, driver) -> None:
        source = RenderedResultsSource("https://www.patentechile.com/", session_factory=_factory(driver))
        source.fetch_group(Query.parse("abc12", "motorcycle"), "vehicle")
        assert mock.call(By.CSS_SELECTOR, '.tab-item[data-type="moto"]') in driver.find_element.call_args_list

    def test_challenge_is_blocked(self, driver, challenge_page: str) -> None:
        driver.page_source = challenge_page
        source = RenderedResultsSource("https://www.patentechile.com/", session_factory=_factory(driver))
        assert source.fetch_group(QUERY, "owner").status == BLOCKED
        driver.find_element.assert_not_called()

    def test_steps_are_sized_from_the_deadline(self, driver) -> None:
        with mock.patch("plateflow.ingest.rendered_adapter.WebDriverWait") as wait:
            source = RenderedResultsSource(
                "https://www.patentechile.com/", timeout=30, session_factory=_factory(driver)
            )
            source.fetch_group(QUERY, "owner", deadline=time.monotonic() + 5)

        (page_load,), _ = driver.set_page_load_timeout.call_args
        assert 0 < page_load <= 5
        assert wait.call_count == 2
        assert all(0 < call.args[1] <= 5 for call in wait.call_args_list)

    def test_expired_deadline_opens_no_session(self) -> None:
        factory = mock.MagicMock()
        source = RenderedResultsSource("https://www.patentechile.com/", session_factory=factory)
        response = source.fetch_group(QUERY, "owner", deadline=time.monotonic() - 1)
        assert response.status == TRANSPORT_ERROR
        factory.assert_not_called()

    def test_overrun_inside_session_quits_before_returning(self, driver) -> None:
        events = []

        @contextmanager
        def session():
            events.append("open")
            try:
                yield driver
            finally:
                events.append("closed")

        driver.get.side_effect = lambda url: time.sleep(0.2)
        source = RenderedResultsSource("https://www.patentechile.com/", session_factory=session)
        response = source.fetch_group(QUERY, "owner", deadline=time.monotonic() + 0.05)

        assert response.status == TRANSPORT_ERROR
        assert "deadline reached" in response.detail
        assert events == ["open", "closed"]

    def test_driver_failure_is_transport_error(self, driver) -> None:
        driver.get.side_effect = WebDriverException("chrome not reachable")
        source = RenderedResultsSource("https://www.patentechile.com/", session_factory=_factory(driver))
        response = source.fetch_group(QUERY, "owner")
        assert response.status == TRANSPORT_ERROR
        assert "chrome not reachable" in response.detail


class TestOwnerLookup:
    def test_positional_row(self, driver) -> None:
        driver.page_source = OWNER_PAGE
        source = OwnerLookupSource("https://www.volanteomaleta.com/", session_factory=_factory(driver))

        response = source.fetch_group(QUERY, "owner")

        assert response.status == OK
        assert response.content["propietario"] == {"rut": "13295039-3", "nombre": "KATHERINE PARRA"}
        assert response.content["vehiculo"]["año"] == "2016"

    def test_no_row_is_not_found(self, driver) -> None:
        driver.page_source = "<form><input name='term'></form>"
        driver.find_elements.side_effect = lambda by, selector: (
            [mock.MagicMock()] if selector == 'input[name="term"]' else []
        )
        source = OwnerLookupSource(
            "https://www.volanteomaleta.com/", timeout=0.01, session_factory=_factory(driver)
        )
        assert source.fetch_group(QUERY, "owner").status == NOT_FOUND

    def test_short_row_is_ignored(self) -> None:
        markup = '<table class="table-hover"><tbody><tr><td>JCLJ38</td><td>AUTO</td></tr></tbody></table>'
        assert parse_owner_row(markup) is None


def test_browser_sources_must_define_render() -> None:
    with pytest.raises(TypeError):
        RenderedSource("https://www.patentechile.com/")


def test_rendering_session_always_quits() -> None:
    fake_driver = mock.MagicMock()
    with mock.patch("plateflow.ingest.rendered_adapter.init_selenium", return_value=fake_driver) as init:
        with pytest.raises(RuntimeError):
            with rendering_session(headless=True, page_load_timeout=5) as driver:
                assert driver is fake_driver
                raise RuntimeError("navigation failed")
    init.assert_called_once_with(True)
    fake_driver.set_page_load_timeout.assert_called_once_with(5)
    fake_driver.quit.assert_called_once()
