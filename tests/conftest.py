"""Shared fixtures: canned upstream pages and scriptable fake sources."""

from __future__ import annotations

import threading
from typing import Callable, List, Optional, Tuple, Union

import pytest

from plateflow.ingest.base import Source
from plateflow.normalize.schema import Query, RawResponse
from plateflow.resolve.policy import ResolutionPolicy

RESULTS_PAGE = """
<html><body>
<h2>Resultados de la búsqueda</h2>
<table id="tbl-results">
  <tr><td><b>RUT</b></td><td>13295039-3</td></tr>
  <tr><td><b>Nombre</b></td><td>KATHERINE   PARRA</td></tr>
  <tr><td><b>Patente</b></td><td>JCLJ38</td></tr>
  <tr><td><b>Tipo</b></td><td>AUTOMOVIL</td></tr>
  <tr><td><b>Marca</b></td><td>HYUNDAI</td></tr>
  <tr><td><b>Modelo</b></td><td>ACCENT</td></tr>
  <tr><td><b>Año</b></td><td>2016</td></tr>
  <tr><td><b>Color</b></td><td>-</td></tr>
  <tr><td><b>N° Motor</b></td><td>G4FCFU123456</td></tr>
  <tr><td><b>Kilometraje</b></td><td>85.000</td></tr>
  <tr><td><b>Comuna de revisión</b></td><td>MAIPU</td></tr>
  <tr><td><b>Compañía</b></td><td>BCI SEGUROS</td></tr>
  <tr><td><b>Estado SOAP</b></td><td>VIGENTE</td></tr>
</table>
</body></html>
"""

FINES_PAGE = """
<html><body>
<div class="resumen">3 multas encontradas</div>
<div class="multa-item">
  <p>ROL/CAUSA: 111111</p>
  <p>Comuna: SANTIAGO</p>
  <p>Estado: Pendiente</p>
  <p>Año: 2023</p>
</div>
<div class="multa-item">
  <p>ROL/CAUSA: 222222</p>
  <p>Comuna: MAIPU</p>
</div>
<script>var detalle = {rol: '111111'};</script>
</body></html>
"""

CHALLENGE_PAGE = """
<html><head><title>Just a moment...</title></head>
<body><div id="cf-challenge-running">Checking your browser before accessing.</div></body></html>
"""

Handler = Union[RawResponse, Callable[[Query, str], RawResponse]]


class FakeSource(Source):
    """Source whose answers are scripted by the test."""

    def __init__(
        self,
        name: str,
        handler: Handler,
        page_scoped: bool = True,
        is_default: bool = False,
    ) -> None:
        self.name = name
        self.handler = handler
        self.page_scoped = page_scoped
        self.is_default = is_default
        self.calls: List[Tuple[Query, str]] = []
        self._lock = threading.Lock()

    def fetch_group(self, query: Query, group: str, deadline: Optional[float] = None) -> RawResponse:
        with self._lock:
            self.calls.append((query, group))
        if callable(self.handler):
            return self.handler(query, group)
        return self.handler

    def groups_called(self) -> List[str]:
        return [group for _, group in self.calls]


@pytest.fixture
def results_page() -> str:
    return RESULTS_PAGE


@pytest.fixture
def fines_page() -> str:
    return FINES_PAGE


@pytest.fixture
def challenge_page() -> str:
    return CHALLENGE_PAGE


@pytest.fixture
def fake_source() -> Callable[..., FakeSource]:
    """Factory: ``fake_source(name, handler, page_scoped=True, is_default=False)``."""
    return FakeSource


@pytest.fixture
def make_policy() -> Callable[..., ResolutionPolicy]:
    """Build a policy over fake sources with a frozen clock."""

    def build(sources, priorities, clock: Optional[Callable[[], str]] = None, **kwargs) -> ResolutionPolicy:
        return ResolutionPolicy(
            {source.name: source for source in sources},
            priorities,
            clock=clock or (lambda: "2024-01-01T00:00:00+00:00"),
            **kwargs,
        )

    return build
