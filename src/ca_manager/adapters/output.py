"""
Output renderers — the two OutputRenderer implementations.

  TextOutputRenderer  plain text: four-space indent, headers wrapped at 80
                      columns, continuation lines aligned under the value.
  HTMLOutputRenderer  a two-column HTML table rendered through jinja2 with
                      autoescaping, so certificate fields never inject markup.

Both close the report with a rule and a "Generated:" footer.
"""

from __future__ import annotations

import textwrap
from dataclasses import dataclass
from pathlib import Path
from typing import TextIO

import structlog
from jinja2 import Environment, FileSystemLoader, StrictUndefined, select_autoescape

from ca_manager import __version__
from ca_manager.domain.models import utc_now

log = structlog.get_logger()

TAB = "    "
WRAP = 80
RULE = "-" * 57
_NO_BREAK_SPACE = "\u00a0"

_ENVIRONMENT = Environment(
    loader=FileSystemLoader(str(Path(__file__).parent / "report_templates")),
    autoescape=select_autoescape(enabled_extensions=("html",), default=True),
    undefined=StrictUndefined,
    trim_blocks=True,
    lstrip_blocks=True,
)


def _footer() -> str:
    return f"Generated: {utc_now().isoformat()} by ca-manager {__version__}"


# ─────────────────────── Plain text ───────────────────────


class TextOutputRenderer:
    def __init__(self, stream: TextIO) -> None:
        self._out = stream
        self._after_rule = False

    def _write(self, line: str = "") -> None:
        self._out.write(line + "\n")

    def header(self, value: str | None) -> None:
        if not self._after_rule:
            self.empty_line()
        self._write(textwrap.fill(value or "", WRAP))
        self._after_rule = False

    def empty_line(self) -> None:
        self._write()
        self._after_rule = False

    def content(self, key: str | None, value: str | None, monospace: bool = False) -> None:
        prefix = TAB if key is None else f"{TAB}{key} "
        if value is None:
            self._write(prefix.rstrip())
        else:
            first, *rest = value.splitlines() or [""]
            self._write(prefix + first)
            for line in rest:
                self._write(" " * len(prefix) + line)
        self._after_rule = False

    def horizontal_line(self) -> None:
        self.empty_line()
        self._write(RULE)
        self.empty_line()
        self._after_rule = True

    def finish(self) -> None:
        self.horizontal_line()
        self._write(_footer())
        self._out.flush()


# ─────────────────────── HTML ───────────────────────


@dataclass(frozen=True, slots=True)
class _Row:
    kind: str
    key: str | None = None
    lines: tuple[str, ...] = ()
    monospace: bool = False


class HTMLOutputRenderer:
    """Collects rows and writes the whole page on finish()."""

    def __init__(self, stream: TextIO, title: str | None) -> None:
        self._out = stream
        self._title = title or ""
        self._rows: list[_Row] = []

    def header(self, value: str | None) -> None:
        self._rows.append(_Row("header", lines=(value or "",)))

    def empty_line(self) -> None:
        self._rows.append(_Row("empty"))

    def content(self, key: str | None, value: str | None, monospace: bool = False) -> None:
        lines = tuple(value.splitlines()) if value is not None else ()
        if monospace:
            lines = tuple(line.replace(" ", _NO_BREAK_SPACE) for line in lines)
        self._rows.append(_Row("content", key, lines, monospace))

    def horizontal_line(self) -> None:
        self._rows.append(_Row("rule"))

    def finish(self) -> None:
        page = _ENVIRONMENT.get_template("report.html").render(
            title=self._title, rows=self._rows, footer=_footer()
        )
        self._out.write(page)
        self._out.flush()
        log.debug("report.rendered", format="html", rows=len(self._rows))
