# backend/app/services/report_renderer.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

import fitz  # PyMuPDF

from ..config import settings
from ..domain.errors import UpstreamFailure

log = logging.getLogger(__name__)

PDF_CONTENT_TYPE = "application/pdf"

A4_WIDTH, A4_HEIGHT = 595, 842
MARGIN_X, MARGIN_TOP, MARGIN_BOTTOM = 40, 60, 60


@dataclass(frozen=True)
class Branding:
    company_name: str = field(default_factory=lambda: settings.report_company_name)
    primary_color: str = field(default_factory=lambda: settings.report_primary_color)
    secondary_color: str = field(default_factory=lambda: settings.report_secondary_color)
    logo_url: Optional[str] = None
    agent_name: Optional[str] = None
    agent_email: Optional[str] = None
    agent_phone: Optional[str] = None

    @classmethod
    def from_options(cls, raw: Optional[dict[str, Any]]) -> "Branding":
        """Accepts both snake_case and the camelCase keys web clients send."""
        raw = raw or {}

        def pick(*keys: str) -> Optional[str]:
            for k in keys:
                v = raw.get(k)
                if isinstance(v, str) and v.strip():
                    return v.strip()
            return None

        base = cls()
        return cls(
            company_name=pick("company_name", "companyName") or base.company_name,
            primary_color=pick("primary_color", "primaryColor") or base.primary_color,
            secondary_color=pick("secondary_color", "secondaryColor") or base.secondary_color,
            logo_url=pick("logo_url", "logoUrl"),
            agent_name=pick("agent_name", "agentName"),
            agent_email=pick("agent_email", "agentEmail"),
            agent_phone=pick("agent_phone", "agentPhone"),
        )

    def as_dict(self) -> dict[str, Any]:
        return {
            "company_name": self.company_name,
            "primary_color": self.primary_color,
            "secondary_color": self.secondary_color,
            "logo_url": self.logo_url,
            "agent_name": self.agent_name,
            "agent_email": self.agent_email,
            "agent_phone": self.agent_phone,
        }


def hex_to_rgb(value: str, default: tuple[float, float, float] = (0.15, 0.39, 0.92)) -> tuple[float, float, float]:
    s = (value or "").strip().lstrip("#")
    if len(s) == 3:
        s = "".join(c * 2 for c in s)
    if len(s) != 6:
        return default
    try:
        r, g, b = int(s[0:2], 16), int(s[2:4], 16), int(s[4:6], 16)
    except ValueError:
        return default
    return (r / 255.0, g / 255.0, b / 255.0)


def format_currency(value: Any) -> str:
    if value is None:
        return "N/A"
    try:
        return f"${float(value):,.0f}"
    except (TypeError, ValueError):
        return "N/A"


def _label(key: str) -> str:
    return key.replace("_", " ").strip().capitalize()


class _PageWriter:
    """Top-down text flow over A4 pages; starts a new page when full."""

    def __init__(self, doc: "fitz.Document", branding: Branding, generated_on: str):
        self.doc = doc
        self.branding = branding
        self.generated_on = generated_on
        self.primary = hex_to_rgb(branding.primary_color)
        self.secondary = hex_to_rgb(branding.secondary_color, default=(0.9, 0.91, 0.92))
        self.page = None
        self.y = 0.0
        self.new_page()

    def new_page(self) -> None:
        self.page = self.doc.new_page(width=A4_WIDTH, height=A4_HEIGHT)
        self.page.insert_text((MARGIN_X, 30), self.branding.company_name, fontsize=9, fontname="helv", color=(0.42, 0.45, 0.5))
        self.y = MARGIN_TOP

    def ensure(self, height: float) -> None:
        if self.y + height > A4_HEIGHT - MARGIN_BOTTOM:
            self.new_page()

    def text(self, s: str, *, size: float = 11, bold: bool = False, color=(0, 0, 0), x: float = MARGIN_X) -> None:
        self.ensure(size + 6)
        self.page.insert_text((x, self.y), s, fontsize=size, fontname="hebo" if bold else "helv", color=color)
        self.y += size + 6

    def heading(self, s: str, *, size: float = 16) -> None:
        self.y += 8
        self.text(s, size=size, bold=True, color=self.primary)

    def row(self, cells: list[str], widths: list[float], *, bold: bool = False, size: float = 10, shaded: bool = False) -> None:
        self.ensure(size + 6)
        x = float(MARGIN_X)
        if shaded:
            band = fitz.Rect(x - 4, self.y - size - 2, x + sum(widths), self.y + 4)
            self.page.draw_rect(band, color=None, fill=self.secondary)
        for cell, w in zip(cells, widths):
            self.page.insert_text((x, self.y), cell, fontsize=size, fontname="hebo" if bold else "helv")
            x += w
        self.y += size + 6

    def rule(self) -> None:
        self.ensure(8)
        self.page.draw_line((MARGIN_X, self.y - 4), (A4_WIDTH - MARGIN_X, self.y - 4), color=self.secondary)
        self.y += 4

    def footers(self) -> None:
        total = len(self.doc)
        for i, page in enumerate(self.doc):
            page.insert_text(
                (MARGIN_X, A4_HEIGHT - 25),
                f"Page {i + 1} of {total} | Report generated on {self.generated_on}",
                fontsize=8,
                fontname="helv",
                color=(0.42, 0.45, 0.5),
            )


class PdfReportRenderer:
    """
    Renders an appraisal report to PDF bytes.

    template_data keys: appraisal (dict), comparables (list of dicts),
    kind ("final" | "preview"), generated_at (datetime).
    """

    content_type = PDF_CONTENT_TYPE
    extension = "pdf"

    def render(self, template_data: dict[str, Any], branding: Optional[Branding] = None) -> bytes:
        branding = branding or Branding()
        try:
            return self._render(template_data, branding)
        except (RuntimeError, ValueError, TypeError) as e:
            log.error("pdf rendering failed: %s", e, extra={"appraisal_id": (template_data.get("appraisal") or {}).get("id")})
            raise UpstreamFailure("renderer", f"pdf rendering failed: {e}", status_code=502)

    def _render(self, data: dict[str, Any], branding: Branding) -> bytes:
        a = data.get("appraisal") or {}
        comps = data.get("comparables") or []
        kind = str(data.get("kind") or "final")
        generated_at = data.get("generated_at") or datetime.utcnow()
        generated_on = generated_at.strftime("%B %d, %Y")

        doc = fitz.open()
        try:
            doc.set_metadata(
                {
                    "title": f"Property Appraisal Report - {a.get('property_address', '')}",
                    "author": branding.company_name,
                    "subject": "Property Appraisal",
                    "keywords": "appraisal, property, valuation",
                    "creator": branding.company_name,
                }
            )
            w = _PageWriter(doc, branding, generated_on)

            title = "Property Appraisal Report"
            if kind == "preview":
                title += " (Preview)"
            w.text(title, size=22, bold=True, color=w.primary)

            w.heading("Property Information")
            w.row(["Address:", str(a.get("property_address") or "")], [140, 375])
            w.row(["Property Type:", str(a.get("property_type") or "N/A")], [140, 375])
            w.row(["Generated On:", generated_on], [140, 375])

            w.heading("Valuation Summary")
            w.row(
                [
                    "Estimated Value Range:",
                    f"{format_currency(a.get('estimated_value_min'))} - {format_currency(a.get('estimated_value_max'))}",
                ],
                [140, 375],
            )
            if a.get("final_value") is not None:
                w.row(["Final Value:", format_currency(a.get("final_value"))], [140, 375], bold=True)

            w.heading("Property Details")
            w.row(["Attribute", "Value"], [200, 315], bold=True, shaded=True)
            w.rule()
            for key in ("bedrooms", "bathrooms", "land_size"):
                v = a.get(key)
                w.row([_label(key), "N/A" if v is None else str(v)], [200, 315])

            if comps:
                w.heading("Comparable Properties")
                widths = [215, 90, 50, 50, 110]
                w.row(["Address", "Price", "Beds", "Baths", "Sold"], widths, bold=True, shaded=True)
                w.rule()
                for c in comps:
                    w.row(
                        [
                            str(c.get("address") or "")[:42],
                            format_currency(c.get("sale_price")),
                            "" if c.get("bedrooms") is None else str(c.get("bedrooms")),
                            "" if c.get("bathrooms") is None else str(c.get("bathrooms")),
                            str(c.get("sold_date") or ""),
                        ],
                        widths,
                    )

            if a.get("completion_notes"):
                w.heading("Appraiser Notes")
                for line in str(a["completion_notes"]).splitlines() or [""]:
                    w.text(line[:100], size=10)

            contact = [x for x in (branding.agent_name, branding.agent_email, branding.agent_phone) if x]
            if contact:
                w.heading("Contact", size=13)
                w.text(" | ".join(contact), size=10)

            w.footers()
            return doc.tobytes(garbage=3, deflate=True)
        finally:
            doc.close()
