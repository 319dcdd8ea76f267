"""
PDF Artifact Manager

Renders packet content to a branded PDF (cover page, table of contents, one
section per content block) and manages the files on disk. Files live under
PDF_STORAGE_PATH and are addressed by PDF_PUBLIC_BASE_URL/<filename>; the URL
is what gets stored on the packet row.
"""
import html
import logging
import os
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional
from xml.sax.saxutils import escape

from reportlab.lib.pagesizes import letter
from reportlab.platypus import SimpleDocTemplate, Paragraph, Spacer, PageBreak
from reportlab.lib.styles import getSampleStyleSheet, ParagraphStyle
from reportlab.lib.units import inch
from reportlab.lib.colors import HexColor

from core.config import settings
from models import packet_type_label

logger = logging.getLogger(__name__)

MARGIN = 1 * inch  # 72pt
COVER_BAND_HEIGHT = 120
DISCLAIMER = (
    "Please consult with a healthcare provider before starting any new exercise "
    "or nutrition program."
)
WELCOME = (
    "This personalized plan has been created specifically for you based on your goals, "
    "preferences, and current fitness level."
)


@dataclass
class PdfMetadata:
    title: Optional[str] = None
    author: Optional[str] = None
    subject: Optional[str] = None
    keywords: List[str] = field(default_factory=list)


def _text(value: Any) -> str:
    """
    Paragraph-safe text. Stored content is already entity-escaped, so decode
    first and re-escape for reportlab's markup parser.
    """
    return escape(html.unescape(str(value)))


def format_section_title(key: str) -> str:
    return key.replace("_", " ").replace("-", " ").strip().title()


class PdfArtifactManager:
    def __init__(
        self,
        storage_path: Optional[str] = None,
        public_base_url: Optional[str] = None,
        brand_color: Optional[str] = None,
        author: Optional[str] = None,
    ):
        self.storage_path = Path(storage_path or settings.PDF_STORAGE_PATH)
        self.public_base_url = (public_base_url or settings.PDF_PUBLIC_BASE_URL).rstrip("/")
        self.brand_color = HexColor(brand_color or settings.PDF_BRAND_COLOR)
        self.author = author or settings.PDF_AUTHOR
        self._styles = self._build_styles()

    def _build_styles(self) -> Dict[str, ParagraphStyle]:
        base = getSampleStyleSheet()
        return {
            "brand": ParagraphStyle("Brand", parent=base["Title"], fontSize=30, leading=36,
                                    textColor=HexColor("#ffffff")),
            "cover_title": ParagraphStyle("CoverTitle", parent=base["Title"], fontSize=24, leading=30, spaceBefore=24,
                                          textColor=self.brand_color),
            "prepared_for": ParagraphStyle("PreparedFor", parent=base["Heading2"], alignment=1, fontSize=20,
                                           leading=26, spaceBefore=40),
            "date": ParagraphStyle("Date", parent=base["Normal"], alignment=1, fontSize=14,
                                   textColor=HexColor("#666666")),
            "welcome": ParagraphStyle("Welcome", parent=base["Normal"], alignment=1, fontSize=12, leading=16,
                                      textColor=HexColor("#333333"), spaceBefore=60),
            "disclaimer": ParagraphStyle("Disclaimer", parent=base["Normal"], alignment=1, fontSize=10,
                                         textColor=HexColor("#999999"), spaceBefore=180),
            "section": ParagraphStyle("Section", parent=base["Heading1"], fontSize=18, leading=22,
                                      textColor=self.brand_color, spaceAfter=10),
            "subsection": ParagraphStyle("Subsection", parent=base["Heading3"], textColor=HexColor("#333333")),
            "body": ParagraphStyle("Body", parent=base["Normal"], fontSize=11, leading=15,
                                   textColor=HexColor("#333333"), spaceAfter=6),
            "bullet": ParagraphStyle("Bullet", parent=base["Normal"], fontSize=11, leading=15, leftIndent=18,
                                     textColor=HexColor("#333333")),
            "toc": ParagraphStyle("Toc", parent=base["Normal"], fontSize=12, leading=20),
        }

    # Paths and urls

    def url_for(self, filename: str) -> str:
        return f"{self.public_base_url}/{filename}"

    def path_for_url(self, url: str) -> Optional[Path]:
        """File backing a stored url, or None if the url is not one of ours."""
        if not url or not url.startswith(self.public_base_url + "/"):
            return None
        filename = os.path.basename(url)
        if not filename or filename in (".", ".."):
            return None
        return self.storage_path / filename

    # Rendering

    def _draw_cover_band(self, canvas, doc):
        width, height = doc.pagesize
        canvas.saveState()
        canvas.setFillColor(self.brand_color)
        canvas.rect(0, height - COVER_BAND_HEIGHT, width, COVER_BAND_HEIGHT, fill=1, stroke=0)
        canvas.restoreState()

    def _draw_footer(self, canvas, doc):
        canvas.saveState()
        canvas.setFont("Helvetica", 9)
        canvas.setFillColor(HexColor("#999999"))
        canvas.drawCentredString(doc.pagesize[0] / 2, MARGIN / 2, f"{self.author}  |  Page {doc.page}")
        canvas.restoreState()

    def extract_sections(self, content: Dict[str, Any]) -> List[Dict[str, Any]]:
        """
        Normalize packet content into [{title, description, items}].

        Template-populated content carries a `sections` list of
        {title, description, blocks}; any other top-level keys (except
        `metadata`) become their own sections.
        """
        sections: List[Dict[str, Any]] = []
        for section in content.get("sections") or []:
            if not isinstance(section, dict):
                continue
            blocks = section.get("blocks") or []
            sections.append({
                "title": section.get("title") or "Untitled",
                "description": section.get("description"),
                "items": [b.get("content") if isinstance(b, dict) else b for b in blocks],
            })
        for key, value in content.items():
            if key in ("sections", "metadata"):
                continue
            sections.append({"title": format_section_title(key), "description": None, "items": value})
        return sections

    def _render_value(self, value: Any, story: list) -> None:
        styles = self._styles
        if isinstance(value, list):
            for item in value:
                if isinstance(item, dict):
                    self._render_value(item, story)
                elif item is not None:
                    story.append(Paragraph(f"\u2022 {_text(item)}", styles["bullet"]))
        elif isinstance(value, dict):
            for key, item in value.items():
                if isinstance(item, (dict, list)):
                    story.append(Paragraph(_text(format_section_title(str(key))), styles["subsection"]))
                    self._render_value(item, story)
                else:
                    story.append(Paragraph(
                        f"<b>{_text(format_section_title(str(key)))}:</b> {_text(item)}", styles["body"]
                    ))
        elif value is not None:
            story.append(Paragraph(_text(value), styles["body"]))

    def build_story(self, content: Dict[str, Any], client_name: str, packet_type: str) -> list:
        styles = self._styles
        label = packet_type_label(packet_type)
        today = datetime.now(timezone.utc).strftime("%B %d, %Y").replace(" 0", " ")

        story = [
            Paragraph(_text(self.author), styles["brand"]),
            Paragraph(f"{_text(label)} Plan", styles["cover_title"]),
            Paragraph(f"Prepared for: {_text(client_name)}", styles["prepared_for"]),
            Paragraph(today, styles["date"]),
            Paragraph(WELCOME, styles["welcome"]),
            Paragraph(DISCLAIMER, styles["disclaimer"]),
            PageBreak(),
        ]

        sections = self.extract_sections(content)
        story.append(Paragraph("Table of Contents", styles["section"]))
        for index, section in enumerate(sections, start=1):
            story.append(Paragraph(f"{index}. {_text(section['title'])}", styles["toc"]))
        story.append(PageBreak())

        for section in sections:
            story.append(Paragraph(_text(section["title"]), styles["section"]))
            if section["description"]:
                story.append(Paragraph(f"<i>{_text(section['description'])}</i>", styles["body"]))
            self._render_value(section["items"], story)
            story.append(Spacer(1, 0.3 * inch))

        return story

    def generate(
        self,
        packet_id,
        content: Dict[str, Any],
        client_name: str,
        packet_type: str,
        metadata: Optional[PdfMetadata] = None,
    ) -> str:
        """Render a new PDF and return its url. Raises on any failure."""
        metadata = metadata or PdfMetadata()
        label = packet_type_label(packet_type)

        self.storage_path.mkdir(parents=True, exist_ok=True)
        filename = f"packet-{packet_id}-{int(time.time() * 1000)}-{uuid.uuid4().hex[:6]}.pdf"
        filepath = self.storage_path / filename

        doc = SimpleDocTemplate(
            str(filepath),
            pagesize=letter,
            leftMargin=MARGIN,
            rightMargin=MARGIN,
            topMargin=MARGIN,
            bottomMargin=MARGIN,
            title=metadata.title or f"{label} Plan - {client_name}",
            author=metadata.author or self.author,
            subject=metadata.subject or f"Personalized {label} Plan",
            keywords=", ".join(metadata.keywords or [packet_type]),
            creator=f"{self.author} System",
        )
        doc.build(
            self.build_story(content or {}, client_name, packet_type),
            onFirstPage=self._draw_cover_band,
            onLaterPages=self._draw_footer,
        )

        url = self.url_for(filename)
        logger.info(
            f"Generated PDF for packet {packet_id}",
            extra={"extra_fields": {"packet_id": str(packet_id), "pdf_url": url}},
        )
        return url

    def delete(self, url: str) -> bool:
        """
        Remove the file addressed by `url`.

        Returns True if a file was removed, False if there was nothing to
        remove (already gone, or not a url we manage). Other OS errors
        propagate.
        """
        path = self.path_for_url(url)
        if path is None:
            logger.warning(f"Refusing to delete PDF outside storage: {url}")
            return False
        try:
            path.unlink()
        except FileNotFoundError:
            logger.info(f"PDF already absent: {url}")
            return False
        logger.info(f"Deleted PDF {url}")
        return True


def get_pdf_manager() -> PdfArtifactManager:
    """Settings-configured manager; the packets router takes it as a dependency."""
    return PdfArtifactManager()
