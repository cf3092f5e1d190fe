#!/usr/bin/env python3
"""
Generate a sample knowledge-base PDF and its metadata sidecar.

Creates a short multi-page handbook so the ingestion pipeline has something
to scan, OCR, and chunk on a fresh checkout. The text is rendered as page
content, so the OCR step sees a real page image, not embedded metadata.

Usage:
    uv run python scripts/generate_sample_knowledge.py
    uv run python scripts/generate_sample_knowledge.py --output-dir /tmp/kb

Output:
    <knowledge_dir>/soil-health-handbook.pdf
    <knowledge_dir>/soil-health-handbook.meta.json
"""

import argparse
import json
from pathlib import Path

from fpdf import FPDF

from app.config import settings
from app.services.metadata import sidecar_path

STEM = "soil-health-handbook"

SIDECAR = {
    "title": "Soil Health Handbook",
    "author": "Extension Services Working Group",
    "year": 2023,
    "topics": ["soil", "composting", "cover crops"],
    "priority": "high",
}

# One (section title, paragraphs) pair per page
PAGES = [
    (
        "Why Soil Structure Matters",
        [
            "Healthy soil is a living system. Aggregates formed by roots, "
            "fungal hyphae, and microbial glues create pore space that "
            "holds both air and water.",
            "Compacted soil loses that pore space. Water runs off instead "
            "of infiltrating, roots stay shallow, and yields fall during "
            "dry spells even when total rainfall is adequate.",
            "The simplest field test is the slake test: drop a dry clod "
            "into water and watch. Stable aggregates hold together for "
            "minutes; degraded soil collapses in seconds.",
        ],
    ),
    (
        "Building Organic Matter",
        [
            "Soil organic matter is the main lever a grower controls. Each "
            "percentage point of organic matter lets the top foot of soil "
            "hold roughly twenty thousand gallons more water per acre.",
            "Compost, crop residues, and manure all add organic matter, "
            "but at different rates. Mature compost is the most stable; "
            "fresh residues feed soil life quickly and break down fast.",
            "Avoid bare soil. Every week without living roots is a week in "
            "which the soil food web is starved and organic matter is lost.",
        ],
    ),
    (
        "Cover Crops in Practice",
        [
            "Cereal rye is the most forgiving winter cover: it germinates "
            "in cold soil, scavenges leftover nitrogen, and produces heavy "
            "residue for spring mulch.",
            "Legumes such as crimson clover and hairy vetch fix nitrogen. "
            "Mixing a legume with a grass balances fast and slow residue "
            "breakdown and reduces weed pressure.",
            "Terminate covers two to three weeks before planting small "
            "seeded crops. Large transplants can go straight into rolled "
            "residue.",
        ],
    ),
]


class Handbook(FPDF):
    """PDF with a running header and page footer."""

    def header(self):
        self.set_font("Helvetica", "B", 10)
        self.set_text_color(100, 100, 100)
        self.cell(0, 8, SIDECAR["title"], 0, 1, "C")
        self.line(10, self.get_y(), 200, self.get_y())
        self.ln(4)

    def footer(self):
        self.set_y(-15)
        self.set_font("Helvetica", "I", 8)
        self.set_text_color(150, 150, 150)
        self.cell(0, 10, f"Page {self.page_no()}/{{nb}}", 0, 0, "C")

    def section_title(self, title: str):
        self.set_font("Helvetica", "B", 14)
        self.set_text_color(0, 0, 0)
        self.ln(6)
        self.cell(0, 10, title, 0, 1)
        self.line(10, self.get_y(), 200, self.get_y())
        self.ln(2)

    def body_text(self, text: str):
        self.set_font("Helvetica", "", 11)
        self.set_text_color(30, 30, 30)
        self.multi_cell(0, 6, text)
        self.ln(3)


def generate_handbook(output_dir: Path) -> Path:
    """Write the sample PDF and sidecar into `output_dir`. Returns the PDF path."""
    output_dir.mkdir(parents=True, exist_ok=True)

    pdf = Handbook()
    pdf.alias_nb_pages()
    pdf.set_auto_page_break(auto=True, margin=20)

    for title, paragraphs in PAGES:
        pdf.add_page()
        pdf.section_title(title)
        for paragraph in paragraphs:
            pdf.body_text(paragraph)

    pdf_path = output_dir / f"{STEM}.pdf"
    pdf.output(str(pdf_path))

    sidecar_path(pdf_path).write_text(json.dumps(SIDECAR, indent=2) + "\n", encoding="utf-8")

    return pdf_path


def main():
    parser = argparse.ArgumentParser(description=__doc__.strip().splitlines()[0])
    parser.add_argument(
        "--output-dir",
        type=Path,
        default=Path(settings.knowledge_dir),
        help=f"Directory to write into (default: {settings.knowledge_dir})",
    )
    args = parser.parse_args()

    pdf_path = generate_handbook(args.output_dir)
    print(f"Generated: {pdf_path} ({len(PAGES)} pages)")
    print(f"Sidecar:   {sidecar_path(pdf_path)}")


if __name__ == "__main__":
    main()
