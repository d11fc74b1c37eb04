"""
TaxScope - Report Renderer
==========================
Builds the analysis report shown at the end of the workflow and renders it
for printing (plain text) and downloading (PDF via ReportLab).

Rendering failures on download are caught and turned into a user-visible
error string; nothing is retried.
"""

import io
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, List, Optional
from xml.sax.saxutils import escape

from pydantic import BaseModel, Field
from reportlab.lib import colors
from reportlab.lib.enums import TA_CENTER
from reportlab.lib.pagesizes import letter
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.platypus import PageBreak, Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from models import (
    AnalysisResult,
    BusinessFinances,
    PersonalFinances,
    RecommendationSection,
    TaxScenario,
    UserProfile,
)
from recommendations import ACTION_ITEMS, build_recommendations

logger = logging.getLogger(__name__)


REPORT_TITLE = "Tax Analysis Report"
IMPACT_HEADING = "Your Tax Impact Analysis"
WITHOUT_CUTS_LABEL = "Without tax cuts, you would have paid"
WITH_CUTS_LABEL = "With tax cuts, you only paid"
DOWNLOAD_ERROR = "Failed to download report"
DISCLAIMER = (
    "This analysis is for informational purposes only and should not be considered as tax advice. "
    "Please consult with a qualified tax professional for specific guidance."
)

SCENARIO_LABELS = {
    TaxScenario.PERSONAL: "Personal",
    TaxScenario.BUSINESS: "Business",
    TaxScenario.COMBINED: "Combined",
}


def fmt_currency(amount: float) -> str:
    """Format number as currency."""
    if amount < 0:
        return f"-${abs(amount):,.2f}"
    return f"${amount:,.2f}"


# =============================================================================
# REPORT MODEL
# =============================================================================

class TaxReport(BaseModel):
    """Everything the report view, the printout and the PDF show."""

    title: str = REPORT_TITLE
    scenario: TaxScenario
    scenario_label: str
    profile: Optional[UserProfile] = None
    personal: Optional[PersonalFinances] = None
    business: Optional[BusinessFinances] = None
    result: AnalysisResult

    impact_heading: str = IMPACT_HEADING
    without_cuts_label: str = WITHOUT_CUTS_LABEL
    with_cuts_label: str = WITH_CUTS_LABEL
    savings_message: str

    recommendations: List[RecommendationSection]
    action_items: List[str] = Field(default_factory=lambda: list(ACTION_ITEMS))
    ai_insights: List[str] = Field(default_factory=list)
    disclaimer: str = DISCLAIMER
    generated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


def savings_message(savings: float) -> str:
    if savings >= 0:
        return f"You have earned {fmt_currency(savings)} from your tax cuts this year"
    return f"Your tax cuts did not lower your bill this year ({fmt_currency(savings)})"


def build_report(
    scenario: TaxScenario,
    result: AnalysisResult,
    profile: Optional[UserProfile] = None,
    personal: Optional[PersonalFinances] = None,
    business: Optional[BusinessFinances] = None,
    ai_insights: Optional[List[str]] = None,
) -> TaxReport:
    """Assemble the report for a finished workflow."""
    return TaxReport(
        scenario=scenario,
        scenario_label=SCENARIO_LABELS[scenario],
        profile=profile,
        personal=personal,
        business=business,
        result=result,
        savings_message=savings_message(result.savings),
        recommendations=build_recommendations(has_business=business is not None),
        ai_insights=list(ai_insights or []),
    )


def figure_rows(report: TaxReport) -> List[List[str]]:
    """Label/value rows of the headline figures, shared by every output."""
    r = report.result
    return [
        ["Total Income", fmt_currency(r.total_income)],
        ["Total Deductions", fmt_currency(r.total_deductions)],
        ["Taxable Income", fmt_currency(r.taxable_income)],
        ["Tax Credits", fmt_currency(r.total_credits)],
        [report.without_cuts_label, fmt_currency(r.tax_before_cuts)],
        ["Tax After Deductions", fmt_currency(r.tax_after_deductions)],
        [report.with_cuts_label, fmt_currency(r.tax_after_cuts)],
        ["Savings", fmt_currency(r.savings)],
        ["Effective Rate", f"{r.effective_rate:.2f}%"],
    ]


# =============================================================================
# PRINT
# =============================================================================

def render_text(report: TaxReport) -> str:
    """Plain-text printout of the report."""
    lines = [
        report.title.upper(),
        "=" * len(report.title),
        f"Scenario: {report.scenario_label}",
        f"Generated: {report.generated_at:%Y-%m-%d %H:%M} UTC",
        "",
        report.impact_heading,
        "-" * len(report.impact_heading),
    ]
    width = max(len(label) for label, _ in figure_rows(report))
    lines.extend(f"{label.ljust(width)}  {value}" for label, value in figure_rows(report))
    lines.extend(["", report.savings_message, ""])

    for section in report.recommendations:
        lines.append(section.title)
        lines.extend(f"  - {item}" for item in section.items)
        lines.append("")

    if report.ai_insights:
        lines.append("AI Insights")
        lines.extend(f"  - {insight}" for insight in report.ai_insights)
        lines.append("")

    lines.append("Action Items")
    lines.extend(f"  [ ] {item}" for item in report.action_items)
    lines.extend(["", report.disclaimer])
    return "\n".join(lines)


# =============================================================================
# PDF
# =============================================================================

class ReportPDFGenerator:
    """Generates the downloadable PDF report using ReportLab."""

    def __init__(self):
        self._styles = getSampleStyleSheet()
        self._setup_custom_styles()

    def _setup_custom_styles(self):
        self._styles.add(ParagraphStyle(
            'CoverTitle',
            parent=self._styles['Title'],
            fontSize=26,
            alignment=TA_CENTER,
            spaceAfter=18,
        ))
        self._styles.add(ParagraphStyle(
            'SectionHeading',
            parent=self._styles['Heading2'],
            fontSize=13,
            fontName='Helvetica-Bold',
            spaceBefore=14,
            spaceAfter=8,
            textColor=colors.HexColor("#1e40af"),
        ))
        self._styles.add(ParagraphStyle(
            'ReportBullet',
            parent=self._styles['Normal'],
            fontSize=10,
            leading=14,
            leftIndent=16,
            spaceAfter=3,
        ))
        self._styles.add(ParagraphStyle(
            'Disclaimer',
            parent=self._styles['Normal'],
            fontSize=8,
            leading=10,
            textColor=colors.gray,
            spaceBefore=24,
        ))

    def _table(self, rows: List[List[str]]) -> Table:
        table = Table(rows, colWidths=[3.6 * inch, 2.4 * inch])
        table.setStyle(TableStyle([
            ('FONTNAME', (0, 0), (-1, -1), 'Helvetica'),
            ('FONTSIZE', (0, 0), (-1, -1), 10),
            ('ALIGN', (1, 0), (1, -1), 'RIGHT'),
            ('LINEBELOW', (0, 0), (-1, -1), 0.25, colors.lightgrey),
            ('BOTTOMPADDING', (0, 0), (-1, -1), 5),
        ]))
        return table

    def _cover(self, report: TaxReport) -> list:
        styles = self._styles
        story = [
            Spacer(1, 2 * inch),
            Paragraph(report.title, styles['CoverTitle']),
            Paragraph(f"{report.scenario_label} scenario", styles['Heading3']),
            Paragraph(f"Generated {report.generated_at:%B %d, %Y}", styles['Normal']),
        ]
        if report.profile:
            story.append(Paragraph(
                f"Filing status: {report.profile.filing_status.value.replace('_', ' ').title()} "
                f"| Country: {report.profile.country} | Dependents: {report.profile.dependents}",
                styles['Normal'],
            ))
        story.append(PageBreak())
        return story

    def _personal_section(self, personal: PersonalFinances) -> list:
        rows = [
            ["Salary", fmt_currency(personal.salary_income)],
            ["Freelance", fmt_currency(personal.freelance_income)],
            ["Investments", fmt_currency(personal.investment_income)],
            ["Rental", fmt_currency(personal.rental_income)],
            ["Capital Gains", fmt_currency(personal.capital_gains)],
            ["Other Income", fmt_currency(personal.other_income)],
            ["Total Deductions", fmt_currency(personal.total_deductions)],
            ["Personal Taxable Income", fmt_currency(personal.taxable_income)],
        ]
        return [Paragraph("Personal Analysis", self._styles['SectionHeading']), self._table(rows)]

    def _business_section(self, business: BusinessFinances) -> list:
        rows = [
            ["Revenue", fmt_currency(business.revenue)],
            ["Total Expenses", fmt_currency(business.total_expenses)],
            ["Net Business Income", fmt_currency(business.net_income)],
        ]
        return [Paragraph("Business Analysis", self._styles['SectionHeading']), self._table(rows)]

    def _bullets(self, heading: str, items: List[str], prefix: str = "&bull;") -> list:
        story = [Paragraph(heading, self._styles['SectionHeading'])]
        story.extend(Paragraph(f"{prefix} {escape(item)}", self._styles['ReportBullet']) for item in items)
        return story

    def generate_pdf(self, report: TaxReport) -> bytes:
        """
        Render the report.

        Sections: cover page, executive summary, personal analysis, business
        analysis (when present), recommendations, action checklist,
        disclaimer.
        """
        buffer = io.BytesIO()
        doc = SimpleDocTemplate(
            buffer,
            pagesize=letter,
            title=report.title,
            leftMargin=0.8 * inch,
            rightMargin=0.8 * inch,
            topMargin=0.8 * inch,
            bottomMargin=0.8 * inch,
        )

        story = self._cover(report)
        story.append(Paragraph("Executive Summary", self._styles['SectionHeading']))
        story.append(Paragraph(report.impact_heading, self._styles['Heading3']))
        story.append(self._table(figure_rows(report)))
        story.append(Spacer(1, 8))
        story.append(Paragraph(report.savings_message, self._styles['Normal']))

        if report.personal:
            story.extend(self._personal_section(report.personal))
        if report.business:
            story.extend(self._business_section(report.business))

        for section in report.recommendations:
            story.extend(self._bullets(section.title, section.items))
        if report.ai_insights:
            story.extend(self._bullets("AI Insights", report.ai_insights))
        story.extend(self._bullets("Action Checklist", report.action_items, prefix="[  ]"))

        story.append(Paragraph(report.disclaimer, self._styles['Disclaimer']))

        doc.build(story)
        pdf_bytes = buffer.getvalue()
        buffer.close()
        logger.info(f"Rendered report PDF ({len(pdf_bytes)} bytes)")
        return pdf_bytes


def render_pdf(report: TaxReport) -> bytes:
    return ReportPDFGenerator().generate_pdf(report)


# =============================================================================
# DOWNLOAD
# =============================================================================

@dataclass
class DownloadOutcome:
    """Result of a download attempt."""
    success: bool
    content: Optional[bytes] = None
    filename: Optional[str] = None
    error: Optional[str] = None


def report_filename(report: TaxReport) -> str:
    return f"tax-analysis-{report.scenario.value}-{report.generated_at:%Y%m%d}.pdf"


def download_report(
    report: TaxReport,
    renderer: Callable[[TaxReport], bytes] = render_pdf,
) -> DownloadOutcome:
    """
    Render the report for download.

    Any failure of the renderer is logged and returned as an error string.
    """
    try:
        content = renderer(report)
    except Exception as e:
        logger.error(f"Error generating report: {e}")
        return DownloadOutcome(success=False, error=DOWNLOAD_ERROR)

    return DownloadOutcome(success=True, content=content, filename=report_filename(report))
