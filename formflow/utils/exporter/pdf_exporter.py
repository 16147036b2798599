### formflow/utils/exporter/pdf_exporter.py

# Standard library imports
from io import BytesIO
from typing import Optional

# Third party imports
from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import getSampleStyleSheet
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

# Local imports
from formflow.utils.exporter.base import DataExportBase


class PDFExporter(DataExportBase):
    """Export tabular data to a PDF file"""

    def __init__(self, data, title: str = "Report", subtitle: Optional[str] = None):
        self.title = title
        self.subtitle = subtitle
        super().__init__(data)

    def export(self) -> BytesIO:
        """Export data to PDF file"""
        buffer = BytesIO()
        doc = SimpleDocTemplate(
            buffer, pagesize=A4, rightMargin=30,
            leftMargin=30, topMargin=30, bottomMargin=30,
            title=self.title,
        )
        styles = getSampleStyleSheet()
        elements = [Paragraph(self.title, styles["Title"])]
        if self.subtitle:
            elements.append(Paragraph(self.subtitle, styles["Normal"]))
        elements.append(Spacer(1, 12))

        # Wrap cells so long answers break across lines
        body_style = styles["BodyText"]
        header = [Paragraph(f'<font color="white"><b>{col}</b></font>', body_style) for col in self.df.columns.tolist()]
        rows = [
            [Paragraph(_escape(str(cell)), body_style) for cell in row]
            for row in self.df.astype(str).values.tolist()
        ]
        col_widths = [160, 375] if len(header) == 2 else None
        table = Table([header] + rows, repeatRows=1, colWidths=col_widths)
        table.setStyle(TableStyle([
            ("BACKGROUND", (0, 0), (-1, 0), colors.HexColor("#2F5597")),
            ("TEXTCOLOR", (0, 0), (-1, 0), colors.white),
            ("ALIGN", (0, 0), (-1, -1), "LEFT"),
            ("VALIGN", (0, 0), (-1, -1), "TOP"),
            ("FONTSIZE", (0, 0), (-1, -1), 9),
            ("BOTTOMPADDING", (0, 0), (-1, 0), 6),
            ("BACKGROUND", (0, 1), (-1, -1), colors.whitesmoke),
            ("GRID", (0, 0), (-1, -1), 0.25, colors.grey),
        ]))
        elements.append(table)
        doc.build(elements)
        buffer.seek(0)
        return buffer


def _escape(text: str) -> str:
    return text.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")
