from __future__ import annotations

import logging

from fpdf import FPDF

from timebill.constants import format_period
from timebill.models import format_usd
from timebill.models.adjustment import AdjustmentState
from timebill.models.invoice import Invoice, InvoiceLineItem

logger = logging.getLogger(__name__)

COLORS = {
    "primary": (33, 52, 84),
    "primary_light": (238, 241, 246),
    "secondary": (46, 139, 122),
    "text_color": (40, 40, 40),
    "text_contrast": (255, 255, 255),
    "muted_text": (120, 120, 120),
    "row_alt": (246, 248, 250),
    "border_color": (205, 210, 218),
}

FONT = "Helvetica"


def _latin1(text: str) -> str:
    """Core PDF fonts only cover latin-1; replace anything else."""
    return text.encode("latin-1", "replace").decode("latin-1")


class DocumentPDF:
    """Shared layout for the rendered invoice and bill documents."""

    def _new_document(self) -> tuple[FPDF, float]:
        pdf = FPDF()
        pdf.add_page()
        pdf.set_auto_page_break(auto=True, margin=20)
        return pdf, pdf.w - pdf.l_margin - pdf.r_margin

    def _draw_banner(self, pdf: FPDF, page_w: float, title: str, subtitle: str) -> None:
        c = COLORS
        x = pdf.l_margin
        y = pdf.get_y()
        pdf.set_fill_color(*c["primary"])
        pdf.rect(x, y, page_w, 34, "F")

        pdf.set_y(y + 8)
        pdf.set_text_color(*c["text_contrast"])
        pdf.set_font(FONT, "B", 24)
        pdf.cell(0, 12, title, align="C", new_x="LMARGIN", new_y="NEXT")
        pdf.set_font(FONT, "", 9)
        pdf.cell(0, 6, _latin1(subtitle), align="C", new_x="LMARGIN", new_y="NEXT")
        pdf.ln(10)

    def _draw_info_card(self, pdf: FPDF, x: float, y: float, w: float, h: float, label: str, value: str) -> None:
        """Draw a single info card with accent bar, label, and value."""
        c = COLORS
        pdf.set_fill_color(*c["primary_light"])
        pdf.rect(x, y, w, h, "F")
        pdf.set_fill_color(*c["secondary"])
        pdf.rect(x, y, 3, h, "F")

        pdf.set_xy(x + 8, y + 3)
        pdf.set_font(FONT, "B", 7)
        pdf.set_text_color(*c["muted_text"])
        pdf.cell(w - 12, 5, label, new_x="LEFT", new_y="NEXT")
        pdf.set_x(x + 8)
        pdf.set_font(FONT, "B", 11)
        pdf.set_text_color(*c["text_color"])
        pdf.cell(w - 12, 8, _latin1(value))

    def _draw_cards(self, pdf: FPDF, page_w: float, cards: list[tuple[str, str]]) -> None:
        card_h = 22
        card_y = pdf.get_y()
        gap = 4
        card_w = (page_w - gap * (len(cards) - 1)) / len(cards)
        for i, (label, value) in enumerate(cards):
            self._draw_info_card(pdf, pdf.l_margin + i * (card_w + gap), card_y, card_w, card_h, label, value)
        pdf.set_y(card_y + card_h + 10)

    def _draw_table(
        self, pdf: FPDF, page_w: float, heading: str, columns: list[tuple[str, float, str]], rows: list[list[str]]
    ) -> None:
        c = COLORS
        line_h = 9

        pdf.set_font(FONT, "B", 11)
        pdf.set_text_color(*c["primary"])
        pdf.cell(0, 8, heading, new_x="LMARGIN", new_y="NEXT")
        pdf.set_draw_color(*c["secondary"])
        pdf.set_line_width(0.8)
        y = pdf.get_y()
        pdf.line(pdf.l_margin, y, pdf.l_margin + 30, y)
        pdf.ln(4)

        pdf.set_fill_color(*c["primary"])
        pdf.set_text_color(*c["text_contrast"])
        pdf.set_font(FONT, "B", 8)
        for i, (title, share, align) in enumerate(columns):
            last = i == len(columns) - 1
            pdf.cell(
                page_w * share,
                line_h,
                f" {title} ",
                fill=True,
                align=align,
                new_x="LMARGIN" if last else "RIGHT",
                new_y="NEXT" if last else "TOP",
            )

        pdf.set_text_color(*c["text_color"])
        pdf.set_font(FONT, "", 8)
        for row_index, row in enumerate(rows):
            pdf.set_fill_color(*(c["row_alt"] if row_index % 2 == 0 else c["text_contrast"]))
            for i, ((_, share, align), value) in enumerate(zip(columns, row)):
                last = i == len(columns) - 1
                pdf.cell(
                    page_w * share,
                    line_h,
                    f" {_latin1(value)} ",
                    fill=True,
                    align=align,
                    new_x="LMARGIN" if last else "RIGHT",
                    new_y="NEXT" if last else "TOP",
                )

        pdf.set_draw_color(*c["border_color"])
        pdf.set_line_width(0.3)
        y = pdf.get_y()
        pdf.line(pdf.l_margin, y, pdf.l_margin + page_w, y)
        pdf.ln(4)

    def _draw_summary(self, pdf: FPDF, page_w: float, lines: list[tuple[str, int]], total: int) -> None:
        c = COLORS
        col_label = page_w * 0.72
        col_amount = page_w * 0.28

        pdf.set_text_color(*c["text_color"])
        pdf.set_font(FONT, "", 10)
        for label, amount in lines:
            pdf.cell(col_label, 8, f"{label}  ", align="R")
            pdf.cell(col_amount, 8, f"{format_usd(amount)}  ", align="R", new_x="LMARGIN", new_y="NEXT")

        pdf.set_fill_color(*c["secondary"])
        pdf.set_text_color(*c["text_contrast"])
        pdf.set_font(FONT, "B", 12)
        pdf.cell(col_label, 12, "TOTAL  ", fill=True, align="R")
        pdf.cell(col_amount, 12, f"{format_usd(total)}  ", fill=True, align="R", new_x="LMARGIN", new_y="NEXT")

    def _draw_footer(self, pdf: FPDF, page_w: float, text: str) -> None:
        c = COLORS
        pdf.set_y(-30)
        pdf.set_draw_color(*c["border_color"])
        pdf.set_line_width(0.3)
        y = pdf.get_y()
        pdf.line(pdf.l_margin, y, pdf.l_margin + page_w, y)
        pdf.ln(5)
        pdf.set_font(FONT, "", 7)
        pdf.set_text_color(*c["muted_text"])
        pdf.cell(0, 5, _latin1(text), align="C")


class InvoicePDF(DocumentPDF):
    def generate(
        self,
        invoice: Invoice,
        line_items: list[InvoiceLineItem],
        client_name: str,
        project_name: str = "",
    ) -> bytes:
        pdf, page_w = self._new_document()

        self._draw_banner(pdf, page_w, "INVOICE", f"Invoice {invoice.uuid}")
        due = f"{invoice.due_at:%b %d, %Y}" if invoice.due_at else "-"
        self._draw_cards(
            pdf,
            page_w,
            [("BILL TO", client_name), ("PERIOD", format_period(invoice.period_start, invoice.period_end) or "-")],
        )
        self._draw_cards(
            pdf,
            page_w,
            [("PROJECT", project_name or invoice.scope_label), ("HOURS", f"{invoice.total_hours}"), ("DUE", due)],
        )

        columns = [
            ("Date", 0.14, "L"),
            ("Code", 0.14, "L"),
            ("Notes", 0.36, "L"),
            ("Hours", 0.10, "R"),
            ("Rate", 0.12, "R"),
            ("Amount", 0.14, "R"),
        ]
        rows = [
            [
                f"{item.start:%Y-%m-%d}",
                item.billing_code,
                item.notes[:48],
                f"{item.billed_hours}",
                format_usd(item.rate_amount),
                format_usd(item.fee),
            ]
            for item in line_items
        ]
        self._draw_table(pdf, page_w, "TIME", columns, rows)

        if invoice.adjustments:
            adjustment_rows = [
                [adj.type.value.capitalize(), adj.notes[:60], format_usd(adj.signed_amount)]
                for adj in invoice.adjustments
                if adj.state != AdjustmentState.VOID
            ]
            if adjustment_rows:
                self._draw_table(
                    pdf,
                    page_w,
                    "ADJUSTMENTS",
                    [("Type", 0.18, "L"), ("Notes", 0.62, "L"), ("Amount", 0.20, "R")],
                    adjustment_rows,
                )

        self._draw_summary(
            pdf,
            page_w,
            [("Fees", invoice.total_fees), ("Adjustments", invoice.total_adjustments)],
            invoice.total_amount,
        )
        self._draw_footer(pdf, page_w, f"Payment due {due}. Please reference invoice {invoice.uuid}.")

        output = bytes(pdf.output())
        logger.debug(
            "PDF generated: invoice=%s items=%d size=%d bytes",
            invoice.uuid,
            len(line_items),
            len(output),
        )
        return output
