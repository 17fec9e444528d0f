from __future__ import annotations

import logging

from timebill.constants import BILL_STATE_LABELS, format_period
from timebill.models import format_usd
from timebill.models.bill import Bill, BillAdjustment
from timebill.models.entry import Entry
from timebill.pdf.invoice import DocumentPDF

logger = logging.getLogger(__name__)


class BillPDF(DocumentPDF):
    def generate(
        self,
        bill: Bill,
        employee_name: str,
        rows: list[tuple[Entry, str, int]],
        adjustments: list[BillAdjustment],
    ) -> bytes:
        """Render a payroll bill. ``rows`` holds (entry, billing code, internal fee) triples."""
        pdf, page_w = self._new_document()

        self._draw_banner(pdf, page_w, "PAYROLL BILL", f"Bill {bill.uuid}")
        self._draw_cards(
            pdf,
            page_w,
            [
                ("EMPLOYEE", employee_name),
                ("PERIOD", format_period(bill.period_start, bill.period_end)),
                ("STATUS", BILL_STATE_LABELS.get(bill.state, bill.state.value)),
            ],
        )

        table_rows = [
            [
                f"{entry.start:%Y-%m-%d %H:%M}",
                code,
                entry.notes[:50],
                f"{entry.duration_minutes / 60:.2f}",
                format_usd(fee),
            ]
            for entry, code, fee in rows
        ]
        self._draw_table(
            pdf,
            page_w,
            "TIME",
            [("Start", 0.20, "L"), ("Code", 0.14, "L"), ("Notes", 0.38, "L"), ("Hours", 0.12, "R"), ("Fee", 0.16, "R")],
            table_rows,
        )

        if adjustments:
            self._draw_table(
                pdf,
                page_w,
                "ADJUSTMENTS",
                [("Type", 0.18, "L"), ("Notes", 0.62, "L"), ("Amount", 0.20, "R")],
                [[a.type.value.capitalize(), a.notes[:60], format_usd(a.signed_amount)] for a in adjustments],
            )

        self._draw_summary(
            pdf,
            page_w,
            [("Fees", bill.total_fees), ("Adjustments", bill.total_adjustments)],
            bill.total_amount,
        )
        self._draw_footer(pdf, page_w, f"{bill.total_hours} hours for {employee_name}")

        output = bytes(pdf.output())
        logger.debug("PDF generated: bill=%s entries=%d size=%d bytes", bill.uuid, len(rows), len(output))
        return output
