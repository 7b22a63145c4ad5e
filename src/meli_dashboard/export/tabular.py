"""CSV and spreadsheet exports of the product table."""
from __future__ import annotations

import csv
import io
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date

from openpyxl import Workbook
from openpyxl.styles import Font

from ..models import DashboardRow

CSV_MIMETYPE = "text/csv"
XLSX_MIMETYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


@dataclass(slots=True)
class TabularExporter:
    """Renders dashboard rows as downloadable files, entirely in memory."""

    window_days: int = 60
    sheet_title: str = "Products"

    @property
    def headers(self) -> list[str]:
        return [
            "ID",
            "Title",
            "SKU",
            "Price",
            "Stock",
            f"Sales {self.window_days}d",
            "Fulfillment",
            "Status",
            "Link",
        ]

    def records(self, rows: Iterable[DashboardRow]) -> list[list[object]]:
        records: list[list[object]] = []
        for row in rows:
            item = row.item
            records.append(
                [
                    item.id,
                    item.title,
                    item.sku,
                    item.price,
                    item.available_quantity,
                    row.units_sold,
                    row.fulfillment.label,
                    item.status.value,
                    item.permalink,
                ]
            )
        return records

    def to_csv(self, rows: Iterable[DashboardRow]) -> bytes:
        buffer = io.StringIO()
        writer = csv.writer(buffer)
        writer.writerow(self.headers)
        writer.writerows(self.records(rows))
        return buffer.getvalue().encode("utf-8")

    def to_xlsx(self, rows: Iterable[DashboardRow]) -> bytes:
        workbook = Workbook()
        sheet = workbook.active
        sheet.title = self.sheet_title
        sheet.append(self.headers)
        for cell in sheet[1]:
            cell.font = Font(bold=True)
        for record in self.records(rows):
            sheet.append(record)
        sheet.freeze_panes = "A2"

        buffer = io.BytesIO()
        workbook.save(buffer)
        return buffer.getvalue()

    @staticmethod
    def filename(extension: str, today: date | None = None) -> str:
        today = today or date.today()
        return f"products_ml_{today.isoformat()}.{extension}"
