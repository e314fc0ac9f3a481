"""
Excel report generator for ledger synchronization runs.
Creates multi-sheet workbooks with formatted output.
"""

from datetime import datetime, timezone
from pathlib import Path
from typing import Optional
import logging

from openpyxl import Workbook
from openpyxl.styles import Font, PatternFill, Border, Side
from openpyxl.worksheet.worksheet import Worksheet

from ..config import SyncConfig
from ..models.results import AccountResult, RunSummary
from ..utils.exceptions import ReportGenerationError

logger = logging.getLogger(__name__)

# Style definitions
HEADER_FILL = PatternFill(start_color="4472C4", end_color="4472C4", fill_type="solid")
HEADER_FONT = Font(color="FFFFFF", bold=True)
IN_SYNC_FILL = PatternFill(start_color="C6EFCE", end_color="C6EFCE", fill_type="solid")
ADJUSTED_FILL = PatternFill(start_color="FFEB9C", end_color="FFEB9C", fill_type="solid")
FAILED_FILL = PatternFill(start_color="FFC7CE", end_color="FFC7CE", fill_type="solid")
THIN_BORDER = Border(
    left=Side(style="thin"),
    right=Side(style="thin"),
    top=Side(style="thin"),
    bottom=Side(style="thin"),
)


def _excel_datetime(value: Optional[datetime]):
    """openpyxl rejects aware datetimes; write naive UTC instead."""
    if value is None:
        return ""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class ExcelReportGenerator:
    """Generates Excel synchronization reports with multiple sheets."""

    def __init__(self, config: SyncConfig):
        """
        Initialize the report generator.

        Args:
            config: Application configuration
        """
        self.config = config
        self.sheet_config = config.output.sheets

    def default_output_path(self, now: Optional[datetime] = None) -> Path:
        """Report path built from the configured filename template."""
        now = now or datetime.now()
        template = self.config.output.excel.filename_template
        return Path(template.format(date=now.strftime("%Y%m%d"), time=now.strftime("%H%M%S")))

    def generate_report(self, summary: RunSummary, output_path: Path) -> Path:
        """
        Generate the complete synchronization report.

        Args:
            summary: Run summary with per-account results
            output_path: Path for output file

        Returns:
            Path to generated report

        Raises:
            ReportGenerationError: If the workbook cannot be written
        """
        logger.info(f"Generating Excel report: {output_path}")

        wb = Workbook()

        # Remove default sheet
        if wb.active:
            wb.remove(wb.active)

        if self.sheet_config.summary.enabled:
            self._create_summary_sheet(wb, summary)

        if self.sheet_config.accounts.enabled:
            self._create_accounts_sheet(wb, summary.results)

        if self.sheet_config.created_transactions.enabled:
            self._create_transactions_sheet(wb, summary.results)

        try:
            output_path.parent.mkdir(parents=True, exist_ok=True)
            wb.save(output_path)
        except OSError as e:
            raise ReportGenerationError(f"Cannot write report {output_path}: {e}") from e

        logger.info(f"Report saved: {output_path}")
        return output_path

    def _create_summary_sheet(self, wb: Workbook, summary: RunSummary) -> None:
        """Create the summary sheet with key metrics."""
        ws = wb.create_sheet(self.sheet_config.summary.name)

        ws["A1"] = "Ledger Synchronization Summary"
        ws["A1"].font = Font(size=16, bold=True)
        ws.merge_cells("A1:D1")

        ws["A3"] = "Run Information"
        ws["A3"].font = Font(bold=True)

        run_info = [
            ("Run ID:", summary.run_id),
            ("Started:", _excel_datetime(summary.started_at)),
            ("Finished:", _excel_datetime(summary.finished_at)),
            ("User Filter:", summary.user_id_filter or "All users"),
            ("Account Filter:", summary.account_id_filter or "All accounts"),
            ("Dry Run:", "Yes" if summary.dry_run else "No"),
            ("Config File:", self.config.config_file_path or "Default"),
        ]
        for i, (label, value) in enumerate(run_info, start=4):
            ws[f"A{i}"] = label
            ws[f"B{i}"] = value

        ws["A12"] = "Account Outcomes"
        ws["A12"].font = Font(bold=True)

        counts = [
            ("Accounts Processed:", summary.accounts_processed),
            ("Accounts In Sync:", summary.accounts_in_sync),
            ("Accounts Adjusted:", summary.accounts_adjusted),
            ("Accounts Failed:", summary.accounts_failed),
            ("Transactions Persisted:", summary.transactions_persisted),
            ("Transactions Planned:", summary.transactions_planned),
            ("Processing Time:", f"{summary.processing_time_seconds:.2f}s"),
        ]
        for i, (label, value) in enumerate(counts, start=13):
            ws[f"A{i}"] = label
            ws[f"B{i}"] = value

        ws.column_dimensions["A"].width = 30
        ws.column_dimensions["B"].width = 40

    def _create_accounts_sheet(self, wb: Workbook, results: list[AccountResult]) -> None:
        """Create one row per reconciled account."""
        ws = wb.create_sheet(self.sheet_config.accounts.name)

        headers = [
            "Account ID",
            "User ID",
            "Stated Balance",
            "Ledger Total",
            "Difference",
            "Existing Transactions",
            "Mode",
            "New Transactions",
            "Persisted",
            "Outcome",
            "Error",
        ]
        self._write_headers(ws, headers)

        for row_num, result in enumerate(results, start=2):
            if result.failed:
                fill, outcome = FAILED_FILL, "Failed"
            elif result.was_adjusted:
                fill, outcome = ADJUSTED_FILL, "Adjusted"
            else:
                fill, outcome = IN_SYNC_FILL, "In Sync"

            row_data = [
                result.account_id,
                result.user_id,
                float(result.target_balance),
                float(result.current_total) if result.current_total is not None else "",
                float(result.delta) if result.delta is not None else "",
                result.existing_count,
                result.mode.value,
                len(result.created_transactions),
                result.persisted_count,
                outcome,
                result.error or "",
            ]

            for col, value in enumerate(row_data, start=1):
                cell = ws.cell(row=row_num, column=col, value=value)
                cell.border = THIN_BORDER
                cell.fill = fill

        self._auto_fit_columns(ws)

    def _create_transactions_sheet(
        self, wb: Workbook, results: list[AccountResult]
    ) -> None:
        """Create the sheet listing every synthesized transaction."""
        ws = wb.create_sheet(self.sheet_config.created_transactions.name)

        headers = [
            "Transaction ID",
            "Account ID",
            "Timestamp",
            "Type",
            "Description",
            "Amount",
            "Balance After",
        ]
        self._write_headers(ws, headers)

        row_num = 2
        for result in results:
            if result.failed:
                continue
            for txn in result.created_transactions:
                row_data = [
                    txn.id,
                    txn.account_id,
                    _excel_datetime(txn.timestamp),
                    txn.type_label,
                    txn.description,
                    float(txn.amount),
                    float(txn.balance_after) if txn.balance_after is not None else "",
                ]
                for col, value in enumerate(row_data, start=1):
                    cell = ws.cell(row=row_num, column=col, value=value)
                    cell.border = THIN_BORDER
                row_num += 1

        self._auto_fit_columns(ws)

    def _write_headers(self, ws: Worksheet, headers: list[str]) -> None:
        for col, header in enumerate(headers, start=1):
            cell = ws.cell(row=1, column=col, value=header)
            cell.fill = HEADER_FILL
            cell.font = HEADER_FONT
            cell.border = THIN_BORDER

    def _auto_fit_columns(self, ws: Worksheet) -> None:
        """Auto-fit column widths based on content."""
        for column_cells in ws.columns:
            max_length = 0
            column = column_cells[0].column_letter

            for cell in column_cells:
                if cell.value is not None:
                    max_length = max(max_length, len(str(cell.value)))

            ws.column_dimensions[column].width = min(max_length + 2, 50)
