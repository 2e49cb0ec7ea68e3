import unittest

from reportwatch.models import (
    ExportFormat,
    PaginationState,
    ReportJob,
    ReportSelection,
    ReportStatus,
)


class ReportStatusTest(unittest.TestCase):
    def test_backend_aliases(self) -> None:
        self.assertIs(ReportStatus("pending"), ReportStatus.QUEUED)
        self.assertIs(ReportStatus("cancelled"), ReportStatus.FAILED)
        self.assertIs(ReportStatus("COMPLETED"), ReportStatus.COMPLETED)
        with self.assertRaises(ValueError):
            ReportStatus("exploded")

    def test_terminal_states(self) -> None:
        self.assertEqual(
            {status for status in ReportStatus if status.is_terminal},
            {ReportStatus.COMPLETED, ReportStatus.FAILED},
        )


class ReportJobTest(unittest.TestCase):
    def test_from_status_payload(self) -> None:
        job = ReportJob.from_api(
            {
                "id": "r1",
                "status": "processing",
                "type": "student-progress",
                "format": "csv",
                "totalRecords": "12",
            }
        )
        self.assertEqual(job.status, ReportStatus.PROCESSING)
        self.assertEqual(job.report_type, "student-progress")
        self.assertEqual(job.total_records, 12)
        self.assertEqual(job.display_name, "Student Progress")
        self.assertFalse(job.is_terminal)

    def test_from_detail_payload(self) -> None:
        job = ReportJob.from_api(
            {
                "reportId": "r2",
                "status": "failed",
                "reportType": "attendance",
                "reportName": "Term 1 attendance",
                "errorMessage": "query timed out",
            }
        )
        self.assertEqual(job.id, "r2")
        self.assertEqual(job.display_name, "Term 1 attendance")
        self.assertEqual(job.error_message, "query timed out")
        self.assertTrue(job.is_terminal)

    def test_missing_status_reads_as_queued(self) -> None:
        job = ReportJob.from_api({"id": "r3"})
        self.assertEqual(job.status, ReportStatus.QUEUED)
        self.assertEqual(job.display_name, "Report")

    def test_rejects_malformed_payloads(self) -> None:
        with self.assertRaises(ValueError):
            ReportJob.from_api(["r1"])
        with self.assertRaises(ValueError):
            ReportJob.from_api({"status": "queued"})


class ReportSelectionTest(unittest.TestCase):
    def test_minimal_payload(self) -> None:
        selection = ReportSelection(report_type="attendance", format=ExportFormat.PDF.value)
        self.assertEqual(selection.to_payload(), {"type": "attendance", "format": "pdf"})

    def test_full_payload(self) -> None:
        selection = ReportSelection(
            report_type="attendance",
            format="excel",
            report_name="Weekly",
            columns=["name", "days"],
            filters={"term": "1"},
            group_by="class",
            sort_by="name",
        )
        self.assertEqual(
            selection.to_payload(),
            {
                "type": "attendance",
                "format": "excel",
                "name": "Weekly",
                "columns": ["name", "days"],
                "filters": {"term": "1"},
                "groupBy": "class",
                "sortBy": "name",
                "sortOrder": "asc",
            },
        )


class PaginationStateTest(unittest.TestCase):
    def test_page_from_offset(self) -> None:
        self.assertEqual(PaginationState(limit=10, offset=0).page, 1)
        self.assertEqual(PaginationState(limit=10, offset=20).page, 3)


if __name__ == "__main__":
    unittest.main()
