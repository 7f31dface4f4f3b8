class ReportInputError(ValueError):
    """Raised when an input makes a report impossible (missing/empty workbook, bad range, bad settings)."""
    pass
