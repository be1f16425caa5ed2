class PdfToolError(ValueError):
    """Bad user input for a PDF operation; surfaced as HTTP 400."""

    def __init__(self, message, status=400):
        super().__init__(message)
        self.status = status


class ConversionCancelled(RuntimeError):
    pass
