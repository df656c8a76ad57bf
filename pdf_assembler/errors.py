"""
errors.py - Exception types for the PDF assembler.

Container parse failures derive from ParseError so a caller can drop the
offending file and carry on with the next page.
"""


class PdfAssemblerError(Exception):
    """Base exception for all PDF assembler errors."""

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.default_message)
        self.message = message or self.default_message

    @property
    def default_message(self) -> str:
        return "An unknown PDF assembler error occurred."


class IoFailure(PdfAssemblerError):
    """Raised when an input cannot be read or the output cannot be written."""

    @property
    def default_message(self) -> str:
        return "File not found, unreadable or unwritable."


class ParseError(PdfAssemblerError):
    """Raised when an image container violates its grammar."""

    @property
    def default_message(self) -> str:
        return "Could not parse image container."


class UnrecognizedFormat(ParseError):
    @property
    def default_message(self) -> str:
        return "File format not recognized."


class MalformedTiff(ParseError):
    @property
    def default_message(self) -> str:
        return "Malformed TIFF."


class MalformedPng(ParseError):
    @property
    def default_message(self) -> str:
        return "Malformed PNG."


class MalformedJpeg(ParseError):
    @property
    def default_message(self) -> str:
        return "Malformed JPEG."


class MalformedJpeg2000(ParseError):
    @property
    def default_message(self) -> str:
        return "Malformed JPEG2000: the file is damaged or has an unsupported format."


class UnknownColorSpace(MalformedJpeg2000):
    @property
    def default_message(self) -> str:
        return "Malformed JPEG2000: unknown colorspace."


class MalformedJbig2(ParseError):
    @property
    def default_message(self) -> str:
        return "JBIG2 page stream is too short to hold a page information segment."


class TocError(PdfAssemblerError):
    """Raised when a table of contents file cannot be turned into an outline."""

    @property
    def default_message(self) -> str:
        return "Malformed table of contents."


class InconsistentIndent(TocError):
    @property
    def default_message(self) -> str:
        return "Spaces and tabs must not be mixed in TOC indents."


class BadIndent(TocError):
    @property
    def default_message(self) -> str:
        return "A TOC item seems to have a wrong indent."


class LabelSpecError(PdfAssemblerError):
    @property
    def default_message(self) -> str:
        return "Invalid page label specification."


class MetadataError(PdfAssemblerError):
    @property
    def default_message(self) -> str:
        return "Metadata should be specified in UTF-8."


class InvalidUtf8Sequence(PdfAssemblerError):
    """Raised for a character in OCR text that is not valid UTF-8."""

    def __init__(self, raw: bytes, message: str = "") -> None:
        self.raw = raw
        super().__init__(message or f"An invalid UTF-8 sequence ({raw.hex()}) in the hOCR data.")

    @property
    def default_message(self) -> str:
        return "An invalid UTF-8 sequence in the hOCR data."
