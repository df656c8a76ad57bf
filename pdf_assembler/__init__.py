"""
PDF Assembler - layered PDF documents from scanned page images.

Pages are split into bilevel text stencils (CCITT G4 or JBIG2) and
optional background/foreground pictures, placed on separate optional
content layers, with an invisible OCR text layer from hOCR files,
an outline and page labels.
"""

__version__ = "1.0.0"
__author__ = "PDF Assembler"
