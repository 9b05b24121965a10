"""Document values consumed by the preview core."""

from .document_model import DOT_FILE_EXTENSIONS, DOT_LANGUAGE_ID, Document

__all__ = ["DOT_FILE_EXTENSIONS", "DOT_LANGUAGE_ID", "Document"]
