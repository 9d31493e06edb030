"""Request/response surface for the UI layer."""
from .service import FilePicker, LibraryService

__all__ = ["LibraryService", "FilePicker"]
