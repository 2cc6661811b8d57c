from .filesystem_document_store import FileSystemDocumentStore
from .filesystem_output_store import FileSystemOutputStore

__all__ = ["FileSystemDocumentStore", "FileSystemOutputStore"]
