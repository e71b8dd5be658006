from .base import DataWriter, table_name
from .writer import create_writer

__all__ = ["DataWriter", "create_writer", "table_name"]
