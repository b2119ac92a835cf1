from io import BytesIO
from pathlib import PurePath

import pandas as pd

CSV_EXTENSIONS = frozenset({".csv"})
EXCEL_EXTENSIONS = frozenset({".xlsx", ".xls"})
SUPPORTED_EXTENSIONS = CSV_EXTENSIONS | EXCEL_EXTENSIONS


def statement_extension(filename: str) -> str:
    return PurePath((filename or "").strip().lower()).suffix


def check_statement_file(filename: str, content: bytes, max_bytes: int) -> str:
    """Validate an upload before anything is stored and return its extension."""
    extension = statement_extension(filename)
    if extension not in SUPPORTED_EXTENSIONS:
        raise ValueError("Unsupported file type. Please upload CSV or Excel files.")
    if not content:
        raise ValueError("Empty file")
    if len(content) > max_bytes:
        raise ValueError(f"File too large (max {max_bytes // (1024 * 1024)}MB)")
    return extension


def decode_csv(content: bytes) -> str:
    try:
        return content.decode("utf-8-sig")
    except UnicodeDecodeError:
        return content.decode("latin-1")


def excel_to_text(content: bytes) -> str:
    try:
        sheets = pd.read_excel(BytesIO(content), sheet_name=None, header=None, dtype=str)
    except Exception as exc:
        raise ValueError("Failed to parse Excel file") from exc
    parts = [
        frame.fillna("").to_csv(index=False, header=False).strip()
        for frame in sheets.values()
    ]
    return "\n\n".join(parts)


def extract_statement_text(filename: str, content: bytes) -> str:
    extension = statement_extension(filename)
    if extension in EXCEL_EXTENSIONS:
        return excel_to_text(content)
    return decode_csv(content)
