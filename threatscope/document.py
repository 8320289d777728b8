"""Design document loading."""

from pathlib import Path

from .errors import CollectionError

SUPPORTED_EXTENSIONS = ('.md', '.markdown', '.txt')


def extract_text_from_file(path: str | Path) -> str:
    """Read a design document as text. Only Markdown and plain text are supported."""
    path = Path(path)
    if path.suffix.lower() not in SUPPORTED_EXTENSIONS:
        raise CollectionError(
            f"Unsupported document format '{path.suffix or path.name}'. "
            f"Supported formats: {', '.join(SUPPORTED_EXTENSIONS)}"
        )
    try:
        return path.read_text(encoding='utf-8')
    except (OSError, UnicodeDecodeError) as e:
        raise CollectionError(f"Cannot read document {path}: {e}") from e
