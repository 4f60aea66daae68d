"""
TreeMirror Utility Functions
============================
Formatting helpers for command line output.
"""

SIZE_UNITS = ('B', 'KB', 'MB', 'GB', 'TB')


def format_file_size(size_bytes: int) -> str:
    """Bytes copied, as shown in the migrate summary ("512 B", "1.5 MB")."""
    size = float(size_bytes)
    for unit in SIZE_UNITS[:-1]:
        if size < 1024.0:
            return f"{int(size)} B" if unit == 'B' else f"{size:.1f} {unit}"
        size /= 1024.0
    return f"{size:.1f} {SIZE_UNITS[-1]}"


def format_duration(seconds: float) -> str:
    """Convert seconds to "2.5s", "1m 30s" or "2h 15m"."""
    if seconds < 60:
        return f"{seconds:.1f}s"
    if seconds < 3600:
        return f"{int(seconds // 60)}m {int(seconds % 60)}s"
    return f"{int(seconds // 3600)}h {int((seconds % 3600) // 60)}m"
