import os
import re


def ensure_dir(path: str):
    """Ensure directory exists"""
    os.makedirs(path, exist_ok=True)


def clean_filename(filename: str) -> str:
    """Clean filename for safe filesystem and object key usage"""
    # Keep only the last path component
    filename = os.path.basename(filename.replace('\\', '/'))
    # Remove or replace unsafe characters
    filename = re.sub(r'[<>:"/\\|?*\s]', '_', filename)
    # Remove multiple underscores
    filename = re.sub(r'_+', '_', filename)
    # Remove leading/trailing underscores and dots
    filename = filename.strip('_.')
    return filename or 'unnamed'


def format_timestamp(seconds: float) -> str:
    """Format seconds as M:SS, or H:MM:SS past the hour"""
    total = int(seconds)
    hours, remainder = divmod(total, 3600)
    minutes, secs = divmod(remainder, 60)
    if hours > 0:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"
