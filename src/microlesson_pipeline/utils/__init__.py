"""
Utility modules for the micro-lesson pipeline.
"""

from .file_utils import (
    ensure_directory,
    get_file_hash,
    get_bytes_hash,
    get_file_size,
    safe_filename,
    remove_file,
    write_json_atomic,
    segment_output_path,
)

from .time_utils import (
    parse_iso8601_duration,
    ffmpeg_time,
)

from .validation import (
    validate_url,
    is_public_host,
    guess_video_mime_type,
)

from .text_utils import (
    tokenize,
    token_set,
    split_sentences,
    strip_filler_words,
)

__all__ = [
    "ensure_directory",
    "get_file_hash",
    "get_bytes_hash",
    "get_file_size",
    "safe_filename",
    "remove_file",
    "write_json_atomic",
    "segment_output_path",
    "parse_iso8601_duration",
    "ffmpeg_time",
    "validate_url",
    "is_public_host",
    "guess_video_mime_type",
    "tokenize",
    "token_set",
    "split_sentences",
    "strip_filler_words",
]
