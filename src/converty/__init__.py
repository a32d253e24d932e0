from .config import ConverterOptions, load_config
from .entries import EntryInformation, EntryType, classify
from .output import OutputContext, sort_files_for_spine
from .segment import ProcessingState, SegmentHooks, do_text_content
from .transcribe import TranscribeOptions, transcribe

__all__ = [
    "ConverterOptions",
    "EntryInformation",
    "EntryType",
    "OutputContext",
    "ProcessingState",
    "SegmentHooks",
    "TranscribeOptions",
    "classify",
    "do_text_content",
    "load_config",
    "sort_files_for_spine",
    "transcribe",
]
