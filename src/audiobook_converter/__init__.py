"""EPUB to audiobook converter built on local speech engines."""

__version__ = "0.1.0"

from .audio_cache import DiskAudioCache, MemoryAudioCache, NullAudioCache, fingerprint
from .audio_encoder import OutputFormat, build_encoder
from .epub_reader import EbooklibEpubReader
from .errors import (
    BackendExhausted,
    BackendTransientFailure,
    BackendUnavailable,
    ConversionError,
    EncodeFailure,
    InputError,
    RemedyHint,
    RunCancelled,
)
from .interfaces import (
    AudioCache,
    AudioEncoder,
    BookMetadata,
    Chapter,
    EngineStats,
    EpubBook,
    EpubReader,
    ProgressSink,
    SynthesisParams,
    SynthesisUnit,
    TextCleaner,
    TextSegmenter,
    TtsEngine,
    UnitTag,
)
from .pipeline import ConversionController, ControllerSettings, RunResult, RunState
from .text_cleaner import BasicTextCleaner
from .text_segmenter import BasicTextSegmenter, segment
from .tts_engine import EspeakEngine, EspeakNgEngine, FestivalEngine
from .tts_factory import EngineChain
from .tts_pipeline import EngineHealth, SchedulerSettings, SynthesisScheduler

__all__ = [
    "__version__",
    "AudioCache",
    "AudioEncoder",
    "BackendExhausted",
    "BackendTransientFailure",
    "BackendUnavailable",
    "BasicTextCleaner",
    "BasicTextSegmenter",
    "BookMetadata",
    "Chapter",
    "ControllerSettings",
    "ConversionController",
    "ConversionError",
    "DiskAudioCache",
    "EbooklibEpubReader",
    "EncodeFailure",
    "EngineChain",
    "EngineHealth",
    "EngineStats",
    "EpubBook",
    "EpubReader",
    "EspeakEngine",
    "EspeakNgEngine",
    "FestivalEngine",
    "InputError",
    "MemoryAudioCache",
    "NullAudioCache",
    "OutputFormat",
    "ProgressSink",
    "RemedyHint",
    "RunCancelled",
    "RunResult",
    "RunState",
    "SchedulerSettings",
    "SynthesisParams",
    "SynthesisScheduler",
    "SynthesisUnit",
    "TextCleaner",
    "TextSegmenter",
    "TtsEngine",
    "UnitTag",
    "build_encoder",
    "fingerprint",
    "segment",
]
