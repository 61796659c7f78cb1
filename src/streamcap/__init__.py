"""streamcap - capture and pass through a child process's stdout/stderr.

Environment variables:
    STREAMCAP_READ_SIZE: Maximum bytes per pipe read (default 3072)
    STREAMCAP_KILL_TIMEOUT: Seconds to wait for a killed child (default 1.0)
    STREAMCAP_NEW_SESSION: Start children in their own process group (default true)
    STREAMCAP_LOG_DEBUG: Debug log file for the command line tool (default false)

Usage:
    from streamcap import Capturer

    response = Capturer().wait_string(["echo", "hello"], timeout=5)
"""

__version__ = "0.1.0"

from .aggregator import ResponseAggregator
from .buffers import OutputBuffer, OutputSink, StreamBuffer
from .capturer import Capturer
from .config import Config, get_config, load_config, reload_config
from .errors import CaptureError, LaunchError, ParseError, ProcessTimeoutError, ReadError
from .events import OutputChunk, ProcessEvent, Terminated
from .launcher import PopenLauncher, ProcessHandle, ProcessLauncher
from .options import CaptureOptions, Channel, Channels, RoutingPolicy
from .reader import StreamReader
from .responses import BytesResponse, CapturedResponse, StringResponse, parse_bytes, parse_string
from .session import ProcessSession, SessionState
from .waiting import Gate, await_for, wait_for

__all__ = [
    "__version__",
    # Routing
    "CaptureOptions",
    "Channel",
    "Channels",
    "RoutingPolicy",
    # Buffers
    "OutputBuffer",
    "OutputSink",
    "StreamBuffer",
    # Processes
    "PopenLauncher",
    "ProcessHandle",
    "ProcessLauncher",
    "ProcessSession",
    "SessionState",
    "StreamReader",
    # Events and responses
    "BytesResponse",
    "CapturedResponse",
    "OutputChunk",
    "ProcessEvent",
    "ResponseAggregator",
    "StringResponse",
    "Terminated",
    "parse_bytes",
    "parse_string",
    # Entry points
    "Capturer",
    "Gate",
    "await_for",
    "wait_for",
    # Config
    "Config",
    "get_config",
    "load_config",
    "reload_config",
    # Errors
    "CaptureError",
    "LaunchError",
    "ParseError",
    "ProcessTimeoutError",
    "ReadError",
]
