# SPDX-License-Identifier: BSD-2
import datetime
import logging
import os
import re
import select
import sys
import threading
from typing import List, Optional

logger = logging.getLogger(__name__)

tss_modules = [
    "esys",
    "esys_crypto",
    "sys",
    "marshal",
    "tcti",
    "log",
]

tss_loggers = {module: logging.getLogger(f"TSS.{module}") for module in tss_modules}

# TSS2 log levels -> python levels
_TSS_LEVELS = {
    "error": logging.ERROR,
    "warning": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
    "trace": logging.DEBUG,
}

# LEVEL:module:file:line:function() message
_RECORD_START = re.compile(r"^.+?:.+?:.+?:\d+?:.+?\(\) .+")


class RawLogRecord:
    """One TSS log record, possibly spanning several lines."""

    def __init__(self, text):
        self.timestamp = datetime.datetime.now()
        self._text = text

    @property
    def text(self):
        return self._text

    @text.setter
    def text(self, value):
        self.timestamp = datetime.datetime.now()
        self._text = value

    @property
    def is_expired(self):
        return datetime.datetime.now() - self.timestamp > datetime.timedelta(seconds=1)


class ConsumeTssLogs(threading.Thread):
    """Reads what the TSS C libraries log and feeds it into ``tss_loggers``.

    The libraries write to the file named by TSS2_LOGFILE, which is pointed
    at a pipe read by this thread. Each record is re-emitted on the logger of
    its TSS module with the C file, line and function of its origin, so it
    goes through the same handlers and formatter as the python messages.

    The thread ends with the main thread, or when stop() is called.
    """

    def __init__(self):
        super().__init__(name="tss-log")
        self.log_records: List[RawLogRecord] = []
        self.pipe_r, self.pipe_w = os.pipe2(os.O_NONBLOCK | os.O_CLOEXEC)
        self._stopping = threading.Event()

    @property
    def logfile(self) -> str:
        return f"/dev/fd/{self.pipe_w}"

    def _drain(self) -> bytes:
        data = b""
        while True:
            try:
                chunk = os.read(self.pipe_r, 1024)
            except BlockingIOError:
                # pipe is empty
                break
            if not chunk:
                break
            data += chunk
        return data

    def run(self):
        """Read the TSS log stream from the pipe and process it."""
        while not self._stopping.is_set() and threading.main_thread().is_alive():
            select.select([self.pipe_r], [], [], 0.1)
            self.process(self._drain(), flush=False)

        self.process(self._drain(), flush=True)

    def stop(self):
        """Publish what is pending and end the thread."""
        self._stopping.set()
        self.join()
        os.close(self.pipe_r)
        os.close(self.pipe_w)

    def process(self, data: Optional[bytes] = None, flush: bool = False):
        """Split raw TSS output into records and publish the complete ones.

        The last record is held back, more lines of it may follow, until it
        is a second old or flush is set.
        """
        for line in (data or b"").decode(errors="replace").splitlines():
            if _RECORD_START.match(line):
                self.log_records.append(RawLogRecord(line))
            elif self.log_records:
                # continuation of the previous record
                self.log_records[-1].text += f"\n{line}"
            else:
                logger.error(f"Cannot parse TSS log output:\n{line}")

        if not self.log_records:
            return
        last = self.log_records[-1]
        if flush or last.is_expired:
            pending, self.log_records = self.log_records, []
        else:
            pending, self.log_records = self.log_records[:-1], [last]
        for log_record in pending:
            self.publish(log_record)

    @staticmethod
    def publish(log_record: RawLogRecord):
        """Parse a single record and log it on its TSS module logger."""
        level, module, filename, lineno, func, message = re.split(
            ":| ", log_record.text.strip(), maxsplit=5
        )
        level = _TSS_LEVELS.get(level.lower(), logging.ERROR)
        tss_logger = tss_loggers.get(module) or logging.getLogger(f"TSS.{module}")
        if not tss_logger.isEnabledFor(level):
            return
        record = tss_logger.makeRecord(
            tss_logger.name,
            level,
            filename,
            int(lineno),
            message,
            None,
            None,
            func=func.rstrip("()"),
        )
        tss_logger.handle(record)


# highlight using ANSI color codes
yellow = "\x1b[93m"
blue = "\x1b[34m"
cyan = "\x1b[96m"
light_grey = "\x1b[37m"
reset = "\x1b[0m"

_COLOR_FORMAT = f"{light_grey}[%(levelname)s]{reset} {blue}%(pathname)s:%(lineno)d{reset} - {cyan}%(name)s {yellow}%(message)s{reset}"
_PLAIN_FORMAT = "[%(levelname)s] %(pathname)s:%(lineno)d - %(name)s %(message)s"

_handler = None
_consumer: Optional[ConsumeTssLogs] = None

# verbosity -> (python level, TSS2_LOG setting for the C libraries)
_LEVELS = {
    0: (logging.ERROR, "all+none"),
    1: (logging.INFO, "all+error"),
    2: (logging.DEBUG, "all+debug"),
}


def consume_tss_logs() -> Optional[ConsumeTssLogs]:
    """Route the TSS C library logs into ``tss_loggers``.

    Starts the consumer thread once and points TSS2_LOGFILE at it. Does
    nothing when the environment already names a TSS2_LOGFILE of its own.
    Must run before the first TPM connection is opened.
    """
    global _consumer

    if _consumer is None:
        if "TSS2_LOGFILE" in os.environ:
            return None
        _consumer = ConsumeTssLogs()
        _consumer.start()
    os.environ.setdefault("TSS2_LOGFILE", _consumer.logfile)
    return _consumer


def setup_logging(
    verbosity: int = 0, stream=None, capture_tss: bool = True
) -> logging.Handler:
    """Configure the root logger for the command line tools.

    Messages go to stderr, colored when it is a terminal. Warnings, such as
    the one emitted for every unbound policy session, are routed into logging
    and only shown from verbosity 1 on. TSS2_LOG is set for the C stack unless
    the environment already sets it, and the C stack's messages are routed
    through the same handler.

    Args:
        verbosity (int): 0 errors only, 1 adds info, 2 and more adds debug.
        stream: Where to write. Defaults to sys.stderr.
        capture_tss (bool): Whether to route the TSS C library logs into
            logging. Defaults to True.

    Returns:
        The installed handler.
    """
    level, tss_level = _LEVELS[max(0, min(verbosity, 2))]
    if stream is None:
        stream = sys.stderr

    global _handler

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    if _handler is not None:
        root_logger.removeHandler(_handler)
    handler = logging.StreamHandler(stream)
    isatty = getattr(stream, "isatty", None)
    fmt = _COLOR_FORMAT if isatty and isatty() else _PLAIN_FORMAT
    handler.setFormatter(logging.Formatter(fmt, "%Y-%m-%d %H:%M:%S"))
    root_logger.addHandler(handler)
    _handler = handler

    logging.captureWarnings(True)
    logging.getLogger("py.warnings").setLevel(
        logging.WARNING if verbosity else logging.ERROR
    )

    for _module, tss_logger in tss_loggers.items():
        tss_logger.setLevel(level)
    os.environ.setdefault("TSS2_LOG", tss_level)
    if capture_tss:
        consume_tss_logs()
    logger.debug(
        "logging at %s, TSS2_LOG=%s",
        logging.getLevelName(level),
        os.environ["TSS2_LOG"],
    )
    return handler
