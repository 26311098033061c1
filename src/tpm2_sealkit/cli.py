# SPDX-License-Identifier: BSD-2
"""
Command line entry points.

Every command validates its flags, opens the TPM, does its work and closes
the TPM again, collecting every failure on the way. The collected errors are
printed to stderr as ``Error: <message>`` in the order they happened and the
exit code is 1 when there was any.
"""
import argparse
import logging
import sys
from typing import Dict, List, Optional

from .blobs import FileBlob
from .collector import ErrorCollector
from .config import DEFAULT_TPM_PATH, EVICT_HIERARCHY
from .constants import NO_PCR
from .exceptions import InputError
from .log import setup_logging
from .objects import create_srk, evict_control, flush_context, load
from .seal import seal, unseal
from .transport import TPMTransport
from .utils import check_pcr, format_handle, parse_data, parse_handle

logger = logging.getLogger(__name__)


class commandlet(object):
    """Decorator registering a Command under its command line name."""

    _commandlets: Dict[str, "Command"] = {}

    def __init__(self, cmd):
        self._cmd = cmd

        if cmd in commandlet._commandlets:
            raise ValueError(f"duplicate command name {cmd}")

        commandlet._commandlets[cmd] = None

    def __call__(self, cls):
        commandlet._commandlets[self._cmd] = cls()
        return cls

    @staticmethod
    def get() -> Dict[str, "Command"]:
        """Retrieves the registered commandlets."""
        return commandlet._commandlets


class Command(object):
    """Base class of a command.

    Subclasses add their flags in generate_options and do their work in
    __call__, recording failures in the collector instead of raising them.
    """

    description = ""

    def generate_options(self, parser: argparse.ArgumentParser) -> None:
        raise NotImplementedError("Implement: generate_options")

    def __call__(self, args: argparse.Namespace, errors: ErrorCollector) -> None:
        raise NotImplementedError("Implement: __call__")

    @staticmethod
    def open_tpm(args: argparse.Namespace, defer) -> TPMTransport:
        transport = TPMTransport.open(args.tpm_path)
        defer(transport.close)
        if args.startup:
            transport.startup()
        return transport


def _require_path(flag_name: str, value: Optional[str]) -> str:
    if not value:
        raise InputError(f"invalid flag '{flag_name}': missing value")
    return value


@commandlet("createsrk")
class CreateSRKCommand(Command):
    description = "Create the shared storage root key and print its transient handle."

    def generate_options(self, parser):
        pass

    def __call__(self, args, errors):
        with errors.operation() as defer:
            transport = self.open_tpm(args, defer)
            handle = create_srk(transport)
            print(format_handle(handle))


@commandlet("load")
class LoadCommand(Command):
    description = "Load an object under a parent and print its transient handle."

    def generate_options(self, parser):
        parser.add_argument(
            "--parent-handle", help="The handle of the parent key. Value must be in hex."
        )
        parser.add_argument(
            "--parent-password", default="", help="The password of the parent."
        )
        parser.add_argument(
            "--private-path",
            help="The file path from which to read the private portion of the object.",
        )
        parser.add_argument(
            "--public-path",
            help="The file path from which to read the public portion of the object.",
        )

    def __call__(self, args, errors):
        with errors.operation() as defer:
            parent = parse_handle("parent-handle", args.parent_handle)
            private = FileBlob(_require_path("private-path", args.private_path)).read()
            public = FileBlob(_require_path("public-path", args.public_path)).read()
            transport = self.open_tpm(args, defer)
            handle = load(transport, parent, args.parent_password, public, private)
            print(format_handle(handle))


@commandlet("seal")
class SealCommand(Command):
    description = "Seal data under a parent, with a password, and bound to a PCR."

    def generate_options(self, parser):
        parser.add_argument(
            "--pcr",
            default=NO_PCR,
            help="PCR to seal data to. Ignored if -1; otherwise, must be within [0, 23].",
        )
        parser.add_argument(
            "--parent-handle", help="The handle of the parent key. Value must be in hex."
        )
        parser.add_argument(
            "--parent-password", default="", help="The password of the parent."
        )
        parser.add_argument(
            "--object-password", default="", help="The password of the object."
        )
        parser.add_argument(
            "--data",
            default="",
            help="The hex encoded bytes to seal. Must not exceed 128 bytes.",
        )
        parser.add_argument(
            "--private-path",
            help="The file path to which to write the private portion of the object.",
        )
        parser.add_argument(
            "--public-path",
            help="The file path to which to write the public portion of the object.",
        )

    def __call__(self, args, errors):
        with errors.operation() as defer:
            pcr = check_pcr(args.pcr)
            parent = parse_handle("parent-handle", args.parent_handle)
            data = parse_data(args.data)
            private_sink = FileBlob(_require_path("private-path", args.private_path))
            public_sink = FileBlob(_require_path("public-path", args.public_path))
            transport = self.open_tpm(args, defer)
            seal(
                transport,
                errors,
                parent,
                args.parent_password,
                args.object_password,
                data,
                pcr,
                private_sink,
                public_sink,
            )


@commandlet("unseal")
class UnsealCommand(Command):
    description = "Unseal data sealed with a password and optionally bound to a PCR."

    def generate_options(self, parser):
        parser.add_argument(
            "--pcr",
            default=NO_PCR,
            help="PCR the data was sealed to. Ignored if -1; otherwise, must be within [0, 23].",
        )
        parser.add_argument(
            "--object-handle", help="The handle of the sealed object. Value must be in hex."
        )
        parser.add_argument(
            "--object-password", default="", help="The password of the object."
        )
        parser.add_argument(
            "--private-path",
            help="The file path to which to write the unsealed data.",
        )

    def __call__(self, args, errors):
        with errors.operation() as defer:
            pcr = check_pcr(args.pcr)
            handle = parse_handle("object-handle", args.object_handle)
            sink = FileBlob(_require_path("private-path", args.private_path))
            transport = self.open_tpm(args, defer)
            unseal(transport, errors, handle, args.object_password, pcr, sink)


@commandlet("evictcontrol")
class EvictControlCommand(Command):
    description = (
        "Persist a transient object at a persistent handle, "
        "or evict the persistent object when both handles are equal."
    )

    def generate_options(self, parser):
        parser.add_argument(
            "--object-handle",
            help="The object at this handle is evicted. Value must be in hex.",
        )
        parser.add_argument(
            "--persistent-handle", help="The persistent handle. Value must be in hex."
        )

    def __call__(self, args, errors):
        with errors.operation() as defer:
            handle = parse_handle("object-handle", args.object_handle)
            persistent = parse_handle("persistent-handle", args.persistent_handle)
            transport = self.open_tpm(args, defer)
            evict_control(transport, "", EVICT_HIERARCHY, handle, persistent)


@commandlet("flushcontext")
class FlushContextCommand(Command):
    description = "Flush a transient object or session from the TPM."

    def generate_options(self, parser):
        parser.add_argument(
            "--flush-handle",
            help="The object at this handle is flushed. Value must be in hex.",
        )

    def __call__(self, args, errors):
        with errors.operation() as defer:
            handle = parse_handle("flush-handle", args.flush_handle)
            transport = self.open_tpm(args, defer)
            flush_context(transport, handle)


def _common_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--tpm-path",
        default=DEFAULT_TPM_PATH,
        help="Path to the TPM device (character device or a Unix socket), "
        "or a TCTI string such as swtpm:port=2321.",
    )
    parser.add_argument(
        "--startup",
        action="store_true",
        help="Send TPM2_Startup(CLEAR) first, for freshly started simulators.",
    )
    parser.add_argument(
        "-v", "--verbose", action="count", default=0, help="Log more, repeatable."
    )


def _run(command: Command, args: argparse.Namespace) -> int:
    setup_logging(args.verbose)
    errors = ErrorCollector()
    command(args, errors)
    errors.report()
    return errors.exit_code


def run_command(name: str, argv: Optional[List[str]] = None) -> int:
    """Run one command with its flags, returning the exit code."""
    command = commandlet.get()[name]
    parser = argparse.ArgumentParser(prog=f"tpm2-{name}", description=command.description)
    _common_options(parser)
    command.generate_options(parser)
    args = parser.parse_args(argv)
    return _run(command, args)


def main(argv: Optional[List[str]] = None) -> int:
    """The tpm2-sealkit entry point, taking the command as first argument."""
    parser = argparse.ArgumentParser(
        prog="tpm2-sealkit", description="Seal data to a TPM 2.0 and manage its objects."
    )
    subparser = parser.add_subparsers(dest="command", metavar="command")
    subparser.required = True

    for name, command in commandlet.get().items():
        sub = subparser.add_parser(name, help=command.description)
        _common_options(sub)
        command.generate_options(sub)

    args = parser.parse_args(argv)
    return _run(commandlet.get()[args.command], args)


def createsrk_main():
    sys.exit(run_command("createsrk"))


def load_main():
    sys.exit(run_command("load"))


def seal_main():
    sys.exit(run_command("seal"))


def unseal_main():
    sys.exit(run_command("unseal"))


def evictcontrol_main():
    sys.exit(run_command("evictcontrol"))


def flushcontext_main():
    sys.exit(run_command("flushcontext"))


if __name__ == "__main__":
    sys.exit(main())
