# cli.py
import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from . import operations
from .config import Config
from .errors import UpackError
from .logger import set_level, setup_logger
from .package import Credentials, InstallRequest, PackageIdentifier, RegistryScope

_logger = setup_logger()


def parse_credentials(value: str) -> Credentials:
    """Parse "user:password"; the password may itself contain ':'."""
    if ":" not in value:
        raise argparse.ArgumentTypeError("expected user:password")
    user, password = value.split(":", 1)
    if not user:
        raise argparse.ArgumentTypeError("user name is empty")
    return Credentials(user=user, password=password)


def _scope(userregistry: bool) -> RegistryScope:
    return RegistryScope.USER if userregistry else RegistryScope.MACHINE


# ------------------------
# Commands
# ------------------------
def cmd_install(args: argparse.Namespace) -> None:
    request = InstallRequest(
        identifier=PackageIdentifier.parse(args.package),
        version_spec=args.version,
        source_url=args.source,
        credentials=args.user,
        target_directory=Path(args.target),
        overwrite=args.overwrite,
        prerelease=args.prerelease,
        comment=args.comment,
        scope=_scope(args.userregistry),
        skip_registry=args.unregistered,
    )
    operations.install(request)


def cmd_list(args: argparse.Namespace) -> None:
    scope = _scope(args.userregistry)
    entries = operations.list_installed(scope)
    if not entries:
        print(f"No packages in the {scope.value} registry.")
        return

    print(f"{'PACKAGE':<40} {'VERSION':<20} {'INSTALLED':<26} {'BY':<12} COMMENT")
    print("-" * 110)
    for e in entries:
        print(
            f"{str(e.key.identifier):<40} {str(e.key.version):<20} "
            f"{e.installed_at:<26} {e.installed_by:<12} {e.comment or ''}"
        )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="upack", description="Universal package installer")
    parser.add_argument("--config", help="Directory holding upack.conf (default: ~/.config/upack)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug output")

    subparsers = parser.add_subparsers(dest="command", required=True)

    # ------------------------
    # install
    # ------------------------
    p_install = subparsers.add_parser(
        "install",
        help="Download a universal package and extract its contents to a directory",
    )
    p_install.add_argument("package", help="Package name and group, such as group:name")
    p_install.add_argument(
        "version",
        nargs="?",
        default=None,
        help="Package version; latest if omitted, partial versions like 1.2 pick the newest 1.2.x",
    )
    p_install.add_argument("--source", required=True, help="URL of a upack API endpoint")
    p_install.add_argument("--target", required=True, help="Directory where the package contents are extracted")
    p_install.add_argument("--user", type=parse_credentials, help="Credentials as user:password")
    p_install.add_argument("--overwrite", action="store_true", help="Overwrite files in the target directory")
    p_install.add_argument(
        "--prerelease",
        action="store_true",
        help="When version is not specified, install the latest prerelease instead of the latest release",
    )
    p_install.add_argument("--comment", help="Reason for installing the package, kept in the local registry")
    p_install.add_argument(
        "--userregistry",
        action="store_true",
        help="Cache the package in the user registry instead of the machine registry",
    )
    p_install.add_argument("--unregistered", action="store_true", help="Do not cache the package in a local registry")
    p_install.set_defaults(func=cmd_install)

    # ------------------------
    # list
    # ------------------------
    p_list = subparsers.add_parser("list", help="List packages cached in a local registry")
    p_list.add_argument("--userregistry", action="store_true", help="List the user registry instead of the machine registry")
    p_list.set_defaults(func=cmd_list)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = Config(args.config)
        set_level(logging.DEBUG if args.verbose else config.log_level)
        operations.init(config)
        args.func(args)
    except KeyboardInterrupt:
        _logger.warning("Terminated by user (Ctrl+C). Exiting...")
        return 130
    except (UpackError, ValueError) as e:
        _logger.error(f"{type(e).__name__}: {e}")
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
