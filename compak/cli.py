# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
compak CLI - Command Line Interface

Usage:
    compak search [query] [--limit N]
    compak update
    compak install <package>[@version] [--version V] [--path DIR] [--set KEY=VALUE ...]
    compak uninstall <package>
    compak upgrade <package> [--version V] | --all
    compak status <package>
    compak list
    compak publish <registry/name:tag> [--path DIR]
    compak logs <package> [--follow]
"""

import argparse
import sys
from typing import List, Optional

from compak import __version__
from compak.core.config import get_config, load_config
from compak.core.errors import CompakError, UpgradeNotNeededError, sanitize_error_for_user
from compak.core.logging import configure_logging
from compak.services.parameters import parse_set_values
from compak.services.service import PakService


def cmd_search(service: PakService, args) -> int:
    """Search the catalog"""
    results = service.search(args.query, args.limit)
    if not results:
        print("No packages found")
        return 0

    for result in results:
        print(f"{result.name}@{result.version}\t{result.description}")
    return 0


def cmd_update(service: PakService, args) -> int:
    """Refresh the local catalog mirror"""
    service.update_index()
    print("Package index updated")
    return 0


def cmd_install(service: PakService, args) -> int:
    overrides = parse_set_values(args.set)
    record = service.install(args.package, version=args.version, path=args.path, overrides=overrides)
    print(f"Installed {record.package.ref}")
    return 0


def cmd_uninstall(service: PakService, args) -> int:
    record = service.uninstall(args.package)
    print(f"Uninstalled {record.package.ref}")
    return 0


def cmd_upgrade(service: PakService, args) -> int:
    """Upgrade one package or all of them"""
    if args.all:
        summary = service.upgrade_all(args.version)
        print(summary)
        if summary.failures:
            print("\nFailed packages:")
            for name, error in summary.failures.items():
                print(f"  - {name}: {error}")
            return 1
        return 0

    if not args.package:
        print("Error: package name required (or use --all)", file=sys.stderr)
        return 2

    try:
        result = service.upgrade(args.package, args.version)
    except UpgradeNotNeededError as e:
        print(e.message)
        return 0

    print(f"Upgraded {result.name}: {result.from_version} → {result.to_version}")
    return 0


def cmd_status(service: PakService, args) -> int:
    containers = service.status(args.package)
    if not containers:
        print(f"No containers running for {args.package}")
        return 0

    for container in containers:
        print(f"{container.name}\t{container.state}\t{container.status}")
    return 0


def cmd_list(service: PakService, args) -> int:
    """List installed packages"""
    records = service.list_installed()
    if not records:
        print("No packages installed")
        return 0

    for record in records:
        installed = record.install_time.strftime("%Y-%m-%d %H:%M:%S")
        print(f"{record.name}\t{record.version}\t{record.status.value}\t{installed}")
    return 0


def cmd_publish(service: PakService, args) -> int:
    digest = service.publish(args.path, args.reference)
    print(f"Successfully published package to {args.reference} ({digest})")
    print("\nTo install this package, run:")
    print(f"  compak install {args.reference}")
    return 0


def cmd_logs(service: PakService, args) -> int:
    service.logs(args.package, print, follow=args.follow)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="compak",
        description="Package manager for Docker Compose applications"
    )
    parser.add_argument("--version", action="version", version=f"compak {__version__}")
    parser.add_argument("--config", help="Path to config.yaml")
    parser.add_argument("--log-level", help="Logging level (DEBUG, INFO, WARNING, ERROR)")

    subparsers = parser.add_subparsers(dest="command", required=True)

    search = subparsers.add_parser("search", help="Search the package catalog")
    search.add_argument("query", nargs="?", default="")
    search.add_argument("--limit", type=int, default=20)
    search.set_defaults(func=cmd_search)

    update = subparsers.add_parser("update", help="Update the package catalog")
    update.set_defaults(func=cmd_update)

    install = subparsers.add_parser("install", help="Install a package")
    install.add_argument("package", nargs="?", help="Catalog name, name@version or registry reference")
    install.add_argument("--version", dest="version", help="Catalog version to install")
    install.add_argument("--path", help="Install from a local package directory")
    install.add_argument("--set", action="append", default=[], metavar="KEY=VALUE",
                         help="Set a parameter value (repeatable)")
    install.set_defaults(func=cmd_install)

    uninstall = subparsers.add_parser("uninstall", help="Stop and remove a package")
    uninstall.add_argument("package")
    uninstall.set_defaults(func=cmd_uninstall)

    upgrade = subparsers.add_parser("upgrade", help="Upgrade an installed package")
    upgrade.add_argument("package", nargs="?")
    upgrade.add_argument("--version", dest="version", help="Target version")
    upgrade.add_argument("--all", action="store_true", help="Upgrade all installed packages")
    upgrade.set_defaults(func=cmd_upgrade)

    status = subparsers.add_parser("status", help="Show container status of a package")
    status.add_argument("package")
    status.set_defaults(func=cmd_status)

    list_cmd = subparsers.add_parser("list", help="List installed packages")
    list_cmd.set_defaults(func=cmd_list)

    publish = subparsers.add_parser("publish", help="Publish a package to an OCI registry")
    publish.add_argument("reference", help="registry/name:tag")
    publish.add_argument("--path", default=".", help="Package directory (default: .)")
    publish.set_defaults(func=cmd_publish)

    logs = subparsers.add_parser("logs", help="Show package logs")
    logs.add_argument("package")
    logs.add_argument("-f", "--follow", action="store_true")
    logs.set_defaults(func=cmd_logs)

    return parser


def main(argv: Optional[List[str]] = None, service: Optional[PakService] = None) -> int:
    """Entry point; returns the process exit status."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        if service is None:
            config = load_config(args.config) if args.config else get_config()
            configure_logging(
                log_level=args.log_level or config.log_level,
                log_format=config.log_format,
                log_file=config.log_file
            )
            service = PakService(config)
        return args.func(service, args)
    except CompakError as e:
        print(f"Error: {sanitize_error_for_user(e)}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
