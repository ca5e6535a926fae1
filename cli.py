"""Command line entrypoint: read MSI packages, list installed programs, install and uninstall."""
from __future__ import annotations

import argparse
import dataclasses
import json
import logging
import sys
import uuid
from datetime import date
from pathlib import Path
from typing import Any, Sequence

from msi_toolkit.errors import MsiToolkitError
from msi_toolkit.guids import format_guid
from msi_toolkit.logging_utils import configure_logging
from msi_toolkit.user_settings import DISPLAY_MODES, SettingsStore, UserSettings
from services.installed_programs import InstalledProgramService
from services.installer import InstallerService, InstallOptions, InstallResult, MsiDownload
from services.msi_reader import MsiInfo, MsiReader
from services.privilege import ensure_admin

logger = logging.getLogger("msi_toolkit.cli")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="msi-toolkit", description="Windows Installer automation CLI")
    parser.add_argument("--settings", type=Path, help="Settings file (default: ~/.msi_toolkit/settings.json)")
    parser.add_argument("--log-file", help="Also write this tool's log to a file")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    commands = parser.add_subparsers(dest="command", required=True)

    msi = commands.add_parser("msi", help="Read MSI package metadata")
    msi.add_argument("path", nargs="?", help="MSI path, wildcards allowed")
    msi.add_argument("--url", help="Download the package from this URL first")
    msi.add_argument("--output-path", help="Download directory or file path")
    msi.add_argument("--include-table", action="append", default=[], dest="include_tables", help="Table name or wildcard to read in full")

    programs = commands.add_parser("programs", help="List installed programs")
    programs.add_argument("name", nargs="?", help="Display name, wildcards allowed")
    programs.add_argument("--ignore-missing", action="store_true", help="Do not fail when a literal name is not found")

    install = commands.add_parser("install", help="Install or repair an MSI package")
    install.add_argument("path", nargs="?", help="MSI path, wildcards allowed")
    install.add_argument("--url", help="Download the package from this URL")
    install.add_argument("--checksum", help="Expected checksum of the downloaded package")
    install.add_argument("--checksum-algorithm", help="hashlib algorithm for --checksum (default: from settings)")
    install.add_argument("--product-name", help="Product name of the downloaded package")
    install.add_argument("--product-code", help="Product code of the downloaded package")
    install.add_argument("--output-path", help="Download directory or file path")
    install.add_argument("--force", action="store_true", help="Repair when already installed")
    _add_msiexec_arguments(install)

    uninstall = commands.add_parser("uninstall", help="Uninstall a product by product code")
    uninstall.add_argument("product_code")
    _add_msiexec_arguments(uninstall)

    config = commands.add_parser("config", help="Show or change saved settings")
    config.add_argument("--set", action="append", default=[], dest="assignments", metavar="KEY=VALUE", help="Setting to change")
    return parser


def _add_msiexec_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--display-mode", choices=DISPLAY_MODES, help="msiexec user interface")
    parser.add_argument("--log-option", help="msiexec /l logging options")
    parser.add_argument("--log-path", help="Keep the msiexec log at this path")
    parser.add_argument("--argument", action="append", default=[], dest="argument_list", help="Extra msiexec argument")
    parser.add_argument("--dry-run", action="store_true", help="Log the msiexec command without running it")
    parser.add_argument("--elevate", action="store_true", help="Relaunch as administrator when needed")


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.log_file, level=logging.DEBUG if args.verbose else logging.INFO)
    store = SettingsStore(args.settings)
    settings = store.load()
    try:
        if args.command == "msi":
            return _run_msi(parser, args, settings)
        if args.command == "programs":
            return _run_programs(args)
        if args.command == "config":
            return _run_config(parser, args, store, settings)
        if not ensure_admin(elevate=args.elevate):
            return 0
        if args.command == "install":
            return _run_install(parser, args, settings)
        return _run_uninstall(args, settings)
    except (MsiToolkitError, FileNotFoundError, ValueError) as exc:
        logger.error("%s", exc)
        return 1


def _run_msi(parser: argparse.ArgumentParser, args: argparse.Namespace, settings: UserSettings) -> int:
    reader = MsiReader(settings=settings)
    if args.url:
        info = reader.read_url(args.url, args.output_path, args.include_tables)
        _emit([_msi_payload(info)])
        return 0
    if not args.path:
        parser.error("msi requires a path or --url")
    results = reader.read_paths(args.path, args.include_tables)
    payload = []
    for result in results:
        if result.info is not None:
            payload.append(_msi_payload(result.info))
        else:
            payload.append({"path": result.path, "error": str(result.error)})
    _emit(payload)
    return 0 if all(result.success for result in results) else 1


def _run_programs(args: argparse.Namespace) -> int:
    programs = InstalledProgramService().get_programs(args.name, ignore_missing=args.ignore_missing)
    _emit([dataclasses.asdict(program) for program in programs])
    return 0


def _run_install(parser: argparse.ArgumentParser, args: argparse.Namespace, settings: UserSettings) -> int:
    service = InstallerService(settings=settings)
    options = _install_options(args)
    if args.url:
        required = (
            ("--checksum", args.checksum),
            ("--product-name", args.product_name),
            ("--product-code", args.product_code),
        )
        missing = [flag for flag, value in required if not value]
        if missing:
            parser.error(f"--url requires {', '.join(missing)}")
        download = MsiDownload(
            args.url,
            args.checksum,
            args.product_name,
            args.product_code,
            checksum_algorithm=args.checksum_algorithm,
        )
        results = [service.install_from_url(download, options)]
    elif args.path:
        results = service.install_paths(
            args.path,
            options,
            progress_callback=lambda index, total, name: logger.info("[%d/%d] %s", index, total, name),
        )
    else:
        parser.error("install requires a path or --url")
    _emit([_result_payload(result) for result in results])
    return 0 if all(result.success for result in results) else 1


def _run_uninstall(args: argparse.Namespace, settings: UserSettings) -> int:
    result = InstallerService(settings=settings).uninstall(args.product_code, _install_options(args))
    _emit([_result_payload(result)])
    return 0 if result.success else 1


def _run_config(
    parser: argparse.ArgumentParser, args: argparse.Namespace, store: SettingsStore, settings: UserSettings
) -> int:
    if args.assignments:
        data = settings.to_dict()
        for assignment in args.assignments:
            key, sep, value = assignment.partition("=")
            if not sep or key not in data:
                parser.error(f"--set expects KEY=VALUE with KEY one of: {', '.join(sorted(data))}")
            data[key] = value
        settings = UserSettings.from_dict(data)
        store.save(settings)
        logger.info("Saved settings to %s", store.path)
    _emit(settings.to_dict())
    return 0


def _install_options(args: argparse.Namespace) -> InstallOptions:
    return InstallOptions(
        force=getattr(args, "force", False),
        display_mode=args.display_mode,
        log_option=args.log_option,
        log_path=args.log_path,
        argument_list=tuple(args.argument_list),
        output_path=getattr(args, "output_path", None),
        dry_run=args.dry_run,
    )


def _msi_payload(info: MsiInfo) -> dict[str, Any]:
    return {
        "path": info.path,
        "manufacturer": info.manufacturer,
        "product_name": info.product_name,
        "product_version": info.product_version,
        "product_code": info.product_code,
        "product_language": info.product_language,
        "table_names": info.table_names,
        "tables": {name: [dict(record.values) for record in rows] for name, rows in info.tables.items()},
    }


def _result_payload(result: InstallResult) -> dict[str, Any]:
    payload = dataclasses.asdict(dataclasses.replace(result, error=None))
    payload.pop("error")
    if result.error is not None:
        payload["error"] = str(result.error)
    return payload


def _json_default(value: object) -> object:
    if isinstance(value, uuid.UUID):
        return format_guid(value)
    if isinstance(value, (Path, date)):
        return str(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _emit(payload: object) -> None:
    json.dump(payload, sys.stdout, indent=2, default=_json_default)
    sys.stdout.write("\n")


if __name__ == "__main__":
    raise SystemExit(main())
