import argparse
import json
import os
import sys
from dataclasses import replace
from pathlib import Path
from typing import Any, List, Optional

from nfs_staging.config import settings
from nfs_staging.config.settings import GIB
from nfs_staging.domain.models import RemediationPolicy, RemediationReport
from nfs_staging.flashing import l4t
from nfs_staging.logging import LoggerFactory, setup_logging
from nfs_staging.remediation import CapacityPlanner, RemediationPipeline, VolumeInspector
from nfs_staging.storage.exceptions import (
    InsufficientSpaceError,
    L4TNotFoundError,
    StorageError,
)
from nfs_staging.storage.system import LinuxSystemOps

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_INSUFFICIENT_SPACE = 3

log = LoggerFactory.for_system()


def _human(size_bytes: float) -> str:
    size = float(size_bytes)
    for unit in ["B", "KiB", "MiB", "GiB", "TiB"]:
        if size < 1024.0:
            return f"{size:.1f}{unit}"
        size /= 1024.0
    return f"{size:.1f}PiB"


def _policy_from_args(args: argparse.Namespace) -> RemediationPolicy:
    """Settings-file policy with --headroom / --min-size-gib applied on top."""
    policy = RemediationPolicy.from_settings()
    overrides = {}
    if getattr(args, "headroom", None) is not None:
        overrides["headroom_ratio"] = args.headroom
    if getattr(args, "min_size_gib", None) is not None:
        overrides["min_image_bytes"] = int(args.min_size_gib * GIB)
    return replace(policy, **overrides) if overrides else policy


def _require_root() -> bool:
    if os.geteuid() != 0:
        print("ERROR: This command must be run with sudo", file=sys.stderr)
        return False
    return True


def _report_error(error: Exception) -> int:
    print(f"ERROR: {error}", file=sys.stderr)
    return EXIT_FAILURE


def _report_insufficient_space(error: InsufficientSpaceError) -> int:
    print(
        f"ERROR: Not enough space for the loopback image at {error.destination}.\n"
        f"Need {_human(error.required_bytes)} ({error.required_bytes} bytes) but only "
        f"{_human(error.available_bytes)} ({error.available_bytes} bytes) available.\n"
        "Free up space or pass --image-dir pointing at a larger drive.",
        file=sys.stderr,
    )
    return EXIT_INSUFFICIENT_SPACE


def _print_report(report: RemediationReport) -> None:
    volume = report.volume
    if not report.remediated:
        print(f"{volume.path}: {volume.backing_filesystem_kind.value}, supports NFS export. No fix needed.")
        return
    migration = report.migration
    print(f"{volume.path} is now on loopback image {report.image.path}")
    print(f"Original data kept at {migration.backup.path}; remove it once the flash succeeds.")
    if not migration.verified:
        print(f"WARNING: {migration.verification_error}", file=sys.stderr)


def _parse_setting_value(raw: str) -> Any:
    # JSON literals (numbers, booleans, lists); anything else is a plain string
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return raw


def cmd_inspect(args: argparse.Namespace) -> int:
    kind = VolumeInspector(LinuxSystemOps()).inspect(args.path)
    verdict = "supports" if kind.export_capable else "does NOT support"
    print(f"{args.path}: {kind.value} ({verdict} NFS export)")
    return EXIT_OK if kind.export_capable else EXIT_FAILURE


def cmd_plan(args: argparse.Namespace) -> int:
    """Show the image a remediation would create, without touching anything.

    A path left missing by an interrupted run is planned from its Backup,
    the same way ``remediate`` resumes.
    """
    policy = _policy_from_args(args)
    path = Path(args.path).expanduser().absolute()
    source = path
    backup_path = policy.backup_path_for(path)
    if not path.exists() and backup_path.is_dir():
        print(f"{path} is missing, planning from {backup_path}")
        source = backup_path

    planner = CapacityPlanner(LinuxSystemOps(), policy)
    try:
        plan = planner.plan(
            source,
            args.image_dir or path.parent.parent,
            image_name=policy.image_name_for(path),
        )
    except InsufficientSpaceError as error:
        return _report_insufficient_space(error)
    except (StorageError, OSError) as error:
        return _report_error(error)
    print(f"Content size:    {_human(plan.source_size_bytes)}")
    print(f"Image size:      {_human(plan.image_size_bytes)}")
    print(f"Available space: {_human(plan.available_bytes_at_destination)}")
    print(f"Image path:      {plan.image_path}")
    return EXIT_OK


def cmd_remediate(args: argparse.Namespace) -> int:
    if not _require_root():
        return EXIT_FAILURE
    pipeline = RemediationPipeline(LinuxSystemOps(), _policy_from_args(args))
    try:
        report = pipeline.run(args.path, args.image_dir)
    except InsufficientSpaceError as error:
        return _report_insufficient_space(error)
    except (StorageError, OSError) as error:
        return _report_error(error)
    _print_report(report)
    return EXIT_OK


def _ready_host(args: argparse.Namespace, l4t_dir: Path) -> int:
    """Host steps after the rootfs is exportable; optionally run the flash."""
    try:
        l4t.clean_flash_artifacts(l4t_dir)
        l4t.restart_nfs_services()
        l4t.disable_usb_autosuspend()
        if args.flash:
            return EXIT_OK if l4t.run_flash(l4t_dir) == 0 else EXIT_FAILURE
    except (StorageError, OSError) as error:
        return _report_error(error)
    print("Ready to flash. Run from", l4t_dir)
    print("  " + " ".join(l4t.build_flash_command()))
    return EXIT_OK


def cmd_prepare(args: argparse.Namespace) -> int:
    if not _require_root():
        return EXIT_FAILURE
    try:
        l4t_dir = l4t.resolve_l4t_dir(args.l4t_dir)
    except L4TNotFoundError as error:
        _report_error(error)
        print("Pass --l4t-dir with the full path to Linux_for_Tegra.", file=sys.stderr)
        return EXIT_FAILURE

    if not args.skip_device_check:
        devices = l4t.detect_recovery_device()
        if devices:
            for line in devices:
                log.info(f"NVIDIA device detected: {line}")
        else:
            log.warning(
                "No NVIDIA device found on USB. Power off the Jetson, jumper pins 9 "
                "(FC REC) and 10 (GND), connect USB-C and power it on."
            )
            if args.flash:
                print("ERROR: refusing to flash without a device in recovery mode", file=sys.stderr)
                return EXIT_FAILURE

    ops = LinuxSystemOps()
    rootfs = l4t_dir / "rootfs"
    pipeline = RemediationPipeline(ops, _policy_from_args(args))
    try:
        report = pipeline.run(rootfs, args.image_dir)
    except InsufficientSpaceError as error:
        return _report_insufficient_space(error)
    except (StorageError, OSError) as error:
        return _report_error(error)
    _print_report(report)

    exit_code = _ready_host(args, l4t_dir)

    if report.remediated:
        try:
            mounted = ops.is_mounted(rootfs)
        except (StorageError, OSError) as error:
            log.warning(f"Cannot tell whether {rootfs} is still mounted: {error}")
            mounted = True
        if mounted:
            print(f"Note: {rootfs} is still mounted from {report.image.path}.")
            print("It will be unmounted automatically when you reboot.")
    return exit_code


def cmd_config(args: argparse.Namespace) -> int:
    if args.key is None:
        print(json.dumps(settings.settings_store.values, indent=2, sort_keys=True))
        return EXIT_OK
    if args.key not in settings.DEFAULT_SETTINGS:
        print(f"ERROR: Unknown setting {args.key!r}", file=sys.stderr)
        return EXIT_FAILURE
    if args.value is None:
        print(json.dumps(settings.get_setting(args.key)))
        return EXIT_OK
    try:
        settings.set_setting(args.key, _parse_setting_value(args.value))
    except OSError as error:
        return _report_error(error)
    log.info(f"Setting {args.key} saved to {settings.SETTINGS_PATH}")
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="nfs-staging",
        description="Move overlay-backed directories onto NFS-exportable loopback images",
    )
    parser.add_argument("-d", "--debug", action="store_true", help="Enable verbose debug output")
    parser.add_argument("--trace", action="store_true", help="Log raw command output")
    parser.add_argument("--log-dir", type=Path, default=None, help="Directory for log files")
    subparsers = parser.add_subparsers(dest="command", required=True)

    def add_policy_args(sub):
        sub.add_argument("--image-dir", type=Path, default=None,
                         help="Directory for the loopback image (default: two levels above PATH)")
        sub.add_argument("--headroom", type=float, default=None,
                         help="Size multiplier applied to the content size (default 1.3)")
        sub.add_argument("--min-size-gib", type=float, default=None,
                         help="Minimum image size in GiB (default 6)")

    inspect_parser = subparsers.add_parser("inspect", help="Check whether PATH can be NFS-exported")
    inspect_parser.add_argument("path", type=Path)
    inspect_parser.set_defaults(handler=cmd_inspect)

    plan_parser = subparsers.add_parser("plan", help="Show the loopback image that would be created")
    plan_parser.add_argument("path", type=Path)
    add_policy_args(plan_parser)
    plan_parser.set_defaults(handler=cmd_plan)

    remediate_parser = subparsers.add_parser(
        "remediate", help="Move PATH onto a loopback image if it cannot be exported"
    )
    remediate_parser.add_argument("path", type=Path)
    add_policy_args(remediate_parser)
    remediate_parser.set_defaults(handler=cmd_remediate)

    prepare_parser = subparsers.add_parser(
        "prepare", help="Fix Linux_for_Tegra/rootfs and get the host ready to flash"
    )
    prepare_parser.add_argument("--l4t-dir", type=Path, default=None,
                                help="Path to Linux_for_Tegra (default: search known locations)")
    prepare_parser.add_argument("--skip-device-check", action="store_true",
                                help="Do not look for a Jetson in Force Recovery Mode")
    prepare_parser.add_argument("--flash", action="store_true",
                                help="Run l4t_initrd_flash.sh once the host is ready")
    add_policy_args(prepare_parser)
    prepare_parser.set_defaults(handler=cmd_prepare)

    config_parser = subparsers.add_parser("config", help="Show or change saved settings")
    config_parser.add_argument("key", nargs="?", default=None, help="Setting name")
    config_parser.add_argument("value", nargs="?", default=None,
                               help="New value (JSON literal or plain string)")
    config_parser.set_defaults(handler=cmd_config)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(debug=args.debug, trace=args.trace, log_dir=args.log_dir)
    return args.handler(args)


if __name__ == "__main__":
    sys.exit(main())
