"""Provisioning pipeline.

This module drives a run from device discovery to the final SSH hint:

1. Find and select the target device, classify it
2. Collect and validate the answers, resolve the SSH public key
3. Confirm destruction (twice for flash drives and unknown devices)
4. Optionally format the device
5. Resolve the image (local file or verified download)
6. Write the image
7. Locate the boot and root partitions by filesystem type
8. Customize the image (user, SSH, network), unmount, eject

Each stage takes a ProvisionContext and returns an updated copy or raises
a ProvisionError. The RecoveryController wraps the whole run.
"""

import dataclasses
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import httpx
from rich.console import Console
from sqlalchemy.orm import Session, sessionmaker

from piflash.answers import ProvisioningAnswers, parse_answers
from piflash.commands import require_tools, run_command, tool_available
from piflash.config import Settings
from piflash.customize.mounts import MountScope
from piflash.customize.network import configure_network
from piflash.customize.ssh import configure_ssh
from piflash.customize.users import provision_user
from piflash.devices.inventory import (
    classify_device,
    find_candidates,
    format_size,
    get_boot_devices,
    list_block_devices,
)
from piflash.devices.partitions import locate_partitions
from piflash.devices.policy import format_device, recommend_format
from piflash.errors import CommandError, UserAbortedError, WriteFailedError
from piflash.flash.writer import unmount_device, write_image_to_device
from piflash.image.provider import resolve_image
from piflash.keys import resolve_public_key
from piflash.progress import transfer_progress
from piflash.prompts import Prompter, ask_answers, select_device
from piflash.recovery import RecoveryController
from piflash.store import RunConfigStore
from piflash.types import (
    BlockDevice,
    DeviceClass,
    ImageSource,
    LocalImage,
    PartitionPair,
    RemoteImage,
    ResolvedImage,
)

logger = logging.getLogger(__name__)

# Classes whose size guess is least trustworthy; they need a second yes
DOUBLE_CONFIRM_CLASSES = (DeviceClass.FLASH_DRIVE, DeviceClass.UNKNOWN)


@dataclass(frozen=True)
class ProvisionContext:
    """Facts accumulated by a provisioning run.

    Attributes:
        settings: Application settings.
        answers: Validated operator answers.
        device: Selected target device.
        device_class: Size classification of the device.
        image: Resolved image to write.
        partitions: Boot and root partitions found after the write.
        public_key: SSH public key installed for the user.
    """

    settings: Settings
    answers: ProvisioningAnswers | None = None
    device: BlockDevice | None = None
    device_class: DeviceClass | None = None
    image: ResolvedImage | None = None
    partitions: PartitionPair | None = None
    public_key: str | None = None

    def require_device(self) -> BlockDevice:
        """Return the selected device (a stage ordering bug otherwise)."""
        if self.device is None or self.device_class is None:
            raise RuntimeError("No device selected yet")
        return self.device

    def require_answers(self) -> ProvisioningAnswers:
        """Return the validated answers (a stage ordering bug otherwise)."""
        if self.answers is None:
            raise RuntimeError("Answers not collected yet")
        return self.answers


def select_target(
    ctx: ProvisionContext, prompter: Prompter, recovery: RecoveryController
) -> ProvisionContext:
    """Discover candidate devices, select one and classify it."""
    candidates = find_candidates(list_block_devices(), get_boot_devices())
    device = select_device(candidates, prompter)
    device_class = classify_device(device.size_bytes, device.removable, ctx.settings)

    size = format_size(device.size_bytes) if device.size_bytes else "unknown size"
    prompter.show(
        f"{device.path} ({size}) looks like: {device_class.value.replace('_', ' ')}. "
        "This guess is based on size only."
    )
    recovery.record_device(device, device_class)
    return dataclasses.replace(ctx, device=device, device_class=device_class)


def collect_answers(
    ctx: ProvisionContext,
    prompter: Prompter,
    defaults: Mapping[str, Any],
    recovery: RecoveryController,
) -> ProvisionContext:
    """Ask the provisioning questions, validate them, resolve the SSH key."""
    raw = ask_answers(prompter, defaults, ctx.settings)
    answers = parse_answers(raw)
    recovery.update_values(answers.to_store_dict())

    public_key = resolve_public_key(ctx.settings, username=answers.username)
    return dataclasses.replace(ctx, answers=answers, public_key=public_key)


def confirm_destruction(ctx: ProvisionContext, prompter: Prompter) -> None:
    """Obtain the operator's consent to erase the device.

    Raises:
        UserAbortedError: Any confirmation was declined.
    """
    device = ctx.require_device()
    if not prompter.confirm(
        f"ALL DATA ON {device.path} WILL BE ERASED. Continue?", False
    ):
        raise UserAbortedError()

    if ctx.device_class in DOUBLE_CONFIRM_CLASSES:
        if not prompter.confirm(
            f"{device.path} is not recognized as an SD card "
            f"({ctx.device_class.value if ctx.device_class else 'unknown'}). "
            "Are you absolutely sure?",
            False,
        ):
            raise UserAbortedError()
    logger.info("Operator confirmed erasing %s", device.path)


def prepare_device(
    ctx: ProvisionContext, prompter: Prompter, recovery: RecoveryController
) -> ProvisionContext:
    """Offer formatting and format the device when accepted."""
    device = ctx.require_device()
    device_class = ctx.device_class or DeviceClass.UNKNOWN

    recommendation = recommend_format(device_class)
    prompter.show(recommendation.reason)
    do_format = prompter.confirm(
        f"Format {device.path} before writing?", recommendation.default_confirm
    )
    recovery.update_values({"format_device": do_format})
    if not do_format:
        logger.info("Skipping format of %s", device.path)
        return ctx

    unmount_device(device.path)
    recovery.mark_destructive(device.path, device_class)
    format_device(device.path, device_class, ctx.settings)
    return ctx


def image_source(answers: ProvisioningAnswers) -> ImageSource:
    """Image source selected by the answers."""
    if answers.local_image:
        return LocalImage(Path(answers.local_image))
    return RemoteImage(answers.architecture)


def acquire_image(
    ctx: ProvisionContext,
    recovery: RecoveryController,
    console: Console,
    client: httpx.Client | None = None,
) -> ProvisionContext:
    """Resolve the image to write."""
    image = resolve_image(
        image_source(ctx.require_answers()),
        ctx.settings,
        client=client,
        console=console,
        track=recovery.track_file,
    )
    recovery.record_image(image.path)
    return dataclasses.replace(ctx, image=image)


def write_image(
    ctx: ProvisionContext, recovery: RecoveryController, console: Console
) -> ProvisionContext:
    """Unmount the device and write the image to it."""
    device = ctx.require_device()
    if ctx.image is None:
        raise RuntimeError("Image not resolved yet")

    unmount_device(device.path)
    recovery.mark_destructive(device.path, ctx.device_class or DeviceClass.UNKNOWN)
    with transfer_progress(console, "Writing", ctx.image.size_bytes) as advance:
        write_image_to_device(ctx.image, device.path, ctx.settings, advance)
    return ctx


def find_partitions(ctx: ProvisionContext) -> ProvisionContext:
    """Locate the boot and root partitions of the written image."""
    pair = locate_partitions(ctx.require_device().path, ctx.settings)
    return dataclasses.replace(ctx, partitions=pair)


def customize_image(
    ctx: ProvisionContext, recovery: RecoveryController
) -> ProvisionContext:
    """Mount the partitions and apply the user, SSH and network settings."""
    device = ctx.require_device()
    answers = ctx.require_answers()
    if ctx.partitions is None or ctx.public_key is None:
        raise RuntimeError("Partitions or public key missing")

    scope = recovery.track_mount_scope(MountScope(ctx.partitions))
    boot_dir, root_dir = scope.boot_dir, scope.root_dir
    if boot_dir is None or root_dir is None:
        raise RuntimeError("Mount scope is not open")
    try:
        provision_user(root_dir, answers.username, answers.password, ctx.public_key)
        configure_ssh(boot_dir, root_dir, answers.username, answers.key_only)
        configure_network(boot_dir, root_dir, answers, ctx.settings)
    except (CommandError, OSError) as e:
        logger.error("Customizing the image failed: %s", e)
        raise WriteFailedError(
            device.path, f"customizing the image failed: {e}"
        ) from e
    finally:
        scope.close()
    return ctx


def eject_device(device_path: str) -> None:
    """Eject the device, best effort."""
    if not tool_available("eject"):
        logger.debug("eject not available, skipping")
        return
    try:
        run_command(["eject", device_path], check=False)
    except CommandError as e:
        logger.warning("Could not eject %s: %s", device_path, e.message)


def ssh_hint(answers: ProvisioningAnswers) -> str:
    """Command the operator uses to reach the Pi."""
    host = answers.static_ip or "<Raspberry Pi IP>"
    return f"ssh {answers.username}@{host}"


def run_pipeline(
    settings: Settings,
    prompter: Prompter,
    console: Console,
    store: RunConfigStore,
    *,
    history: sessionmaker[Session] | None = None,
    client: httpx.Client | None = None,
) -> ProvisionContext:
    """Run a complete provisioning.

    Args:
        settings: Application settings.
        prompter: Source of every operator decision.
        console: Console for progress and messages.
        store: Run configuration store (defaults in, outcome out).
        history: Session factory of the run history, if available.
        client: HTTPX client used for downloads.

    Returns:
        The final context.

    Raises:
        ProvisionError: Any stage failed; the outcome has been recorded.
    """
    defaults = store.load()

    with RecoveryController(
        store, console, history=history, values=defaults
    ) as recovery:
        require_tools()
        ctx = ProvisionContext(settings=settings)
        ctx = select_target(ctx, prompter, recovery)
        ctx = collect_answers(ctx, prompter, defaults, recovery)
        confirm_destruction(ctx, prompter)
        ctx = prepare_device(ctx, prompter, recovery)
        ctx = acquire_image(ctx, recovery, console, client)
        ctx = write_image(ctx, recovery, console)
        ctx = find_partitions(ctx)
        ctx = customize_image(ctx, recovery)
        eject_device(ctx.require_device().path)
        recovery.mark_success()

    answers = ctx.require_answers()
    console.print(
        f"[green]{ctx.require_device().path} is ready.[/green] "
        "Insert it into your Raspberry Pi and power it on."
    )
    console.print(f"Try SSH with: {ssh_hint(answers)}")
    return ctx


__all__ = [
    "ProvisionContext",
    "acquire_image",
    "collect_answers",
    "confirm_destruction",
    "customize_image",
    "eject_device",
    "find_partitions",
    "image_source",
    "prepare_device",
    "run_pipeline",
    "select_target",
    "ssh_hint",
    "write_image",
]
