from __future__ import annotations

from pathlib import Path

from custom_live.domain.lifecycle import LifecycleState, check_transition, next_step_hint
from custom_live.domain.models import BranchChoice, SessionState, Variant, VariantStatus
from custom_live.logging import LoggerFactory
from custom_live.services import chroot, extraction
from custom_live.storage.devices import human_size
from custom_live.storage.exceptions import UserAbort
from custom_live.storage.variant_store import VariantStore
from custom_live.ui.prompts import ConsolePrompter


log = LoggerFactory.for_extract()


def choose_branch(variant: Variant, prompter: ConsolePrompter) -> BranchChoice:
    if variant.has_custom_archive():
        return prompter.ask_branch_choice(variant.name)
    if variant.path.is_dir() and any(variant.path.iterdir()):
        return prompter.confirm_overwrite(variant.name)
    return BranchChoice.FRESH


def run_session(
    session: SessionState,
    store: VariantStore,
    variant: Variant,
    prompter: ConsolePrompter,
    first: bool,
) -> None:
    prompter.show(f"Entering chroot for variant '{variant.name}'.")
    prompter.show(f"Run /{chroot.HELPER_SCRIPT_REL} for configuration tips.")
    returncode = chroot.enter(session.extract_dir)
    if returncode != 0:
        log.warning(f"Chroot shell exited with status {returncode}")
    chroot.record_notes(store, variant, prompter, first=first)
    show_next_steps(variant, prompter)


def show_next_steps(variant: Variant, prompter: ConsolePrompter) -> None:
    prompter.show("")
    prompter.show("Next steps:")
    prompter.show(f"  Re-enter:      custom-live-extract   (choose '{variant.name}')")
    prompter.show(f"  Write to USB:  custom-live-write {variant.name} /dev/sdX [TEMP_DIR]")


def begin_session(
    base_image: Path,
    store: VariantStore,
    prompter: ConsolePrompter,
    work_root: Path | None = None,
) -> SessionState:
    """Extract ``base_image`` into a variant named at the prompt and enter it."""
    iso = extraction.validate_base_image(base_image)
    name = prompter.ask_variant_name()
    variant = store.variant(name)
    choice = choose_branch(variant, prompter)
    if choice is BranchChoice.ABORT:
        raise UserAbort("Aborted. No changes made.", exit_code=0)

    session = extraction.extract(iso, variant, choice, store, work_root)
    run_session(session, store, variant, prompter, first=choice is BranchChoice.FRESH)
    return session


def describe_completed(store: VariantStore, variant: Variant, prompter: ConsolePrompter) -> None:
    header = store.read_history_header(variant)
    base_image = header.base_image if header and header.base_image else "<base ISO>"
    entries = store.history_entry_count(variant)
    prompter.show(f"  {variant.name} (completed, {entries} history entries)")
    for artifact in variant.artifacts():
        prompter.show(
            f"      {artifact.path.name:<52} {human_size(artifact.size_bytes)}"
            f"  [{artifact.kind.value}]"
        )
    prompter.show(f"      To modify: custom-live-extract {base_image}  (choose CONTINUE)")


def list_and_reenter(store: VariantStore, prompter: ConsolePrompter) -> SessionState | None:
    """List variants and re-enter an active one chosen at the prompt.

    Returns:
        The resumed session, or None when there was nothing to resume
    """
    variants = store.list()
    if not variants:
        prompter.show(f"No variants found in {store.root}.")
        prompter.show("Start one with: custom-live-extract <debian-live.iso> [WORK_DIR]")
        return None

    active: list[str] = []
    prompter.show(f"Variants in {store.root}:")
    for variant, status in variants:
        if status is VariantStatus.COMPLETED:
            describe_completed(store, variant, prompter)
            continue
        state = extraction.current_lifecycle(store, variant)
        prompter.show(f"  {variant.name} (active, {state.value}): {next_step_hint(state)}")
        active.append(variant.name)

    if not active:
        prompter.show("No active variants to re-enter.")
        return None

    name = prompter.ask("Variant to re-enter (empty to cancel): ").strip()
    if not name:
        raise UserAbort("Aborted. No changes made.", exit_code=0)
    variant = store.resolve(name)
    current = extraction.current_lifecycle(store, variant)
    check_transition(variant.name, current, LifecycleState.IN_SESSION)
    session = store.load_session(variant)
    session, returncode = chroot.resume(session, store, variant, current)
    if returncode != 0:
        log.warning(f"Chroot shell exited with status {returncode}")
    chroot.record_notes(store, variant, prompter, first=False)
    show_next_steps(variant, prompter)
    return session
