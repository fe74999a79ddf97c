"""Console prompts.

All operator input is read here and turned into domain values
(``BranchChoice``, booleans, persistence sizes) before it reaches the
services. Input and output functions are injectable for tests.
"""

from __future__ import annotations

from typing import Callable

from custom_live.domain.models import BranchChoice, is_valid_variant_name
from custom_live.storage.exceptions import (
    InvalidChoiceError,
    InvalidVariantNameError,
    UserAbort,
)


BRANCH_CHOICES = {
    "1": BranchChoice.FRESH,
    "2": BranchChoice.CONTINUE,
    "3": BranchChoice.ABORT,
}


class ConsolePrompter:
    def __init__(
        self,
        input_func: Callable[[str], str] = input,
        output_func: Callable[[str], None] = print,
    ):
        self._input = input_func
        self._output = output_func

    def show(self, message: str = "") -> None:
        self._output(message)

    def ask(self, prompt: str) -> str:
        try:
            return self._input(prompt)
        except EOFError:
            raise UserAbort("Aborted (end of input).", exit_code=1) from None

    def ask_yes_no(self, question: str, default: bool = False) -> bool:
        suffix = "[Y/n]" if default else "[y/N]"
        answer = self.ask(f"{question} {suffix}: ").strip().lower()
        if not answer:
            return default
        return answer in ("y", "yes")

    def ask_variant_name(self) -> str:
        name = self.ask("Enter variant name (e.g. ca-system, dev-tools): ").strip()
        if not is_valid_variant_name(name):
            raise InvalidVariantNameError(name)
        return name

    def ask_branch_choice(self, variant_name: str) -> BranchChoice:
        self.show(f"Variant '{variant_name}' already has a custom squashfs.")
        self.show("  1) Fresh start (set the custom squashfs aside, extract the original)")
        self.show("  2) Continue customizing (extract the custom squashfs)")
        self.show("  3) Abort")
        answer = self.ask("Choice [1-3]: ").strip()
        try:
            return BRANCH_CHOICES[answer]
        except KeyError:
            raise InvalidChoiceError(answer, list(BRANCH_CHOICES)) from None

    def confirm_overwrite(self, variant_name: str) -> BranchChoice:
        """Existing variant without a custom archive: overwrite or abort."""
        if self.ask_yes_no(f"Variant '{variant_name}' already exists. Overwrite?"):
            return BranchChoice.FRESH
        return BranchChoice.ABORT

    def confirm_typed(self, message: str, keyword: str = "YES") -> None:
        """Require the operator to type ``keyword`` exactly.

        Raises:
            UserAbort: with exit code 1 for any other answer
        """
        answer = self.ask(f"{message} Type '{keyword}' to continue: ").strip()
        if answer != keyword:
            raise UserAbort("Aborted.", exit_code=1)

    def read_multiline(self) -> list[str]:
        """Read lines until the first empty one."""
        lines = []
        while True:
            try:
                line = self._input("")
            except EOFError:
                break
            if not line.strip():
                break
            lines.append(line.rstrip())
        return lines

    def ask_persistence_size(self, default_gb: int) -> str:
        """Raw persistence size answer; empty means ``default_gb``."""
        answer = self.ask(f"Persistence partition size in GB [{default_gb}]: ").strip()
        return answer or str(default_gb)
