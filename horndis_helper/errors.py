"""Failure taxonomy for the kext lifecycle.

Every error carries a short ``kind`` (the class name) so outcomes can report
which precondition or OS call failed without keeping the exception around.
"""

from __future__ import annotations


class HelperError(Exception):
    hint: str = ""

    def __init__(self, message: str, *, hint: str | None = None) -> None:
        super().__init__(message)
        if hint is not None:
            self.hint = hint

    @property
    def kind(self) -> str:
        return type(self).__name__


class PrivilegeError(HelperError):
    hint = "Run this command with sudo or as root."


class UnsupportedPlatform(HelperError):
    hint = "HoRNDIS requires macOS 10.11 or newer."


class ToolchainMissing(HelperError):
    hint = "Install Xcode or the Command Line Tools: xcode-select --install"


class BuildFailed(HelperError):
    pass


class ArtifactNotBuilt(HelperError):
    hint = "Build the kernel extension first: sudo horndis-helper build"


class ArtifactNotInstalled(HelperError):
    hint = "Install the kernel extension first: sudo horndis-helper install"


class PolicyQueryError(HelperError):
    pass


class OSCallFailed(HelperError):
    def __init__(self, message: str, *, returncode: int | None = None, output: str = "", hint: str | None = None) -> None:
        super().__init__(message, hint=hint)
        self.returncode = returncode
        self.output = output
