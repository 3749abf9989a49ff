"""Static help and tethering-guide text shown by the CLI."""

from __future__ import annotations

USAGE = """\
Usage: sudo horndis-helper [OPTION] [--dry-run] [--log-level LEVEL] [--repo-dir DIR]

Options:
  build      Build the kernel extension from source
  install    Install the kernel extension
  load       Load the kernel extension
  unload     Unload the kernel extension
  uninstall  Uninstall the kernel extension
  status     Check status of the kernel extension (add --json for JSON)
  guide      Show the Android USB tethering guide
  help       Show this help message
"""

TETHERING_GUIDE = """\
=== Android USB Tethering Guide ===

To enable USB tethering on your Android device:

1. Connect your Android phone to your Mac using a USB cable
2. On your Android device, go to:
   Settings > Network & Internet > Hotspot & tethering
   (Menu location may vary depending on Android version and device manufacturer)
3. Turn on USB tethering
4. Your Mac should detect the device and create a new network interface

To verify the connection:
1. Check your network settings or run ifconfig in Terminal
2. Try to browse the web or ping a website

Troubleshooting tips:
- Make sure the HoRNDIS kernel extension is loaded
- Try disconnecting and reconnecting your Android device
- On newer macOS versions, ensure the kernel extension is approved in System Preferences
- Restart your Mac if other steps don't work
"""


def header(version: str) -> str:
    bar = "=" * 40
    return f"{bar}\n    HoRNDIS USB Tethering Helper\n{bar}\nmacOS Version: {version}\n"
